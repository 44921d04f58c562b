# packmgr/http/client.py
from __future__ import annotations
import asyncio
import itertools
import logging
import os
import random
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path, PurePosixPath
from urllib.parse import unquote

import aiofiles
import httpx

logger = logging.getLogger(__name__)

__all__ = ["HTTPError", "DownloadedFile", "downloadToDir"]

DEFAULT_CHUNK_SIZE = 64 * 1024

# Concurrent transfers may resolve to the same final name; each gets its own part file
_partCounter = itertools.count()

# Final URL segments that say nothing about the file being served
_GENERIC_NAMES = {"", "download", "file"}

_FILENAME_STAR_RE = re.compile(r"filename\*\s*=\s*(?:UTF-8|utf-8)?''([^;]+)")
_FILENAME_RE = re.compile(r'filename\s*=\s*"?([^";]+)"?')



class HTTPError(Exception):
    def __init__(self, status: int, body: str, url: str | None = None):
        super().__init__(f"HTTP {status}: {body[:200]}")
        self.status = status
        self.body = body
        self.url = url



@dataclass(frozen=True, slots=True)
class DownloadedFile:
    path: Path
    fileName: str
    size: int
    url: str                # Final URL after redirects



def _parseRetryAfter(value: str | None) -> float | None:
    """Return seconds suggested by Retry-After header, if parsable."""
    if not value:
        return None
    # Retry-After: seconds
    try:
        secondsF = float(value)
        if secondsF >= 0:
            return secondsF
        return None
    except ValueError:
        pass
    # Retry-After: HTTP-date
    try:
        dt = parsedate_to_datetime(value)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        now = datetime.now(timezone.utc).timestamp()
        return max(0.0, dt.timestamp() - now)
    except (TypeError, ValueError):
        return None



def _shouldRetry(status: int) -> bool:
    # Typical transient HTTP errors upon which retry makes sense
    return status in (408, 429, 500, 502, 503, 504)



def _backoffDelayMs(attempt: int, backoffBaseMs: int, backoffMaxMs: int) -> float:
    """Exponential backoff with +-25% jitter for the given zero-based attempt."""
    base = min(backoffMaxMs, backoffBaseMs * (2 ** attempt))
    jitter = base * 0.25
    return max(0.0, base + random.uniform(-jitter, jitter))



def _safeFileName(name: str | None) -> str | None:
    if not name:
        return None
    name = PurePosixPath(unquote(name).replace("\\", "/")).name.strip()
    if name in (".", "..") or name.lower() in _GENERIC_NAMES:
        return None
    return name



def _fileNameFromResponse(resp: httpx.Response) -> str | None:
    """Content-Disposition wins; otherwise the last segment of the final URL."""
    disposition = resp.headers.get("Content-Disposition")
    if disposition:
        match = _FILENAME_STAR_RE.search(disposition) or _FILENAME_RE.search(disposition)
        if match:
            name = _safeFileName(match.group(1).strip())
            if name:
                return name
    return _safeFileName(resp.url.path)



async def downloadToDir(
    client: httpx.AsyncClient,
    url: str,
    destDir: Path,
    *,
    fallbackName: str | None = None,
    retries: int = 2,
    backoffBaseMs: int = 250,
    backoffMaxMs: int = 1_000,
    chunkSize: int = DEFAULT_CHUNK_SIZE,
) -> DownloadedFile:
    """
    Streams `url` into `destDir`, retrying 408/429/5xx and transport errors.

    The body is written to a per-transfer `<name>.<n>.part` file and renamed
    once complete, so a failed transfer never leaves a truncated file under
    the final name.

    Raises:
        HTTPError: non-retryable status, or retryable status after exhausting retries
        httpx.TransportError: transport failures after exhausting retries
        ValueError: no file name could be derived and no fallbackName was given
    """
    destDir = Path(destDir)
    retries = max(0, retries)
    attempt = 0

    while True:
        partPath: Path | None = None
        try:
            async with client.stream("GET", url, follow_redirects=True) as resp:
                status = resp.status_code

                if _shouldRetry(status) and attempt < retries:
                    retryAfter = _parseRetryAfter(resp.headers.get("Retry-After"))
                    if retryAfter is not None:
                        delay = retryAfter
                    else:
                        delay = _backoffDelayMs(attempt, backoffBaseMs, backoffMaxMs) / 1000.0
                    attempt += 1
                    logger.debug("HTTP %d from '%s', retry %d in %.2fs", status, url, attempt, delay)
                    await asyncio.sleep(delay)
                    continue

                if status >= 400:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    raise HTTPError(status, body, url=url)

                fileName = _fileNameFromResponse(resp) or fallbackName
                if not fileName:
                    raise ValueError(f"Cannot derive a file name for '{url}'")

                destDir.mkdir(parents=True, exist_ok=True)
                target = destDir / fileName
                partPath = target.with_name(f"{target.name}.{next(_partCounter)}.part")
                size = 0
                async with aiofiles.open(partPath, "wb") as fh:
                    async for chunk in resp.aiter_bytes(chunkSize):
                        if chunk:
                            await fh.write(chunk)
                            size += len(chunk)
                os.replace(partPath, target)
                partPath = None

                return DownloadedFile(path=target, fileName=fileName, size=size, url=str(resp.url))

        except httpx.TransportError as err:
            attempt += 1
            if attempt > retries:
                raise
            delayMs = _backoffDelayMs(attempt - 1, backoffBaseMs, backoffMaxMs)
            logger.debug("Transport error for '%s' (%s), retry %d in %.0fms", url, err, attempt, delayMs)
            await asyncio.sleep(delayMs / 1000.0)
        finally:
            if partPath is not None and partPath.exists():
                partPath.unlink(missing_ok=True)
