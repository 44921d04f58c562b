# packmgr/http/bulk.py
from __future__ import annotations
import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from packmgr.app.settings import PackManagerConfig
from packmgr.core.errors import ComponentRetrievalFailed
from packmgr.http.client import HTTPError, downloadToDir

logger = logging.getLogger(__name__)

__all__ = [
    "DownloadItem",
    "DownloadOutcome",
    "BulkDownloadSummary",
    "BulkDownloader",
    "ItemCallback",
    "ProgressCallback",
]



@dataclass(frozen=True, slots=True)
class DownloadItem:
    url: str
    destinationDir: Path
    # Used when neither headers nor the final URL name the file
    fallbackName: str | None = None



@dataclass(frozen=True, slots=True)
class DownloadOutcome:
    """Either `error` is set, or `fileName`/`size` describe the file on disk."""
    error: ComponentRetrievalFailed | None = None
    fileName: str | None = None
    size: int | None = None
    finalUrl: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None



@dataclass(slots=True)
class BulkDownloadSummary:
    anyErrors: bool = False
    completedCount: int = 0
    failedItems: list[DownloadItem] = field(default_factory=list)



ItemCallback = Callable[[DownloadItem, DownloadOutcome], None]
ProgressCallback = Callable[[int, int, DownloadItem], None]



class BulkDownloader:
    """
    Retrieves a batch of files concurrently (bounded by `downloads.maxConcurrent`).

    `onItemDone` fires exactly once per item. A failing item never aborts the
    batch; it is reported through its outcome and in the summary.
    """

    def __init__(
        self,
        config: PackManagerConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = config.downloads
        self._transport = transport

    def makeClient(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self._settings.timeoutMs / 1_000)
        if self._transport is not None:
            return httpx.AsyncClient(timeout=timeout, transport=self._transport, follow_redirects=True)
        return httpx.AsyncClient(timeout=timeout, http2=True, follow_redirects=True)

    async def download(
        self,
        items: Sequence[DownloadItem],
        onItemDone: ItemCallback,
        onProgress: ProgressCallback | None = None,
    ) -> BulkDownloadSummary:
        summary = BulkDownloadSummary()
        total = len(items)
        if total == 0:
            return summary

        semaphore = asyncio.Semaphore(self._settings.maxConcurrent)
        finished = 0

        async with self.makeClient() as client:

            async def runOne(item: DownloadItem) -> None:
                nonlocal finished
                async with semaphore:
                    outcome = await self._fetch(client, item)
                if outcome.ok:
                    summary.completedCount += 1
                    logger.debug("DONE: %s", item.url)
                else:
                    summary.anyErrors = True
                    summary.failedItems.append(item)
                    logger.warning("ERROR: '%s' failed to download: %s", item.url, outcome.error)
                finished += 1
                try:
                    onItemDone(item, outcome)
                finally:
                    if onProgress is not None:
                        onProgress(finished, total, item)

            await asyncio.gather(*(runOne(item) for item in items))

        logger.info(
            "Downloads complete: %d/%d succeeded%s",
            summary.completedCount,
            total,
            f", {len(summary.failedItems)} failed" if summary.anyErrors else "",
        )
        return summary

    async def _fetch(self, client: httpx.AsyncClient, item: DownloadItem) -> DownloadOutcome:
        try:
            result = await downloadToDir(
                client,
                item.url,
                item.destinationDir,
                fallbackName=item.fallbackName,
                retries=self._settings.retries,
                backoffBaseMs=self._settings.backoffBaseMs,
                backoffMaxMs=self._settings.backoffMaxMs,
                chunkSize=self._settings.chunkSize,
            )
        except asyncio.CancelledError:
            raise
        except HTTPError as err:
            return DownloadOutcome(error=ComponentRetrievalFailed(str(err), url=item.url, status=err.status))
        except (httpx.HTTPError, OSError, ValueError) as err:
            return DownloadOutcome(error=ComponentRetrievalFailed(f"{type(err).__name__}: {err}", url=item.url))
        return DownloadOutcome(fileName=result.fileName, size=result.size, finalUrl=result.url)
