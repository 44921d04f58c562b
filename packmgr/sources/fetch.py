# packmgr/sources/fetch.py
from __future__ import annotations
import asyncio
import logging
from pathlib import Path

import httpx

from packmgr.app.settings import PackManagerConfig
from packmgr.core.errors import SourceResolutionFailed, UnsupportedSource
from packmgr.http.client import HTTPError, downloadToDir

logger = logging.getLogger(__name__)

__all__ = [
    "ARCHIVE_EXTENSION",
    "CATALOG_SOURCE_PREFIXES",
    "MOD_DOWNLOAD_URL",
    "modDownloadUrl",
    "isCatalogUrl",
    "fixUrl",
    "SourceFetcher",
]

ARCHIVE_EXTENSION = ".zip"

# Catalog pages a pack archive may be downloaded from
CATALOG_SOURCE_PREFIXES = (
    "https://minecraft.curseforge.com/projects/",
    "https://www.feed-the-beast.com",
)

# Mod files are addressed purely by (projectID, fileID)
MOD_DOWNLOAD_URL = "https://minecraft.curseforge.com/projects/{projectID}/files/{fileID}/download"

_DOWNLOAD_SUFFIX = "download"



def modDownloadUrl(projectID: int, fileID: int) -> str:
    return MOD_DOWNLOAD_URL.format(projectID=projectID, fileID=fileID)



def isCatalogUrl(sourceRef: str) -> bool:
    return sourceRef.startswith(CATALOG_SOURCE_PREFIXES)



def fixUrl(url: str) -> str:
    """Catalog project pages only serve the archive from their `/download` endpoint."""
    if url.endswith(_DOWNLOAD_SUFFIX):
        return url
    return url.rstrip("/") + "/" + _DOWNLOAD_SUFFIX



class SourceFetcher:
    """
    Resolves a user-supplied source reference into a local pack archive.

      - `*.zip` paths are already local and returned unchanged
      - catalog URLs are downloaded into `tempDir`
      - anything else is rejected with UnsupportedSource
    """

    def __init__(
        self,
        config: PackManagerConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport

    def _makeClient(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self._config.downloads.timeoutMs / 1_000)
        if self._transport is not None:
            return httpx.AsyncClient(timeout=timeout, transport=self._transport, follow_redirects=True)
        return httpx.AsyncClient(timeout=timeout, http2=True, follow_redirects=True)

    async def resolve(self, sourceRef: str) -> Path:
        sourceRef = sourceRef.strip()
        if sourceRef.lower().endswith(ARCHIVE_EXTENSION):
            return Path(sourceRef).expanduser()

        if isCatalogUrl(sourceRef):
            return await self._download(sourceRef)

        raise UnsupportedSource(
            f"The file url must be a zip file or be from CurseForge or feed-the-beast. '{sourceRef}' was passed in!",
            sourceRef=sourceRef,
        )

    async def _download(self, sourceRef: str) -> Path:
        url = fixUrl(sourceRef)
        settings = self._config.downloads
        logger.info("Downloading pack archive from '%s'", url)
        try:
            async with self._makeClient() as client:
                result = await downloadToDir(
                    client,
                    url,
                    self._config.tempDir,
                    fallbackName=_fallbackArchiveName(sourceRef),
                    retries=settings.retries,
                    backoffBaseMs=settings.backoffBaseMs,
                    backoffMaxMs=settings.backoffMaxMs,
                    chunkSize=settings.chunkSize,
                )
        except asyncio.CancelledError:
            raise
        except (HTTPError, httpx.HTTPError, OSError, ValueError) as err:
            raise SourceResolutionFailed(f"Failed to download modpack at '{sourceRef}': {err}", sourceRef=sourceRef) from err

        logger.info("Pack archive saved to '%s' (%d bytes)", result.path, result.size)
        return result.path



def _fallbackArchiveName(sourceRef: str) -> str:
    parts = [part for part in sourceRef.rstrip("/").split("/") if part and part != _DOWNLOAD_SUFFIX]
    slug = parts[-1] if parts else "modpack"
    return f"{slug}{ARCHIVE_EXTENSION}"
