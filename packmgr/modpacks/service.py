# packmgr/modpacks/service.py
from __future__ import annotations
import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from packmgr.app.settings import PackManagerConfig
from packmgr.core.errors import (
    CleanupFailed,
    InvalidArgument,
    MalformedManifest,
    ManifestWriteFailed,
)
from packmgr.core.logging import logContext
from packmgr.http.bulk import (
    BulkDownloader,
    BulkDownloadSummary,
    DownloadItem,
    DownloadOutcome,
    ItemCallback,
    ProgressCallback,
)
from packmgr.modpacks.cleanup import RemovalReport, unlinkBatch
from packmgr.modpacks.discover import listInstalledPacks, loadInstalledPack
from packmgr.modpacks.instance_cfg import ensureInstanceDescriptor
from packmgr.modpacks.manifest import (
    ManifestData,
    applyManifestProperties,
    parseManifest,
    writeManifestFile,
)
from packmgr.modpacks.models import MANIFEST_FILE_NAME, Mod, ModPack
from packmgr.modpacks.overrides import deleteOverrideFiles, extractOverrides
from packmgr.sources.archive import PackArchive
from packmgr.sources.fetch import SourceFetcher, modDownloadUrl

logger = logging.getLogger(__name__)

__all__ = [
    "ArchiveResolver",
    "ModDownloader",
    "PackOperationResult",
    "ModPackService",
]



class ArchiveResolver(Protocol):
    async def resolve(self, sourceRef: str) -> Path:
        ...



class ModDownloader(Protocol):
    async def download(
        self,
        items: Sequence[DownloadItem],
        onItemDone: ItemCallback,
        onProgress: ProgressCallback | None = None,
    ) -> BulkDownloadSummary:
        ...



@dataclass(slots=True)
class PackOperationResult:
    """
    What an install/update left on disk.

    `pack` may contain mods with success=False; `cleanupFailures` lists every
    unlink/extract/write that failed without stopping the operation.
    """
    pack: ModPack
    downloadSummary: BulkDownloadSummary = field(default_factory=BulkDownloadSummary)
    cleanupFailures: list[CleanupFailed] = field(default_factory=list)
    removedMods: int = 0
    removedOverrides: int = 0
    instanceCfgWritten: bool = False
    manifestPath: Path | None = None

    @property
    def failedMods(self) -> list[Mod]:
        return self.pack.failedMods

    @property
    def failedRequiredMods(self) -> list[Mod]:
        return [mod for mod in self.pack.failedMods if mod.required]

    @property
    def ok(self) -> bool:
        return not self.failedMods and not self.cleanupFailures



def _requireText(value: str | None, message: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidArgument(message)
    return str(value).strip()



def _validatePackName(packName: str) -> None:
    if packName in (".", "..") or "/" in packName or "\\" in packName:
        raise InvalidArgument(f"Pack name '{packName}' must be a plain directory name")



class ModPackService:
    """
    Installs modpacks and reconciles existing installations with newer manifests.

    Operations on the same `folderPath` must not overlap; callers serialize
    them per pack. Distinct packs share no mutable state and may run
    concurrently. Nothing is rolled back: an interrupted or failed operation
    can leave the directory ahead of its manifest, and re-running it is safe.
    """

    def __init__(
        self,
        config: PackManagerConfig,
        *,
        fetcher: ArchiveResolver | None = None,
        downloader: ModDownloader | None = None,
        onProgress: ProgressCallback | None = None,
    ) -> None:
        self.config = config
        self.fetcher = fetcher if fetcher is not None else SourceFetcher(config)
        self.downloader = downloader if downloader is not None else BulkDownloader(config)
        self.onProgress = onProgress

    # ----- Discovery -----

    def listInstalledPacks(self, rootDir: Path | None = None) -> list[ModPack]:
        return listInstalledPacks(rootDir if rootDir is not None else self.config.instanceLocation)

    # ----- Install -----

    async def install(self, packName: str, sourceRef: str) -> PackOperationResult:
        packName = _requireText(packName, "Pack Name is required for pack install!!")
        sourceRef = _requireText(sourceRef, "File path is required for pack install!!")
        _validatePackName(packName)

        folderPath = Path(self.config.instanceLocation).expanduser() / packName
        if loadInstalledPack(folderPath) is not None:
            raise InvalidArgument(f"Pack '{packName}' is already installed at '{folderPath}'; update it instead")

        with logContext(op="install", pack=packName):
            logger.info("Installing modpack %s from '%s'", packName, sourceRef)
            archivePath = await self.fetcher.resolve(sourceRef)

            pack = ModPack(
                name=packName,
                folderPath=folderPath,
                origin=sourceRef,
                sourceLocation=str(archivePath),
            )

            with PackArchive(archivePath) as archive:
                manifest = self._readManifest(archive)
                summary = await self._processModPack(pack, manifest)
                result = PackOperationResult(pack=pack, downloadSummary=summary)
                result.cleanupFailures.extend(await asyncio.to_thread(extractOverrides, archive, pack))

            self._setupInstanceCfg(pack, result)
            await self._persist(pack, manifest, result)

            logger.info(
                "Modpack has been successfully created: %d mods, %d failed, %d cleanup failures",
                len(pack.mods),
                len(result.failedMods),
                len(result.cleanupFailures),
            )
            return result

    # ----- Update -----

    async def update(self, installedPack: ModPack, sourceRef: str) -> PackOperationResult:
        if installedPack is None:
            raise InvalidArgument("An installed pack is required for pack update!!")
        sourceRef = _requireText(sourceRef, "File path is required for pack update!!")

        with logContext(op="update", pack=installedPack.name):
            archivePath = await self.fetcher.resolve(sourceRef)
            logger.info("Updating with pack found at '%s'", archivePath)

            # Same directory and name: the install is never renamed mid-update
            candidate = ModPack(
                name=installedPack.name,
                folderPath=installedPack.folderPath,
                origin=sourceRef,
                sourceLocation=str(archivePath),
            )

            with PackArchive(archivePath) as archive:
                manifest = self._readManifest(archive)
                summary = await self._processModPack(candidate, manifest)
                result = PackOperationResult(pack=candidate, downloadSummary=summary)

                removal = await self.removeOldMods(installedPack, candidate)
                result.removedMods = removal.removedCount
                result.cleanupFailures.extend(removal.failures)

                # Old overrides go first so files dropped or renamed in the new archive don't linger
                overrideRemoval = await self.deleteOverrideFiles(installedPack)
                result.removedOverrides = overrideRemoval.removedCount
                result.cleanupFailures.extend(overrideRemoval.failures)

                result.cleanupFailures.extend(await asyncio.to_thread(extractOverrides, archive, candidate))

            self._setupInstanceCfg(candidate, result)
            await self._persist(candidate, manifest, result)

            logger.info(
                "Modpack update completed: %d mods, %d failed, %d removed, %d cleanup failures",
                len(candidate.mods),
                len(result.failedMods),
                result.removedMods,
                len(result.cleanupFailures),
            )
            return result

    # ----- Reconciliation -----

    async def removeOldMods(self, installed: ModPack, candidate: ModPack) -> RemovalReport:
        """
        Deletes mod files the candidate no longer needs, in two ordered scans.

        Scan A (candidate mods): an installed counterpart with the same
        projectID that succeeded previously and has a different fileID is
        replaced, so its file goes.
        Scan B (installed mods): a projectID absent from the candidate was
        dropped, so its file goes.

        Mods are matched by projectID, never by fileID. Failures are collected;
        both scans always run to completion.
        """
        logger.info("Removing mods...")
        keep = candidate.successfulFileNames

        replaced: list[Path] = []
        for mod in candidate.mods:
            if not installed.modContained(mod.projectID):
                continue
            oldMod = installed.getMod(mod.projectID)
            if oldMod is None or not oldMod.success or oldMod.fileID == mod.fileID:
                continue
            path = self._oldModPath(candidate, oldMod, keep)
            if path is not None:
                replaced.append(path)
        report = await unlinkBatch(replaced, label="mod")

        dropped: list[Path] = []
        for oldMod in installed.mods:
            if candidate.modContained(oldMod.projectID):
                continue
            path = self._oldModPath(candidate, oldMod, keep)
            if path is not None:
                dropped.append(path)
        report.merge(await unlinkBatch(dropped, label="mod"))

        logger.info("Removed %d old mods!", report.removedCount)
        return report

    async def deleteOverrideFiles(self, pack: ModPack) -> RemovalReport:
        return await deleteOverrideFiles(pack, enabled=self.config.removeOverridesOnUpdate)

    # ----- Steps -----

    def _readManifest(self, archive: PackArchive) -> ManifestData:
        try:
            text = archive.readTextEntry(MANIFEST_FILE_NAME)
        except UnicodeDecodeError as err:
            raise MalformedManifest(f"'{MANIFEST_FILE_NAME}' is not valid UTF-8: {err}") from err
        if text is None:
            raise MalformedManifest(f"ModPack didn't contain a '{MANIFEST_FILE_NAME}'!")
        logger.debug("Manifest was found in '%s'", archive.path)
        return parseManifest(text)

    async def _processModPack(self, pack: ModPack, manifest: ManifestData) -> BulkDownloadSummary:
        """Builds `pack.mods` from the manifest and retrieves every mod into `pack.modsDir`."""
        applyManifestProperties(pack, manifest.model)
        pack.mods = []

        logger.info(
            "Modpack contains %d mods, using Minecraft %s and %s %s",
            len(manifest.model.files),
            pack.mcVersion,
            pack.modLoader or "loader",
            pack.forgeVersion,
        )

        items: list[DownloadItem] = []
        modsByItem: dict[DownloadItem, Mod] = {}
        for entry in manifest.model.files:
            url = modDownloadUrl(entry.projectID, entry.fileID)
            mod = Mod(projectID=entry.projectID, fileID=entry.fileID, required=entry.required, url=url)
            pack.addMod(mod)
            item = DownloadItem(
                url=url,
                destinationDir=pack.modsDir,
                fallbackName=f"{entry.projectID}-{entry.fileID}.jar",
            )
            items.append(item)
            modsByItem[item] = mod

        def onItemDone(item: DownloadItem, outcome: DownloadOutcome) -> None:
            mod = modsByItem[item]
            if outcome.ok:
                mod.success = True
                mod.fileName = outcome.fileName
                mod.size = outcome.size
            else:
                mod.success = False
                mod.fileName = None
                mod.size = None
                logger.warning("Mod %d (file %d) failed to download: %s", mod.projectID, mod.fileID, outcome.error)

        pack.modsDir.mkdir(parents=True, exist_ok=True)
        summary = await self.downloader.download(items, onItemDone, self.onProgress)

        failed = pack.failedMods
        if failed:
            logger.warning("%d mods were unable to download.", len(failed))
            required = [mod.projectID for mod in failed if mod.required]
            if required:
                logger.error("Required mods missing: %s", ", ".join(str(pid) for pid in required))
        return summary

    def _oldModPath(self, candidate: ModPack, oldMod: Mod, keep: set[str]) -> Path | None:
        if not oldMod.fileName:
            logger.info("No file recorded for mod %d, nothing to remove", oldMod.projectID)
            return None
        if Path(oldMod.fileName).name != oldMod.fileName:
            logger.warning("Refusing to remove mod %d: unexpected file name '%s'", oldMod.projectID, oldMod.fileName)
            return None
        if oldMod.fileName in keep:
            # The new download landed under the same name
            logger.debug("Keeping '%s': it was just downloaded for the new version", oldMod.fileName)
            return None
        return candidate.modsDir / oldMod.fileName

    def _setupInstanceCfg(self, pack: ModPack, result: PackOperationResult) -> None:
        try:
            result.instanceCfgWritten = ensureInstanceDescriptor(pack)
        except OSError as err:
            logger.error("Error while creating instance.cfg: %s", err)
            result.cleanupFailures.append(CleanupFailed(pack.instanceCfgPath, f"Failed to write instance descriptor: {err}"))

    async def _persist(self, pack: ModPack, manifest: ManifestData, result: PackOperationResult) -> None:
        try:
            result.manifestPath = await asyncio.to_thread(writeManifestFile, pack, manifest)
        except ManifestWriteFailed as err:
            err.result = result
            raise
