# packmgr/modpacks/overrides.py
from __future__ import annotations
import logging
import zipfile
from pathlib import Path, PurePosixPath

from packmgr.core.errors import CleanupFailed
from packmgr.modpacks.cleanup import RemovalReport, unlinkBatch
from packmgr.modpacks.models import ModPack
from packmgr.sources.archive import PackArchive

logger = logging.getLogger(__name__)

__all__ = ["OVERRIDES_TARGET_DIR", "extractOverrides", "deleteOverrideFiles"]

# Overrides land under <folderPath>/minecraft and are recorded relative to folderPath
OVERRIDES_TARGET_DIR = "minecraft"



def extractOverrides(archive: PackArchive, pack: ModPack) -> list[CleanupFailed]:
    """
    Copies the archive's overrides subtree into `<folderPath>/minecraft/`.

    Every extracted *file* is recorded in `pack.overrideFiles` (replacing the
    previous list) so a later update knows exactly what to delete, even when
    the next archive ships a different set of overrides.

    Returns the per-entry failures; extraction continues past them.
    """
    pack.overrideFiles = []
    failures: list[CleanupFailed] = []
    if not pack.overrides:
        logger.info("Pack '%s' declares no overrides directory", pack.name)
        return failures

    prefix = pack.overrides.strip("/") + "/"
    targetRoot = pack.folderPath / OVERRIDES_TARGET_DIR

    for entryName in archive.listEntries():
        if not entryName.startswith(prefix) or entryName == prefix:
            continue
        relative = entryName[len(prefix):]
        try:
            written = archive.extractEntry(entryName, targetRoot, arcName=relative)
        except (OSError, ValueError, KeyError, zipfile.BadZipFile) as err:
            logger.error("Failed to extract override '%s': %s", entryName, err)
            failures.append(CleanupFailed(targetRoot / relative, f"Failed to extract override: {err}"))
            continue
        if written.is_file():
            pack.overrideFiles.append(str(PurePosixPath(OVERRIDES_TARGET_DIR) / relative.rstrip("/")))

    logger.info("Extracted %d override files for '%s'", len(pack.overrideFiles), pack.name)
    return failures



def _overridePath(pack: ModPack, recorded: str) -> Path | None:
    relative = PurePosixPath(recorded.replace("\\", "/"))
    if relative.is_absolute() or ".." in relative.parts or not relative.parts:
        logger.warning("Refusing to remove override file: unexpected path '%s'", recorded)
        return None
    path = pack.folderPath.joinpath(*relative.parts)
    try:
        path.resolve().relative_to(pack.folderPath.resolve())
    except ValueError:
        logger.warning("Refusing to remove override file: '%s' is outside '%s'", recorded, pack.folderPath)
        return None
    return path



async def deleteOverrideFiles(pack: ModPack, *, enabled: bool) -> RemovalReport:
    """
    Removes the override files recorded on `pack` when `enabled`.

    When disabled this is a no-op that reports success. Already-missing files
    are tolerated, so running it twice removes nothing the second time.
    Recorded paths that would land outside `folderPath` are skipped.
    """
    if not enabled:
        logger.debug("Override removal disabled; keeping files of '%s'", pack.name)
        return RemovalReport()
    if not pack.overrideFiles:
        logger.info("No override files to delete!")
        return RemovalReport()

    logger.info("Removing old override files...")
    paths = [path for path in (_overridePath(pack, recorded) for recorded in pack.overrideFiles) if path is not None]
    report = await unlinkBatch(paths, label="override file")
    logger.info("Removed %d override files!", report.removedCount)
    return report
