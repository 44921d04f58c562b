# packmgr/modpacks/discover.py
from __future__ import annotations
import logging
from pathlib import Path

import json5

from packmgr.core.errors import PackManagerError
from packmgr.modpacks.manifest import decodePack, isManagedManifest, parseManifest
from packmgr.modpacks.models import MANIFEST_FILE_NAME, ModPack

logger = logging.getLogger(__name__)

__all__ = ["listInstalledPacks", "loadInstalledPack", "findInstalledPack"]



def loadInstalledPack(folderPath: Path) -> ModPack | None:
    """
    Returns the ModPack persisted in `folderPath`, or None when the directory
    holds no manifest, a manifest written by other tooling, or a broken one.
    """
    manifestPath = Path(folderPath) / MANIFEST_FILE_NAME
    if not manifestPath.is_file():
        return None
    try:
        raw = json5.loads(manifestPath.read_text(encoding="utf-8-sig"))
    except (OSError, ValueError) as err:
        logger.warning("Skipping pack manifest at '%s': %s", manifestPath, err)
        return None

    if not isinstance(raw, dict) or not isManagedManifest(raw):
        # Folder wasn't generated by packmgr
        logger.debug("Ignoring unmanaged manifest at '%s'", manifestPath)
        return None

    try:
        return decodePack(Path(folderPath), parseManifest(raw))
    except PackManagerError as err:
        logger.warning("Skipping pack manifest at '%s': %s", manifestPath, err)
        return None



def listInstalledPacks(rootDir: Path) -> list[ModPack]:
    """
    Scans the immediate subdirectories of `rootDir` for managed installations.

    Non-conforming subdirectories are skipped. A missing root yields an empty list.
    Packs are ordered by directory name (case-insensitive).
    """
    rootDir = Path(rootDir).expanduser()
    if not rootDir.is_dir():
        logger.info("Instance location '%s' does not exist yet", rootDir)
        return []

    packs: list[ModPack] = []
    for child in sorted(rootDir.iterdir(), key=lambda path: path.name.lower()):
        if not child.is_dir():
            continue
        pack = loadInstalledPack(child)
        if pack is not None:
            packs.append(pack)

    logger.info("Installed packs discovered: %d (root=%s)", len(packs), rootDir)
    return packs



def findInstalledPack(rootDir: Path, name: str) -> ModPack | None:
    for pack in listInstalledPacks(rootDir):
        if pack.name == name:
            return pack
    return None
