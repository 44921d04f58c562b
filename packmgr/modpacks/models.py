# packmgr/modpacks/models.py
from __future__ import annotations
import logging
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from packmgr.core.errors import InvalidManifest

logger = logging.getLogger(__name__)

__all__ = ["Mod", "ModPack", "MANIFEST_FILE_NAME", "INSTANCE_CFG_NAME"]

MANIFEST_FILE_NAME = "manifest.json"
INSTANCE_CFG_NAME = "instance.cfg"



@dataclass(slots=True)
class Mod:
    """One versioned downloadable unit referenced by a manifest."""
    projectID: int              # Stable identity across versions
    fileID: int                 # Changes whenever the mod is upgraded
    required: bool = True
    success: bool = False       # Outcome of the most recent retrieval
    fileName: str | None = None # Only set when retrieval succeeded
    url: str | None = None
    size: int | None = None

    def addExtras(self, fileEntry: MutableMapping[str, Any]) -> None:
        """Layers the engine-owned per-file fields onto a manifest `files[]` entry."""
        fileEntry["success"] = self.success
        fileEntry["fileName"] = self.fileName
        fileEntry["url"] = self.url



@dataclass
class ModPack:
    """
    In-memory view of one installation.

    `folderPath` is the primary key on disk; `manifest.json` inside it is the
    single source of truth for rebuilding a ModPack across restarts.
    `projectID` is unique across `mods`: addMod() rejects duplicates.
    """
    name: str
    folderPath: Path
    origin: str | None = None
    sourceLocation: str | None = None

    manifestName: str = ""
    author: str = ""
    version: str = ""
    mcVersion: str = ""
    modLoader: str = ""
    forgeVersion: str = ""
    projectID: int | None = None
    overrides: str = ""
    overrideFiles: list[str] = field(default_factory=list)

    mods: list[Mod] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.folderPath = Path(self.folderPath)
        existing = list(self.mods)
        self.mods = []
        for mod in existing:
            self.addMod(mod)

    # ----- Paths -----

    @property
    def minecraftDir(self) -> Path:
        return self.folderPath / "minecraft"

    @property
    def modsDir(self) -> Path:
        return self.minecraftDir / "mods"

    @property
    def manifestPath(self) -> Path:
        return self.folderPath / MANIFEST_FILE_NAME

    @property
    def instanceCfgPath(self) -> Path:
        return self.folderPath / INSTANCE_CFG_NAME

    # ----- Mod set -----

    def addMod(self, mod: Mod) -> None:
        if self.modContained(mod.projectID):
            raise InvalidManifest(f"Duplicate mod with project ID '{mod.projectID}' in pack '{self.name}'")
        self.mods.append(mod)

    def modContained(self, projectID: int) -> bool:
        return any(mod.projectID == projectID for mod in self.mods)

    def getMod(self, projectID: int) -> Mod | None:
        for mod in self.mods:
            if mod.projectID == projectID:
                return mod
        logger.debug("Mod with project ID '%s' can't be found in '%s'", projectID, self.name)
        return None

    @property
    def failedMods(self) -> list[Mod]:
        return [mod for mod in self.mods if not mod.success]

    @property
    def successfulFileNames(self) -> set[str]:
        return {mod.fileName for mod in self.mods if mod.success and mod.fileName}
