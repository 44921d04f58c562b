# packmgr/modpacks/manifest.py
from __future__ import annotations
import copy
import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import json5
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from packmgr.core.errors import (
    InvalidManifest,
    MalformedManifest,
    ManifestMismatch,
    ManifestWriteFailed,
)
from packmgr.modpacks.models import Mod, ModPack

logger = logging.getLogger(__name__)

__all__ = [
    "OWNERSHIP_MARKER",
    "ModLoaderEntry",
    "MinecraftSection",
    "ManifestFile",
    "PackManifest",
    "ManifestData",
    "parseManifest",
    "isManagedManifest",
    "splitLoaderId",
    "applyManifestProperties",
    "decodePack",
    "encodeManifest",
    "readManifestFile",
    "writeManifestFile",
]

# Presence of this key (set to true) marks a directory as managed by packmgr.
OWNERSHIP_MARKER = "modpackManager"



class ModLoaderEntry(BaseModel):
    """A `minecraft.modLoaders[]` entry, id formatted as `<loader>-<version>`."""
    model_config = ConfigDict(extra="allow")

    id: str
    primary: bool = False



class MinecraftSection(BaseModel):
    model_config = ConfigDict(extra="allow")

    version: str = ""
    modLoaders: list[ModLoaderEntry] = Field(default_factory=list)



class ManifestFile(BaseModel):
    """
    A single `files[]` entry.

    Upstream manifests only carry projectID/fileID/required; success, fileName
    and url are written back by packmgr after retrieval.
    """
    model_config = ConfigDict(extra="allow")

    projectID: int
    fileID: int
    required: bool = True
    success: bool | None = None
    fileName: str | None = None
    url: str | None = None



class PackManifest(BaseModel):
    """Validated manifest document. Unknown fields are kept, never rejected."""
    model_config = ConfigDict(extra="allow")

    manifestType: str | None = None
    manifestVersion: int | None = None
    name: str = ""
    version: str = ""
    author: str = ""
    projectID: int | None = None
    overrides: str = ""
    minecraft: MinecraftSection | None = None
    files: list[ManifestFile]

    # Engine-owned fields, only present on persisted installations
    modpackManager: bool = False
    sourceLocation: str | None = None
    origin: str | None = None
    overrideFiles: list[str] = Field(default_factory=list)

    def primaryLoader(self) -> ModLoaderEntry | None:
        if self.minecraft is None or not self.minecraft.modLoaders:
            return None
        for loader in self.minecraft.modLoaders:
            if loader.primary:
                return loader
        return self.minecraft.modLoaders[0]



@dataclass(frozen=True, slots=True)
class ManifestData:
    """
    Parsed manifest: the untouched document plus its validated view.

    `raw` is what encodeManifest() layers engine fields onto, so fields the
    engine does not model survive repeated round-trips.
    """
    raw: dict[str, Any]
    model: PackManifest



def _loadDocument(document: str | bytes | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(document, (bytes, bytearray)):
        try:
            document = bytes(document).decode("utf-8-sig")
        except UnicodeDecodeError as err:
            raise MalformedManifest(f"Manifest is not valid UTF-8: {err}") from err
    if isinstance(document, str):
        try:
            loaded = json5.loads(document)
        except ValueError as err:
            raise MalformedManifest(f"Manifest is not valid JSON: {err}") from err
    else:
        loaded = document
    if not isinstance(loaded, Mapping):
        raise MalformedManifest("Manifest must be a JSON object")
    return copy.deepcopy(dict(loaded))



def parseManifest(document: str | bytes | Mapping[str, Any]) -> ManifestData:
    """
    Parses and validates a manifest document.

    Raises:
        MalformedManifest: not an object, or no `files` list to discover mods from
        InvalidManifest: missing `minecraft.version`, no mod loader entry,
                         bad field types or duplicate projectIDs
    """
    raw = _loadDocument(document)

    if not isinstance(raw.get("files"), list):
        raise MalformedManifest("Manifest has no 'files' list")

    try:
        model = PackManifest.model_validate(raw)
    except ValidationError as err:
        raise InvalidManifest(f"Manifest failed validation: {err}") from err

    if model.minecraft is None or not model.minecraft.version:
        raise InvalidManifest("Minecraft version could not be found!")
    if not model.minecraft.modLoaders:
        raise InvalidManifest("Mod loader version could not be found!")

    seen: set[int] = set()
    for entry in model.files:
        if entry.projectID in seen:
            raise InvalidManifest(f"Manifest lists project ID '{entry.projectID}' more than once")
        seen.add(entry.projectID)

    return ManifestData(raw=raw, model=model)



def isManagedManifest(document: Mapping[str, Any]) -> bool:
    return document.get(OWNERSHIP_MARKER) is True



def splitLoaderId(loaderId: str) -> tuple[str, str]:
    """'forge-14.23.5.2847' -> ('forge', '14.23.5.2847')."""
    loader, sep, version = loaderId.partition("-")
    if not sep:
        return loader, ""
    return loader, version



def applyManifestProperties(pack: ModPack, model: PackManifest) -> None:
    """Copies the pass-through pack metadata from a validated manifest onto `pack`."""
    pack.manifestName = model.name or ""
    pack.author = model.author or ""
    pack.version = model.version or ""
    pack.projectID = model.projectID
    pack.overrides = model.overrides or ""
    pack.mcVersion = model.minecraft.version if model.minecraft else ""
    loader = model.primaryLoader()
    if loader is not None:
        pack.modLoader, pack.forgeVersion = splitLoaderId(loader.id)



def decodePack(folderPath: Path, data: ManifestData) -> ModPack:
    """Rebuilds a ModPack from a persisted manifest, including per-mod success flags."""
    folderPath = Path(folderPath)
    model = data.model
    pack = ModPack(
        name=folderPath.name,
        folderPath=folderPath,
        origin=model.origin,
        sourceLocation=model.sourceLocation,
        overrideFiles=list(model.overrideFiles),
    )
    applyManifestProperties(pack, model)
    for entry in model.files:
        pack.addMod(Mod(
            projectID=entry.projectID,
            fileID=entry.fileID,
            required=entry.required,
            success=bool(entry.success),
            fileName=entry.fileName,
            url=entry.url,
        ))
    return pack



def _entryProjectID(entry: Any) -> Any:
    if not isinstance(entry, Mapping):
        return None
    value = entry.get("projectID")
    try:
        return int(value)
    except (TypeError, ValueError):
        return value



def encodeManifest(pack: ModPack, data: ManifestData) -> dict[str, Any]:
    """
    Returns a copy of the original document with packmgr's fields layered on top.

    Raises ManifestMismatch if a `files[]` entry has no matching Mod in `pack`.
    """
    doc = copy.deepcopy(data.raw)
    doc[OWNERSHIP_MARKER] = True
    doc["sourceLocation"] = pack.sourceLocation
    doc["origin"] = pack.origin
    doc["overrideFiles"] = list(pack.overrideFiles)

    for entry in doc.get("files", []):
        projectID = _entryProjectID(entry)
        mod = pack.getMod(projectID) if isinstance(projectID, int) else None
        if mod is None:
            raise ManifestMismatch(projectID)
        mod.addExtras(entry)

    return doc



def readManifestFile(path: Path) -> ManifestData:
    try:
        text = Path(path).read_text(encoding="utf-8-sig")
    except OSError as err:
        raise MalformedManifest(f"Cannot read manifest '{path}': {err}") from err
    return parseManifest(text)



def writeManifestFile(pack: ModPack, data: ManifestData) -> Path:
    """
    Persists `pack` as `<folderPath>/manifest.json`.

    The file is replaced atomically; a failed write leaves the previous manifest.
    """
    doc = encodeManifest(pack, data)
    target = pack.manifestPath
    tmpPath = target.with_name(target.name + ".tmp")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmpPath.write_text(json.dumps(doc, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmpPath, target)
    except OSError as err:
        logger.error("Error while creating '%s': %s", target, err)
        try:
            tmpPath.unlink(missing_ok=True)
        except OSError as cleanupErr:
            logger.debug("Could not remove '%s': %s", tmpPath, cleanupErr)
        raise ManifestWriteFailed(f"Failed to write manifest '{target}': {err}") from err

    logger.info("%s written for '%s' (%d mods)", target.name, pack.name, len(pack.mods))
    return target
