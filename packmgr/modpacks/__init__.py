# packmgr/modpacks/__init__.py
from .models import Mod, ModPack
from .manifest import (
    ManifestData,
    PackManifest,
    parseManifest,
    decodePack,
    encodeManifest,
    readManifestFile,
    writeManifestFile,
)
from .discover import listInstalledPacks, findInstalledPack
from .service import ModPackService, PackOperationResult

__all__ = [
    "Mod",
    "ModPack",
    "ManifestData",
    "PackManifest",
    "parseManifest",
    "decodePack",
    "encodeManifest",
    "readManifestFile",
    "writeManifestFile",
    "listInstalledPacks",
    "findInstalledPack",
    "ModPackService",
    "PackOperationResult",
]
