# packmgr/core/errors.py
from __future__ import annotations
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from packmgr.modpacks.service import PackOperationResult

__all__ = [
    "PackManagerError",
    "InvalidArgument",
    "ConfigError",
    "SourceResolutionFailed",
    "UnsupportedSource",
    "MalformedManifest",
    "InvalidManifest",
    "ManifestMismatch",
    "ManifestWriteFailed",
    "ComponentRetrievalFailed",
    "CleanupFailed",
]



class PackManagerError(Exception):
    """Base class for every error packmgr raises or records."""
    pass



class InvalidArgument(PackManagerError):
    """Caller supplied a pack name, source or pack that cannot be acted upon."""
    pass



class ConfigError(PackManagerError):
    pass



class SourceResolutionFailed(PackManagerError):
    """The pack archive could not be obtained."""
    def __init__(self, message: str, *, sourceRef: str | None = None):
        super().__init__(message)
        self.sourceRef = sourceRef



class UnsupportedSource(SourceResolutionFailed):
    """Source reference is neither a local archive nor a supported catalog URL."""
    pass



class MalformedManifest(PackManagerError):
    """Archive has no manifest, or the manifest has no discoverable file list."""
    pass



class InvalidManifest(PackManagerError):
    """Manifest is structurally present but misses required fields."""
    pass



class ManifestMismatch(PackManagerError):
    """
    A manifest file entry has no matching Mod in the pack.

    Indicates data corruption or a programming error, never a user mistake.
    """
    def __init__(self, projectID: Any):
        super().__init__(f"Manifest and ModPack are not the same! Missing mod with project ID '{projectID}'")
        self.projectID = projectID



class ManifestWriteFailed(PackManagerError):
    """
    Persisting manifest.json failed after all other steps ran.

    Nothing is rolled back; `result` describes what is already on disk.
    """
    def __init__(self, message: str, *, result: PackOperationResult | None = None):
        super().__init__(message)
        self.result = result



class ComponentRetrievalFailed(PackManagerError):
    """A single mod download failed. Recorded on the outcome, never raised by the engine."""
    def __init__(self, message: str, *, url: str | None = None, status: int | None = None):
        super().__init__(message)
        self.url = url
        self.status = status



class CleanupFailed(PackManagerError):
    """A single unlink/extract/write failed during reconciliation. Accumulated, never raised by the engine."""
    def __init__(self, path: Path | str, reason: str):
        super().__init__(f"{reason} at '{path}'")
        self.path = Path(path)
        self.reason = reason
