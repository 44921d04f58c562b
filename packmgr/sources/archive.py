# packmgr/sources/archive.py
from __future__ import annotations
import logging
import shutil
import zipfile
from pathlib import Path, PurePosixPath

from packmgr.core.errors import SourceResolutionFailed

logger = logging.getLogger(__name__)

__all__ = ["PackArchive"]



class PackArchive:
    """
    Read access to a pack archive (zip).

    Entry names always use '/' separators; directory entries end with '/'.
    Use as a context manager so the underlying zip handle is closed.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        try:
            self._zip = zipfile.ZipFile(self.path)
        except FileNotFoundError as err:
            raise SourceResolutionFailed(f"Pack archive '{self.path}' does not exist", sourceRef=str(path)) from err
        except (zipfile.BadZipFile, OSError) as err:
            raise SourceResolutionFailed(f"Pack archive '{self.path}' cannot be opened: {err}", sourceRef=str(path)) from err

    def __enter__(self) -> PackArchive:
        return self

    def __exit__(self, excType, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._zip.close()

    def listEntries(self) -> list[str]:
        return self._zip.namelist()

    def isDirectory(self, name: str) -> bool:
        return name.endswith("/")

    def readTextEntry(self, name: str) -> str | None:
        """Returns the entry decoded as UTF-8, or None when absent or empty."""
        try:
            data = self._zip.read(name)
        except KeyError:
            return None
        if not data:
            return None
        return data.decode("utf-8-sig")

    def extractEntry(self, name: str, destDir: Path, arcName: str | None = None) -> Path:
        """
        Writes entry `name` to `destDir / (arcName or name)` and returns that path.

        Directory entries create the directory. Raises ValueError for entries
        whose target would escape `destDir`, KeyError for unknown entries and
        zipfile.BadZipFile for corrupt ones (no partial file is left behind).
        """
        destDir = Path(destDir)
        relative = PurePosixPath(arcName if arcName is not None else name)
        if relative.is_absolute() or ".." in relative.parts:
            raise ValueError(f"Unsafe archive entry '{name}'")
        target = destDir.joinpath(*relative.parts)
        try:
            target.resolve().relative_to(destDir.resolve())
        except ValueError:
            raise ValueError(f"Unsafe archive entry '{name}'") from None

        info = self._zip.getinfo(name)
        if info.is_dir():
            target.mkdir(parents=True, exist_ok=True)
            return target

        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._zip.open(info) as src, open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)
        except zipfile.BadZipFile:
            target.unlink(missing_ok=True)
            raise
        return target
