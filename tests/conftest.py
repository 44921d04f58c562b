# tests/conftest.py
from __future__ import annotations

import json
import re
import sys
import zipfile
from pathlib import Path
from typing import Any, Callable

import pytest

from packmgr.app.settings import PackManagerConfig
from packmgr.core.errors import ComponentRetrievalFailed
from packmgr.http.bulk import BulkDownloadSummary, DownloadOutcome



def pytest_configure(config: pytest.Config) -> None:
    if sys.flags.optimize:
        raise RuntimeError("Assertions are disabled (optimize > 0)")


_MOD_URL_RE = re.compile(r"/projects/(\d+)/files/(\d+)/download$")


class FakeDownloader:
    """
    Stand-in for BulkDownloader: "downloads" by writing a small jar into the
    destination directory. Projects listed in `failing` report an error.
    """

    def __init__(self, failing: set[int] | None = None, names: dict[tuple[int, int], str] | None = None):
        self.failing = set(failing or ())
        self.names = dict(names or {})
        self.batches: list[list[Any]] = []
        self.progress: list[tuple[int, int]] = []

    def fileNameFor(self, projectID: int, fileID: int) -> str:
        return self.names.get((projectID, fileID), f"mod-{projectID}-{fileID}.jar")

    async def download(self, items, onItemDone, onProgress=None):
        self.batches.append(list(items))
        summary = BulkDownloadSummary()
        for idx, item in enumerate(items, start=1):
            match = _MOD_URL_RE.search(item.url)
            assert match is not None, item.url
            projectID, fileID = int(match.group(1)), int(match.group(2))
            if projectID in self.failing:
                summary.anyErrors = True
                summary.failedItems.append(item)
                outcome = DownloadOutcome(error=ComponentRetrievalFailed("HTTP 404: gone", url=item.url, status=404))
            else:
                name = self.fileNameFor(projectID, fileID)
                payload = f"{projectID}:{fileID}".encode()
                item.destinationDir.mkdir(parents=True, exist_ok=True)
                (item.destinationDir / name).write_bytes(payload)
                summary.completedCount += 1
                outcome = DownloadOutcome(fileName=name, size=len(payload), finalUrl=item.url)
            onItemDone(item, outcome)
            if onProgress is not None:
                onProgress(idx, len(items), item)
            self.progress.append((idx, len(items)))
        return summary


@pytest.fixture()
def config(tmp_path: Path) -> PackManagerConfig:
    return PackManagerConfig(instanceLocation=tmp_path / "instances", tempDir=tmp_path / "tmp")


@pytest.fixture()
def fakeDownloaderFactory() -> type[FakeDownloader]:
    return FakeDownloader


@pytest.fixture()
def manifestFactory() -> Callable[..., dict[str, Any]]:
    def build(files: list[tuple[int, int]] | list[dict[str, Any]], **extra: Any) -> dict[str, Any]:
        entries = []
        for entry in files:
            if isinstance(entry, dict):
                entries.append(entry)
            else:
                projectID, fileID = entry
                entries.append({"projectID": projectID, "fileID": fileID, "required": True})
        manifest: dict[str, Any] = {
            "minecraft": {
                "version": "1.12.2",
                "modLoaders": [{"id": "forge-14.23.5.2847", "primary": True}],
            },
            "manifestType": "minecraftModpack",
            "manifestVersion": 1,
            "name": "Test Pack",
            "version": "1.0.0",
            "author": "someone",
            "projectID": 4242,
            "files": entries,
            "overrides": "overrides",
        }
        manifest.update(extra)
        return manifest
    return build


@pytest.fixture()
def packZipFactory(tmp_path: Path) -> Callable[..., Path]:
    counter = {"n": 0}

    def build(manifest: dict[str, Any] | str | None, overrides: dict[str, str] | None = None, name: str | None = None) -> Path:
        counter["n"] += 1
        zipPath = tmp_path / "archives" / (name or f"pack{counter['n']}.zip")
        zipPath.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(zipPath, "w") as zf:
            if manifest is not None:
                text = manifest if isinstance(manifest, str) else json.dumps(manifest)
                zf.writestr("manifest.json", text)
            if overrides is not None:
                zf.writestr("overrides/", "")
                for rel, content in overrides.items():
                    zf.writestr(f"overrides/{rel}", content)
        return zipPath
    return build


@pytest.fixture()
def corruptZipPayload() -> Callable[[Path, bytes], None]:
    """Flips one bit of a stored entry's payload so reading it fails the CRC check."""
    def corrupt(zipPath: Path, payload: bytes) -> None:
        data = zipPath.read_bytes()
        assert data.count(payload) == 1
        flipped = bytes([payload[0] ^ 0x01]) + payload[1:]
        zipPath.write_bytes(data.replace(payload, flipped))
    return corrupt
