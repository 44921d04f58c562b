# tests/packmgr/modpacks/test_service.py
from __future__ import annotations

import asyncio
import json
import zipfile

import pytest

from packmgr.core.errors import (
    InvalidArgument,
    InvalidManifest,
    MalformedManifest,
    ManifestWriteFailed,
    UnsupportedSource,
)
from packmgr.modpacks.discover import findInstalledPack, listInstalledPacks
from packmgr.modpacks.manifest import OWNERSHIP_MARKER
from packmgr.modpacks.models import Mod, ModPack
from packmgr.modpacks.service import ModPackService


def _service(config, downloader, **kwargs):
    return ModPackService(config, downloader=downloader, **kwargs)


def _modFiles(pack):
    return sorted(path.name for path in pack.modsDir.iterdir())


async def _installV1(service, packZipFactory, manifestFactory, files, overrides=None):
    zipPath = packZipFactory(manifestFactory(files), overrides=overrides)
    return await service.install("Pack", str(zipPath))


@pytest.mark.asyncio
async def test_install_records_failed_downloads(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    downloader = fakeDownloaderFactory(failing={2})
    progress = []
    service = _service(config, downloader, onProgress=lambda done, total, item: progress.append((done, total)))
    zipPath = packZipFactory(
        manifestFactory([(1, 10), (2, 20)], customField="kept"),
        overrides={"config/a.cfg": "a"},
    )

    result = await service.install("Pack", str(zipPath))

    pack = result.pack
    assert pack.folderPath == config.instanceLocation / "Pack"
    assert [(m.projectID, m.success, m.fileName) for m in pack.mods] == [
        (1, True, "mod-1-10.jar"),
        (2, False, None),
    ]
    assert [m.projectID for m in result.failedMods] == [2]
    assert [m.projectID for m in result.failedRequiredMods] == [2]
    assert result.downloadSummary.anyErrors
    assert not result.ok
    assert progress == [(1, 2), (2, 2)]
    assert _modFiles(pack) == ["mod-1-10.jar"]

    assert pack.overrideFiles == ["minecraft/config/a.cfg"]
    assert (pack.folderPath / "minecraft" / "config" / "a.cfg").is_file()

    assert result.instanceCfgWritten
    cfg = pack.instanceCfgPath.read_text(encoding="utf-8")
    assert "IntendedVersion=1.12.2" in cfg
    assert "ForgeVersion=14.23.5.2847" in cfg
    assert "name=Pack" in cfg

    doc = json.loads(pack.manifestPath.read_text(encoding="utf-8"))
    assert result.manifestPath == pack.manifestPath
    assert doc[OWNERSHIP_MARKER] is True
    assert doc["origin"] == str(zipPath)
    assert doc["customField"] == "kept"
    assert doc["files"][0]["success"] is True
    assert doc["files"][1]["success"] is False
    assert doc["files"][1]["fileName"] is None
    assert doc["files"][1]["url"].endswith("/projects/2/files/20/download")


@pytest.mark.asyncio
async def test_installed_pack_is_rediscovered(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    service = _service(config, fakeDownloaderFactory(failing={2}))
    await _installV1(service, packZipFactory, manifestFactory, [(1, 10), (2, 20)], overrides={"options.txt": "o"})

    packs = service.listInstalledPacks()

    assert [pack.name for pack in packs] == ["Pack"]
    pack = packs[0]
    assert [(m.projectID, m.fileID, m.success) for m in pack.mods] == [(1, 10, True), (2, 20, False)]
    assert pack.overrideFiles == ["minecraft/options.txt"]
    assert pack.mcVersion == "1.12.2"


@pytest.mark.asyncio
async def test_mods_are_requested_in_manifest_order(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    downloader = fakeDownloaderFactory()
    service = _service(config, downloader)
    await _installV1(service, packZipFactory, manifestFactory, [(30, 1), (10, 2), (20, 3)])

    urls = [item.url for item in downloader.batches[0]]
    assert [url.split("/projects/")[1].split("/")[0] for url in urls] == ["30", "10", "20"]
    assert all(item.destinationDir == config.instanceLocation / "Pack" / "minecraft" / "mods" for item in downloader.batches[0])


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("packName", "sourceRef"),
    [
        ("", "pack.zip"),
        ("   ", "pack.zip"),
        ("Pack", ""),
        ("Pack", "   "),
        ("..", "pack.zip"),
        ("a/b", "pack.zip"),
        ("a\\b", "pack.zip"),
    ],
)
async def test_install_rejects_bad_arguments(config, fakeDownloaderFactory, packName, sourceRef):
    downloader = fakeDownloaderFactory()
    with pytest.raises(InvalidArgument):
        await _service(config, downloader).install(packName, sourceRef)
    assert downloader.batches == []


@pytest.mark.asyncio
async def test_install_rejects_unsupported_source(config, fakeDownloaderFactory):
    with pytest.raises(UnsupportedSource):
        await _service(config, fakeDownloaderFactory()).install("Pack", "https://example.com/pack")
    assert not (config.instanceLocation / "Pack").exists()


@pytest.mark.asyncio
async def test_install_requires_manifest(config, fakeDownloaderFactory, packZipFactory):
    zipPath = packZipFactory(None, overrides={"options.txt": "o"})
    with pytest.raises(MalformedManifest, match="manifest.json"):
        await _service(config, fakeDownloaderFactory()).install("Pack", str(zipPath))
    assert not (config.instanceLocation / "Pack" / "manifest.json").exists()


@pytest.mark.asyncio
async def test_install_rejects_manifest_that_is_not_utf8(config, fakeDownloaderFactory, tmp_path):
    zipPath = tmp_path / "binary.zip"
    with zipfile.ZipFile(zipPath, "w") as zf:
        zf.writestr("manifest.json", b"\xff\xfe{\x00bad")
    downloader = fakeDownloaderFactory()

    with pytest.raises(MalformedManifest, match="not valid UTF-8"):
        await _service(config, downloader).install("Pack", str(zipPath))
    assert downloader.batches == []


@pytest.mark.asyncio
async def test_install_survives_corrupt_override_entry(config, fakeDownloaderFactory, packZipFactory, manifestFactory, corruptZipPayload):
    zipPath = packZipFactory(manifestFactory([(1, 10)]), overrides={"config/a.cfg": "broken-override-payload"})
    corruptZipPayload(zipPath, b"broken-override-payload")

    result = await _service(config, fakeDownloaderFactory()).install("Pack", str(zipPath))

    assert len(result.cleanupFailures) == 1
    assert result.cleanupFailures[0].path == result.pack.folderPath / "minecraft" / "config" / "a.cfg"
    assert result.pack.overrideFiles == []
    assert result.manifestPath == result.pack.manifestPath
    assert _modFiles(result.pack) == ["mod-1-10.jar"]
    assert not result.ok


@pytest.mark.asyncio
async def test_install_rejects_invalid_manifest(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    doc = manifestFactory([(1, 10)])
    del doc["minecraft"]
    downloader = fakeDownloaderFactory()
    with pytest.raises(InvalidManifest):
        await _service(config, downloader).install("Pack", str(packZipFactory(doc)))
    assert downloader.batches == []


@pytest.mark.asyncio
async def test_install_refuses_existing_pack(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    service = _service(config, fakeDownloaderFactory())
    await _installV1(service, packZipFactory, manifestFactory, [(1, 10)])
    with pytest.raises(InvalidArgument, match="already installed"):
        await _installV1(service, packZipFactory, manifestFactory, [(1, 11)])


@pytest.mark.asyncio
async def test_manifest_write_failure_carries_result(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    (config.instanceLocation / "Pack" / "manifest.json.tmp").mkdir(parents=True)
    service = _service(config, fakeDownloaderFactory())

    with pytest.raises(ManifestWriteFailed) as excInfo:
        await _installV1(service, packZipFactory, manifestFactory, [(1, 10)])

    result = excInfo.value.result
    assert result is not None
    assert result.pack.mods[0].success
    assert result.manifestPath is None
    assert _modFiles(result.pack) == ["mod-1-10.jar"]
    assert not (config.instanceLocation / "Pack" / "manifest.json").exists()


@pytest.mark.asyncio
async def test_distinct_packs_install_concurrently(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    service = _service(config, fakeDownloaderFactory())
    first = packZipFactory(manifestFactory([(1, 10)]))
    second = packZipFactory(manifestFactory([(2, 20)]))

    results = await asyncio.gather(service.install("A", str(first)), service.install("B", str(second)))

    assert [r.pack.name for r in results] == ["A", "B"]
    assert [p.name for p in service.listInstalledPacks()] == ["A", "B"]


# ----- Update -----


@pytest.mark.asyncio
async def test_update_replaces_upgraded_mod(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    service = _service(config, fakeDownloaderFactory())
    installed = (await _installV1(service, packZipFactory, manifestFactory, [(1, 10), (2, 20)])).pack

    result = await service.update(installed, str(packZipFactory(manifestFactory([(1, 11), (2, 20)]))))

    assert _modFiles(result.pack) == ["mod-1-11.jar", "mod-2-20.jar"]
    assert result.removedMods == 1
    assert result.ok
    reloaded = findInstalledPack(config.instanceLocation, "Pack")
    assert [(m.projectID, m.fileID) for m in reloaded.mods] == [(1, 11), (2, 20)]


@pytest.mark.asyncio
async def test_update_removes_dropped_mod(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    service = _service(config, fakeDownloaderFactory())
    installed = (await _installV1(service, packZipFactory, manifestFactory, [(1, 10), (2, 20)])).pack

    result = await service.update(installed, str(packZipFactory(manifestFactory([(1, 10)]))))

    assert _modFiles(result.pack) == ["mod-1-10.jar"]
    assert result.removedMods == 1


@pytest.mark.asyncio
async def test_update_keeps_name_and_folder(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    service = _service(config, fakeDownloaderFactory())
    installed = (await _installV1(service, packZipFactory, manifestFactory, [(1, 10)])).pack
    renamed = manifestFactory([(1, 10)], name="Upstream Renamed")

    result = await service.update(installed, str(packZipFactory(renamed)))

    assert result.pack.name == "Pack"
    assert result.pack.folderPath == installed.folderPath
    assert result.pack.manifestName == "Upstream Renamed"
    assert [p.name for p in service.listInstalledPacks()] == ["Pack"]


@pytest.mark.asyncio
async def test_update_keeps_file_reused_by_new_version(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    downloader = fakeDownloaderFactory(names={(1, 10): "shared.jar", (1, 11): "shared.jar"})
    service = _service(config, downloader)
    installed = (await _installV1(service, packZipFactory, manifestFactory, [(1, 10)])).pack

    result = await service.update(installed, str(packZipFactory(manifestFactory([(1, 11)]))))

    assert _modFiles(result.pack) == ["shared.jar"]
    assert result.removedMods == 0


@pytest.mark.asyncio
async def test_update_replaces_override_files(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    service = _service(config, fakeDownloaderFactory())
    installed = (await _installV1(
        service, packZipFactory, manifestFactory, [(1, 10)],
        overrides={"config/a.cfg": "old", "config/old.cfg": "old"},
    )).pack
    newZip = packZipFactory(manifestFactory([(1, 10)]), overrides={"config/a.cfg": "new"})

    result = await service.update(installed, str(newZip))

    configDir = installed.folderPath / "minecraft" / "config"
    assert sorted(path.name for path in configDir.iterdir()) == ["a.cfg"]
    assert (configDir / "a.cfg").read_text(encoding="utf-8") == "new"
    assert result.removedOverrides == 2
    assert result.pack.overrideFiles == ["minecraft/config/a.cfg"]


@pytest.mark.asyncio
async def test_update_can_keep_old_overrides(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    config.removeOverridesOnUpdate = False
    service = _service(config, fakeDownloaderFactory())
    installed = (await _installV1(
        service, packZipFactory, manifestFactory, [(1, 10)], overrides={"config/old.cfg": "old"},
    )).pack
    newZip = packZipFactory(manifestFactory([(1, 10)]), overrides={"config/a.cfg": "new"})

    result = await service.update(installed, str(newZip))

    assert (installed.folderPath / "minecraft" / "config" / "old.cfg").exists()
    assert result.removedOverrides == 0


@pytest.mark.asyncio
async def test_update_collects_cleanup_failures(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    service = _service(config, fakeDownloaderFactory())
    installed = (await _installV1(service, packZipFactory, manifestFactory, [(1, 10), (2, 20)])).pack
    blocked = installed.modsDir / "mod-2-20.jar"
    blocked.unlink()
    blocked.mkdir()

    result = await service.update(installed, str(packZipFactory(manifestFactory([(1, 11)]))))

    assert len(result.cleanupFailures) == 1
    assert result.cleanupFailures[0].path == blocked
    assert result.removedMods == 1
    assert not result.ok
    assert result.manifestPath == installed.manifestPath
    reloaded = findInstalledPack(config.instanceLocation, "Pack")
    assert [(m.projectID, m.fileID) for m in reloaded.mods] == [(1, 11)]


@pytest.mark.asyncio
async def test_update_never_overwrites_instance_cfg(config, fakeDownloaderFactory, packZipFactory, manifestFactory):
    service = _service(config, fakeDownloaderFactory())
    installed = (await _installV1(service, packZipFactory, manifestFactory, [(1, 10)])).pack
    installed.instanceCfgPath.write_text("name=Customized", encoding="utf-8")

    result = await service.update(installed, str(packZipFactory(manifestFactory([(1, 11)]))))

    assert result.instanceCfgWritten is False
    assert installed.instanceCfgPath.read_text(encoding="utf-8") == "name=Customized"


@pytest.mark.asyncio
async def test_update_requires_installed_pack(config, fakeDownloaderFactory):
    with pytest.raises(InvalidArgument):
        await _service(config, fakeDownloaderFactory()).update(None, "pack.zip")


@pytest.mark.asyncio
async def test_update_requires_source(config, fakeDownloaderFactory, tmp_path):
    installed = ModPack(name="Pack", folderPath=tmp_path / "Pack")
    with pytest.raises(InvalidArgument):
        await _service(config, fakeDownloaderFactory()).update(installed, " ")


# ----- Reconciliation -----


def _packWith(folder, *mods):
    return ModPack(name="Pack", folderPath=folder, mods=list(mods))


def _touch(pack, name):
    pack.modsDir.mkdir(parents=True, exist_ok=True)
    (pack.modsDir / name).write_bytes(b"x")


@pytest.mark.asyncio
async def test_remove_old_mods_skips_previously_failed(config, fakeDownloaderFactory, tmp_path):
    folder = tmp_path / "Pack"
    installed = _packWith(folder, Mod(projectID=2, fileID=20, success=False, fileName="stale.jar"))
    candidate = _packWith(folder, Mod(projectID=2, fileID=21, success=True, fileName="new.jar"))
    _touch(candidate, "stale.jar")
    _touch(candidate, "new.jar")

    report = await _service(config, fakeDownloaderFactory()).removeOldMods(installed, candidate)

    assert report.removedCount == 0
    assert _modFiles(candidate) == ["new.jar", "stale.jar"]


@pytest.mark.asyncio
async def test_remove_old_mods_same_file_id_is_untouched(config, fakeDownloaderFactory, tmp_path):
    folder = tmp_path / "Pack"
    installed = _packWith(folder, Mod(projectID=1, fileID=10, success=True, fileName="a.jar"))
    candidate = _packWith(folder, Mod(projectID=1, fileID=10, success=False))
    _touch(candidate, "a.jar")

    report = await _service(config, fakeDownloaderFactory()).removeOldMods(installed, candidate)

    assert report.removedCount == 0
    assert _modFiles(candidate) == ["a.jar"]


@pytest.mark.asyncio
async def test_remove_old_mods_tolerates_missing_files(config, fakeDownloaderFactory, tmp_path):
    folder = tmp_path / "Pack"
    installed = _packWith(
        folder,
        Mod(projectID=1, fileID=10, success=True, fileName="a.jar"),
        Mod(projectID=2, fileID=20, success=True, fileName="b.jar"),
        Mod(projectID=3, fileID=30, success=True, fileName=None),
    )
    candidate = _packWith(folder, Mod(projectID=1, fileID=11, success=True, fileName="a2.jar"))
    _touch(candidate, "a2.jar")

    report = await _service(config, fakeDownloaderFactory()).removeOldMods(installed, candidate)

    assert report.removedCount == 0
    assert len(report.missing) == 2
    assert report.failures == []


@pytest.mark.asyncio
async def test_remove_old_mods_refuses_paths_outside_mods_dir(config, fakeDownloaderFactory, tmp_path):
    folder = tmp_path / "Pack"
    outside = tmp_path / "precious.txt"
    outside.write_text("keep", encoding="utf-8")
    installed = _packWith(folder, Mod(projectID=1, fileID=10, success=True, fileName="../../../precious.txt"))
    candidate = _packWith(folder)

    report = await _service(config, fakeDownloaderFactory()).removeOldMods(installed, candidate)

    assert report.removedCount == 0
    assert outside.exists()


@pytest.mark.asyncio
async def test_delete_override_files_refuses_paths_outside_pack(config, fakeDownloaderFactory, tmp_path):
    victim = tmp_path / "victim.txt"
    victim.write_text("keep", encoding="utf-8")
    folder = config.instanceLocation / "Pack"
    stale = folder / "minecraft" / "config" / "a.cfg"
    stale.parent.mkdir(parents=True)
    stale.write_text("a", encoding="utf-8")
    pack = ModPack(name="Pack", folderPath=folder, overrideFiles=["../../victim.txt", str(victim), "minecraft/config/a.cfg"])

    report = await _service(config, fakeDownloaderFactory()).deleteOverrideFiles(pack)

    assert report.removed == [stale]
    assert victim.exists()
