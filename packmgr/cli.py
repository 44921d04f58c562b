# packmgr/cli.py
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from packmgr.app.settings import PackManagerConfig, loadConfig, saveConfig
from packmgr.core.errors import ManifestWriteFailed, PackManagerError
from packmgr.core.logging import configureLogging
from packmgr.http.bulk import DownloadItem
from packmgr.modpacks.discover import findInstalledPack
from packmgr.modpacks.service import ModPackService, PackOperationResult
from packmgr.sources.fetch import ARCHIVE_EXTENSION

logger = logging.getLogger("packmgr.cli")

__all__ = ["parseArgs", "main", "EXIT_OK", "EXIT_ERROR", "EXIT_FAILED_DOWNLOADS"]

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_FAILED_DOWNLOADS = 2



def parseArgs(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="packmgr",
        description="Install modpacks from CurseForge/Feed The Beast archives and keep them up to date.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the settings file (default: ~/.packmgr/settings.json5).",
    )
    parser.add_argument(
        "--instance-dir",
        type=Path,
        default=None,
        help="Override the instance location for this run.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log debug output.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List installed modpacks.")

    install = sub.add_parser("install", help="Install a modpack.")
    install.add_argument("source", help="Local .zip archive or CurseForge / Feed The Beast project URL.")
    install.add_argument("--name", default=None, help="Pack name (defaults to the archive file name).")

    update = sub.add_parser("update", help="Update an installed modpack.")
    update.add_argument("name", help="Name of the installed pack.")
    update.add_argument("source", help="Local .zip archive or CurseForge / Feed The Beast project URL.")

    setDir = sub.add_parser("set-instance-dir", help="Persist a new instance location.")
    setDir.add_argument("path", type=Path)

    return parser.parse_args(argv)



def _defaultPackName(source: str) -> str | None:
    """A local archive's file stem; URLs have no obvious name."""
    if source.lower().endswith(ARCHIVE_EXTENSION):
        return Path(source).stem
    return None



def _printProgress(completed: int, total: int, item: DownloadItem) -> None:
    logger.info("Downloaded %d/%d (%s)", completed, total, item.url)



def _report(action: str, result: PackOperationResult) -> None:
    pack = result.pack
    print(f"Modpack {action}: {pack.name} ({len(pack.mods)} mods) at {pack.folderPath}")
    if result.removedMods or result.removedOverrides:
        print(f"  removed {result.removedMods} old mods, {result.removedOverrides} override files")
    if result.failedMods:
        print(f"  {len(result.failedMods)} mods were unable to download:")
        for mod in result.failedMods:
            flag = " (required)" if mod.required else ""
            print(f"    project {mod.projectID} file {mod.fileID}{flag}: {mod.url}")
    if result.cleanupFailures:
        print(f"  {len(result.cleanupFailures)} cleanup failures:")
        for failure in result.cleanupFailures:
            print(f"    {failure}")



def _exitCodeFor(config: PackManagerConfig, result: PackOperationResult) -> int:
    if result.failedMods and not config.ignoreFailedDownloads:
        return EXIT_FAILED_DOWNLOADS
    return EXIT_OK



def _listPacks(service: ModPackService) -> int:
    packs = service.listInstalledPacks()
    if not packs:
        print(f"No modpacks installed in {service.config.instanceLocation}")
        return EXIT_OK
    for pack in packs:
        failed = len(pack.failedMods)
        failedStr = f", {failed} failed" if failed else ""
        loader = f"{pack.modLoader} {pack.forgeVersion}".strip()
        print(f"{pack.name}\t{pack.version or '-'}\tMinecraft {pack.mcVersion} / {loader}\t{len(pack.mods)} mods{failedStr}")
    return EXIT_OK



async def _run(args: argparse.Namespace, config: PackManagerConfig) -> int:
    service = ModPackService(config, onProgress=_printProgress)

    if args.command == "list":
        return _listPacks(service)

    if args.command == "install":
        name = args.name or _defaultPackName(args.source)
        if not name:
            print("A --name is required when installing from a URL.", file=sys.stderr)
            return EXIT_ERROR
        result = await service.install(name, args.source)
        _report("installed", result)
        return _exitCodeFor(config, result)

    if args.command == "update":
        pack = findInstalledPack(config.instanceLocation, args.name)
        if pack is None:
            print(f"No installed modpack named '{args.name}' in {config.instanceLocation}", file=sys.stderr)
            return EXIT_ERROR
        result = await service.update(pack, args.source)
        _report("updated", result)
        return _exitCodeFor(config, result)

    raise AssertionError(f"Unhandled command {args.command!r}")



def main(argv: list[str] | None = None) -> int:
    args = parseArgs(argv)
    try:
        config = loadConfig(args.config, instanceLocation=args.instance_dir)
    except PackManagerError as err:
        print(f"Configuration error: {err}", file=sys.stderr)
        return EXIT_ERROR
    configureLogging(config, verbose=args.verbose)

    if args.command == "set-instance-dir":
        path = args.path.expanduser().resolve()
        config.instanceLocation = path
        saveConfig(config, args.config)
        print(f"Set instance location to '{path}'")
        return EXIT_OK

    try:
        return asyncio.run(_run(args, config))
    except ManifestWriteFailed as err:
        if err.result is not None:
            _report("left partially updated", err.result)
        print(f"Modpack {args.command} failed!\n{err}", file=sys.stderr)
        return EXIT_ERROR
    except PackManagerError as err:
        print(f"Modpack {args.command} failed!\n{err}", file=sys.stderr)
        return EXIT_ERROR



if __name__ == "__main__":
    sys.exit(main())
