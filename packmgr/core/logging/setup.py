# packmgr/core/logging/setup.py
from __future__ import annotations
import logging
import logging.handlers
from typing import TYPE_CHECKING

from .formatters import DevFormatter, JsonFormatter

if TYPE_CHECKING:
    from packmgr.app.settings import PackManagerConfig

__all__ = [
    "NO_PROPAGATE",
    "configureLogging",
]



# Disable propagation from chatty libraries
NO_PROPAGATE = [
    "asyncio",
    "httpcore.connection", "httpcore.http11", "httpcore.http2",
    "hpack",
]



def configureLogging(config: PackManagerConfig, *, verbose: bool = False) -> None:
    """
    Initiate the global logging configuration.

      - Console pretty logs at `logging.level` (DEBUG when verbose)
      - Optional JSON file log with rotation when `logging.file` is set
    """
    levelName = "DEBUG" if verbose else str(config.logging.level).upper()
    rootLevel = getattr(logging, levelName, logging.INFO)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(rootLevel)

    for name in NO_PROPAGATE:
        logging.getLogger(name).propagate = False

    consoleHandler = logging.StreamHandler()
    consoleHandler.setLevel(rootLevel)
    consoleHandler.setFormatter(DevFormatter())
    root.addHandler(consoleHandler)

    if config.logging.file is not None:
        logFile = config.logging.file.expanduser()
        logFile.parent.mkdir(parents=True, exist_ok=True)
        fileHandler = logging.handlers.RotatingFileHandler(
            logFile,
            maxBytes=config.logging.maxBytes,
            backupCount=config.logging.backupCount,
            encoding="utf-8",
        )
        fileHandler.setLevel(rootLevel)
        fileHandler.setFormatter(JsonFormatter())
        root.addHandler(fileHandler)

    # Per-logger tweaks (reduce noise)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
