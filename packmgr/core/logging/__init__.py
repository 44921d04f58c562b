# packmgr/core/logging/__init__.py
from __future__ import annotations

from .context import setLogContext, clearLogContext, getLogContext, logContext
from .setup import configureLogging, NO_PROPAGATE

__all__ = [
    "configureLogging",
    "NO_PROPAGATE",
    "setLogContext",
    "clearLogContext",
    "getLogContext",
    "logContext",
]
