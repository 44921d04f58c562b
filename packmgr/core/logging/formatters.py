# packmgr/core/logging/formatters.py
from __future__ import annotations

import logging

from packmgr.core.jsonutils import safeJsonDumps, tryJSONify
from .context import getLogContext

__all__ = ["JsonFormatter", "DevFormatter", "describeException"]

# Context keys shown inline on console lines, in this order
_CONSOLE_CTX_KEYS = ("op", "pack")

# Attributes packmgr errors carry about the component that failed
_ERROR_DETAIL_ATTRS = ("path", "url", "status", "projectID", "sourceRef")



def describeException(exc: BaseException | None) -> dict[str, object]:
    if exc is None:
        return {}
    info: dict[str, object] = {"type": type(exc).__name__, "message": str(exc)}
    for attr in _ERROR_DETAIL_ATTRS:
        value = getattr(exc, attr, None)
        if value is not None:
            info[attr] = tryJSONify(value)
    return info



class JsonFormatter(logging.Formatter):
    """One JSON object per line, for the rotating log file."""
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "ts": int(record.created * 1000),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        ctx = getLogContext()
        if ctx:
            payload["ctx"] = dict(ctx)
        if record.exc_info and record.exc_info[1] is not None:
            exc = describeException(record.exc_info[1])
            exc["stack"] = self.formatException(record.exc_info)
            payload["exc"] = exc
        return safeJsonDumps(payload)



class DevFormatter(logging.Formatter):
    """`LEVEL: [logger] message [op/pack]` for the terminal."""
    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname}: [{record.name}] {record.getMessage()}"
        ctx = getLogContext() or {}
        tags = [str(ctx[key]) for key in _CONSOLE_CTX_KEYS if ctx.get(key)]
        if tags:
            line += " [" + "/".join(tags) + "]"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line
