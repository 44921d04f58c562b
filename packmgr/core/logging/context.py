# packmgr/core/logging/context.py
from __future__ import annotations
import contextvars
from contextlib import contextmanager
from collections.abc import Iterator

# Per-operation log context (pack name, operation). Each asyncio task gets its own copy.
_logContextVar: contextvars.ContextVar[dict[str, object] | None] = contextvars.ContextVar("packmgr.logctx", default=None)

def setLogContext(**kvs):
    """Set or update per-log context values (pack, op, etc.)."""
    current = dict(_logContextVar.get() or {}) # use copy
    for key, value in kvs.items():
        if value is not None:
            current[key] = value
    _logContextVar.set(current)

def clearLogContext():
    """Clear context after an operation is fully handled."""
    _logContextVar.set(None)

def getLogContext():
    """Return current context dict or None."""
    return _logContextVar.get()

@contextmanager
def logContext(**kvs) -> Iterator[None]:
    """Scope context values to a block; the previous context is restored on exit."""
    token = _logContextVar.set(dict(_logContextVar.get() or {}))
    try:
        setLogContext(**kvs)
        yield
    finally:
        _logContextVar.reset(token)
