# packmgr/modpacks/cleanup.py
from __future__ import annotations
import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from packmgr.core.errors import CleanupFailed

logger = logging.getLogger(__name__)

__all__ = ["UnlinkStatus", "RemovalReport", "unlinkBatch"]



class UnlinkStatus(str, Enum):
    REMOVED = "removed"
    MISSING = "missing"
    FAILED = "failed"



@dataclass(slots=True)
class RemovalReport:
    """Aggregated outcome of one or more unlink batches."""
    removed: list[Path] = field(default_factory=list)
    missing: list[Path] = field(default_factory=list)
    failures: list[CleanupFailed] = field(default_factory=list)

    @property
    def removedCount(self) -> int:
        return len(self.removed)

    def merge(self, other: RemovalReport) -> None:
        self.removed.extend(other.removed)
        self.missing.extend(other.missing)
        self.failures.extend(other.failures)



def _unlinkOne(path: Path) -> tuple[UnlinkStatus, str | None]:
    if not path.exists():
        return UnlinkStatus.MISSING, None
    try:
        path.unlink()
    except FileNotFoundError:
        return UnlinkStatus.MISSING, None
    except OSError as err:
        return UnlinkStatus.FAILED, str(err)
    return UnlinkStatus.REMOVED, None



async def unlinkBatch(paths: Iterable[Path], *, label: str = "file") -> RemovalReport:
    """
    Deletes every path concurrently (one worker thread per path).

    Missing files are logged and counted, not errors. Unlink failures are
    collected as CleanupFailed; the rest of the batch still runs.
    """
    targets = list(dict.fromkeys(Path(path) for path in paths))
    report = RemovalReport()
    if not targets:
        return report

    results = await asyncio.gather(*(asyncio.to_thread(_unlinkOne, path) for path in targets))

    for path, (status, reason) in zip(targets, results):
        if status is UnlinkStatus.REMOVED:
            report.removed.append(path)
        elif status is UnlinkStatus.MISSING:
            logger.info("Can't find %s '%s', nothing to remove", label, path)
            report.missing.append(path)
        else:
            logger.error("Failed to unlink %s at '%s': %s", label, path, reason)
            report.failures.append(CleanupFailed(path, f"Failed to unlink {label}: {reason}"))
    return report
