#!filepath: src/canopticon_app/cycle_log.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from canopticon_app.db.store import Store
from canopticon_app.errors import PersistenceError
from canopticon_app.models import CycleLog, LogLevel
from canopticon_app.utils.dates import iso_ago, utc_now_iso
from canopticon_app.utils.logger import get_logger

logger = get_logger(__name__)

CYCLE_STARTED = "Cycle started"
CYCLE_COMPLETED = "Cycle completed"

_STD_LEVELS: Dict[LogLevel, int] = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def new_cycle_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True)
class CycleLogger:
    """Logs to the process logger and to the cycle_logs table.

    A row that cannot be written is reported on the process logger only, the
    cycle goes on.

    Attributes:
        store: Backing store.
        cycle_id: Tag applied to every row.
        errors: Error messages written during this cycle.
    """

    store: Store
    cycle_id: str = field(default_factory=new_cycle_id)
    errors: List[str] = field(default_factory=list)

    def log(self, level: LogLevel, message: str) -> None:
        logger.log(_STD_LEVELS[level], f"{message}, cycle_id={self.cycle_id}")
        if level is LogLevel.ERROR:
            self.errors.append(message)
        try:
            self.store.append_log(
                cycle_id=self.cycle_id,
                level=level,
                message=message,
                created_at=utc_now_iso(),
            )
        except PersistenceError as e:
            logger.error(f"Cycle log row not written, cycle_id={self.cycle_id}, err={e}")

    def debug(self, message: str) -> None:
        self.log(LogLevel.DEBUG, message)

    def info(self, message: str) -> None:
        self.log(LogLevel.INFO, message)

    def warning(self, message: str) -> None:
        self.log(LogLevel.WARNING, message)

    def error(self, message: str) -> None:
        self.log(LogLevel.ERROR, message)


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True, slots=True)
class HealthReport:
    """Health derived from the most recent cycle log rows."""

    status: HealthState
    recent_errors: int
    recent_warnings: int
    last_cycle_run: Optional[str]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "recentErrors": self.recent_errors,
            "recentWarnings": self.recent_warnings,
            "lastCycleRun": self.last_cycle_run,
        }


def get_cycle_logs(store: Store, cycle_id: str) -> List[CycleLog]:
    """Entries of one cycle in insertion order."""
    return store.list_logs(cycle_id)


def prune_logs(store: Store, older_than_days: int = 30) -> int:
    """Delete log rows older than the retention window.

    Returns:
        int: Rows removed.
    """
    removed = store.delete_logs_before(iso_ago(days=int(older_than_days)))
    logger.info(f"Cycle logs pruned, older_than_days={older_than_days}, removed={removed}")
    return removed


def health_status(
    store: Store, *, window: int = 100, unhealthy_errors: int = 5
) -> HealthReport:
    """Classify health from the last `window` log rows.

    More than `unhealthy_errors` errors is unhealthy, any error or warning is
    degraded.
    """
    rows = store.recent_logs(window)
    errors = sum(1 for r in rows if r.level is LogLevel.ERROR)
    warnings = sum(1 for r in rows if r.level is LogLevel.WARNING)

    if errors > int(unhealthy_errors):
        status = HealthState.UNHEALTHY
    elif errors or warnings:
        status = HealthState.DEGRADED
    else:
        status = HealthState.HEALTHY

    last = store.last_log_matching(CYCLE_COMPLETED)
    return HealthReport(
        status=status,
        recent_errors=errors,
        recent_warnings=warnings,
        last_cycle_run=last.created_at if last else None,
    )
