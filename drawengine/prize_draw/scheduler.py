"""Periodic sweep that draws every due instance."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select

from ..db.utils import as_utc
from ..errors import ConflictError, DrawingTimeoutError
from ..models.category import RecurrenceCategory
from ..models.instance import DrawingInstance
from .lifecycle import DrawingOutcome, InstanceLifecycleManager
from .schedule import schedule_status

logger = logging.getLogger(__name__)

RESULT_CONFLICT = "conflict"
RESULT_TIMEOUT = "timeout"
RESULT_ERROR = "error"


@dataclass
class SweepResult:
    instance_id: int
    result: str
    outcome: Optional[DrawingOutcome] = None
    error: Optional[str] = None


@dataclass
class SweepReport:
    """What one :meth:`SchedulerTrigger.sweep` did."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped_reason: Optional[str] = None
    results: list[SweepResult] = field(default_factory=list)

    @property
    def due_count(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> list[SweepResult]:
        return [r for r in self.results if r.outcome is None]

    def count(self, result: str) -> int:
        return sum(1 for r in self.results if r.result == result)


class SchedulerTrigger:
    """Find due instances and hand each to the lifecycle manager.

    Instances are processed one after another.  Each gets its own time budget
    and its own transaction, so one failing instance never affects another.
    A paused trigger performs no work until resumed.
    """

    def __init__(
        self,
        manager: InstanceLifecycleManager,
        *,
        budget_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.manager = manager
        self.budget_seconds = (
            budget_seconds
            if budget_seconds is not None
            else manager.settings.sweep_budget_seconds
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._paused_reason: Optional[str] = None

    @property
    def paused(self) -> bool:
        return self._paused_reason is not None

    def pause(self, reason: str = "manual") -> None:
        self._paused_reason = reason
        logger.warning(f"Scheduler paused: {reason}")

    def resume(self, reason: str = "manual") -> None:
        self._paused_reason = None
        logger.info(f"Scheduler resumed: {reason}")

    def due_instance_ids(self, now: datetime) -> list[int]:
        with self.manager.uow.session_factory() as session:
            return DrawingInstance.due_ids(session, now)

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Conduct the drawing of every instance due at ``now``."""

        now = as_utc(now) if now is not None else self._clock()
        report = SweepReport(started_at=now)
        if self.paused:
            report.skipped_reason = self._paused_reason
            logger.info(f"Sweep skipped, scheduler paused: {self._paused_reason}")
            return report

        due = self.due_instance_ids(now)
        if due:
            logger.info(f"Sweep found {len(due)} due instances")
        for instance_id in due:
            report.results.append(self._run_one(instance_id, now))

        report.finished_at = self._clock()
        return report

    def _run_one(self, instance_id: int, now: datetime) -> SweepResult:
        deadline = time.monotonic() + self.budget_seconds
        try:
            outcome = self.manager.conduct_drawing(
                instance_id, now=now, deadline=deadline
            )
        except ConflictError as exc:
            return SweepResult(instance_id, RESULT_CONFLICT, error=str(exc))
        except DrawingTimeoutError as exc:
            return SweepResult(instance_id, RESULT_TIMEOUT, error=str(exc))
        except Exception as exc:
            # one broken instance must not stop the rest of the sweep
            logger.exception(f"Sweep failed on instance {instance_id}")
            return SweepResult(instance_id, RESULT_ERROR, error=str(exc))
        return SweepResult(instance_id, outcome.action, outcome=outcome)

    def schedule_status(self, now: Optional[datetime] = None) -> dict:
        """Report pause state and the next draw time of every enabled category."""

        now = as_utc(now) if now is not None else self._clock()
        with self.manager.uow.session_factory() as session:
            categories = list(
                session.scalars(
                    select(RecurrenceCategory).where(RecurrenceCategory.enabled.is_(True))
                )
            )
            rows = schedule_status(categories, now)
        return {
            "paused": self.paused,
            "paused_reason": self._paused_reason,
            "checked_at": now.isoformat(),
            "categories": rows,
        }


__all__ = [
    "RESULT_CONFLICT",
    "RESULT_ERROR",
    "RESULT_TIMEOUT",
    "SchedulerTrigger",
    "SweepReport",
    "SweepResult",
]
