"""Per-user ticket quota over the limiting period of a category's cadence."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from ..db.utils import as_utc
from ..errors import ConfigurationError, QuotaExceededError
from ..models.category import CADENCE_DAILY, CADENCE_MONTHLY, CADENCE_WEEKLY
from ..models.quota import TicketQuotaRecord

logger = logging.getLogger(__name__)

_PERIOD_NAMES = {
    CADENCE_DAILY: "day",
    CADENCE_WEEKLY: "week",
    CADENCE_MONTHLY: "month",
}


@dataclass(frozen=True)
class LimitingPeriod:
    """Calendar window in which a user's tickets for a category are counted."""

    key: str
    starts_at: datetime
    ends_at: datetime


@dataclass(frozen=True)
class QuotaCheck:
    """Answer of :meth:`TicketQuotaLedger.reserve`."""

    allowed: bool
    requested: int
    used: int
    limit: int
    period_key: str
    reason: Optional[str] = None

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


def limiting_period(cadence: str, at: datetime) -> LimitingPeriod:
    """Return the period containing ``at``.

    Keys are ``YYYY-MM-DD`` for daily, ISO ``YYYY-Www`` for weekly and
    ``YYYY-MM`` for monthly cadences.
    """

    at = as_utc(at)
    midnight = at.replace(hour=0, minute=0, second=0, microsecond=0)
    if cadence == CADENCE_DAILY:
        return LimitingPeriod(
            key=midnight.strftime("%Y-%m-%d"),
            starts_at=midnight,
            ends_at=midnight + timedelta(days=1),
        )
    if cadence == CADENCE_WEEKLY:
        iso_year, iso_week, _ = at.isocalendar()
        start = midnight - timedelta(days=at.weekday())
        return LimitingPeriod(
            key=f"{iso_year}-W{iso_week:02d}",
            starts_at=start,
            ends_at=start + timedelta(days=7),
        )
    if cadence == CADENCE_MONTHLY:
        start = midnight.replace(day=1)
        if start.month == 12:
            end = start.replace(year=start.year + 1, month=1)
        else:
            end = start.replace(month=start.month + 1)
        return LimitingPeriod(key=start.strftime("%Y-%m"), starts_at=start, ends_at=end)
    raise ConfigurationError(f"Unknown cadence {cadence!r}")


class TicketQuotaLedger:
    """Check and record ticket consumption against ``max_tickets_per_user``.

    All methods run inside the caller's session so that quota consumption
    commits or rolls back together with the entry it belongs to.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def period_for(self, category: Any, at: Optional[datetime] = None) -> LimitingPeriod:
        return limiting_period(category.cadence, at or self._clock())

    def usage(
        self,
        session: Session,
        user_id: int,
        category: Any,
        at: Optional[datetime] = None,
    ) -> int:
        """Return tickets ``user_id`` used in the current period of ``category``."""

        period = self.period_for(category, at)
        record = TicketQuotaRecord.lookup(session, user_id, category.id, period.key)
        return record.tickets_used if record is not None else 0

    def reserve(
        self,
        session: Session,
        user_id: int,
        category: Any,
        requested: int,
        *,
        at: Optional[datetime] = None,
    ) -> QuotaCheck:
        """Check whether ``requested`` more tickets fit in the current period.

        Nothing is written; use :meth:`commit` in the transaction that records
        the confirmed entry.
        """

        if requested <= 0:
            raise ValueError("requested tickets must be positive")
        period = self.period_for(category, at)
        record = TicketQuotaRecord.lookup(session, user_id, category.id, period.key)
        used = record.tickets_used if record is not None else 0
        limit = category.max_tickets_per_user
        if used + requested > limit:
            return QuotaCheck(
                allowed=False,
                requested=requested,
                used=used,
                limit=limit,
                period_key=period.key,
                reason=(
                    f"Ticket limit of {limit} per "
                    f"{_PERIOD_NAMES.get(category.cadence, 'period')} reached "
                    f"({used} used, {requested} requested)"
                ),
            )
        return QuotaCheck(
            allowed=True,
            requested=requested,
            used=used,
            limit=limit,
            period_key=period.key,
        )

    def commit(
        self,
        session: Session,
        user_id: int,
        category: Any,
        tickets: int,
        *,
        at: Optional[datetime] = None,
    ) -> TicketQuotaRecord:
        """Consume ``tickets`` of the current period, creating the row if needed.

        Raises
        ------
        QuotaExceededError
            If the consumption would exceed ``max_tickets_per_user``.
        """

        at = as_utc(at) if at is not None else self._clock()
        period = self.period_for(category, at)
        check = self.reserve(session, user_id, category, tickets, at=at)
        if not check.allowed:
            raise QuotaExceededError(check.reason, used=check.used, limit=check.limit)

        record = TicketQuotaRecord.lookup(session, user_id, category.id, period.key)
        if record is None:
            record = TicketQuotaRecord(
                user_id=user_id,
                category_id=category.id,
                period_key=period.key,
                period_ends_at=period.ends_at,
                tickets_used=tickets,
            )
            session.add(record)
        else:
            record.tickets_used = record.tickets_used + tickets
        # surfaces unique-key and version conflicts inside the unit of work
        session.flush()
        return record

    def cleanup_expired(self, session: Session, before: datetime) -> int:
        """Delete quota rows whose period ended before ``before``; return the count."""

        result = session.execute(
            delete(TicketQuotaRecord)
            .where(TicketQuotaRecord.period_ends_at < as_utc(before))
            .execution_options(synchronize_session=False)
        )
        deleted = result.rowcount or 0
        logger.info(f"Removed {deleted} expired ticket quota records older than {before}")
        return deleted


__all__ = ["LimitingPeriod", "QuotaCheck", "TicketQuotaLedger", "limiting_period"]
