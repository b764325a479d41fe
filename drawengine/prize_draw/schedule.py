"""Cadence rules: when the next occurrence of a category is drawn.

All arithmetic happens in UTC.  A computed time that is not strictly after
``now`` rolls forward by one cadence unit.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from ..db.utils import as_utc
from ..errors import ConfigurationError
from ..models.category import (
    CADENCE_DAILY,
    CADENCE_MONTHLY,
    CADENCE_WEEKLY,
    LAST_DAY_OF_MONTH,
)

_DRAW_TIME_RE = re.compile(r"^(\d{2}):(\d{2})$")


@dataclass(frozen=True)
class CadenceValidation:
    is_valid: bool
    errors: tuple[str, ...] = ()


def parse_draw_time(value: Optional[str]) -> tuple[int, int]:
    """Parse ``"HH:MM"`` into ``(hour, minute)``.

    Raises
    ------
    ConfigurationError
        If ``value`` is not a valid 24-hour time.
    """

    match = _DRAW_TIME_RE.match(value or "")
    if not match:
        raise ConfigurationError(f"draw_time must be HH:MM, got {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise ConfigurationError(f"draw_time out of range: {value!r}")
    return hour, minute


def validate_cadence(category: Any) -> CadenceValidation:
    """Collect every problem with the cadence rule of ``category``."""

    errors: list[str] = []
    try:
        parse_draw_time(category.draw_time)
    except ConfigurationError as exc:
        errors.append(str(exc))

    cadence = category.cadence
    if cadence == CADENCE_WEEKLY:
        dow = category.day_of_week
        if dow is None or not 0 <= dow <= 6:
            errors.append(f"day_of_week must be 0 (Monday) to 6, got {dow!r}")
    elif cadence == CADENCE_MONTHLY:
        dom = category.day_of_month
        if dom is None or not (dom == LAST_DAY_OF_MONTH or 1 <= dom <= 31):
            errors.append(f"day_of_month must be 1 to 31 or -1, got {dom!r}")
    elif cadence != CADENCE_DAILY:
        errors.append(f"unknown cadence {cadence!r}")

    return CadenceValidation(is_valid=not errors, errors=tuple(errors))


def _month_day(year: int, month: int, day_of_month: int) -> int:
    last = calendar.monthrange(year, month)[1]
    if day_of_month == LAST_DAY_OF_MONTH:
        return last
    return min(day_of_month, last)


def _add_month(year: int, month: int) -> tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


def next_draw_time(category: Any, now: Optional[datetime] = None) -> datetime:
    """Return the next draw time of ``category`` strictly after ``now``.

    Daily rules fire at ``draw_time`` every day, weekly rules on
    ``day_of_week`` (Monday is 0), monthly rules on ``day_of_month`` with days
    past the end of a month clamped to its last day and ``-1`` meaning the
    last day.

    Raises
    ------
    ConfigurationError
        If the cadence rule is malformed.
    """

    validation = validate_cadence(category)
    if not validation.is_valid:
        raise ConfigurationError(
            f"Invalid cadence for category '{getattr(category, 'internal_name', '?')}': "
            + "; ".join(validation.errors)
        )

    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    hour, minute = parse_draw_time(category.draw_time)
    at_time = now.replace(hour=hour, minute=minute, second=0, microsecond=0)

    if category.cadence == CADENCE_DAILY:
        candidate = at_time
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    if category.cadence == CADENCE_WEEKLY:
        days_ahead = (category.day_of_week - now.weekday()) % 7
        candidate = at_time + timedelta(days=days_ahead)
        if candidate <= now:
            candidate += timedelta(days=7)
        return candidate

    year, month = now.year, now.month
    candidate = at_time.replace(day=_month_day(year, month, category.day_of_month))
    if candidate <= now:
        year, month = _add_month(year, month)
        candidate = at_time.replace(
            year=year, month=month, day=_month_day(year, month, category.day_of_month)
        )
    return candidate


def schedule_status(
    categories: Iterable[Any], now: Optional[datetime] = None
) -> list[dict]:
    """Describe the next draw of every enabled category, soonest first.

    Categories with a malformed rule are listed last with their errors.
    """

    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    status = []
    for category in categories:
        if not category.enabled:
            continue
        validation = validate_cadence(category)
        row = {
            "category": category.internal_name,
            "cadence": category.cadence,
            "enabled": category.enabled,
            "valid": validation.is_valid,
            "errors": list(validation.errors),
            "next_draw_time": None,
            "seconds_until_draw": None,
        }
        if validation.is_valid:
            upcoming = next_draw_time(category, now)
            row["next_draw_time"] = upcoming.isoformat()
            row["seconds_until_draw"] = int((upcoming - now).total_seconds())
        status.append(row)
    status.sort(
        key=lambda row: (row["seconds_until_draw"] is None, row["seconds_until_draw"] or 0)
    )
    return status


__all__ = [
    "CadenceValidation",
    "next_draw_time",
    "parse_draw_time",
    "schedule_status",
    "validate_cadence",
]
