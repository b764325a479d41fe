"""Stock recurrence categories offered out of the box."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from .models.category import (
    CADENCE_DAILY,
    CADENCE_MONTHLY,
    CADENCE_WEEKLY,
    ENTRY_KIND_ACTION,
    ENTRY_KIND_PAYMENT,
    LAST_DAY_OF_MONTH,
    RecurrenceCategory,
)

logger = logging.getLogger(__name__)

SUNDAY = 6

DEFAULT_CATEGORIES: tuple[dict, ...] = (
    {
        "internal_name": "daily_pi",
        "display_name": "Daily Pi Drawing",
        "entry_kind": ENTRY_KIND_PAYMENT,
        "entry_cost": 1.0,
        "platform_fee": 0.1,
        "max_tickets_per_user": 3,
        "min_participants": 5,
        "cadence": CADENCE_DAILY,
        "draw_time": "20:00",
    },
    {
        "internal_name": "daily_ads",
        "display_name": "Daily Ads Drawing",
        "entry_kind": ENTRY_KIND_ACTION,
        "action_value": 0.001,
        "max_tickets_per_user": 5,
        "min_participants": 10,
        "cadence": CADENCE_DAILY,
        "draw_time": "21:00",
    },
    {
        "internal_name": "weekly_pi",
        "display_name": "Weekly Pi Drawing",
        "entry_kind": ENTRY_KIND_PAYMENT,
        "entry_cost": 1.0,
        "platform_fee": 0.1,
        "max_tickets_per_user": 10,
        "min_participants": 20,
        "cadence": CADENCE_WEEKLY,
        "draw_time": "18:00",
        "day_of_week": SUNDAY,
        "max_extensions": 1,
    },
    {
        "internal_name": "monthly_pi",
        "display_name": "Monthly Pi Drawing",
        "entry_kind": ENTRY_KIND_PAYMENT,
        "entry_cost": 1.0,
        "platform_fee": 0.1,
        "max_tickets_per_user": 25,
        "min_participants": 30,
        "cadence": CADENCE_MONTHLY,
        "draw_time": "21:00",
        "day_of_month": LAST_DAY_OF_MONTH,
        "enabled": False,
        "max_extensions": 1,
    },
)


def seed_default_categories(session: Session) -> list[RecurrenceCategory]:
    """Insert the stock categories that do not exist yet.

    Existing categories are left untouched, so calling this repeatedly is
    safe.  Returns the categories that were created.
    """

    created = []
    for spec in DEFAULT_CATEGORIES:
        if RecurrenceCategory.get_by_internal_name(session, spec["internal_name"]):
            continue
        category = RecurrenceCategory(**spec)
        session.add(category)
        created.append(category)
    session.flush()
    if created:
        logger.info(
            f"Seeded categories: {', '.join(c.internal_name for c in created)}"
        )
    return created


__all__ = ["DEFAULT_CATEGORIES", "seed_default_categories"]
