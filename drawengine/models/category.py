"""Recurring drawing product configuration."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    Integer,
    String,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import dt_iso
from .base import Base

if TYPE_CHECKING:
    from .instance import DrawingInstance


ENTRY_KIND_PAYMENT = "payment"
ENTRY_KIND_ACTION = "action"
ENTRY_KINDS = (ENTRY_KIND_PAYMENT, ENTRY_KIND_ACTION)

CADENCE_DAILY = "daily"
CADENCE_WEEKLY = "weekly"
CADENCE_MONTHLY = "monthly"
CADENCES = (CADENCE_DAILY, CADENCE_WEEKLY, CADENCE_MONTHLY)

LAST_DAY_OF_MONTH = -1


def prize_pool_for(category: Any, tickets: int) -> float:
    """Return the prize pool produced by ``tickets`` confirmed tickets.

    Payment categories contribute ``entry_cost - platform_fee`` per ticket;
    action-based categories contribute the configured ``action_value``.
    """

    if tickets < 0:
        raise ValueError("tickets must not be negative")
    if category.entry_kind == ENTRY_KIND_ACTION:
        per_ticket = category.action_value or 0.0
    else:
        per_ticket = (category.entry_cost or 0.0) - (category.platform_fee or 0.0)
    return round(max(0.0, per_ticket) * tickets, 6)


@dataclass(frozen=True)
class CategoryConfig:
    """Immutable snapshot of a :class:`RecurrenceCategory`.

    Snapshots are what the category cache hands out, so that callers never hold
    a live ORM object across sessions.
    """

    id: int
    internal_name: str
    display_name: Optional[str]
    entry_kind: str
    entry_cost: float
    platform_fee: float
    action_value: float
    max_tickets_per_user: int
    min_participants: int
    cadence: str
    draw_time: str
    day_of_week: Optional[int]
    day_of_month: Optional[int]
    enabled: bool
    extension_window_hours: float
    max_extensions: int
    event_structure: Optional[str] = None

    @property
    def is_action_based(self) -> bool:
        return self.entry_kind == ENTRY_KIND_ACTION

    @property
    def extension_window(self) -> timedelta:
        return timedelta(hours=self.extension_window_hours)

    def prize_pool_for(self, tickets: int) -> float:
        return prize_pool_for(self, tickets)


class RecurrenceCategory(Base):
    """Configuration for one recurring drawing product.

    A category describes how entries are acquired (payment or a rewarded
    action), how much each ticket contributes to the pool, the per-user ticket
    cap for each limiting period, the quorum, and the cadence rule used to
    schedule every occurrence.  Changes only affect instances created after the
    change.
    """

    __tablename__ = "recurrence_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    """Primary key."""

    internal_name: Mapped[str] = mapped_column(String(64), nullable=False)
    """Machine friendly identifier, e.g. ``"daily_pi"``."""

    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Optional human readable label."""

    entry_kind: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ENTRY_KIND_PAYMENT
    )
    """``"payment"`` or ``"action"``."""

    entry_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    """Price of one ticket; zero for action-based categories."""

    platform_fee: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    """Part of each ticket's price retained by the platform."""

    action_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    """Pool contribution of one rewarded-action ticket."""

    max_tickets_per_user: Mapped[int] = mapped_column(Integer, nullable=False)
    """Per-user ticket cap for one limiting period."""

    min_participants: Mapped[int] = mapped_column(Integer, nullable=False)
    """Minimum participant ticket count required to draw."""

    cadence: Mapped[str] = mapped_column(String(10), nullable=False)
    """``"daily"``, ``"weekly"`` or ``"monthly"``."""

    draw_time: Mapped[str] = mapped_column(String(5), nullable=False)
    """UTC time of day in ``HH:MM`` format."""

    day_of_week: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Weekday for weekly cadences, Monday is 0."""

    day_of_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Day for monthly cadences, ``-1`` meaning the last day of the month."""

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    """Disabled categories get no successor instances."""

    extension_window_hours: Mapped[float] = mapped_column(
        Float, nullable=False, default=24.0
    )
    """How far a draw is pushed back when the quorum is not met."""

    max_extensions: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    """Number of extensions allowed before the instance is cancelled."""

    event_structure: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    """Optional special prize structure (e.g. ``"holiday"``) overriding the tiers."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    instances: Mapped[list["DrawingInstance"]] = relationship(
        back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("internal_name", name="uq_recurrence_categories_internal_name"),
        CheckConstraint("entry_kind IN ('payment','action')", name="entry_kind_enum"),
        CheckConstraint("cadence IN ('daily','weekly','monthly')", name="cadence_enum"),
        CheckConstraint("max_tickets_per_user > 0", name="max_tickets_positive"),
        CheckConstraint("max_extensions >= 0", name="max_extensions_non_negative"),
    )

    def __init__(
        self,
        *,
        internal_name: str,
        max_tickets_per_user: int,
        min_participants: int,
        cadence: str,
        draw_time: str,
        display_name: Optional[str] = None,
        entry_kind: str = ENTRY_KIND_PAYMENT,
        entry_cost: float = 0.0,
        platform_fee: float = 0.0,
        action_value: float = 0.0,
        day_of_week: Optional[int] = None,
        day_of_month: Optional[int] = None,
        enabled: bool = True,
        extension_window_hours: float = 24.0,
        max_extensions: int = 2,
        event_structure: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ) -> None:
        self.internal_name = internal_name
        self.display_name = display_name
        self.entry_kind = entry_kind
        self.entry_cost = entry_cost
        self.platform_fee = platform_fee
        self.action_value = action_value
        self.max_tickets_per_user = max_tickets_per_user
        self.min_participants = min_participants
        self.cadence = cadence
        self.draw_time = draw_time
        self.day_of_week = day_of_week
        self.day_of_month = day_of_month
        self.enabled = enabled
        self.extension_window_hours = extension_window_hours
        self.max_extensions = max_extensions
        self.event_structure = event_structure
        if created_at is not None:
            self.created_at = created_at
        if updated_at is not None:
            self.updated_at = updated_at

    def __repr__(self) -> str:
        return (
            f"<RecurrenceCategory(id={self.id}, internal_name='{self.internal_name}', "
            f"cadence='{self.cadence}', enabled={self.enabled})>"
        )

    @property
    def is_action_based(self) -> bool:
        return self.entry_kind == ENTRY_KIND_ACTION

    @property
    def extension_window(self) -> timedelta:
        return timedelta(hours=self.extension_window_hours)

    def prize_pool_for(self, tickets: int) -> float:
        return prize_pool_for(self, tickets)

    def to_config(self) -> CategoryConfig:
        """Return an immutable snapshot of the current configuration."""

        return CategoryConfig(
            id=self.id,
            internal_name=self.internal_name,
            display_name=self.display_name,
            entry_kind=self.entry_kind,
            entry_cost=self.entry_cost,
            platform_fee=self.platform_fee,
            action_value=self.action_value,
            max_tickets_per_user=self.max_tickets_per_user,
            min_participants=self.min_participants,
            cadence=self.cadence,
            draw_time=self.draw_time,
            day_of_week=self.day_of_week,
            day_of_month=self.day_of_month,
            enabled=self.enabled,
            extension_window_hours=self.extension_window_hours,
            max_extensions=self.max_extensions,
            event_structure=self.event_structure,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "internal_name": self.internal_name,
            "display_name": self.display_name,
            "entry_kind": self.entry_kind,
            "entry_cost": self.entry_cost,
            "platform_fee": self.platform_fee,
            "action_value": self.action_value,
            "max_tickets_per_user": self.max_tickets_per_user,
            "min_participants": self.min_participants,
            "cadence": self.cadence,
            "draw_time": self.draw_time,
            "day_of_week": self.day_of_week,
            "day_of_month": self.day_of_month,
            "enabled": self.enabled,
            "extension_window_hours": self.extension_window_hours,
            "max_extensions": self.max_extensions,
            "event_structure": self.event_structure,
            "created_at": dt_iso(self.created_at),
            "updated_at": dt_iso(self.updated_at),
        }

    @classmethod
    def get_by_internal_name(
        cls, session: Session, internal_name: str
    ) -> Optional["RecurrenceCategory"]:
        """Return the category matching ``internal_name`` if it exists."""

        return session.scalar(select(cls).where(cls.internal_name == internal_name))


__all__ = [
    "CADENCES",
    "CADENCE_DAILY",
    "CADENCE_MONTHLY",
    "CADENCE_WEEKLY",
    "CategoryConfig",
    "ENTRY_KINDS",
    "ENTRY_KIND_ACTION",
    "ENTRY_KIND_PAYMENT",
    "LAST_DAY_OF_MONTH",
    "RecurrenceCategory",
    "prize_pool_for",
]
