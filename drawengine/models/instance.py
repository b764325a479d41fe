"""Drawing instances: one concrete occurrence of a category's drawing."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    select,
    text,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import as_utc, dt_iso
from .base import Base

if TYPE_CHECKING:
    from .category import RecurrenceCategory
    from .entry import Entry
    from .winner import Winner


class InstanceStatus:
    """Lifecycle states of a :class:`DrawingInstance`.

    ``EXTENDED`` is never stored: an extended instance keeps the ``active``
    status (so the scheduler keeps picking it up) and is distinguished by a
    non-zero ``extension_count``.  See :attr:`DrawingInstance.lifecycle_state`.
    """

    ACTIVE = "active"
    DRAWING = "drawing"
    COMPLETED = "completed"
    EXTENDED = "extended"
    CANCELLED = "cancelled"

    STORED = (ACTIVE, DRAWING, COMPLETED, CANCELLED)
    TERMINAL = (COMPLETED, CANCELLED)


class DrawingInstance(Base):
    """One occurrence of a recurring drawing with its own ticket and prize pool.

    Participant counters and the prize pool are only ever changed through the
    unit of work; the ``version`` column makes every such change a
    compare-and-set against the snapshot the writer read.
    """

    __tablename__ = "drawing_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    """Primary key."""

    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    """Readable unique identifier, ``<category>-<YYYYMMDD>-<random>``."""

    category_id: Mapped[int] = mapped_column(
        ForeignKey("recurrence_categories.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    """Category this instance belongs to."""

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InstanceStatus.ACTIVE
    )
    """Stored lifecycle status (see :class:`InstanceStatus`)."""

    participant_ticket_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    """Sum of ``ticket_count`` over the confirmed entries of this instance."""

    prize_pool: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    """Prize pool derived from ``participant_ticket_count`` and the category fees."""

    scheduled_draw_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    """When the scheduler should draw this instance."""

    extension_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Number of times the draw was postponed for lack of participants."""

    last_extended_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    actual_draw_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    drawing_summary: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    """Entry/winner counts, tier and audit seed recorded on completion."""

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    """Optimistic concurrency counter managed by SQLAlchemy."""

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

    category: Mapped["RecurrenceCategory"] = relationship(back_populates="instances")
    entries: Mapped[list["Entry"]] = relationship(back_populates="instance")
    winners: Mapped[list["Winner"]] = relationship(
        back_populates="instance", order_by="Winner.position"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('active','drawing','completed','cancelled')",
            name="status_enum",
        ),
        CheckConstraint(
            "participant_ticket_count >= 0", name="participant_count_non_negative"
        ),
        CheckConstraint("extension_count >= 0", name="extension_count_non_negative"),
        Index("ix_drawing_instances_status_scheduled", "status", "scheduled_draw_time"),
        # at most one open instance per category
        Index(
            "uq_drawing_instances_active_category",
            "category_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    def __init__(
        self,
        *,
        code: str,
        scheduled_draw_time: datetime,
        category: Optional["RecurrenceCategory"] = None,
        category_id: Optional[int] = None,
        status: str = InstanceStatus.ACTIVE,
        participant_ticket_count: int = 0,
        prize_pool: float = 0.0,
        extension_count: int = 0,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ) -> None:
        self.code = code
        self.scheduled_draw_time = scheduled_draw_time
        if category is not None:
            self.category = category
        if category_id is not None:
            self.category_id = category_id
        self.status = status
        self.participant_ticket_count = participant_ticket_count
        self.prize_pool = prize_pool
        self.extension_count = extension_count
        if created_at is not None:
            self.created_at = created_at
        if updated_at is not None:
            self.updated_at = updated_at

    def __repr__(self) -> str:
        return (
            f"<DrawingInstance(id={self.id}, code='{self.code}', status='{self.status}', "
            f"tickets={self.participant_ticket_count}, pool={self.prize_pool}, "
            f"scheduled='{self.scheduled_draw_time}')>"
        )

    @property
    def lifecycle_state(self) -> str:
        """Status including the ``extended`` annotation of postponed active instances."""

        if self.status == InstanceStatus.ACTIVE and self.extension_count > 0:
            return InstanceStatus.EXTENDED
        return self.status

    @property
    def scheduled_draw_time_utc(self) -> datetime:
        return as_utc(self.scheduled_draw_time)

    def is_due(self, now: datetime) -> bool:
        return (
            self.status == InstanceStatus.ACTIVE
            and self.scheduled_draw_time_utc <= as_utc(now)
        )

    def add_tickets(self, tickets: int, category: Any) -> None:
        """Add ``tickets`` confirmed tickets and recompute the prize pool."""

        if tickets <= 0:
            raise ValueError("tickets must be positive")
        self.participant_ticket_count = (self.participant_ticket_count or 0) + tickets
        self.prize_pool = category.prize_pool_for(self.participant_ticket_count)

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "category_id": self.category_id,
            "status": self.status,
            "lifecycle_state": self.lifecycle_state,
            "participant_ticket_count": self.participant_ticket_count,
            "prize_pool": self.prize_pool,
            "scheduled_draw_time": dt_iso(self.scheduled_draw_time),
            "extension_count": self.extension_count,
            "actual_draw_time": dt_iso(self.actual_draw_time),
            "cancelled_at": dt_iso(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "drawing_summary": self.drawing_summary,
            "created_at": dt_iso(self.created_at),
            "updated_at": dt_iso(self.updated_at),
        }

    @classmethod
    def current_for_category(
        cls, session: Session, category_id: int
    ) -> Optional["DrawingInstance"]:
        """Return the earliest-scheduled active instance of ``category_id``."""

        stmt = (
            select(cls)
            .where(cls.category_id == category_id, cls.status == InstanceStatus.ACTIVE)
            .order_by(cls.scheduled_draw_time.asc(), cls.id.asc())
        )
        return session.scalars(stmt).first()

    @classmethod
    def due_ids(cls, session: Session, now: datetime) -> list[int]:
        """Return ids of active instances whose draw time is at or before ``now``."""

        stmt = (
            select(cls.id)
            .where(
                cls.status == InstanceStatus.ACTIVE,
                cls.scheduled_draw_time <= as_utc(now),
            )
            .order_by(cls.scheduled_draw_time.asc(), cls.id.asc())
        )
        return list(session.scalars(stmt).all())


__all__ = ["DrawingInstance", "InstanceStatus"]
