from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import dt_iso
from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .instance import DrawingInstance
    from .user import User


METHOD_PAYMENT = "payment"
METHOD_REWARDED_ACTION = "rewarded_action"

ENTRY_CONFIRMED = "confirmed"
ENTRY_PENDING = "pending"


class Entry(Base):
    """A user's entry into a drawing instance, carrying one or more tickets.

    Only ``confirmed`` entries count towards the instance counters and are
    eligible for selection.
    """

    def __init__(
        self,
        *,
        user_id: int,
        category_id: int,
        method: str,
        ticket_count: int,
        instance_id: Optional[int] = None,
        instance: Optional["DrawingInstance"] = None,
        status: str = ENTRY_CONFIRMED,
        payment_ref: Optional[str] = None,
        action_ref: Optional[str] = None,
        created_at: Optional[datetime] = None,
        confirmed_at: Optional[datetime] = None,
    ):
        self.user_id = user_id
        self.category_id = category_id
        self.method = method
        self.ticket_count = ticket_count
        if instance is not None:
            self.instance = instance
        if instance_id is not None:
            self.instance_id = instance_id
        self.status = status
        self.payment_ref = payment_ref
        self.action_ref = action_ref
        if created_at is not None:
            self.created_at = created_at
        self.confirmed_at = confirmed_at

    __tablename__ = "entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    instance_id: Mapped[int] = mapped_column(
        ForeignKey("drawing_instances.id", ondelete="RESTRICT"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("recurrence_categories.id", ondelete="RESTRICT"), nullable=False
    )
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    ticket_count: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ENTRY_CONFIRMED
    )
    payment_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    action_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    instance: Mapped["DrawingInstance"] = relationship(back_populates="entries")
    user: Mapped["User"] = relationship(back_populates="entries")

    __table_args__ = (
        CheckConstraint("ticket_count > 0", name="ticket_count_positive"),
        CheckConstraint(
            "method IN ('payment','rewarded_action')", name="method_enum"
        ),
        CheckConstraint("status IN ('confirmed','pending')", name="status_enum"),
        Index("ix_entries_instance_status", "instance_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Entry(id={self.id}, instance_id={self.instance_id}, user_id={self.user_id}, "
            f"method='{self.method}', tickets={self.ticket_count}, status='{self.status}')>"
        )

    @property
    def is_confirmed(self) -> bool:
        return self.status == ENTRY_CONFIRMED

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "user_id": self.user_id,
            "category_id": self.category_id,
            "method": self.method,
            "ticket_count": self.ticket_count,
            "status": self.status,
            "payment_ref": self.payment_ref,
            "action_ref": self.action_ref,
            "created_at": dt_iso(self.created_at),
            "confirmed_at": dt_iso(self.confirmed_at),
        }

    @classmethod
    def confirmed_for_instance(cls, session: Session, instance_id: int) -> list["Entry"]:
        """Return the confirmed entries of ``instance_id`` in insertion order."""

        stmt = (
            select(cls)
            .where(cls.instance_id == instance_id, cls.status == ENTRY_CONFIRMED)
            .order_by(cls.id.asc())
        )
        return list(session.scalars(stmt).all())
