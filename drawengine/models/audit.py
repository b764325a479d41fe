from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .entry import Entry


class DrawingLog(Base):
    """Persisted drawing summary written by the database audit sink."""

    __tablename__ = "drawing_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    instance_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("drawing_instances.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    action: Mapped[str] = mapped_column(String(40), nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "action IN ('drawing_completed','drawing_extended',"
            "'drawing_cancelled','drawing_error')",
            name="action_enum",
        ),
    )

    def __init__(
        self,
        *,
        action: str,
        instance_id: Optional[int] = None,
        details: Optional[dict] = None,
        occurred_at: Optional[datetime] = None,
    ) -> None:
        self.action = action
        self.instance_id = instance_id
        self.details = details
        if occurred_at is not None:
            self.occurred_at = occurred_at


class RefundRequest(Base):
    """Outbox row asking the refund collaborator to reverse one paid entry.

    Rows are written in the same transaction that cancels the instance, so a
    cancellation is never committed without its refund requests.
    """

    __tablename__ = "refund_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    instance_id: Mapped[int] = mapped_column(
        ForeignKey("drawing_instances.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    entry_id: Mapped[int] = mapped_column(
        ForeignKey("entries.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    user_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    payment_ref: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    entry: Mapped["Entry"] = relationship()

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','processed','failed')", name="status_enum"
        ),
    )

    def __init__(
        self,
        *,
        instance_id: int,
        entry_id: int,
        user_id: int,
        amount: float,
        payment_ref: Optional[str] = None,
        reason: Optional[str] = None,
        status: str = "pending",
    ) -> None:
        self.instance_id = instance_id
        self.entry_id = entry_id
        self.user_id = user_id
        self.amount = amount
        self.payment_ref = payment_ref
        self.reason = reason
        self.status = status
