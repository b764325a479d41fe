"""Winner records produced by a completed drawing."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from ..db.utils import dt_iso
from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .entry import Entry
    from .instance import DrawingInstance
    from .user import User


class WinnerStatus:
    """Approval states driven by the external payout collaborator."""

    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    TRANSFERRED = "transferred"
    REJECTED = "rejected"

    ALL = (PENDING_APPROVAL, APPROVED, TRANSFERRED, REJECTED)

    TRANSITIONS = {
        PENDING_APPROVAL: (APPROVED, REJECTED),
        APPROVED: (TRANSFERRED, REJECTED),
        TRANSFERRED: (),
        REJECTED: (),
    }


class Winner(Base):
    """A prize position awarded to a user in one drawing instance.

    The identity is ``(instance_id, position)``; ``(instance_id, user_id)`` is
    unique as well, so the store refuses a second position for the same user.
    Amounts are fixed at creation; only :attr:`status` changes afterwards.
    """

    __tablename__ = "winners"

    instance_id: Mapped[int] = mapped_column(
        ForeignKey("drawing_instances.id", ondelete="RESTRICT"), primary_key=True
    )
    """Drawing instance the prize belongs to."""

    position: Mapped[int] = mapped_column(Integer, primary_key=True)
    """Prize position, starting at 1."""

    user_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    """Winning user."""

    entry_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("entries.id", ondelete="SET NULL"), nullable=True
    )
    """Entry that held the selected ticket."""

    percentage: Mapped[float] = mapped_column(Float, nullable=False)
    """Share of the prize pool awarded to this position."""

    gross_amount: Mapped[float] = mapped_column(Float, nullable=False)
    """Prize before the network fee."""

    net_amount: Mapped[float] = mapped_column(Float, nullable=False)
    """Prize after the network fee, never negative."""

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WinnerStatus.PENDING_APPROVAL
    )
    """Approval status (see :class:`WinnerStatus`)."""

    ticket_index: Mapped[int] = mapped_column(Integer, nullable=False)
    """Index of the winning ticket within its entry."""

    selection_index: Mapped[int] = mapped_column(Integer, nullable=False)
    """Index into the shuffled ticket pool at which the ticket was drawn."""

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

    instance: Mapped["DrawingInstance"] = relationship(back_populates="winners")
    user: Mapped["User"] = relationship(back_populates="wins")
    entry: Mapped[Optional["Entry"]] = relationship()

    __table_args__ = (
        UniqueConstraint("instance_id", "user_id", name="uq_winners_instance_user"),
        CheckConstraint("position > 0", name="position_positive"),
        CheckConstraint("net_amount >= 0", name="net_amount_non_negative"),
        CheckConstraint(
            "status IN ('pending_approval','approved','transferred','rejected')",
            name="status_enum",
        ),
        Index("ix_winners_status", "status"),
    )

    def __init__(
        self,
        *,
        instance_id: int,
        position: int,
        user_id: int,
        percentage: float,
        gross_amount: float,
        net_amount: float,
        ticket_index: int,
        selection_index: int,
        entry_id: Optional[int] = None,
        status: str = WinnerStatus.PENDING_APPROVAL,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.instance_id = instance_id
        self.position = position
        self.user_id = user_id
        self.percentage = percentage
        self.gross_amount = gross_amount
        self.net_amount = net_amount
        self.ticket_index = ticket_index
        self.selection_index = selection_index
        self.entry_id = entry_id
        self.status = status
        if created_at is not None:
            self.created_at = created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<Winner(instance_id={self.instance_id}, position={self.position}, "
            f"user_id={self.user_id}, gross={self.gross_amount}, status='{self.status}')>"
        )

    @property
    def winner_id(self) -> str:
        """Stable identifier composed of the instance id and the position."""

        return f"{self.instance_id}_{self.position}"

    def transition(self, new_status: str) -> None:
        """Move the approval status along the allowed transitions.

        Raises
        ------
        ValueError
            If ``new_status`` is unknown or not reachable from the current status.
        """

        if new_status not in WinnerStatus.ALL:
            raise ValueError(f"Unknown winner status '{new_status}'")
        allowed = WinnerStatus.TRANSITIONS.get(self.status, ())
        if new_status not in allowed:
            raise ValueError(
                f"Winner {self.winner_id} cannot move from '{self.status}' to '{new_status}'"
            )
        self.status = new_status

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.winner_id,
            "instance_id": self.instance_id,
            "position": self.position,
            "user_id": self.user_id,
            "entry_id": self.entry_id,
            "percentage": self.percentage,
            "gross_amount": self.gross_amount,
            "net_amount": self.net_amount,
            "status": self.status,
            "selection": {
                "ticket_index": self.ticket_index,
                "selection_index": self.selection_index,
            },
            "created_at": dt_iso(self.created_at),
        }

    @classmethod
    def for_instance(cls, session: Session, instance_id: int) -> list["Winner"]:
        stmt = select(cls).where(cls.instance_id == instance_id).order_by(cls.position)
        return list(session.scalars(stmt).all())


__all__ = ["Winner", "WinnerStatus"]
