from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column

from .base import ID_TYPE, Base


class TicketQuotaRecord(Base):
    """Tickets a user consumed in one category during one limiting period.

    Rows are created lazily on the first confirmed entry of the period and are
    only removed by maintenance once the period has long expired.
    """

    def __init__(
        self,
        *,
        user_id: int,
        category_id: int,
        period_key: str,
        period_ends_at: datetime,
        tickets_used: int = 0,
    ):
        self.user_id = user_id
        self.category_id = category_id
        self.period_key = period_key
        self.period_ends_at = period_ends_at
        self.tickets_used = tickets_used

    __tablename__ = "ticket_quota_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("recurrence_categories.id", ondelete="CASCADE"), nullable=False
    )
    period_key: Mapped[str] = mapped_column(String(16), nullable=False)
    period_ends_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    tickets_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
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

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint(
            "user_id", "category_id", "period_key", name="uq_ticket_quota_period"
        ),
        CheckConstraint("tickets_used >= 0", name="tickets_used_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<TicketQuotaRecord(user_id={self.user_id}, category_id={self.category_id}, "
            f"period='{self.period_key}', used={self.tickets_used})>"
        )

    @classmethod
    def lookup(
        cls, session: Session, user_id: int, category_id: int, period_key: str
    ) -> Optional["TicketQuotaRecord"]:
        return session.scalar(
            select(cls).where(
                cls.user_id == user_id,
                cls.category_id == category_id,
                cls.period_key == period_key,
            )
        )
