from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional
from sqlalchemy.orm import Session, Mapped, mapped_column, relationship
from sqlalchemy import Float, Integer, String, DateTime, func, select

from .base import ID_TYPE, Base
from ..db.utils import dt_iso

if TYPE_CHECKING:
    from .entry import Entry
    from .winner import Winner


class User(Base):
    """A participant of the rewards platform.

    Only the aggregate counters the drawing engine maintains live here; account
    and session data belong to the platform's user service.
    """

    def __init__(
        self,
        in_app_id: str,
        nickname: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        """Create a new :class:`User` record.

        Parameters
        ----------
        in_app_id : str
            User's ID in the platform.
        nickname : str, optional
            Display name.
        created_at : datetime, optional
            Explicit creation timestamp.
        updated_at : datetime, optional
            Explicit last update timestamp.
        """

        self.in_app_id = in_app_id
        self.nickname = nickname
        self.lotteries_entered = 0
        self.total_tickets = 0
        self.lotteries_won = 0
        self.total_winnings = 0.0
        if created_at is not None:
            self.created_at = created_at
        if updated_at is not None:
            self.updated_at = updated_at

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    in_app_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    nickname: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    lotteries_entered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_tickets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lotteries_won: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_winnings: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_entry_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_win_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # relationships
    entries: Mapped[list["Entry"]] = relationship(back_populates="user")
    wins: Mapped[list["Winner"]] = relationship(back_populates="user")

    def __repr__(self) -> str:
        return (
            f"<User(id={self.id}, in_app_id='{self.in_app_id}', "
            f"nickname='{self.nickname}', lotteries_won={self.lotteries_won}, "
            f"total_winnings={self.total_winnings})>"
        )

    @classmethod
    def get_by_in_app_id(cls, session: Session, in_app_id: str) -> Optional["User"]:
        """Retrieve a user by their in_app_id."""

        return session.scalar(select(cls).where(cls.in_app_id == in_app_id))

    def record_entry(self, tickets: int, at: Optional[datetime] = None) -> None:
        """Bump the participation counters for a confirmed entry.

        Counters are assigned as SQL increments so concurrent writers never
        overwrite each other; the new values load on next attribute access.
        """

        at = at or datetime.now(timezone.utc)
        cls = type(self)
        self.lotteries_entered = cls.lotteries_entered + 1
        self.total_tickets = cls.total_tickets + tickets
        self.last_entry_at = at
        self.updated_at = at

    def record_win(self, amount: float, at: Optional[datetime] = None) -> None:
        """Bump the win counters; called in the same transaction as the winner insert."""

        at = at or datetime.now(timezone.utc)
        cls = type(self)
        self.lotteries_won = cls.lotteries_won + 1
        self.total_winnings = cls.total_winnings + amount
        self.last_win_at = at
        self.updated_at = at

    def to_json(self) -> dict:
        return {
            "id": self.id,
            "in_app_id": self.in_app_id,
            "nickname": self.nickname,
            "lotteries_entered": self.lotteries_entered,
            "total_tickets": self.total_tickets,
            "lotteries_won": self.lotteries_won,
            "total_winnings": self.total_winnings,
            "last_entry_at": dt_iso(self.last_entry_at),
            "last_win_at": dt_iso(self.last_win_at),
            "created_at": dt_iso(self.created_at),
            "updated_at": dt_iso(self.updated_at),
        }
