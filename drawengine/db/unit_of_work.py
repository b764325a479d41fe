"""Atomic unit of work with optimistic retry.

Every mutation of shared aggregate state (instance counters, prize pools,
quota consumption, winner membership) goes through :meth:`UnitOfWork.commit_with_retry`
so that it is applied as one serializable read-modify-write against the
current snapshot of the affected rows.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M")


def is_conflict(exc: BaseException) -> bool:
    """Return ``True`` when ``exc`` signals a lost race rather than a real fault."""

    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, IntegrityError):
        # only a duplicate key means another writer got there first
        message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
        return (
            "unique constraint" in message
            or "duplicate key" in message
            or "duplicate entry" in message
        )
    if isinstance(exc, OperationalError):
        # SQLite reports writer contention this way; other backends raise
        # serialization failures that surface as OperationalError too.
        message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
        return (
            "database is locked" in message
            or "could not serialize" in message
            or "deadlock" in message
        )
    return False


class UnitOfWork:
    """Run callables inside a transaction and retry them on write conflicts."""

    def __init__(
        self,
        session_factory: "sessionmaker[Session]",
        *,
        max_attempts: int = 3,
    ) -> None:
        """Create a unit of work.

        Parameters
        ----------
        session_factory : sessionmaker
            Factory producing new sessions bound to the engine.
        max_attempts : int, default: 3
            Number of times ``work`` is attempted before :class:`ConflictError`
            is raised.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._session_factory = session_factory
        self.max_attempts = max_attempts

    @property
    def session_factory(self) -> "sessionmaker[Session]":
        return self._session_factory

    @staticmethod
    def read(
        session: Session,
        model: Type[M],
        ident: Any,
        *,
        for_update: bool = False,
    ) -> Optional[M]:
        """Load ``model`` by primary key, overwriting any stale identity-map state."""

        return session.get(
            model,
            ident,
            populate_existing=True,
            with_for_update=for_update or None,
        )

    @staticmethod
    def write(session: Session, obj: Any) -> None:
        """Stage ``obj`` for insertion or update in the current transaction."""

        session.add(obj)

    def commit_with_retry(
        self,
        work: Callable[[Session], T],
        *,
        label: str = "unit of work",
    ) -> T:
        """Run ``work`` in a fresh transaction, retrying on conflicts.

        ``work`` receives an open session and must be safe to call again: each
        attempt starts from a new session, so nothing staged by a failed
        attempt survives.  Exceptions that are not conflicts, including
        integrity errors other than duplicate keys, roll back the transaction
        and propagate unchanged.

        Raises
        ------
        ConflictError
            If every attempt lost an optimistic race.
        """

        last_exc: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            session = self._session_factory()
            try:
                with session.begin():
                    result = work(session)
                return result
            except (StaleDataError, IntegrityError, OperationalError) as exc:
                if not is_conflict(exc):
                    raise
                last_exc = exc
                logger.info(
                    f"{label}: write conflict on attempt {attempt}/{self.max_attempts}: "
                    f"{exc.__class__.__name__}"
                )
            finally:
                session.close()

        raise ConflictError(
            f"{label} did not commit after {self.max_attempts} attempts"
        ) from last_exc


__all__ = ["UnitOfWork", "is_conflict"]
