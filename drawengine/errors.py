"""Exceptions raised by the drawing engine.

Insufficient participants and unfilled prize positions are normal outcomes of a
drawing and are reported through return values, not through these classes.
"""

from __future__ import annotations

from typing import Optional


class DrawEngineError(Exception):
    """Base class for every error raised by :mod:`drawengine`."""


class ConflictError(DrawEngineError):
    """The record was not in the expected state, or lost an optimistic race.

    Callers may retry only after re-reading the current state.
    """

    def __init__(self, message: str, *, instance_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.instance_id = instance_id


class ConfigurationError(DrawEngineError, ValueError):
    """A category or setting is missing, disabled, or malformed."""


class EntryRejectedError(DrawEngineError, ValueError):
    """An entry request was refused before any state was touched."""


class QuotaExceededError(EntryRejectedError):
    """The user's ticket quota for the current limiting period is exhausted."""

    def __init__(self, message: str, *, used: int, limit: int) -> None:
        super().__init__(message)
        self.used = used
        self.limit = limit

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


class PersistenceError(DrawEngineError):
    """A drawing could not be committed; the instance keeps its last committed state."""

    def __init__(self, message: str, *, instance_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.instance_id = instance_id


class DrawingTimeoutError(PersistenceError):
    """The per-instance execution budget expired before the drawing committed."""


__all__ = [
    "ConfigurationError",
    "ConflictError",
    "DrawEngineError",
    "DrawingTimeoutError",
    "EntryRejectedError",
    "PersistenceError",
    "QuotaExceededError",
]
