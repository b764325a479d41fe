"""Utility helpers for the models package."""

from __future__ import annotations

import secrets
import string
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

BASE62_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
CODE_MAX_LENGTH = 64


def _code_taken(session: Session, code: str) -> bool:
    from .instance import DrawingInstance

    pending = any(
        isinstance(obj, DrawingInstance) and obj.code == code for obj in session.new
    )
    if pending:
        return True
    return session.scalar(
        select(DrawingInstance.id).where(DrawingInstance.code == code)
    ) is not None


def generate_instance_code(
    prefix: str,
    session: Optional[Session] = None,
    length: int = 8,
    max_attempts: int = 32,
) -> str:
    """Return ``<prefix>-<random base62>`` for a new drawing instance.

    With a session, codes already stored or staged in it are skipped.

    Raises
    ------
    RuntimeError
        If no free code was found within ``max_attempts`` tries.
    """

    head = prefix[: CODE_MAX_LENGTH - length - 1]
    for _ in range(max_attempts):
        suffix = "".join(secrets.choice(BASE62_ALPHABET) for _ in range(length))
        candidate = f"{head}-{suffix}"
        if session is None or not _code_taken(session, candidate):
            return candidate
    raise RuntimeError(
        f"No free instance code for prefix '{prefix}' after {max_attempts} attempts"
    )
