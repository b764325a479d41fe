"""Cryptographically secure randomness for winner selection."""

from __future__ import annotations

import hashlib
import secrets
from typing import Callable, MutableSequence, TypeVar

T = TypeVar("T")

IndexSource = Callable[[int, str], int]
"""``(upper, context) -> index`` with ``0 <= index < upper``."""

_SAMPLE_BITS = 32
_SAMPLE_SPACE = 1 << _SAMPLE_BITS


def generate_audit_seed(nbytes: int = 32) -> str:
    """Return a fresh hex seed recorded with each drawing for auditing."""

    return secrets.token_hex(nbytes)


def secure_index(upper: int, context: str = "") -> int:
    """Return a uniformly distributed integer in ``[0, upper)``.

    Fresh OS entropy is mixed with ``context`` through SHA-256.  Samples that
    fall in the incomplete final bucket are rejected so every index is equally
    likely.
    """

    if upper <= 0:
        raise ValueError("upper must be positive")
    if upper > _SAMPLE_SPACE:
        raise ValueError(f"upper must not exceed {_SAMPLE_SPACE}")
    limit = (_SAMPLE_SPACE // upper) * upper
    label = context.encode("utf-8")
    while True:
        digest = hashlib.sha256(secrets.token_bytes(32) + label).digest()
        value = int.from_bytes(digest[:4], "big")
        if value < limit:
            return value % upper


def secure_shuffle(
    items: MutableSequence[T], seed: str, index_source: IndexSource = secure_index
) -> MutableSequence[T]:
    """Fisher-Yates shuffle ``items`` in place using ``index_source``."""

    for i in range(len(items) - 1, 0, -1):
        j = index_source(i + 1, f"{seed}_{i}")
        items[i], items[j] = items[j], items[i]
    return items


__all__ = ["IndexSource", "generate_audit_seed", "secure_index", "secure_shuffle"]
