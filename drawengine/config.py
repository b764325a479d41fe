"""Runtime settings for the drawing engine, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from .db.engine import DEFAULT_SQLITE_URL, ROOT_DIR
from .db.utils import resolve_sqlite_url
from .errors import ConfigurationError


def _read_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


def _read_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class EngineSettings:
    """Settings shared by the lifecycle manager, scheduler, and entry intake.

    Attributes
    ----------
    database_url : str
        SQLAlchemy URL of the backing store.
    network_fee : float
        Fixed transfer fee subtracted from each gross payout.
    conflict_retries : int
        Number of attempts the unit of work makes before giving up on a
        conflicting write.
    sweep_budget_seconds : float
        Execution budget for a single instance during a scheduler sweep.
    category_cache_ttl : float
        Lifetime of cached category configuration, in seconds.
    quota_retention_days : int
        Age after which ticket quota rows are purged.
    audit_webhook_url : Optional[str]
        Endpoint receiving drawing summaries, if configured.
    audit_webhook_timeout : float
        Timeout in seconds for webhook deliveries.
    """

    database_url: str = DEFAULT_SQLITE_URL
    network_fee: float = 0.01
    conflict_retries: int = 3
    sweep_budget_seconds: float = 60.0
    category_cache_ttl: float = 300.0
    quota_retention_days: int = 90
    audit_webhook_url: Optional[str] = None
    audit_webhook_timeout: float = 10.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        """Build settings from ``env`` (defaults to ``os.environ`` after loading ``.env``)."""

        if env is None:
            load_dotenv()
            env = os.environ

        db_url = env.get("DB_URL")
        settings = cls(
            database_url=(
                resolve_sqlite_url(db_url, ROOT_DIR) if db_url else DEFAULT_SQLITE_URL
            ),
            network_fee=_read_float(env, "DRAW_NETWORK_FEE", 0.01),
            conflict_retries=_read_int(env, "DRAW_CONFLICT_RETRIES", 3),
            sweep_budget_seconds=_read_float(env, "DRAW_SWEEP_BUDGET_SECONDS", 60.0),
            category_cache_ttl=_read_float(env, "CATEGORY_CACHE_TTL_SECONDS", 300.0),
            quota_retention_days=_read_int(env, "QUOTA_RETENTION_DAYS", 90),
            audit_webhook_url=env.get("AUDIT_WEBHOOK_URL") or None,
            audit_webhook_timeout=_read_float(env, "AUDIT_WEBHOOK_TIMEOUT", 10.0),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.network_fee < 0:
            raise ConfigurationError("DRAW_NETWORK_FEE must not be negative")
        if self.conflict_retries < 1:
            raise ConfigurationError("DRAW_CONFLICT_RETRIES must be at least 1")
        if self.sweep_budget_seconds <= 0:
            raise ConfigurationError("DRAW_SWEEP_BUDGET_SECONDS must be positive")
        if self.category_cache_ttl < 0:
            raise ConfigurationError("CATEGORY_CACHE_TTL_SECONDS must not be negative")
        if self.quota_retention_days < 1:
            raise ConfigurationError("QUOTA_RETENTION_DAYS must be at least 1")


__all__ = ["EngineSettings"]
