"""Read-through cache of category configuration snapshots."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from .errors import ConfigurationError
from .models.category import CategoryConfig, RecurrenceCategory

logger = logging.getLogger(__name__)


class CategoryCache:
    """Cache :class:`CategoryConfig` snapshots for ``ttl`` seconds.

    Entry intake reads category configuration on every request; drawings
    always read the live row inside their own transaction.  Call
    :meth:`invalidate` after editing a category to make the change visible
    before the TTL runs out.
    """

    def __init__(
        self,
        session_factory: "sessionmaker[Session]",
        *,
        ttl: float = 300.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._session_factory = session_factory
        self.ttl = ttl
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._by_id: dict[int, tuple[float, CategoryConfig]] = {}
        self._ids_by_name: dict[str, int] = {}

    def _fresh(self, stored_at: float) -> bool:
        return self._clock() - stored_at < self.ttl

    def _store(self, config: CategoryConfig) -> CategoryConfig:
        with self._lock:
            self._by_id[config.id] = (self._clock(), config)
            self._ids_by_name[config.internal_name] = config.id
        return config

    def get(self, category_id: int) -> CategoryConfig:
        """Return the configuration of ``category_id``.

        Raises
        ------
        ConfigurationError
            If the category does not exist.
        """

        with self._lock:
            cached = self._by_id.get(category_id)
        if cached is not None and self._fresh(cached[0]):
            return cached[1]

        with self._session_factory() as session:
            category = session.get(RecurrenceCategory, category_id)
            if category is None:
                raise ConfigurationError(f"Category {category_id} does not exist")
            config = category.to_config()
        logger.debug(f"Category cache miss for {config.internal_name}")
        return self._store(config)

    def get_by_name(self, internal_name: str) -> CategoryConfig:
        with self._lock:
            category_id = self._ids_by_name.get(internal_name)
        if category_id is not None:
            return self.get(category_id)

        with self._session_factory() as session:
            category = RecurrenceCategory.get_by_internal_name(session, internal_name)
            if category is None:
                raise ConfigurationError(f"Category '{internal_name}' does not exist")
            config = category.to_config()
        return self._store(config)

    def invalidate(self, category_id: Optional[int] = None) -> None:
        """Drop one cached category, or every category when ``category_id`` is ``None``."""

        with self._lock:
            if category_id is None:
                self._by_id.clear()
                self._ids_by_name.clear()
                return
            cached = self._by_id.pop(category_id, None)
            if cached is not None:
                self._ids_by_name.pop(cached[1].internal_name, None)


__all__ = ["CategoryCache"]
