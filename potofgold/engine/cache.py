"""
potofgold.engine.cache — In-Memory Tuning Settings Cache
=========================================================

Gameplay tuning (rate limits, idle timeout, ban length, leaderboard page
size) lives in the ``settings`` table.  :class:`ConfigCache` loads it once
and serves typed reads from memory; :meth:`ConfigCache.reload` picks up
admin edits.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from potofgold.database.models import Setting

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


class ConfigCache:
    """Thread-safe cache of parsed ``settings`` rows.

    Usage:
        cache = ConfigCache(engine)
        cache.load_all()

        limit = cache.get_int("rate_limit.max_requests", default=100)
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._lock = threading.Lock()
        # key → parsed JSON value
        self._settings: dict[str, Any] = {}

    def load_all(self) -> None:
        """Load all settings from the DB.  Call on startup."""
        with Session(self._engine) as session:
            rows = session.scalars(select(Setting)).all()
            parsed: dict[str, Any] = {}
            for row in rows:
                try:
                    parsed[row.key] = json.loads(row.value_json)
                except (json.JSONDecodeError, TypeError):
                    parsed[row.key] = row.value_json

        with self._lock:
            self._settings = parsed
        logger.info("ConfigCache loaded: %d settings", len(parsed))

    reload = load_all

    # -------------------------------------------------------------------
    # Typed setting accessors (thread-safe)
    # -------------------------------------------------------------------
    def get_setting(self, key: str, default: Any = None) -> Any:
        """Return the parsed JSON value for *key*, or *default*."""
        with self._lock:
            return self._settings.get(key, default)

    def get_int(self, key: str, default: int = 0) -> int:
        val = self.get_setting(key)
        if val is None:
            return default
        try:
            return int(val)
        except (TypeError, ValueError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        val = self.get_setting(key)
        if val is None:
            return default
        try:
            return float(val)
        except (TypeError, ValueError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        val = self.get_setting(key)
        if val is None:
            return default
        return bool(val)
