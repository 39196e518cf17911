"""
potofgold.services.maintenance_service — Periodic Housekeeping
===============================================================

Two jobs, run together on a fixed interval by :class:`MaintenanceLoop`:

* expire sessions that have been ``active`` with no update for longer than
  ``session.idle_timeout_hours`` (status → ``invalidated``,
  end reason ``idle_timeout``),
* delete expired leaderboard entries in bounded batches.

Both can also be invoked ad-hoc (e.g. from a one-off script).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, select

from potofgold.database.engine import get_session
from potofgold.database.models import GameSession, SessionStatus
from potofgold.engine.cache import ConfigCache
from potofgold.services.leaderboard_service import BATCH_SIZE, purge_expired_entries
from potofgold.services.session_service import DEFAULT_IDLE_HOURS, invalidate_session

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 300


def expire_idle_sessions(
    engine: Engine,
    *,
    idle_hours: int = DEFAULT_IDLE_HOURS,
    now: datetime | None = None,
) -> int:
    """Invalidate every active session idle for *idle_hours* or more."""
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(hours=idle_hours)
    with get_session(engine) as session:
        stale = session.scalars(
            select(GameSession).where(
                GameSession.status == SessionStatus.ACTIVE.value,
                GameSession.last_update <= cutoff,
            )
        ).all()
        for game in stale:
            invalidate_session(game, "idle_timeout", now)

    if stale:
        logger.info("Maintenance: expired %d idle sessions", len(stale))
    return len(stale)


def run_maintenance(
    engine: Engine, cache: ConfigCache, *, now: datetime | None = None
) -> dict[str, int]:
    """Run every housekeeping job once.

    Returns ``{"sessions_expired": N, "leaderboard_purged": M}``.
    """
    now = now or datetime.now(UTC)
    return {
        "sessions_expired": expire_idle_sessions(
            engine,
            idle_hours=cache.get_int("session.idle_timeout_hours", DEFAULT_IDLE_HOURS),
            now=now,
        ),
        "leaderboard_purged": purge_expired_entries(
            engine,
            now=now,
            batch_size=cache.get_int("leaderboard.purge_batch_size", BATCH_SIZE),
        ),
    }


class MaintenanceLoop:
    """Background task calling :func:`run_maintenance` every *interval* seconds."""

    def __init__(
        self, engine: Engine, cache: ConfigCache, *, interval: float = DEFAULT_INTERVAL
    ) -> None:
        self.engine = engine
        self.cache = cache
        self.interval = interval
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._task is not None:
            return

        async def _tick() -> None:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    summary = await asyncio.to_thread(run_maintenance, self.engine, self.cache)
                    logger.debug("Maintenance pass: %s", summary)
                except Exception:
                    logger.exception("Maintenance pass failed")

        self._task = loop.create_task(_tick(), name="maintenance-loop")
        logger.info("Maintenance loop started (every %ss)", self.interval)

    def stop(self) -> None:
        if self._task:
            self._task.cancel()
            self._task = None
