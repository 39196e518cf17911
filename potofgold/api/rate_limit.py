"""
potofgold.api.rate_limit — Per-Caller Request Rate Limiting
============================================================

Sliding-window counter keyed by caller id (JWT ``sub``): at most
``rate_limit.max_requests`` requests per ``rate_limit.window_seconds``
(defaults 100 / 60 s).  Exceeding it yields 429 ``resource-exhausted``
with a ``Retry-After`` header.

State lives in the ``rate_limit_events`` table so limits survive restarts
and are shared between API workers.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import Depends
from sqlalchemy import Engine, delete, func, select
from sqlalchemy.orm import Session

from potofgold.api.deps import get_current_admin, get_current_player
from potofgold.database.engine import as_utc, run_db
from potofgold.database.models import RateLimitEvent
from potofgold.engine.cache import ConfigCache
from potofgold.errors import ResourceExhausted

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 100
DEFAULT_WINDOW_SECONDS = 60


class RateLimiter:
    """Sliding-window rate limiter keyed by caller id.

    DB-backed only; uses the ``rate_limit_events`` table.
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_RATE_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        *,
        engine: Engine,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.engine = engine

    def _prune(self, session: Session, identifier: str, now: datetime) -> None:
        session.execute(
            delete(RateLimitEvent).where(
                RateLimitEvent.identifier == identifier,
                RateLimitEvent.timestamp < now - timedelta(seconds=self.window_seconds),
            )
        )

    def check(self, identifier: str) -> tuple[bool, dict[str, Any]]:
        """Check if *identifier* is within its limit.

        Returns (allowed, info) where info contains:
          - remaining: requests remaining in the window
          - reset: seconds until the oldest request expires
          - limit: the max requests per window
        """
        now = datetime.now(UTC)

        with Session(self.engine) as session:
            self._prune(session, identifier, now)
            timestamps = session.scalars(
                select(RateLimitEvent.timestamp)
                .where(RateLimitEvent.identifier == identifier)
                .order_by(RateLimitEvent.timestamp.asc())
            ).all()
            session.commit()

        count = len(timestamps)
        if count >= self.max_requests:
            oldest = as_utc(timestamps[0])
            reset = (oldest + timedelta(seconds=self.window_seconds) - now).total_seconds()
            return False, {
                "remaining": 0,
                "reset": max(1, int(reset) + 1),
                "limit": self.max_requests,
            }

        return True, {
            "remaining": self.max_requests - count,
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def record(self, identifier: str) -> dict[str, Any]:
        """Count one request and return the updated info dict."""
        now = datetime.now(UTC)

        with Session(self.engine) as session:
            self._prune(session, identifier, now)
            session.add(RateLimitEvent(identifier=identifier, timestamp=now))
            session.flush()
            count = session.scalar(
                select(func.count())
                .select_from(RateLimitEvent)
                .where(RateLimitEvent.identifier == identifier)
            ) or 0
            session.commit()

        return {
            "remaining": max(0, self.max_requests - count),
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def reset(self, identifier: str | None = None) -> None:
        """Clear rate limit state.  If *identifier* is None, clear all."""
        with Session(self.engine) as session:
            if identifier is None:
                session.execute(delete(RateLimitEvent))
            else:
                session.execute(
                    delete(RateLimitEvent).where(RateLimitEvent.identifier == identifier)
                )
            session.commit()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------
_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    """Return the global rate limiter instance."""
    if _limiter is None:
        raise RuntimeError("Rate limiter not configured — call configure_rate_limiter() first")
    return _limiter


def configure_rate_limiter(*, engine: Engine, cache: ConfigCache | None = None) -> RateLimiter:
    """Configure the global limiter, reading its limits from *cache* if given."""
    global _limiter
    max_requests, window = DEFAULT_RATE_LIMIT, DEFAULT_WINDOW_SECONDS
    if cache is not None:
        max_requests = cache.get_int("rate_limit.max_requests", DEFAULT_RATE_LIMIT)
        window = cache.get_int("rate_limit.window_seconds", DEFAULT_WINDOW_SECONDS)
    _limiter = RateLimiter(max_requests, window, engine=engine)
    return _limiter


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------
async def _enforce(identifier: str) -> None:
    limiter = get_rate_limiter()
    allowed, info = await run_db(limiter.check, identifier)
    if not allowed:
        logger.warning(
            "Rate limit exceeded for %s: %d requests in %ds",
            identifier, limiter.max_requests, limiter.window_seconds,
        )
        raise ResourceExhausted(
            f"Rate limit exceeded: {limiter.max_requests} requests per "
            f"{limiter.window_seconds} seconds.",
            retry_after=info["reset"],
        )
    await run_db(limiter.record, identifier)


async def rate_limited_player(player: dict = Depends(get_current_player)) -> dict:
    """Validate the player JWT *and* count the request against its limit.

    Use ``Depends(rate_limited_player)`` in place of
    ``Depends(get_current_player)`` on gameplay routes.
    """
    await _enforce(player["sub"])
    return player


async def rate_limited_admin(admin: dict = Depends(get_current_admin)) -> dict:
    await _enforce(f"admin:{admin['sub']}")
    return admin
