"""
potofgold.database.seed — Default Settings Seeder
==================================================

Baseline tuning seeded on first startup.  Idempotent: only inserts keys
that don't already exist, so operator edits are never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from potofgold.database.models import Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    "rate_limit.max_requests": (100, "rate_limit", "Requests allowed per window per player"),
    "rate_limit.window_seconds": (60, "rate_limit", "Sliding window length in seconds"),
    "session.idle_timeout_hours": (
        6, "session", "Hours without a checkpoint before an active session is invalidated",
    ),
    "security.ban_hours": (24, "security", "Length of an automatic cheat ban"),
    "security.history_games": (
        100, "security", "Completed games sampled for score-pattern analysis",
    ),
    "leaderboard.default_page_size": (50, "leaderboard", "Entries per leaderboard page"),
    "leaderboard.purge_batch_size": (
        5000, "leaderboard", "Expired entries deleted per maintenance batch",
    ),
    "events.batch_size": (50, "analytics", "Buffered analytics events before a flush"),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine) -> int:
    """Insert default settings that don't yet exist.  Returns rows inserted."""
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            if session.get(Setting, key) is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category,
                    description=desc,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default settings.", inserted)
    return inserted
