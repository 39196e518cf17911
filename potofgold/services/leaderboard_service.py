"""
potofgold.services.leaderboard_service — Multi-Period Leaderboards
===================================================================

One ``leaderboard_entries`` row per (board key, player).

Write policy:
  * daily                         → unconditional overwrite
  * weekly / monthly / all-time / → keep-max (only a strictly greater
    country                         score replaces the stored one)

Ranking: score descending, ties broken by earliest ``achieved_at``, then
by user id.  Ranks are 1-indexed and computed at read time.

Each board key carries a TTL (``expires_at``); reads ignore expired rows
and :func:`purge_expired_entries` deletes them in batches.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, and_, delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from potofgold.database.engine import as_utc, get_session
from potofgold.database.models import LeaderboardEntry
from potofgold.errors import InvalidArgument

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
BATCH_SIZE = 5_000


class Period(enum.StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all_time"
    COUNTRY = "country"


ALL_PERIODS: tuple[Period, ...] = tuple(Period)

BOARD_TTL: dict[Period, timedelta | None] = {
    Period.DAILY: timedelta(hours=25),
    Period.WEEKLY: timedelta(days=8),
    Period.MONTHLY: timedelta(days=32),
    Period.ALL_TIME: None,
    Period.COUNTRY: timedelta(days=14),
}


# ---------------------------------------------------------------------------
# Board keys
# ---------------------------------------------------------------------------
def _iso_week(now: datetime) -> str:
    year, week, _ = now.isocalendar()
    return f"{year}-W{week:02d}"


def board_key(period: Period, now: datetime, country: str | None = None) -> str:
    """Return the storage key of *period*'s current board."""
    match period:
        case Period.DAILY:
            return f"daily:{now:%Y-%m-%d}"
        case Period.WEEKLY:
            return f"weekly:{_iso_week(now)}"
        case Period.MONTHLY:
            return f"monthly:{now:%Y-%m}"
        case Period.ALL_TIME:
            return "all_time"
        case Period.COUNTRY:
            if not country:
                raise InvalidArgument("Country leaderboard requires a country code")
            return f"country:{country.upper()}:{_iso_week(now)}"
    raise InvalidArgument(f"Unknown leaderboard period: {period!r}")


def _parse_period(period: str) -> Period:
    try:
        return Period(period)
    except ValueError:
        raise InvalidArgument(f"Unknown leaderboard period: {period!r}") from None


def _live(now: datetime):
    return or_(LeaderboardEntry.expires_at.is_(None), LeaderboardEntry.expires_at > now)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
def _upsert(
    session: Session,
    key: str,
    user_id: str,
    score: int,
    metadata: dict,
    *,
    now: datetime,
    expires_at: datetime | None,
    keep_max: bool,
) -> int:
    """Write one entry and return the score now stored."""
    entry = session.scalar(
        select(LeaderboardEntry).where(
            LeaderboardEntry.board_key == key, LeaderboardEntry.user_id == user_id,
        )
    )
    if entry is None:
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(LeaderboardEntry(
                    board_key=key,
                    user_id=user_id,
                    score=score,
                    metadata_=metadata,
                    achieved_at=now,
                    expires_at=expires_at,
                ))
                session.flush()
            return score
        except IntegrityError:
            # A concurrent writer inserted first; fall through to update.
            entry = session.scalar(
                select(LeaderboardEntry).where(
                    LeaderboardEntry.board_key == key, LeaderboardEntry.user_id == user_id,
                )
            )

    expired = entry.expires_at is not None and as_utc(entry.expires_at) <= now
    if not keep_max or expired or score > entry.score:
        entry.score = score
        entry.achieved_at = now
        entry.metadata_ = metadata
    entry.expires_at = expires_at
    return entry.score


def update_leaderboards(
    engine: Engine,
    user_id: str,
    score: int,
    *,
    metadata: dict | None = None,
    country: str | None = None,
    periods: Iterable[Period] = ALL_PERIODS,
    now: datetime | None = None,
) -> dict[str, int]:
    """Publish *score* to every board in *periods*.

    The country board is skipped when the player has no country.
    Returns ``{board_key: stored_score}``.
    """
    now = now or datetime.now(UTC)
    metadata = metadata or {}
    stored: dict[str, int] = {}

    with get_session(engine) as session:
        for period in periods:
            if period is Period.COUNTRY and not country:
                continue
            key = board_key(period, now, country)
            ttl = BOARD_TTL[period]
            stored[key] = _upsert(
                session, key, user_id, score, metadata,
                now=now,
                expires_at=now + ttl if ttl is not None else None,
                keep_max=period is not Period.DAILY,
            )

    logger.debug("Leaderboards updated for %s: %s", user_id, stored)
    return stored


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def _rank_of(session: Session, key: str, entry: LeaderboardEntry, now: datetime) -> int:
    ahead = session.scalar(
        select(func.count())
        .select_from(LeaderboardEntry)
        .where(
            LeaderboardEntry.board_key == key,
            _live(now),
            or_(
                LeaderboardEntry.score > entry.score,
                and_(
                    LeaderboardEntry.score == entry.score,
                    LeaderboardEntry.achieved_at < entry.achieved_at,
                ),
                and_(
                    LeaderboardEntry.score == entry.score,
                    LeaderboardEntry.achieved_at == entry.achieved_at,
                    LeaderboardEntry.user_id < entry.user_id,
                ),
            ),
        )
    ) or 0
    return ahead + 1


def _entry_dict(entry: LeaderboardEntry, rank: int) -> dict:
    return {
        "rank": rank,
        "user_id": entry.user_id,
        "score": entry.score,
        "metadata": entry.metadata_ or {},
        "achieved_at": as_utc(entry.achieved_at).isoformat(),
    }


def get_leaderboard(
    engine: Engine,
    user_id: str | None,
    period: str,
    *,
    offset: int = 0,
    limit: int = 50,
    country: str | None = None,
    now: datetime | None = None,
) -> dict:
    """Return one page of a board plus the caller's own rank.

    ``limit`` is clamped to :data:`MAX_PAGE_SIZE`.
    """
    if limit < 1 or offset < 0:
        raise InvalidArgument("limit must be ≥ 1 and offset ≥ 0")
    limit = min(limit, MAX_PAGE_SIZE)
    now = now or datetime.now(UTC)
    resolved = _parse_period(period)
    key = board_key(resolved, now, country)

    with get_session(engine) as session:
        rows = session.scalars(
            select(LeaderboardEntry)
            .where(LeaderboardEntry.board_key == key, _live(now))
            .order_by(
                LeaderboardEntry.score.desc(),
                LeaderboardEntry.achieved_at.asc(),
                LeaderboardEntry.user_id.asc(),
            )
            .offset(offset)
            .limit(limit)
        ).all()
        entries = [_entry_dict(e, offset + i + 1) for i, e in enumerate(rows)]

        total = session.scalar(
            select(func.count())
            .select_from(LeaderboardEntry)
            .where(LeaderboardEntry.board_key == key, _live(now))
        ) or 0

        user_rank = None
        if user_id is not None:
            mine = session.scalar(
                select(LeaderboardEntry).where(
                    LeaderboardEntry.board_key == key,
                    LeaderboardEntry.user_id == user_id,
                    _live(now),
                )
            )
            if mine is not None:
                user_rank = _rank_of(session, key, mine, now)

    return {
        "period": resolved.value,
        "board": key,
        "entries": entries,
        "user_rank": user_rank,
        "total_players": total,
    }


def get_leaderboard_stats(engine: Engine, *, now: datetime | None = None) -> dict:
    """``{period: {"total_players", "top_score"}}`` for every global board."""
    now = now or datetime.now(UTC)
    stats: dict[str, dict] = {}
    with get_session(engine) as session:
        for period in ALL_PERIODS:
            if period is Period.COUNTRY:
                continue
            key = board_key(period, now)
            total, top = session.execute(
                select(func.count(), func.max(LeaderboardEntry.score))
                .where(LeaderboardEntry.board_key == key, _live(now))
            ).one()
            stats[period.value] = {"total_players": total or 0, "top_score": top or 0}
    return stats


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------
def purge_expired_entries(
    engine: Engine,
    *,
    now: datetime | None = None,
    batch_size: int = BATCH_SIZE,
) -> int:
    """Delete expired entries in bounded batches.  Returns rows deleted."""
    now = now or datetime.now(UTC)
    deleted = 0
    while True:
        with get_session(engine) as session:
            ids = session.scalars(
                select(LeaderboardEntry.id)
                .where(LeaderboardEntry.expires_at.is_not(None), LeaderboardEntry.expires_at <= now)
                .limit(batch_size)
            ).all()
            if not ids:
                break
            result = session.execute(
                delete(LeaderboardEntry).where(LeaderboardEntry.id.in_(ids))
            )
            deleted += result.rowcount  # type: ignore[operator]

    if deleted:
        logger.info("Leaderboard purge: removed %d expired entries", deleted)
    return deleted
