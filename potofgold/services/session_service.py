"""
potofgold.services.session_service — Game Session Lifecycle
============================================================

Start → checkpoints → end, with every gate the server enforces:

* ``start_session``: one live session per player, banned players refused,
  personalised game config returned.
* ``submit_checkpoint``: checkpoint validator, then the seven cheat
  detectors; accepted checkpoints are appended in order.
* ``end_session``: final-score validation, reward calculation, and one
  transaction that seals the session, credits the player and writes the
  reward ledger row.  The leaderboard publish runs afterwards and never
  fails the request.

All functions are synchronous; API handlers call them via ``run_db``.
Rejections are persisted (suspicious activity, detections, bans) *before*
the error reaches the caller.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from potofgold.database.engine import as_utc, get_session
from potofgold.database.models import (
    GameSession,
    Player,
    RewardTransaction,
    SessionCheckpoint,
    SessionStatus,
)
from potofgold.engine.anti_cheat import CheatEvidence, detect_cheating, validate_final_score
from potofgold.engine.checkpoints import Checkpoint, validate_checkpoint
from potofgold.engine.profile import PlayerProfile
from potofgold.engine.reward import SessionStats, calculate_rewards
from potofgold.engine.spawn_pool import build_spawn_pool
from potofgold.errors import (
    FailedPrecondition,
    GameError,
    InvalidArgument,
    NotFound,
    PermissionDenied,
)
from potofgold.services import security_service
from potofgold.services.leaderboard_service import update_leaderboards

if TYPE_CHECKING:
    from potofgold.engine.cache import ConfigCache
    from potofgold.services.event_queue import EventQueue

logger = logging.getLogger(__name__)

DEFAULT_IDLE_HOURS = 6
DEVICE_WINDOW = timedelta(hours=1)

# Client-side spawn-rate table, scaled by VIP tier for legendaries
BASE_SPAWN_RATES = {"common": 0.6, "rare": 0.3, "epic": 0.08, "legendary": 0.02}


def _ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def _idle_after(cache: ConfigCache) -> timedelta:
    return timedelta(hours=cache.get_int("session.idle_timeout_hours", DEFAULT_IDLE_HOURS))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def get_or_create_player(
    session: Session, user_id: str, username: str | None = None
) -> Player:
    """Fetch or insert a Player row."""
    player = session.get(Player, user_id)
    if player is None:
        player = Player(id=user_id, username=username or f"player-{user_id[:8]}")
        session.add(player)
        session.flush()
    elif username:
        player.username = username
    return player


def is_session_idle(game: GameSession, now: datetime, idle_after: timedelta) -> bool:
    return as_utc(game.last_update) + idle_after <= now


def invalidate_session(game: GameSession, reason: str, now: datetime) -> None:
    game.status = SessionStatus.INVALIDATED.value
    game.end_reason = reason
    game.ended_at = now
    game.last_update = now
    logger.info("Session %s invalidated (%s)", game.id, reason)


def _load_owned_session(session: Session, session_id: str, user_id: str) -> GameSession:
    game = session.get(GameSession, session_id)
    if game is None:
        raise NotFound("Session not found")
    if game.user_id != user_id:
        raise PermissionDenied("Not your session")
    return game


def _checkpoint_from_row(row: SessionCheckpoint) -> Checkpoint:
    return Checkpoint.from_dict({
        **(row.payload or {}),
        "timestamp_ms": row.client_timestamp_ms,
        "score": row.score,
        "coins": row.coins,
        "gems": row.gems,
        "level": row.level,
        "items_collected": row.items_collected,
    })


def build_game_config(player: Player, *, today) -> dict:
    """Personalised config returned on session start."""
    vip = player.vip_tier
    pool = build_spawn_pool(PlayerProfile.from_player(player), today=today)
    rates = dict(BASE_SPAWN_RATES)
    rates["legendary"] = round(rates["legendary"] * (1 + 0.2 * vip), 4)
    return {
        "spawn_rates": rates,
        "vip_multipliers": {
            "score": round(1 + 0.1 * vip, 2),
            "coins": round(1 + 0.15 * vip, 2),
            "gems": round(1 + 0.2 * vip, 2),
        },
        "active_events": list(pool.active_events),
        "spawn_pool": pool.to_dict(),
    }


def get_player_spawn_pool(
    engine: Engine, user_id: str, *, now: datetime | None = None
) -> dict:
    """The caller's current spawn pool, for the client-side spawner."""
    now = now or datetime.now(UTC)
    with get_session(engine) as session:
        player = get_or_create_player(session, user_id)
        pool = build_spawn_pool(PlayerProfile.from_player(player), today=now.date())
    return pool.to_dict()


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------
def start_session(
    engine: Engine,
    cache: ConfigCache,
    user_id: str,
    *,
    platform: str = "unknown",
    client_ip: str | None = None,
    device_fingerprint: str | None = None,
    username: str | None = None,
    events: EventQueue | None = None,
    now: datetime | None = None,
) -> dict:
    """Open a new session for *user_id*.

    An existing active session that has gone idle is invalidated first;
    a live one makes this call fail with :class:`FailedPrecondition`.
    """
    now = now or datetime.now(UTC)
    idle_after = _idle_after(cache)

    with get_session(engine) as session:
        player = get_or_create_player(session, user_id, username)
        security_service.ensure_not_banned(player, now)

        active = session.scalars(
            select(GameSession).where(
                GameSession.user_id == user_id,
                GameSession.status == SessionStatus.ACTIVE.value,
            )
        ).all()
        for game in active:
            if not is_session_idle(game, now, idle_after):
                raise FailedPrecondition("Active session already exists", session_id=game.id)
            invalidate_session(game, "idle_timeout", now)

        game = GameSession(
            id=uuid.uuid4().hex,
            user_id=user_id,
            status=SessionStatus.ACTIVE.value,
            started_at=now,
            last_update=now,
            platform=platform,
            client_ip=client_ip,
            device_fingerprint=device_fingerprint,
            server_seed=secrets.token_hex(16),
        )
        session.add(game)
        player.last_active = now
        config = build_game_config(player, today=now.date())
        session_id = game.id

    logger.info("Session %s started for %s (%s)", session_id, user_id, platform)
    if events is not None:
        events.emit(user_id, "session_start", {"session_id": session_id, "platform": platform})
    return {"session_id": session_id, "server_time": _ms(now), "config": config}


# ---------------------------------------------------------------------------
# Checkpoints
# ---------------------------------------------------------------------------
def _recent_clients(
    session: Session, user_id: str, now: datetime
) -> tuple[frozenset[str], frozenset[str]]:
    rows = session.execute(
        select(GameSession.device_fingerprint, GameSession.client_ip).where(
            GameSession.user_id == user_id,
            GameSession.started_at >= now - DEVICE_WINDOW,
        )
    ).all()
    devices = frozenset(r.device_fingerprint for r in rows if r.device_fingerprint)
    ips = frozenset(r.client_ip for r in rows if r.client_ip)
    return devices, ips


def _apply_checkpoint(
    session: Session,
    cache: ConfigCache,
    game: GameSession,
    checkpoint: Checkpoint,
    now: datetime,
) -> GameError | None:
    """Validate and append *checkpoint*.  Returns the rejection, if any."""
    player = game.player
    now_ms = _ms(now)
    started = as_utc(game.started_at)

    previous = [_checkpoint_from_row(row) for row in game.checkpoints]

    try:
        validate_checkpoint(
            checkpoint, previous[-1] if previous else None,
            now_ms=now_ms, session_elapsed_ms=now_ms - _ms(started),
        )
    except InvalidArgument as exc:
        security_service.flag_suspicious_activity(
            session, player, game.id, "checkpoint_rejected", now=now,
            details={"rule": exc.details.get("rule"), "checkpoint": checkpoint.to_dict()},
        )
        return exc

    devices, ips = _recent_clients(session, player.id, now)
    evidence = CheatEvidence(
        checkpoint=checkpoint,
        previous=tuple(previous),
        elapsed_seconds=(now - started).total_seconds(),
        input_events=tuple(e for cp in previous for e in cp.input_events)
        + checkpoint.input_events,
        history=security_service.get_score_history(
            session, player.id, cache.get_int("security.history_games", 100),
        ),
        recent_devices=devices,
        recent_ips=ips,
    )
    verdict, results = detect_cheating(evidence, now_ms=now_ms)
    if verdict.cheating:
        security_service.record_cheat_detection(
            session, player, game.id, verdict, results, now=now,
            ban_hours=cache.get_int("security.ban_hours", security_service.DEFAULT_BAN_HOURS),
        )
        security_service.flag_suspicious_activity(
            session, player, game.id, "checkpoint_validation", now=now,
            details={"flags": list(verdict.flags), "confidence": verdict.max_confidence},
        )
        return InvalidArgument("Invalid game data")

    payload = checkpoint.to_dict()
    game.checkpoints.append(SessionCheckpoint(
        seq=len(previous) + 1,
        client_timestamp_ms=checkpoint.timestamp_ms,
        server_timestamp=now,
        score=checkpoint.score,
        coins=checkpoint.coins,
        gems=checkpoint.gems,
        level=checkpoint.level,
        items_collected=checkpoint.items_collected,
        payload={
            "reaction_times": payload["reaction_times"],
            "item_collections": payload["item_collections"],
            "input_events": payload["input_events"],
        },
    ))
    game.score = checkpoint.score
    game.coins = checkpoint.coins
    game.gems = checkpoint.gems
    game.level = checkpoint.level
    game.last_update = now
    return None


def submit_checkpoint(
    engine: Engine,
    cache: ConfigCache,
    user_id: str,
    session_id: str,
    checkpoint: Checkpoint,
    *,
    events: EventQueue | None = None,
    now: datetime | None = None,
) -> dict:
    """Validate and record one checkpoint for an active session.

    Raises
    ------
    InvalidArgument
        The checkpoint failed validation or cheat detection.  The session
        stays active; the client may continue with corrected data.
    """
    now = now or datetime.now(UTC)
    error: GameError | None = None

    try:
        with get_session(engine) as session:
            game = _load_owned_session(session, session_id, user_id)
            security_service.ensure_not_banned(game.player, now)
            if game.status != SessionStatus.ACTIVE.value:
                raise FailedPrecondition("Session not active")

            if is_session_idle(game, now, _idle_after(cache)):
                invalidate_session(game, "idle_timeout", now)
                error = FailedPrecondition("Session expired")
            else:
                error = _apply_checkpoint(session, cache, game, checkpoint, now)
            seq = len(game.checkpoints)
    except (StaleDataError, IntegrityError):
        logger.warning("Concurrent checkpoint write on session %s", session_id)
        raise FailedPrecondition("Session was modified concurrently") from None

    if error is not None:
        if events is not None:
            events.emit(user_id, "checkpoint_rejected", {
                "session_id": session_id, "error": error.code,
            })
        raise error

    return {"validated": True, "checkpoint": seq, "server_time": _ms(now)}


# ---------------------------------------------------------------------------
# End
# ---------------------------------------------------------------------------
def _end_result(game: GameSession, *, replayed: bool, now: datetime) -> dict:
    return {
        "session_id": game.id,
        "rewards": dict(game.rewards or {}),
        "new_high_score": game.new_high_score,
        "replayed": replayed,
        "server_time": _ms(now),
    }


def end_session(
    engine: Engine,
    cache: ConfigCache,
    user_id: str,
    session_id: str,
    final_score: int,
    stats: SessionStats,
    *,
    idempotency_key: str | None = None,
    events: EventQueue | None = None,
    now: datetime | None = None,
) -> dict:
    """Seal a session and credit its rewards exactly once.

    Retrying with the same *idempotency_key* after success returns the
    stored result instead of failing.  A rejected final score leaves the
    session ``invalidated`` for good.
    """
    now = now or datetime.now(UTC)
    error: GameError | None = None
    publish: dict | None = None

    try:
        with get_session(engine) as session:
            game = _load_owned_session(session, session_id, user_id)

            if game.status == SessionStatus.COMPLETED.value:
                if idempotency_key and game.idempotency_key == idempotency_key:
                    logger.info("Replaying end of session %s", session_id)
                    return _end_result(game, replayed=True, now=now)
                raise FailedPrecondition("Session already ended")
            if game.status != SessionStatus.ACTIVE.value:
                raise FailedPrecondition("Session not active")

            player = game.player
            security_service.ensure_not_banned(player, now)

            started = as_utc(game.started_at)
            duration = (now - started).total_seconds()
            last_score = game.checkpoints[-1].score if game.checkpoints else None

            if is_session_idle(game, now, _idle_after(cache)):
                invalidate_session(game, "idle_timeout", now)
                error = FailedPrecondition("Session expired")
            else:
                validation = validate_final_score(
                    final_score, stats,
                    last_checkpoint_score=last_score, duration_seconds=duration,
                )
                if not validation.is_valid:
                    security_service.log_invalid_score(
                        session, game, final_score, validation, now=now,
                    )
                    security_service.flag_suspicious_activity(
                        session, player, game.id, "invalid_final_score", now=now,
                        details=validation.to_dict(),
                    )
                    invalidate_session(game, "rejected", now)
                    error = InvalidArgument("Invalid score")

            if error is None:
                rewards = calculate_rewards(final_score, stats, duration)
                new_high = final_score > (player.high_score or 0)

                player.total_games += 1
                player.total_score += final_score
                player.high_score = max(player.high_score or 0, final_score)
                player.coins += rewards.coins
                player.gems += rewards.gems
                player.xp += rewards.xp
                player.last_active = now

                game.status = SessionStatus.COMPLETED.value
                game.ended_at = now
                game.last_update = now
                game.final_score = final_score
                game.rewards = rewards.to_dict()
                game.new_high_score = new_high
                game.end_reason = "completed"
                game.idempotency_key = idempotency_key

                session.add(RewardTransaction(
                    user_id=user_id,
                    session_id=game.id,
                    final_score=final_score,
                    coins=rewards.coins,
                    gems=rewards.gems,
                    xp=rewards.xp,
                    stats=stats.to_dict(),
                    created_at=now,
                ))
                session.flush()

                result = _end_result(game, replayed=False, now=now)
                publish = {
                    "country": player.country,
                    "metadata": {
                        "username": player.username,
                        "avatar": player.avatar_url,
                        "country": player.country,
                        "vip_level": player.vip_tier,
                    },
                }
    except (StaleDataError, IntegrityError):
        logger.warning("Concurrent end-session write on session %s", session_id)
        raise FailedPrecondition("Session already ended") from None

    if error is not None:
        if events is not None:
            events.emit(user_id, "session_rejected", {
                "session_id": session_id, "error": error.code,
            })
        raise error

    logger.info(
        "Session %s completed: score=%d rewards=%s", session_id, final_score, result["rewards"],
    )

    # Best-effort: the rewards are already committed.
    try:
        update_leaderboards(
            engine, user_id, final_score,
            metadata=publish["metadata"], country=publish["country"], now=now,
        )
    except Exception:
        logger.exception("Leaderboard update failed for session %s", session_id)

    if events is not None:
        events.emit(user_id, "session_end", {
            "session_id": session_id, "final_score": final_score, "rewards": result["rewards"],
        })
    return result
