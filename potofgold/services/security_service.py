"""
potofgold.services.security_service — Detection Log, Bans & Review Queue
=========================================================================

Persists what the anti-cheat engine decides:

* cheat verdicts (``cheat_detections``), with an automatic 24 h ban when
  the verdict says so,
* every rejected checkpoint or score (``suspicious_activity``), which also
  bumps the player's violation counter,
* rejected final scores (``invalid_scores``),
* the ban history (``ban_log``).

Session-scoped helpers take an open :class:`Session` so they join the
caller's transaction.  Admin operations take an :class:`Engine`.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from potofgold.database.engine import as_utc, get_session
from potofgold.database.models import (
    BanLog,
    CheatDetection,
    GameSession,
    InvalidScore,
    Player,
    ReviewResolution,
    SessionStatus,
    SuspiciousActivity,
)
from potofgold.engine.anti_cheat import (
    CheatAction,
    CheatVerdict,
    DetectionResult,
    ScoreHistory,
)
from potofgold.errors import FailedPrecondition, InvalidArgument, NotFound, PermissionDenied

logger = logging.getLogger(__name__)

AUTO_BAN_REASON = "Automated cheat detection"
DEFAULT_BAN_HOURS = 24
DEFAULT_HISTORY_GAMES = 100


# ---------------------------------------------------------------------------
# Ban state
# ---------------------------------------------------------------------------
def is_banned(player: Player, now: datetime) -> bool:
    banned_until = as_utc(player.banned_until)
    return banned_until is not None and banned_until > now


def ensure_not_banned(player: Player, now: datetime) -> None:
    if is_banned(player, now):
        raise PermissionDenied(
            "Account suspended", banned_until=as_utc(player.banned_until).isoformat()
        )


def ban_player(
    session: Session,
    player: Player,
    reason: str,
    duration: timedelta,
    *,
    now: datetime,
    issued_by: str | None = None,
) -> BanLog:
    """Suspend *player* until ``now + duration`` and append to the ban log.

    An existing longer ban is never shortened.
    """
    until = now + duration
    current = as_utc(player.banned_until)
    if current is None or current < until:
        player.banned_until = until
    player.ban_reason = reason

    entry = BanLog(
        user_id=player.id,
        reason=reason,
        duration_seconds=int(duration.total_seconds()),
        banned_until=until,
        issued_by=issued_by,
        created_at=now,
    )
    session.add(entry)
    logger.warning(
        "Player %s banned until %s: %s", player.id, until.isoformat(), reason,
        extra={"user_id": player.id, "issued_by": issued_by},
    )
    return entry


# ---------------------------------------------------------------------------
# Detection logging
# ---------------------------------------------------------------------------
def record_cheat_detection(
    session: Session,
    player: Player,
    session_id: str | None,
    verdict: CheatVerdict,
    results: list[DetectionResult],
    *,
    now: datetime,
    ban_hours: int = DEFAULT_BAN_HOURS,
) -> CheatDetection:
    """Persist a cheating verdict and apply the auto-ban when required."""
    detection = CheatDetection(
        user_id=player.id,
        session_id=session_id,
        flags=list(verdict.flags),
        confidence=verdict.max_confidence,
        results=[r.to_dict() for r in results],
        action=(verdict.action or CheatAction.REVIEW).value,
        created_at=now,
    )
    session.add(detection)

    if verdict.action is CheatAction.AUTO_BAN:
        ban_player(session, player, AUTO_BAN_REASON, timedelta(hours=ban_hours), now=now)
    return detection


def flag_suspicious_activity(
    session: Session,
    player: Player,
    session_id: str | None,
    kind: str,
    *,
    now: datetime,
    details: dict | None = None,
) -> SuspiciousActivity:
    row = SuspiciousActivity(
        user_id=player.id,
        session_id=session_id,
        kind=kind,
        details=details or {},
        created_at=now,
    )
    session.add(row)
    player.violations = (player.violations or 0) + 1
    logger.warning(
        "Suspicious activity (%s) for player %s in session %s",
        kind, player.id, session_id,
        extra={"user_id": player.id, "session_id": session_id, "kind": kind},
    )
    return row


def log_invalid_score(
    session: Session,
    game: GameSession,
    final_score: int,
    validation: DetectionResult,
    *,
    now: datetime,
) -> InvalidScore:
    row = InvalidScore(
        user_id=game.user_id,
        session_id=game.id,
        final_score=final_score,
        validation=validation.to_dict(),
        created_at=now,
    )
    session.add(row)
    return row


def get_score_history(
    session: Session, user_id: str, limit: int = DEFAULT_HISTORY_GAMES
) -> ScoreHistory:
    """Score distribution of the player's last *limit* completed games."""
    scores = session.scalars(
        select(GameSession.final_score)
        .where(
            GameSession.user_id == user_id,
            GameSession.status == SessionStatus.COMPLETED.value,
        )
        .order_by(GameSession.ended_at.desc())
        .limit(limit)
    ).all()
    return ScoreHistory.from_scores([s or 0 for s in scores])


# ---------------------------------------------------------------------------
# Review queue (admin)
# ---------------------------------------------------------------------------
def _detection_dict(d: CheatDetection) -> dict:
    return {
        "id": d.id,
        "user_id": d.user_id,
        "session_id": d.session_id,
        "flags": d.flags,
        "confidence": d.confidence,
        "action": d.action,
        "reviewed": d.reviewed,
        "resolution": d.resolution,
        "reviewed_by": d.reviewed_by,
        "created_at": as_utc(d.created_at).isoformat(),
    }


def list_pending_reviews(engine: Engine, *, limit: int = 50, offset: int = 0) -> list[dict]:
    """Unreviewed detections, oldest first."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(CheatDetection)
            .where(CheatDetection.reviewed.is_(False))
            .order_by(CheatDetection.created_at.asc(), CheatDetection.id.asc())
            .offset(offset)
            .limit(limit)
        ).all()
        return [_detection_dict(d) for d in rows]


def resolve_review(
    engine: Engine,
    detection_id: int,
    resolution: str,
    *,
    admin_id: str,
    ban_hours: int = DEFAULT_BAN_HOURS,
    now: datetime | None = None,
) -> dict:
    """Close a queued detection.  ``ban`` also suspends the player."""
    now = now or datetime.now(UTC)
    try:
        outcome = ReviewResolution(resolution)
    except ValueError:
        raise InvalidArgument(f"Unknown resolution: {resolution!r}") from None

    with get_session(engine) as session:
        detection = session.get(CheatDetection, detection_id)
        if detection is None:
            raise NotFound("Detection not found")
        if detection.reviewed:
            raise FailedPrecondition("Detection already reviewed")

        detection.reviewed = True
        detection.resolution = outcome.value
        detection.reviewed_by = admin_id
        detection.reviewed_at = now

        if outcome is ReviewResolution.BAN:
            player = session.get(Player, detection.user_id)
            if player is None:
                raise NotFound("Player not found")
            ban_player(
                session, player, "Confirmed by manual review",
                timedelta(hours=ban_hours), now=now, issued_by=admin_id,
            )

        logger.info(
            "Detection %d resolved as %s by %s", detection_id, outcome.value, admin_id,
        )
        session.flush()
        return _detection_dict(detection)


def unban_player(
    engine: Engine, player_id: str, *, admin_id: str, now: datetime | None = None
) -> dict:
    """Lift any active ban on *player_id*."""
    now = now or datetime.now(UTC)
    with get_session(engine) as session:
        player = session.get(Player, player_id)
        if player is None:
            raise NotFound("Player not found")

        was_banned = is_banned(player, now)
        player.banned_until = None
        player.ban_reason = None

        open_bans = session.scalars(
            select(BanLog).where(BanLog.user_id == player_id, BanLog.lifted_at.is_(None))
        ).all()
        for entry in open_bans:
            entry.lifted_at = now
            entry.lifted_by = admin_id

        logger.info("Player %s unbanned by %s", player_id, admin_id)
        return {"player_id": player_id, "was_banned": was_banned}
