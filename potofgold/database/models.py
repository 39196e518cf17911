"""
potofgold.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Tables:
- players              — Profile, balances, lifetime stats, ban state
- game_sessions        — One row per round (optimistic-concurrency ``version``)
- session_checkpoints  — Ordered, accepted checkpoints of a session
- cheat_detections     — Aggregated detector verdicts + manual review state
- suspicious_activity  — Every rejected checkpoint / score
- invalid_scores       — Rejected final scores kept for offline review
- ban_log              — Append-only ban history
- reward_transactions  — Reward ledger, exactly one row per completed session
- leaderboard_entries  — One row per (board key, player), keep-max policy
- game_events          — Analytics events flushed by the EventQueue
- rate_limit_events    — Sliding-window request log
- settings             — Key-value gameplay tuning
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Pot of Gold ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class SessionStatus(enum.StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    INVALIDATED = "invalidated"


class ReviewResolution(enum.StrEnum):
    """Admin outcomes for a queued cheat detection."""
    DISMISS = "dismiss"
    CONFIRM = "confirm"
    BAN = "ban"


# ---------------------------------------------------------------------------
# Players, keyed by the auth subject
# ---------------------------------------------------------------------------
class Player(Base):
    __tablename__ = "players"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str] = mapped_column(String(50), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(255), default=None)
    country: Mapped[str | None] = mapped_column(String(2), default=None)

    # Progression (owned by external systems, read by the spawner)
    level: Mapped[int] = mapped_column(Integer, default=1)
    vip_tier: Mapped[int] = mapped_column(Integer, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    retention_days: Mapped[int] = mapped_column(Integer, default=0)
    purchase_count: Mapped[int] = mapped_column(Integer, default=0)
    ad_watch_rate: Mapped[float] = mapped_column(Float, default=0.0)
    preferred_difficulty: Mapped[str] = mapped_column(String(16), default="normal")
    is_subscriber: Mapped[bool] = mapped_column(Boolean, default=False)

    # Balances
    coins: Mapped[int] = mapped_column(BigInteger, default=0)
    gems: Mapped[int] = mapped_column(BigInteger, default=0)
    xp: Mapped[int] = mapped_column(BigInteger, default=0)

    # Lifetime stats
    total_games: Mapped[int] = mapped_column(Integer, default=0)
    total_score: Mapped[int] = mapped_column(BigInteger, default=0)
    high_score: Mapped[int] = mapped_column(BigInteger, default=0)

    # Security
    violations: Mapped[int] = mapped_column(Integer, default=0)
    banned_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    ban_reason: Mapped[str | None] = mapped_column(Text, default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    last_active: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    sessions: Mapped[list[GameSession]] = relationship(
        back_populates="player", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_players_high_score", "high_score"),
    )

    def __repr__(self) -> str:
        return f"<Player id={self.id!r} name={self.username!r} lvl={self.level}>"


# ---------------------------------------------------------------------------
# Game sessions
# ---------------------------------------------------------------------------
class GameSession(Base):
    """Server-side record of one round.

    Counters only ever grow.  Once ``status`` leaves ``active`` the row is
    sealed.  ``version`` is bumped on every write so two concurrent
    writers cannot both commit.
    """
    __tablename__ = "game_sessions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("players.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=SessionStatus.ACTIVE.value
    )
    score: Mapped[int] = mapped_column(BigInteger, default=0)
    coins: Mapped[int] = mapped_column(BigInteger, default=0)
    gems: Mapped[int] = mapped_column(BigInteger, default=0)
    level: Mapped[int] = mapped_column(Integer, default=1)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_update: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    final_score: Mapped[int | None] = mapped_column(BigInteger, default=None)
    rewards: Mapped[dict | None] = mapped_column(JSONB, default=None)
    new_high_score: Mapped[bool] = mapped_column(Boolean, default=False)
    end_reason: Mapped[str | None] = mapped_column(String(32), default=None)
    idempotency_key: Mapped[str | None] = mapped_column(String(64), default=None)

    # Client info
    platform: Mapped[str] = mapped_column(String(32), default="unknown")
    client_ip: Mapped[str | None] = mapped_column(String(64), default=None)
    device_fingerprint: Mapped[str | None] = mapped_column(String(255), default=None)
    server_seed: Mapped[str] = mapped_column(String(64), nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    player: Mapped[Player] = relationship(back_populates="sessions")
    checkpoints: Mapped[list[SessionCheckpoint]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SessionCheckpoint.seq",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_game_sessions_user_status", "user_id", "status"),
        Index("ix_game_sessions_user_started", "user_id", "started_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<GameSession id={self.id} user={self.user_id!r} "
            f"status={self.status} score={self.score}>"
        )


class SessionCheckpoint(Base):
    __tablename__ = "session_checkpoints"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("game_sessions.id", ondelete="CASCADE"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    client_timestamp_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    server_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    score: Mapped[int] = mapped_column(BigInteger, nullable=False)
    coins: Mapped[int] = mapped_column(BigInteger, default=0)
    gems: Mapped[int] = mapped_column(BigInteger, default=0)
    level: Mapped[int] = mapped_column(Integer, default=1)
    items_collected: Mapped[int] = mapped_column(Integer, default=0)
    # reaction_times / item_collections / input_events
    payload: Mapped[dict] = mapped_column(JSONB, default=dict)

    session: Mapped[GameSession] = relationship(back_populates="checkpoints")

    __table_args__ = (
        UniqueConstraint("session_id", "seq", name="uq_checkpoint_session_seq"),
    )

    def __repr__(self) -> str:
        return f"<SessionCheckpoint session={self.session_id} seq={self.seq} score={self.score}>"


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------
class CheatDetection(Base):
    """Aggregated verdict of one cheating decision (auto-ban or review)."""
    __tablename__ = "cheat_detections"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(32), default=None)
    flags: Mapped[list] = mapped_column(JSONB, default=list)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    results: Mapped[list] = mapped_column(JSONB, default=list)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    reviewed: Mapped[bool] = mapped_column(Boolean, default=False)
    resolution: Mapped[str | None] = mapped_column(String(16), default=None)
    reviewed_by: Mapped[str | None] = mapped_column(String(64), default=None)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_cheat_detections_pending", "reviewed", "created_at"),
        Index("ix_cheat_detections_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<CheatDetection id={self.id} user={self.user_id!r} "
            f"action={self.action} conf={self.confidence:.2f}>"
        )


class SuspiciousActivity(Base):
    __tablename__ = "suspicious_activity"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(32), default=None)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[dict] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_suspicious_activity_user", "user_id", "created_at"),
    )


class InvalidScore(Base):
    __tablename__ = "invalid_scores"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    session_id: Mapped[str] = mapped_column(String(32), nullable=False)
    final_score: Mapped[int] = mapped_column(BigInteger, nullable=False)
    validation: Mapped[dict] = mapped_column(JSONB, default=dict)
    reviewed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class BanLog(Base):
    """Append-only ban history.  ``lifted_at`` is set by an admin unban."""
    __tablename__ = "ban_log"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    banned_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    issued_by: Mapped[str | None] = mapped_column(String(64), default=None)  # None = automated
    lifted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    lifted_by: Mapped[str | None] = mapped_column(String(64), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_ban_log_user", "user_id"),
    )


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------
class RewardTransaction(Base):
    __tablename__ = "reward_transactions"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    session_id: Mapped[str] = mapped_column(String(32), nullable=False)
    type: Mapped[str] = mapped_column(String(32), default="game_reward")
    final_score: Mapped[int] = mapped_column(BigInteger, nullable=False)
    coins: Mapped[int] = mapped_column(BigInteger, default=0)
    gems: Mapped[int] = mapped_column(BigInteger, default=0)
    xp: Mapped[int] = mapped_column(BigInteger, default=0)
    stats: Mapped[dict] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("session_id", name="uq_reward_transactions_session"),
        Index("ix_reward_transactions_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<RewardTransaction session={self.session_id} coins={self.coins} "
            f"gems={self.gems} xp={self.xp}>"
        )


# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------
class LeaderboardEntry(Base):
    """One ranked score per (board key, player).

    Board keys look like ``daily:2025-03-14``, ``weekly:2025-W11``,
    ``monthly:2025-03``, ``all_time`` or ``country:DE:2025-W11``.
    """
    __tablename__ = "leaderboard_entries"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    board_key: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    score: Mapped[int] = mapped_column(BigInteger, nullable=False)
    metadata_: Mapped[dict] = mapped_column("metadata", JSONB, default=dict)
    achieved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)

    __table_args__ = (
        UniqueConstraint("board_key", "user_id", name="uq_leaderboard_board_user"),
        Index("ix_leaderboard_board_score", "board_key", "score"),
        Index("ix_leaderboard_expires", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<LeaderboardEntry {self.board_key} user={self.user_id!r} score={self.score}>"


# ---------------------------------------------------------------------------
# Analytics / infrastructure
# ---------------------------------------------------------------------------
class GameEvent(Base):
    __tablename__ = "game_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONB, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_game_events_type_time", "event_type", "created_at"),
    )


class RateLimitEvent(Base):
    """One row per counted request, pruned as the window slides."""
    __tablename__ = "rate_limit_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    identifier: Mapped[str] = mapped_column(String(128), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_rate_limit_events_identifier_time", "identifier", "timestamp"),
    )


class Setting(Base):
    """Key-value configuration store.

    Gameplay tuning knobs (rate limits, idle timeout, ban length, etc.)
    live here so operators can adjust them without redeploying.  Values are
    stored as JSON strings; typed accessors live in
    :class:`~potofgold.engine.cache.ConfigCache`.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"
