"""Initial game schema

Revision ID: 5f2c8a1e9d40
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5f2c8a1e9d40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at(name: str = "created_at", **kw) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, **kw)


def upgrade() -> None:
    """Create every table of the game backend."""
    op.create_table(
        "players",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("username", sa.String(50), nullable=False),
        sa.Column("avatar_url", sa.String(255), nullable=True),
        sa.Column("country", sa.String(2), nullable=True),
        sa.Column("level", sa.Integer(), server_default="1"),
        sa.Column("vip_tier", sa.Integer(), server_default="0"),
        sa.Column("current_streak", sa.Integer(), server_default="0"),
        sa.Column("retention_days", sa.Integer(), server_default="0"),
        sa.Column("purchase_count", sa.Integer(), server_default="0"),
        sa.Column("ad_watch_rate", sa.Float(), server_default="0"),
        sa.Column("preferred_difficulty", sa.String(16), server_default="normal"),
        sa.Column("is_subscriber", sa.Boolean(), server_default=sa.false()),
        sa.Column("coins", sa.BigInteger(), server_default="0"),
        sa.Column("gems", sa.BigInteger(), server_default="0"),
        sa.Column("xp", sa.BigInteger(), server_default="0"),
        sa.Column("total_games", sa.Integer(), server_default="0"),
        sa.Column("total_score", sa.BigInteger(), server_default="0"),
        sa.Column("high_score", sa.BigInteger(), server_default="0"),
        sa.Column("violations", sa.Integer(), server_default="0"),
        sa.Column("banned_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ban_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_players_high_score", "players", ["high_score"])

    op.create_table(
        "game_sessions",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "user_id", sa.String(64),
            sa.ForeignKey("players.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("status", sa.String(16), nullable=False, server_default="active"),
        sa.Column("score", sa.BigInteger(), server_default="0"),
        sa.Column("coins", sa.BigInteger(), server_default="0"),
        sa.Column("gems", sa.BigInteger(), server_default="0"),
        sa.Column("level", sa.Integer(), server_default="1"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_update", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("final_score", sa.BigInteger(), nullable=True),
        sa.Column("rewards", postgresql.JSONB(), nullable=True),
        sa.Column("new_high_score", sa.Boolean(), server_default=sa.false()),
        sa.Column("end_reason", sa.String(32), nullable=True),
        sa.Column("idempotency_key", sa.String(64), nullable=True),
        sa.Column("platform", sa.String(32), server_default="unknown"),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.Column("device_fingerprint", sa.String(255), nullable=True),
        sa.Column("server_seed", sa.String(64), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_game_sessions_user_status", "game_sessions", ["user_id", "status"])
    op.create_index("ix_game_sessions_user_started", "game_sessions", ["user_id", "started_at"])

    op.create_table(
        "session_checkpoints",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "session_id", sa.String(32),
            sa.ForeignKey("game_sessions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("client_timestamp_ms", sa.BigInteger(), nullable=False),
        sa.Column("server_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("score", sa.BigInteger(), nullable=False),
        sa.Column("coins", sa.BigInteger(), server_default="0"),
        sa.Column("gems", sa.BigInteger(), server_default="0"),
        sa.Column("level", sa.Integer(), server_default="1"),
        sa.Column("items_collected", sa.Integer(), server_default="0"),
        sa.Column("payload", postgresql.JSONB(), server_default="{}"),
        sa.UniqueConstraint("session_id", "seq", name="uq_checkpoint_session_seq"),
    )

    op.create_table(
        "cheat_detections",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("session_id", sa.String(32), nullable=True),
        sa.Column("flags", postgresql.JSONB(), server_default="[]"),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("results", postgresql.JSONB(), server_default="[]"),
        sa.Column("action", sa.String(16), nullable=False),
        sa.Column("reviewed", sa.Boolean(), server_default=sa.false()),
        sa.Column("resolution", sa.String(16), nullable=True),
        sa.Column("reviewed_by", sa.String(64), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_cheat_detections_pending", "cheat_detections", ["reviewed", "created_at"])
    op.create_index("ix_cheat_detections_user", "cheat_detections", ["user_id"])

    op.create_table(
        "suspicious_activity",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("session_id", sa.String(32), nullable=True),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("details", postgresql.JSONB(), server_default="{}"),
        _created_at(),
    )
    op.create_index(
        "ix_suspicious_activity_user", "suspicious_activity", ["user_id", "created_at"],
    )

    op.create_table(
        "invalid_scores",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("session_id", sa.String(32), nullable=False),
        sa.Column("final_score", sa.BigInteger(), nullable=False),
        sa.Column("validation", postgresql.JSONB(), server_default="{}"),
        sa.Column("reviewed", sa.Boolean(), server_default=sa.false()),
        _created_at(),
    )

    op.create_table(
        "ban_log",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=False),
        sa.Column("banned_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("issued_by", sa.String(64), nullable=True),
        sa.Column("lifted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lifted_by", sa.String(64), nullable=True),
        _created_at(),
    )
    op.create_index("ix_ban_log_user", "ban_log", ["user_id"])

    op.create_table(
        "reward_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("session_id", sa.String(32), nullable=False),
        sa.Column("type", sa.String(32), server_default="game_reward"),
        sa.Column("final_score", sa.BigInteger(), nullable=False),
        sa.Column("coins", sa.BigInteger(), server_default="0"),
        sa.Column("gems", sa.BigInteger(), server_default="0"),
        sa.Column("xp", sa.BigInteger(), server_default="0"),
        sa.Column("stats", postgresql.JSONB(), server_default="{}"),
        _created_at(),
        sa.UniqueConstraint("session_id", name="uq_reward_transactions_session"),
    )
    op.create_index("ix_reward_transactions_user", "reward_transactions", ["user_id"])

    op.create_table(
        "leaderboard_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("board_key", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("score", sa.BigInteger(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), server_default="{}"),
        sa.Column("achieved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("board_key", "user_id", name="uq_leaderboard_board_user"),
    )
    op.create_index("ix_leaderboard_board_score", "leaderboard_entries", ["board_key", "score"])
    op.create_index("ix_leaderboard_expires", "leaderboard_entries", ["expires_at"])

    op.create_table(
        "game_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("payload", postgresql.JSONB(), server_default="{}"),
        _created_at(),
    )
    op.create_index("ix_game_events_type_time", "game_events", ["event_type", "created_at"])

    op.create_table(
        "rate_limit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("identifier", sa.String(128), nullable=False),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_rate_limit_events_identifier_time",
        "rate_limit_events",
        ["identifier", "timestamp"],
    )

    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_settings_category", "settings", ["category"])


def downgrade() -> None:
    """Drop every table, dependents first."""
    for table in (
        "settings",
        "rate_limit_events",
        "game_events",
        "leaderboard_entries",
        "reward_transactions",
        "ban_log",
        "invalid_scores",
        "suspicious_activity",
        "cheat_detections",
        "session_checkpoints",
        "game_sessions",
        "players",
    ):
        op.drop_table(table)
