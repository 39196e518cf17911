"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# A valid JWT_SECRET must exist before potofgold.api.deps is imported; it
# validates the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

from datetime import UTC, datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# SQLite has no JSONB; render it as TEXT.  BigInteger → INTEGER so
# autoincrement primary keys work.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from potofgold.database.models import Base, GameSession, Player, SessionStatus  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB and BigInteger (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()

NOW = datetime(2025, 3, 14, 12, 0, tzinfo=UTC)


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with every table and the default settings.

    StaticPool shares the single connection across threads, which
    ``asyncio.to_thread`` (``run_db``) needs.
    """
    from sqlalchemy.pool import StaticPool

    from potofgold.database.seed import seed_default_settings

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    seed_default_settings(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def cache(db_engine: Engine):
    from potofgold.engine.cache import ConfigCache

    c = ConfigCache(db_engine)
    c.load_all()
    return c


def add_player(engine: Engine, player_id: str = "p1", **fields) -> None:
    """Insert a player row with sensible defaults."""
    with Session(engine) as session:
        session.add(Player(id=player_id, username=fields.pop("username", player_id), **fields))
        session.commit()


def add_completed_games(engine: Engine, player_id: str, scores: list[int]) -> None:
    """Insert completed sessions with the given final scores."""
    with Session(engine) as session:
        for i, score in enumerate(scores):
            ended = NOW - timedelta(days=1, minutes=len(scores) - i)
            session.add(GameSession(
                id=f"{player_id}-hist-{i}",
                user_id=player_id,
                status=SessionStatus.COMPLETED.value,
                started_at=ended - timedelta(minutes=5),
                last_update=ended,
                ended_at=ended,
                final_score=score,
                server_seed="seed",
            ))
        session.commit()


def make_token(sub: str = "p1", username: str = "FixturePlayer", **claims) -> str:
    """Create a player JWT."""
    import jwt

    from potofgold.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, **claims}, JWT_SECRET, algorithm=JWT_ALGORITHM,
    )


def make_admin_token(sub: str = "admin-1", username: str = "FixtureAdmin") -> str:
    """Create an admin JWT.  Usable as both a fixture and a factory function."""
    return make_token(sub, username, is_admin=True)


@pytest.fixture
def admin_token():
    return make_admin_token()


@pytest.fixture
def client(db_engine: Engine, cache):
    """TestClient bound to the in-memory engine (lifespan not run)."""
    from fastapi.testclient import TestClient

    from potofgold.api.main import app
    from potofgold.api.rate_limit import configure_rate_limiter
    from potofgold.api.routes import admin, leaderboards, sessions, spawn
    from potofgold.services.event_queue import EventQueue

    # Route modules hold the dependency objects FastAPI keys overrides on.
    for module in (admin, leaderboards, sessions, spawn):
        app.dependency_overrides[module.get_engine] = lambda: db_engine

    configure_rate_limiter(engine=db_engine, cache=cache)
    app.state.cache = cache
    app.state.events = EventQueue(db_engine, max_batch=1000)

    yield TestClient(app, raise_server_exceptions=False)

    app.dependency_overrides.clear()
