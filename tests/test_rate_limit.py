"""
tests/test_rate_limit.py — Per-Caller Rate Limiting Tests
===========================================================
Gameplay and admin endpoints share a DB-backed sliding window keyed by
the JWT subject; exceeding it returns 429 with ``Retry-After``.
"""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from conftest import make_admin_token, make_token
from potofgold.api.rate_limit import RateLimiter, configure_rate_limiter
from potofgold.database.models import RateLimitEvent


# ---------------------------------------------------------------------------
# Unit tests for the RateLimiter core (DB-backed)
# ---------------------------------------------------------------------------
class TestRateLimiter:
    @pytest.fixture(autouse=True)
    def _limiter(self, db_engine):
        self.limiter = RateLimiter(max_requests=5, window_seconds=60, engine=db_engine)
        self.engine = db_engine

    def test_allows_requests_within_limit(self):
        for _ in range(5):
            allowed, _ = self.limiter.check("user1")
            assert allowed
            self.limiter.record("user1")

    def test_blocks_after_limit_exceeded(self):
        limiter = RateLimiter(max_requests=3, window_seconds=60, engine=self.engine)
        for _ in range(3):
            limiter.record("user1")

        allowed, info = limiter.check("user1")
        assert not allowed
        assert info["remaining"] == 0
        assert info["reset"] > 0

    def test_separate_callers_have_separate_limits(self):
        limiter = RateLimiter(max_requests=2, window_seconds=60, engine=self.engine)
        limiter.record("user1")
        limiter.record("user1")

        assert not limiter.check("user1")[0]
        assert limiter.check("user2")[0]

    def test_remaining_count_decreases(self):
        assert self.limiter.check("user1")[1]["remaining"] == 5
        self.limiter.record("user1")
        assert self.limiter.check("user1")[1]["remaining"] == 4
        info = self.limiter.record("user1")
        assert info["remaining"] == 3

    def test_expired_events_are_pruned(self):
        limiter = RateLimiter(max_requests=2, window_seconds=0, engine=self.engine)
        limiter.record("user1")
        limiter.record("user1")
        # window 0 s: everything recorded is already outside the window
        allowed, info = limiter.check("user1")
        assert allowed
        with Session(self.engine) as s:
            assert s.query(RateLimitEvent).filter_by(identifier="user1").count() == 0

    def test_reset_specific_and_all(self):
        limiter = RateLimiter(max_requests=2, window_seconds=60, engine=self.engine)
        limiter.record("user1")
        limiter.record("user1")
        limiter.record("user2")

        limiter.reset("user1")
        assert limiter.check("user1")[0]
        assert limiter.check("user2")[1]["remaining"] == 1

        limiter.reset()
        assert limiter.check("user2")[1]["remaining"] == 2

    def test_configure_reads_cache(self, db_engine, cache):
        limiter = configure_rate_limiter(engine=db_engine, cache=cache)
        assert limiter.max_requests == 100
        assert limiter.window_seconds == 60


# ---------------------------------------------------------------------------
# Integration tests with FastAPI TestClient
# ---------------------------------------------------------------------------
class TestRateLimitDependency:
    @pytest.fixture
    def limited(self, client, db_engine):
        import potofgold.api.rate_limit as rl_mod

        limiter = RateLimiter(max_requests=3, window_seconds=60, engine=db_engine)
        rl_mod._limiter = limiter
        return client, limiter

    def _headers(self, token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def test_health_is_not_limited(self, limited):
        client, _ = limited
        for _ in range(10):
            assert client.get("/api/health").status_code == 200

    def test_returns_429_with_retry_after(self, limited):
        client, limiter = limited
        for _ in range(3):
            limiter.record("p-limit")

        resp = client.get("/api/spawn/pool", headers=self._headers(make_token("p-limit")))
        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) >= 1
        body = resp.json()
        assert body["error"] == "resource-exhausted"
        assert body["details"]["retry_after"] >= 1

    def test_requests_are_counted(self, limited):
        client, limiter = limited
        headers = self._headers(make_token("p-count"))
        for _ in range(3):
            assert client.get("/api/spawn/pool", headers=headers).status_code == 200
        assert client.get("/api/spawn/pool", headers=headers).status_code == 429

    def test_admins_are_limited_separately(self, limited):
        client, limiter = limited
        for _ in range(3):
            limiter.record("admin-1")
        resp = client.get(
            "/api/admin/reviews", headers=self._headers(make_admin_token("admin-1")),
        )
        assert resp.status_code == 200
