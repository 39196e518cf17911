"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Drives the HTTP surface through the FastAPI TestClient:

- Auth guards (401 without a token, 403 for non-admins)
- The full start → checkpoint → end flow
- Error body shape ``{"error", "message"}`` and status mapping
- Leaderboard, spawn-pool and admin review endpoints
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from conftest import add_player, make_token
from potofgold.database.models import CheatDetection, GameSession, Player, SuspiciousActivity


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


def _backdate(engine, session_id: str, seconds: int) -> None:
    """Shift a session's start into the past so its scores look plausible."""
    with Session(engine) as s:
        game = s.get(GameSession, session_id)
        game.started_at = datetime.now(UTC) - timedelta(seconds=seconds)
        game.last_update = game.started_at
        s.commit()


@pytest.fixture
def player_headers():
    return _auth(make_token("p1", "Finn"))


# ===========================================================================
# Health & auth
# ===========================================================================
class TestHealthAndAuth:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_missing_token(self, client):
        resp = client.post("/api/sessions", json={})
        assert resp.status_code == 401
        assert resp.json() == {"error": "unauthenticated", "message": "Missing token"}

    def test_garbage_token(self, client):
        resp = client.get("/api/spawn/pool", headers=_auth("not-a-jwt"))
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid token"

    def test_token_without_subject(self, client):
        resp = client.get("/api/spawn/pool", headers=_auth(make_token("")))
        assert resp.status_code == 401

    def test_admin_routes_reject_players(self, client, player_headers):
        resp = client.get("/api/admin/reviews", headers=player_headers)
        assert resp.status_code == 403
        assert resp.json()["error"] == "permission-denied"


# ===========================================================================
# Session flow
# ===========================================================================
class TestSessionFlow:
    def test_start_checkpoint_end(self, client, db_engine, player_headers):
        resp = client.post("/api/sessions", json={"platform": "web"}, headers=player_headers)
        assert resp.status_code == 200
        started = resp.json()
        sid = started["session_id"]
        assert "spawn_pool" in started["config"]
        _backdate(db_engine, sid, 300)

        checkpoint = {"timestamp_ms": _now_ms(), "score": 500, "items_collected": 50}
        resp = client.post(f"/api/sessions/{sid}/checkpoints", json=checkpoint, headers=player_headers)
        assert resp.status_code == 200
        assert resp.json()["validated"] is True
        assert resp.json()["checkpoint"] == 1

        end = {
            "final_score": 1310,
            "stats": {"max_combo": 10, "items_collected": 100, "level": 2},
            "idempotency_key": "end-1",
        }
        resp = client.post(f"/api/sessions/{sid}/end", json=end, headers=player_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["new_high_score"] is True
        assert body["rewards"]["coins"] > 0

        again = client.post(f"/api/sessions/{sid}/end", json=end, headers=player_headers)
        assert again.status_code == 200
        assert again.json()["replayed"] is True
        assert again.json()["rewards"] == body["rewards"]

        with Session(db_engine) as s:
            player = s.get(Player, "p1")
            assert player.username == "Finn"
            assert player.coins == body["rewards"]["coins"]

        board = client.get("/api/leaderboards/all_time", headers=player_headers).json()
        assert board["user_rank"] == 1
        assert board["entries"][0]["score"] == 1310

    def test_duplicate_start_conflicts(self, client, player_headers):
        first = client.post("/api/sessions", json={}, headers=player_headers)
        resp = client.post("/api/sessions", json={}, headers=player_headers)
        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "failed-precondition"
        assert body["details"]["session_id"] == first.json()["session_id"]

    def test_rejected_checkpoint_is_400(self, client, player_headers):
        sid = client.post("/api/sessions", json={}, headers=player_headers).json()["session_id"]
        checkpoint = {"timestamp_ms": _now_ms() - 120_000, "score": 10}
        resp = client.post(f"/api/sessions/{sid}/checkpoints", json=checkpoint, headers=player_headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid-argument"

    def test_cheating_hides_detector(self, client, db_engine, player_headers):
        sid = client.post("/api/sessions", json={}, headers=player_headers).json()["session_id"]
        _backdate(db_engine, sid, 10)
        checkpoint = {"timestamp_ms": _now_ms(), "score": 5000, "items_collected": 500}
        resp = client.post(f"/api/sessions/{sid}/checkpoints", json=checkpoint, headers=player_headers)
        assert resp.status_code == 400
        assert resp.json() == {"error": "invalid-argument", "message": "Invalid game data"}

        banned = client.post("/api/sessions", json={}, headers=player_headers)
        assert banned.status_code == 403

    def test_other_players_session(self, client, player_headers):
        sid = client.post("/api/sessions", json={}, headers=player_headers).json()["session_id"]
        resp = client.post(
            f"/api/sessions/{sid}/end",
            json={"final_score": 0},
            headers=_auth(make_token("p2")),
        )
        assert resp.status_code == 403

    def test_unknown_session(self, client, player_headers):
        resp = client.post(
            "/api/sessions/nope/checkpoints",
            json={"timestamp_ms": _now_ms(), "score": 0},
            headers=player_headers,
        )
        assert resp.status_code == 404
        assert resp.json() == {"error": "not-found", "message": "Session not found"}

    def test_malformed_body(self, client, player_headers):
        resp = client.post(
            "/api/sessions/x/checkpoints",
            json={"score": 5},
            headers=player_headers,
        )
        assert resp.status_code == 422

    def test_negative_counters_are_flagged(self, client, db_engine, player_headers):
        sid = client.post("/api/sessions", json={}, headers=player_headers).json()["session_id"]
        resp = client.post(
            f"/api/sessions/{sid}/checkpoints",
            json={"timestamp_ms": _now_ms(), "score": 0, "coins": -5},
            headers=player_headers,
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "invalid-argument", "message": "Invalid game data"}

        with Session(db_engine) as s:
            kinds = [a.kind for a in s.query(SuspiciousActivity)]
            assert kinds == ["checkpoint_validation"]
            assert "MEMORY_CORRUPTION" in s.query(CheatDetection).one().flags


# ===========================================================================
# Leaderboards & spawn pool
# ===========================================================================
class TestReads:
    def test_leaderboard_unknown_period(self, client, player_headers):
        resp = client.get("/api/leaderboards/yearly", headers=player_headers)
        assert resp.status_code == 400

    def test_leaderboard_stats(self, client, player_headers):
        resp = client.get("/api/leaderboards/stats", headers=player_headers)
        assert resp.status_code == 200
        assert resp.json()["all_time"] == {"total_players": 0, "top_score": 0}

    def test_country_board_requires_country(self, client, player_headers):
        resp = client.get("/api/leaderboards/country", headers=player_headers)
        assert resp.status_code == 400
        ok = client.get("/api/leaderboards/country?country=IE", headers=player_headers)
        assert ok.status_code == 200
        assert ok.json()["entries"] == []

    def test_spawn_pool_lists_items(self, client, db_engine, player_headers):
        add_player(db_engine, "p1", vip_tier=3)
        body = client.get("/api/spawn/pool", headers=player_headers).json()
        assert set(body["items"]) == set(body["weights"])
        assert body["items"]["coin"]["rarity"] == "common"


# ===========================================================================
# Admin
# ===========================================================================
class TestAdmin:
    def _queue_detection(self, engine) -> int:
        add_player(engine, "cheater")
        with Session(engine) as s:
            row = CheatDetection(
                user_id="cheater", session_id="s1", flags=["BOT_INPUTS"],
                confidence=0.85, results=[], action="review",
                created_at=datetime.now(UTC),
            )
            s.add(row)
            s.commit()
            return row.id

    def test_review_and_ban(self, client, db_engine, admin_token):
        det = self._queue_detection(db_engine)
        pending = client.get("/api/admin/reviews", headers=_auth(admin_token)).json()
        assert [d["id"] for d in pending] == [det]

        resp = client.post(
            f"/api/admin/reviews/{det}/resolve",
            json={"resolution": "ban"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["resolution"] == "ban"

        again = client.post(
            f"/api/admin/reviews/{det}/resolve",
            json={"resolution": "ban"},
            headers=_auth(admin_token),
        )
        assert again.status_code == 409

        unban = client.post("/api/admin/players/cheater/unban", headers=_auth(admin_token))
        assert unban.json() == {"player_id": "cheater", "was_banned": True}

    def test_unknown_resolution(self, client, db_engine, admin_token):
        det = self._queue_detection(db_engine)
        resp = client.post(
            f"/api/admin/reviews/{det}/resolve",
            json={"resolution": "maybe"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 400
