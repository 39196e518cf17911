"""
tests/test_maintenance.py — Periodic Housekeeping Tests
=========================================================
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

from sqlalchemy.orm import Session

from conftest import NOW, add_player
from potofgold.database.models import GameSession, LeaderboardEntry, SessionStatus
from potofgold.services.leaderboard_service import update_leaderboards
from potofgold.services.maintenance_service import (
    MaintenanceLoop,
    expire_idle_sessions,
    run_maintenance,
)


def _add_session(engine, session_id: str, last_update, status=SessionStatus.ACTIVE) -> None:
    with Session(engine) as s:
        s.add(GameSession(
            id=session_id,
            user_id="p1",
            status=status.value,
            started_at=last_update,
            last_update=last_update,
            server_seed="seed",
        ))
        s.commit()


class TestExpireIdleSessions:
    def test_only_idle_active_sessions_expire(self, db_engine):
        add_player(db_engine)
        _add_session(db_engine, "idle", NOW - timedelta(hours=7))
        _add_session(db_engine, "live", NOW - timedelta(hours=1))
        _add_session(db_engine, "done", NOW - timedelta(days=2), SessionStatus.COMPLETED)

        assert expire_idle_sessions(db_engine, now=NOW) == 1
        with Session(db_engine) as s:
            idle = s.get(GameSession, "idle")
            assert idle.status == SessionStatus.INVALIDATED.value
            assert idle.end_reason == "idle_timeout"
            assert s.get(GameSession, "live").status == SessionStatus.ACTIVE.value
            assert s.get(GameSession, "done").status == SessionStatus.COMPLETED.value

    def test_custom_timeout(self, db_engine):
        add_player(db_engine)
        _add_session(db_engine, "s1", NOW - timedelta(hours=2))
        assert expire_idle_sessions(db_engine, idle_hours=1, now=NOW) == 1
        assert expire_idle_sessions(db_engine, idle_hours=1, now=NOW) == 0


class TestRunMaintenance:
    def test_runs_both_jobs(self, db_engine, cache):
        add_player(db_engine)
        _add_session(db_engine, "idle", NOW - timedelta(hours=7))
        update_leaderboards(db_engine, "p1", 100, now=NOW - timedelta(days=2))

        summary = run_maintenance(db_engine, cache, now=NOW)
        assert summary == {"sessions_expired": 1, "leaderboard_purged": 1}
        with Session(db_engine) as s:
            keys = {e.board_key for e in s.query(LeaderboardEntry)}
        assert "daily:2025-03-12" not in keys
        assert "all_time" in keys


class TestMaintenanceLoop:
    def test_start_stop(self, db_engine, cache):
        loop_runner = MaintenanceLoop(db_engine, cache, interval=3600)

        async def _run():
            loop_runner.start(asyncio.get_running_loop())
            assert loop_runner.running
            loop_runner.stop()
            assert not loop_runner.running

        asyncio.run(_run())
