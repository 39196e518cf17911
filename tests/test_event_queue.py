"""
tests/test_event_queue.py — Analytics Event Queue Tests
=========================================================
"""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from potofgold.database.models import GameEvent
from potofgold.services import event_queue as eq_mod
from potofgold.services.event_queue import EventQueue


def _stored(engine) -> list[GameEvent]:
    with Session(engine) as s:
        return s.scalars(select(GameEvent).order_by(GameEvent.id)).all()


class TestEventQueue:
    def test_emit_buffers_until_flush(self, db_engine):
        queue = EventQueue(db_engine, max_batch=10)
        queue.emit("p1", "session_start", {"session_id": "s1"})
        queue.emit("p1", "session_end")
        assert queue.pending == 2
        assert _stored(db_engine) == []

        assert queue.flush() == 2
        assert queue.pending == 0
        rows = _stored(db_engine)
        assert [r.event_type for r in rows] == ["session_start", "session_end"]
        assert rows[0].payload == {"session_id": "s1"}
        assert rows[1].payload == {}

    def test_full_batch_flushes_synchronously(self, db_engine):
        queue = EventQueue(db_engine, max_batch=3)
        for i in range(3):
            queue.emit("p1", "tick", {"i": i})
        assert queue.pending == 0
        assert len(_stored(db_engine)) == 3

    def test_empty_flush_is_noop(self, db_engine):
        assert EventQueue(db_engine).flush() == 0

    def test_failed_flush_requeues_batch(self, db_engine):
        queue = EventQueue(db_engine, max_batch=100)
        queue.emit("p1", "a")
        queue.emit("p1", "b")

        with patch.object(eq_mod, "get_session", side_effect=RuntimeError("db down")):
            with pytest.raises(RuntimeError):
                queue.flush()
        assert queue.pending == 2

        queue.emit("p1", "c")
        queue.flush()
        assert [r.event_type for r in _stored(db_engine)] == ["a", "b", "c"]

    def test_size_triggered_flush_failure_is_contained(self, db_engine):
        queue = EventQueue(db_engine, max_batch=2)
        queue.emit("p1", "a")
        with patch.object(eq_mod, "get_session", side_effect=RuntimeError("db down")):
            queue.emit("p1", "b")
        assert queue.pending == 2

        queue.flush()
        assert [r.event_type for r in _stored(db_engine)] == ["a", "b"]

    def test_emit_on_unreachable_store(self):
        queue = EventQueue(create_engine("sqlite://"), max_batch=1)
        queue.emit("p1", "session_end", {"session_id": "s1"})
        queue.emit("p1", "session_end", {"session_id": "s2"})
        assert queue.pending == 2

    def test_drain_task_start_stop(self, db_engine):
        queue = EventQueue(db_engine)

        async def _run():
            queue.start(asyncio.get_running_loop(), interval=3600)
            task = queue._drain_task
            assert task is not None
            queue.start(asyncio.get_running_loop())
            assert queue._drain_task is task
            queue.stop()
            assert queue._drain_task is None

        asyncio.run(_run())
