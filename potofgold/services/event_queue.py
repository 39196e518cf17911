"""
potofgold.services.event_queue — Batching Analytics Queue
==========================================================

Buffers gameplay analytics events (``session_start``, ``session_end``,
``checkpoint_rejected`` …) in memory and writes them to ``game_events`` in
batches.

A flush happens when:
  * the buffer reaches ``max_batch`` events (size trigger, synchronous),
  * the background drain task ticks (every ``interval`` seconds),
  * :meth:`EventQueue.flush` is called explicitly (e.g. on shutdown).

Instances are created by the app lifespan and passed to the services that
emit events; there is no module-level queue.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import Engine

from potofgold.database.engine import get_session
from potofgold.database.models import GameEvent

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50
DEFAULT_FLUSH_INTERVAL = 10


@dataclass(frozen=True, slots=True)
class QueuedEvent:
    user_id: str
    event_type: str
    payload: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class EventQueue:
    """Thread-safe in-memory buffer flushed to ``game_events``."""

    def __init__(self, engine: Engine, *, max_batch: int = DEFAULT_BATCH_SIZE) -> None:
        self.engine = engine
        self.max_batch = max_batch
        self._buffer: list[QueuedEvent] = []
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._drain_task: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._buffer)

    def emit(self, user_id: str, event_type: str, payload: dict | None = None) -> None:
        """Queue one event; flushes synchronously once the batch is full.

        Never raises: a failed size-triggered flush is logged and the batch
        stays buffered for the next attempt.
        """
        with self._lock:
            self._buffer.append(QueuedEvent(user_id, event_type, payload or {}))
            full = len(self._buffer) >= self.max_batch
        if full:
            try:
                self.flush()
            except Exception:
                logger.exception("Analytics flush failed (%d events kept)", self.pending)

    def flush(self) -> int:
        """Write every buffered event.  Returns the number written.

        On a DB error the batch is put back at the head of the buffer and
        the error propagates.
        """
        with self._flush_lock:
            with self._lock:
                batch, self._buffer = self._buffer, []
            if not batch:
                return 0
            try:
                with get_session(self.engine) as session:
                    session.add_all([
                        GameEvent(
                            user_id=e.user_id,
                            event_type=e.event_type,
                            payload=e.payload,
                            created_at=e.created_at,
                        )
                        for e in batch
                    ])
            except Exception:
                with self._lock:
                    self._buffer[:0] = batch
                raise
        logger.debug("Flushed %d analytics events", len(batch))
        return len(batch)

    # -------------------------------------------------------------------
    # Background drain
    # -------------------------------------------------------------------
    def start(
        self,
        loop: asyncio.AbstractEventLoop,
        interval: float = DEFAULT_FLUSH_INTERVAL,
    ) -> None:
        """Start the periodic flush task."""
        if self._drain_task is not None:
            return

        async def _drain_loop() -> None:
            while True:
                await asyncio.sleep(interval)
                try:
                    await asyncio.to_thread(self.flush)
                except Exception:
                    logger.exception("Analytics flush error")

        self._drain_task = loop.create_task(_drain_loop(), name="event-queue-drain")

    def stop(self) -> None:
        """Cancel the drain task.  Call :meth:`flush` afterwards to drain."""
        if self._drain_task:
            self._drain_task.cancel()
            self._drain_task = None
