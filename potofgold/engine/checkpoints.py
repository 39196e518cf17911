"""
potofgold.engine.checkpoints — Checkpoint Model & Validator
============================================================

A checkpoint is a periodic snapshot of in-progress game state sent by the
client.  :func:`validate_checkpoint` enforces the three acceptance rules:

* the client timestamp is within 60 s of server time,
* score, coins and gems never go down,
* the score grows by at most 1000 points per second (the first checkpoint
  is measured on server time since session start).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from potofgold.errors import InvalidArgument

logger = logging.getLogger(__name__)

MAX_CLOCK_SKEW_MS = 60_000
MAX_SCORE_RATE = 1000  # points per second


@dataclass(frozen=True, slots=True)
class ItemCollection:
    item_type: str
    perfect: bool = False


@dataclass(frozen=True, slots=True)
class InputEvent:
    timestamp_ms: int
    x: float
    y: float


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """One client-reported game-state snapshot (timestamps in epoch ms)."""

    timestamp_ms: int
    score: int
    coins: int = 0
    gems: int = 0
    level: int = 1
    items_collected: int = 0
    reaction_times: tuple[float, ...] = ()
    item_collections: tuple[ItemCollection, ...] = ()
    input_events: tuple[InputEvent, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Checkpoint:
        return cls(
            timestamp_ms=int(data["timestamp_ms"]),
            score=int(data["score"]),
            coins=int(data.get("coins", 0)),
            gems=int(data.get("gems", 0)),
            level=int(data.get("level", 1)),
            items_collected=int(data.get("items_collected", 0)),
            reaction_times=tuple(float(t) for t in data.get("reaction_times", ())),
            item_collections=tuple(
                ItemCollection(c["item_type"], bool(c.get("perfect", False)))
                for c in data.get("item_collections", ())
            ),
            input_events=tuple(
                InputEvent(int(e["timestamp_ms"]), float(e["x"]), float(e["y"]))
                for e in data.get("input_events", ())
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp_ms": self.timestamp_ms,
            "score": self.score,
            "coins": self.coins,
            "gems": self.gems,
            "level": self.level,
            "items_collected": self.items_collected,
            "reaction_times": list(self.reaction_times),
            "item_collections": [
                {"item_type": c.item_type, "perfect": c.perfect}
                for c in self.item_collections
            ],
            "input_events": [
                {"timestamp_ms": e.timestamp_ms, "x": e.x, "y": e.y}
                for e in self.input_events
            ],
        }


def _reject(reason: str, checkpoint: Checkpoint, **context) -> InvalidArgument:
    logger.warning(
        "Checkpoint rejected: %s (score=%d ts=%d)",
        reason, checkpoint.score, checkpoint.timestamp_ms,
        extra={"rule": reason, **context},
    )
    return InvalidArgument("Invalid checkpoint", rule=reason)


def validate_checkpoint(
    checkpoint: Checkpoint,
    previous: Checkpoint | None,
    *,
    now_ms: int,
    session_elapsed_ms: int | None = None,
) -> Checkpoint:
    """Return *checkpoint* unchanged if it is acceptable after *previous*.

    *previous* is the last accepted checkpoint, or ``None`` for the first
    one.  The first checkpoint's rate is measured on server time only
    (*session_elapsed_ms* since the session started), never against the
    client clock.

    Raises
    ------
    InvalidArgument
        On clock skew, a decreasing counter, or an impossible score rate.
    """
    skew = abs(now_ms - checkpoint.timestamp_ms)
    if skew > MAX_CLOCK_SKEW_MS:
        raise _reject("timestamp_out_of_range", checkpoint, skew_ms=skew)

    if previous is None:
        if session_elapsed_ms is not None and checkpoint.score > 0:
            elapsed = session_elapsed_ms / 1000.0
            if elapsed <= 0 or checkpoint.score / elapsed > MAX_SCORE_RATE:
                raise _reject(
                    "score_rate_exceeded", checkpoint,
                    delta=checkpoint.score, elapsed_s=elapsed,
                )
        return checkpoint

    for name in ("score", "coins", "gems"):
        if getattr(checkpoint, name) < getattr(previous, name):
            raise _reject(
                f"{name}_decreased", checkpoint,
                previous=getattr(previous, name), current=getattr(checkpoint, name),
            )

    delta = checkpoint.score - previous.score
    elapsed = (checkpoint.timestamp_ms - previous.timestamp_ms) / 1000.0
    if delta > 0:
        if elapsed <= 0 or delta / elapsed > MAX_SCORE_RATE:
            raise _reject("score_rate_exceeded", checkpoint, delta=delta, elapsed_s=elapsed)

    return checkpoint
