"""
potofgold.api.routes.sessions — Game session endpoints
========================================================

``POST /sessions``                      start a session
``POST /sessions/{session_id}/checkpoints``  submit a checkpoint
``POST /sessions/{session_id}/end``     end a session, claim rewards
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from potofgold.api.deps import get_cache, get_engine, get_event_queue
from potofgold.api.rate_limit import rate_limited_player
from potofgold.database.engine import run_db
from potofgold.engine.cache import ConfigCache
from potofgold.engine.checkpoints import Checkpoint
from potofgold.engine.reward import SessionStats
from potofgold.services import session_service
from potofgold.services.event_queue import EventQueue

router = APIRouter(prefix="/sessions", tags=["sessions"])


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class SessionStart(BaseModel):
    platform: str = "unknown"
    device_fingerprint: str | None = None
    username: str | None = Field(default=None, max_length=64)


class ItemCollectionIn(BaseModel):
    item_type: str
    perfect: bool = False


class InputEventIn(BaseModel):
    timestamp_ms: int
    x: float = 0.0
    y: float = 0.0


class CheckpointIn(BaseModel):
    timestamp_ms: int
    # Negative counters reach the memory-manipulation detector
    score: int
    coins: int = 0
    gems: int = 0
    level: int = Field(default=1, ge=1)
    items_collected: int = Field(default=0, ge=0)
    reaction_times: list[float] = Field(default_factory=list)
    item_collections: list[ItemCollectionIn] = Field(default_factory=list)
    input_events: list[InputEventIn] = Field(default_factory=list)


class SessionStatsIn(BaseModel):
    max_combo: int = Field(default=0, ge=0)
    items_collected: int = Field(default=0, ge=0)
    level: int = Field(default=1, ge=1)
    missed_items: int | None = Field(default=None, ge=0)
    obstacles_hit: int | None = Field(default=None, ge=0)


class SessionEnd(BaseModel):
    final_score: int = Field(ge=0)
    stats: SessionStatsIn = Field(default_factory=SessionStatsIn)
    idempotency_key: str | None = Field(default=None, max_length=64)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.post("")
async def start_session(
    request: Request,
    body: SessionStart,
    player: dict = Depends(rate_limited_player),
    engine: Engine = Depends(get_engine),
    cache: ConfigCache = Depends(get_cache),
    events: EventQueue | None = Depends(get_event_queue),
):
    return await run_db(
        session_service.start_session,
        engine, cache, player["sub"],
        platform=body.platform,
        client_ip=request.client.host if request.client else None,
        device_fingerprint=body.device_fingerprint,
        username=body.username or player.get("username"),
        events=events,
    )


@router.post("/{session_id}/checkpoints")
async def submit_checkpoint(
    session_id: str,
    body: CheckpointIn,
    player: dict = Depends(rate_limited_player),
    engine: Engine = Depends(get_engine),
    cache: ConfigCache = Depends(get_cache),
    events: EventQueue | None = Depends(get_event_queue),
):
    return await run_db(
        session_service.submit_checkpoint,
        engine, cache, player["sub"], session_id,
        Checkpoint.from_dict(body.model_dump()),
        events=events,
    )


@router.post("/{session_id}/end")
async def end_session(
    session_id: str,
    body: SessionEnd,
    player: dict = Depends(rate_limited_player),
    engine: Engine = Depends(get_engine),
    cache: ConfigCache = Depends(get_cache),
    events: EventQueue | None = Depends(get_event_queue),
):
    return await run_db(
        session_service.end_session,
        engine, cache, player["sub"], session_id,
        body.final_score,
        SessionStats.from_dict(body.stats.model_dump()),
        idempotency_key=body.idempotency_key,
        events=events,
    )
