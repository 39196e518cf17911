"""
potofgold.api.routes.spawn — Spawn pool for the client spawner
================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import Engine

from potofgold.api.deps import get_engine
from potofgold.api.rate_limit import rate_limited_player
from potofgold.database.engine import run_db
from potofgold.engine.items import ITEM_CATALOG
from potofgold.services import session_service

router = APIRouter(prefix="/spawn", tags=["spawn"])


@router.get("/pool")
async def spawn_pool(
    player: dict = Depends(rate_limited_player),
    engine: Engine = Depends(get_engine),
):
    """The caller's eligible items and their final weights."""
    pool = await run_db(session_service.get_player_spawn_pool, engine, player["sub"])
    pool["items"] = {key: ITEM_CATALOG[key].to_dict() for key in pool["weights"]}
    return pool
