"""
potofgold.api.routes.leaderboards — Leaderboard reads
=======================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import Engine

from potofgold.api.deps import get_cache, get_engine
from potofgold.api.rate_limit import rate_limited_player
from potofgold.database.engine import run_db
from potofgold.engine.cache import ConfigCache
from potofgold.services import leaderboard_service

router = APIRouter(prefix="/leaderboards", tags=["leaderboards"])


@router.get("/stats")
async def leaderboard_stats(
    player: dict = Depends(rate_limited_player),
    engine: Engine = Depends(get_engine),
):
    """Player count and top score of every global board."""
    return await run_db(leaderboard_service.get_leaderboard_stats, engine)


@router.get("/{period}")
async def get_leaderboard(
    period: str,
    offset: int = Query(0, ge=0),
    limit: int | None = Query(None, ge=1),
    country: str | None = Query(None, min_length=2, max_length=2),
    player: dict = Depends(rate_limited_player),
    engine: Engine = Depends(get_engine),
    cache: ConfigCache = Depends(get_cache),
):
    if limit is None:
        limit = cache.get_int("leaderboard.default_page_size", 50)
    return await run_db(
        leaderboard_service.get_leaderboard,
        engine, player["sub"], period,
        offset=offset, limit=limit, country=country,
    )
