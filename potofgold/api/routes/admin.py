"""
potofgold.api.routes.admin — Cheat review queue & bans
========================================================

Every endpoint requires an admin JWT (``is_admin`` claim).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import Engine

from potofgold.api.deps import get_cache, get_engine
from potofgold.api.rate_limit import rate_limited_admin
from potofgold.database.engine import run_db
from potofgold.engine.cache import ConfigCache
from potofgold.services import security_service

router = APIRouter(prefix="/admin", tags=["admin"])


class ReviewResolve(BaseModel):
    resolution: str  # dismiss | confirm | ban


@router.get("/reviews")
async def list_reviews(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: dict = Depends(rate_limited_admin),
    engine: Engine = Depends(get_engine),
):
    """Unreviewed cheat detections, oldest first."""
    return await run_db(
        security_service.list_pending_reviews, engine, limit=limit, offset=offset,
    )


@router.post("/reviews/{detection_id}/resolve")
async def resolve_review(
    detection_id: int,
    body: ReviewResolve,
    admin: dict = Depends(rate_limited_admin),
    engine: Engine = Depends(get_engine),
    cache: ConfigCache = Depends(get_cache),
):
    return await run_db(
        security_service.resolve_review,
        engine, detection_id, body.resolution,
        admin_id=admin["sub"],
        ban_hours=cache.get_int("security.ban_hours", security_service.DEFAULT_BAN_HOURS),
    )


@router.post("/players/{player_id}/unban")
async def unban_player(
    player_id: str,
    admin: dict = Depends(rate_limited_admin),
    engine: Engine = Depends(get_engine),
):
    return await run_db(security_service.unban_player, engine, player_id, admin_id=admin["sub"])
