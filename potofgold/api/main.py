"""
potofgold.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn potofgold.api.main:app --reload --port 8000
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from potofgold.api.deps import get_engine  # noqa: E402
from potofgold.api.rate_limit import configure_rate_limiter  # noqa: E402
from potofgold.api.routes.admin import router as admin_router  # noqa: E402
from potofgold.api.routes.leaderboards import router as leaderboards_router  # noqa: E402
from potofgold.api.routes.sessions import router as sessions_router  # noqa: E402
from potofgold.api.routes.spawn import router as spawn_router  # noqa: E402
from potofgold.config import GameConfig, load_config  # noqa: E402
from potofgold.database.engine import init_db  # noqa: E402
from potofgold.engine.cache import ConfigCache  # noqa: E402
from potofgold.errors import GameError, ResourceExhausted  # noqa: E402
from potofgold.services.event_queue import EventQueue  # noqa: E402
from potofgold.services.maintenance_service import MaintenanceLoop  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def _load_config() -> GameConfig:
    """Read ``config.yaml`` if present, otherwise run on defaults."""
    path = os.getenv("POTOFGOLD_CONFIG", "config.yaml")
    try:
        return load_config(path)
    except FileNotFoundError:
        logger.warning("No %s found, using built-in defaults", path)
        return GameConfig(game_name="Pot of Gold", api_port=8000)


def _cors_origins(config: GameConfig) -> list[str]:
    """CORS_ALLOW_ORIGINS (comma-separated) wins over config.yaml."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]
    return list(config.cors_origins)


config = _load_config()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — engine, caches, background loops."""
    engine = get_engine()
    init_db(engine)

    cache = ConfigCache(engine)
    cache.load_all()
    configure_rate_limiter(engine=engine, cache=cache)

    loop = asyncio.get_running_loop()
    events = EventQueue(
        engine, max_batch=cache.get_int("events.batch_size", config.event_batch_size),
    )
    events.start(loop, interval=config.event_flush_interval_seconds)
    maintenance = MaintenanceLoop(engine, cache, interval=config.maintenance_interval_seconds)
    maintenance.start(loop)

    app.state.cache = cache
    app.state.events = events
    logger.info("%s API started — engine ready (%s)", config.game_name, engine.url.database)
    yield

    maintenance.stop()
    events.stop()
    try:
        await asyncio.to_thread(events.flush)
    except Exception:
        logger.exception("Final analytics flush failed (%d events dropped)", events.pending)
    logger.info("%s API shutting down", config.game_name)


app = FastAPI(
    title="Pot of Gold Game API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(config),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GameError)
async def game_error_handler(request: Request, exc: GameError) -> JSONResponse:
    headers = None
    if isinstance(exc, ResourceExhausted):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


# Mount routers
app.include_router(sessions_router, prefix="/api")
app.include_router(leaderboards_router, prefix="/api")
app.include_router(spawn_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
