"""
Pot of Gold — Server-Authoritative Backend for a Falling-Items Arcade Game
===========================================================================
Validates gameplay sessions, detects cheating, grants rewards, publishes
leaderboards, and decides which item falls next.

Package layout::

    potofgold/
    ├── config.py          # YAML → typed Python config
    ├── errors.py          # Error taxonomy (→ HTTP status codes)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default tuning settings
    ├── engine/
    │   ├── items.py       # Item catalog, rarity/VIP tables, event calendar
    │   ├── profile.py     # PlayerProfile + SpawnContext
    │   ├── spawn_pool.py  # Weighted spawn-pool builder
    │   ├── spawner.py     # Intelligent spawner (pity / guarantees)
    │   ├── checkpoints.py # Checkpoint validator
    │   ├── anti_cheat.py  # Seven cheat detectors + verdict aggregation
    │   ├── reward.py      # Coins / gems / XP calculation
    │   └── cache.py       # In-memory tuning settings cache
    ├── services/
    │   ├── session_service.py     # start / checkpoint / end session
    │   ├── security_service.py    # Detection log, bans, review queue
    │   ├── leaderboard_service.py # Multi-period ranked views
    │   ├── event_queue.py         # Batching analytics queue
    │   └── maintenance_service.py # Idle-session expiry + TTL sweep
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT auth + DB dependencies
        ├── rate_limit.py  # Sliding-window limiter
        └── routes/        # Session, leaderboard, spawn, admin endpoints
"""

__version__ = "0.1.0"
