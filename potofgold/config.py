"""
potofgold.config — YAML Configuration Loader
=============================================

Reads ``config.yaml`` for **infrastructure-only** settings (service name,
CORS origins, background-task intervals).  Gameplay tuning lives in the
``settings`` database table and is read through
:class:`~potofgold.engine.cache.ConfigCache`.

Usage::

    from potofgold.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.game_name)         # "Pot of Gold"
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass(frozen=True, slots=True)
class GameConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    game_name: str
    api_port: int

    # Background work
    maintenance_interval_seconds: int = 300
    event_flush_interval_seconds: int = 10
    event_batch_size: int = 50

    cors_origins: tuple[str, ...] = field(default_factory=tuple)


def load_config(path: str | Path = "config.yaml") -> GameConfig:
    """Read *path* and return a :class:`GameConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return GameConfig(
        game_name=raw["game_name"],
        api_port=int(raw["api_port"]),
        maintenance_interval_seconds=int(raw.get("maintenance_interval_seconds", 300)),
        event_flush_interval_seconds=int(raw.get("event_flush_interval_seconds", 10)),
        event_batch_size=int(raw.get("event_batch_size", 50)),
        cors_origins=tuple(
            str(o).rstrip("/") for o in raw.get("cors_origins") or ()
        ),
    )
