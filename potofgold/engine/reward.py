"""
potofgold.engine.reward — Session Reward Calculation
=====================================================

Pure calculation, no DB I/O.

Pipeline stages:
  final score → base coins/gems → combo → duration → perfect game → floor
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

COINS_PER_POINTS = 10
GEMS_PER_POINTS = 1000
XP_PER_POINTS = 5

# (min combo, coin multiplier, gem multiplier), highest first
COMBO_TIERS: tuple[tuple[int, float, float], ...] = (
    (50, 2.0, 1.5),
    (20, 1.5, 1.2),
    (10, 1.2, 1.0),
)
LONG_GAME_SECONDS = 300
LONG_GAME_COIN_BONUS = 1.3
PERFECT_MULTIPLIER = 2.0


@dataclass(frozen=True, slots=True)
class SessionStats:
    """Client-reported end-of-session statistics.

    ``missed_items`` and ``obstacles_hit`` are None when not reported; a
    game only counts as perfect when both are explicitly zero.
    """

    max_combo: int = 0
    items_collected: int = 0
    level: int = 1
    missed_items: int | None = None
    obstacles_hit: int | None = None

    @property
    def perfect(self) -> bool:
        return self.missed_items == 0 and self.obstacles_hit == 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionStats:
        def _opt(name: str) -> int | None:
            value = data.get(name)
            return None if value is None else int(value)

        return cls(
            max_combo=int(data.get("max_combo", 0)),
            items_collected=int(data.get("items_collected", 0)),
            level=int(data.get("level", 1)),
            missed_items=_opt("missed_items"),
            obstacles_hit=_opt("obstacles_hit"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_combo": self.max_combo,
            "items_collected": self.items_collected,
            "level": self.level,
            "missed_items": self.missed_items,
            "obstacles_hit": self.obstacles_hit,
        }


@dataclass(frozen=True, slots=True)
class RewardResult:
    coins: int = 0
    gems: int = 0
    xp: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"coins": self.coins, "gems": self.gems, "xp": self.xp}


def _floor(value: float) -> int:
    # Stacked float multipliers can land a hair under an integer.
    return math.floor(round(value, 6))


def calculate_rewards(
    final_score: int,
    stats: SessionStats,
    duration_seconds: float,
) -> RewardResult:
    """Compute the coins, gems and XP earned by a validated session.

    Multipliers stack multiplicatively and are floored once at the end.
    A negative score earns nothing.
    """
    score = max(final_score, 0)
    coins = float(score // COINS_PER_POINTS)
    gems = float(score // GEMS_PER_POINTS)

    for min_combo, coin_mult, gem_mult in COMBO_TIERS:
        if stats.max_combo >= min_combo:
            coins *= coin_mult
            gems *= gem_mult
            break

    if duration_seconds > LONG_GAME_SECONDS:
        coins *= LONG_GAME_COIN_BONUS

    if stats.perfect:
        coins *= PERFECT_MULTIPLIER
        gems *= PERFECT_MULTIPLIER

    result = RewardResult(
        coins=_floor(coins),
        gems=_floor(gems),
        xp=score // XP_PER_POINTS,
    )
    logger.debug(
        "Rewards for score=%d combo=%d duration=%.0fs perfect=%s → %s",
        final_score, stats.max_combo, duration_seconds, stats.perfect, result,
    )
    return result
