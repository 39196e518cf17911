"""
potofgold.engine.spawn_pool — Weighted Spawn-Pool Builder
=========================================================

Turns a :class:`PlayerProfile` plus the static item catalog into the map
of item key → effective weight that the spawner samples from.

Pipeline stages (applied in order):
  Gate → VIP → Event boost → Level bracket → Streak → Engagement → Drop ≤ 0

:func:`build_spawn_pool` is a pure function: the same profile, catalog
and day always produce the same pool.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime

from potofgold.engine.items import (
    EVENT_WEIGHT_BOOST,
    ITEM_CATALOG,
    LEVEL_RARITY_MODIFIERS,
    OBSTACLE_VIP_FACTOR,
    STREAK_RARE_BONUS,
    VIP_LEGENDARY_BONUS,
    VIP_SPAWN_POOLS,
    Category,
    Difficulty,
    ItemDefinition,
    Rarity,
    VipTier,
    active_events,
    floor_lookup,
    is_event_open,
)
from potofgold.engine.profile import PlayerProfile

logger = logging.getLogger(__name__)

__all__ = ["SpawnPool", "build_spawn_pool", "is_eligible"]

# Rarities boosted by retention and the hardcore preference
RARE_TIERS = frozenset({Rarity.RARE, Rarity.EPIC, Rarity.LEGENDARY, Rarity.MYTHIC})
# Rarities boosted by a login streak
STREAK_TIERS = frozenset({Rarity.RARE, Rarity.EPIC, Rarity.LEGENDARY})

RETENTION_TIERS = ((7, 1.2), (30, 1.5))
PURCHASER_PREMIUM_BOOST = 1.3
CASUAL_OBSTACLE_FACTOR = 0.5
CASUAL_POWERUP_FACTOR = 1.5
HARDCORE_OBSTACLE_FACTOR = 1.5
HARDCORE_RARE_FACTOR = 1.3
MIN_STREAK = 3


@dataclass(slots=True)
class SpawnPool:
    """Effective weights for one player, plus the forced-pick pools.

    Every value in ``weights`` is > 0; gated items are absent.
    """

    weights: dict[str, float] = field(default_factory=dict)
    vip_pool: tuple[str, ...] = ()
    event_pool: tuple[str, ...] = ()
    active_events: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.weights)

    def __contains__(self, key: object) -> bool:
        return key in self.weights

    @property
    def total_weight(self) -> float:
        return sum(self.weights.values())

    def to_dict(self) -> dict:
        return {
            "weights": dict(sorted(self.weights.items())),
            "vip_pool": list(self.vip_pool),
            "event_pool": list(self.event_pool),
            "active_events": list(self.active_events),
        }


# ---------------------------------------------------------------------------
# Stage 1: Gating
# ---------------------------------------------------------------------------
def is_eligible(item: ItemDefinition, profile: PlayerProfile, today: date) -> bool:
    """Return False when any gate (VIP, subscription, event, level) fails."""
    if item.vip_required > profile.vip_tier:
        return False
    if item.subscriber_only and not profile.is_subscriber:
        return False
    if item.event is not None and not is_event_open(item.event, today):
        return False
    return item.unlock_level <= profile.level


def _scale(weights: dict[str, float], keys, factor: float) -> None:
    for key in keys:
        weights[key] *= factor


# ---------------------------------------------------------------------------
# Full builder
# ---------------------------------------------------------------------------
def build_spawn_pool(
    profile: PlayerProfile,
    catalog: Mapping[str, ItemDefinition] = ITEM_CATALOG,
    *,
    today: date | None = None,
) -> SpawnPool:
    """Build the weighted spawn pool for *profile*.

    Parameters
    ----------
    profile : the player's read-only snapshot
    catalog : item key → definition (defaults to the built-in catalog)
    today : calendar day used for event windows (defaults to today, UTC)
    """
    if today is None:
        today = datetime.now(UTC).date()

    # 1. Gate
    items = {
        key: item for key, item in catalog.items() if is_eligible(item, profile, today)
    }
    weights = {key: float(item.spawn_weight) for key, item in items.items()}

    def where(predicate):
        return [key for key, item in items.items() if predicate(item)]

    # 2. VIP
    tier = profile.vip_tier
    if tier >= VipTier.BRONZE:
        bonus = floor_lookup(VIP_LEGENDARY_BONUS, tier, 1.0)
        _scale(weights, where(lambda i: i.rarity >= Rarity.LEGENDARY), bonus)
        _scale(weights, where(lambda i: i.category == Category.OBSTACLE), OBSTACLE_VIP_FACTOR)

    # 3. Event boost (additive)
    events = active_events(today)
    event_keys: list[str] = []
    for window in events:
        for key in window.items:
            if key in weights and key not in event_keys:
                weights[key] += EVENT_WEIGHT_BOOST
                event_keys.append(key)

    # 4. Level bracket
    modifiers = floor_lookup(LEVEL_RARITY_MODIFIERS, profile.level, {})
    for key, item in items.items():
        weights[key] *= modifiers.get(item.rarity, 1.0)

    # 5. Streak
    if profile.current_streak >= MIN_STREAK:
        rare_bonus = floor_lookup(STREAK_RARE_BONUS, profile.current_streak, 0.0)
        _scale(weights, where(lambda i: i.rarity in STREAK_TIERS), 1.0 + rare_bonus)

    # 6. Engagement
    engagement = profile.engagement
    rare_keys = where(lambda i: i.rarity in RARE_TIERS)
    for min_days, factor in RETENTION_TIERS:
        if engagement.retention_days >= min_days:
            _scale(weights, rare_keys, factor)
    if engagement.purchase_history > 0:
        _scale(weights, where(lambda i: i.gem_value > 0), PURCHASER_PREMIUM_BOOST)

    obstacles = where(lambda i: i.category == Category.OBSTACLE)
    if profile.preferred_difficulty == Difficulty.CASUAL:
        _scale(weights, obstacles, CASUAL_OBSTACLE_FACTOR)
        _scale(weights, where(lambda i: i.category == Category.POWERUP), CASUAL_POWERUP_FACTOR)
    elif profile.preferred_difficulty == Difficulty.HARDCORE:
        _scale(weights, obstacles, HARDCORE_OBSTACLE_FACTOR)
        _scale(weights, rare_keys, HARDCORE_RARE_FACTOR)

    # 7. Drop non-positive entries
    weights = {key: w for key, w in weights.items() if w > 0}

    vip_pool = tuple(
        key for key in floor_lookup(VIP_SPAWN_POOLS, tier, ()) if key in weights
    )
    pool = SpawnPool(
        weights=weights,
        vip_pool=vip_pool,
        event_pool=tuple(key for key in event_keys if key in weights),
        active_events=tuple(w.name for w in events),
    )
    logger.debug(
        "Built spawn pool: %d items, total weight %.2f (level=%d vip=%d events=%s)",
        len(pool), pool.total_weight, profile.level, tier, pool.active_events,
    )
    return pool
