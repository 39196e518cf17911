"""
potofgold.engine.spawner — Intelligent Item Spawner
====================================================

Picks the next falling item for a running round.  One
:class:`IntelligentSpawner` lives per round; it owns its random source and
its spawn history, so two rounds never share state.

Per call to :meth:`IntelligentSpawner.spawn_next_item`:

1. Derive a *dynamic* pool from the base :class:`SpawnPool` (combo chains,
   obstacle ramp, score milestones, repetition damping).
2. Check guarantees in priority order (VIP interval, pity, combo reward,
   periodic).  If one fires, pick uniformly from the forced candidates.
3. Otherwise draw by weight.
4. Record the spawn.
"""

from __future__ import annotations

import bisect
import enum
import itertools
import logging
import random
from collections import Counter, deque
from collections.abc import Mapping

from potofgold.engine.items import (
    ITEM_CATALOG,
    Category,
    ItemDefinition,
    Rarity,
    VipTier,
)
from potofgold.engine.profile import PlayerProfile, SpawnContext
from potofgold.engine.spawn_pool import SpawnPool

logger = logging.getLogger(__name__)

__all__ = ["ForcedReason", "IntelligentSpawner", "weighted_choice"]

# Dynamic-pool tuning
CHAIN_COMBO_THRESHOLD = 5
CHAIN_BOOST = 1.5
OBSTACLE_RAMP_PER_MINUTE = 0.1
OBSTACLE_RAMP_CAP = 2.0
SCORE_MILESTONE = 1000
SCORE_MILESTONE_BOOST = 0.1
RECENT_WINDOW = 5
RECENT_DAMPING = 0.3

# Guarantees
VIP_GUARANTEE_INTERVAL = 50
PITY_THRESHOLD = 100
COMBO_GUARANTEE = 20
PERIODIC_SECONDS = 60

FORCED_RARITIES = frozenset({Rarity.EPIC, Rarity.LEGENDARY, Rarity.MYTHIC})


class ForcedReason(enum.StrEnum):
    VIP = "vip"
    PITY = "pity"
    COMBO = "combo"
    PERIODIC = "periodic"


def weighted_choice(weights: Mapping[str, float], rng: random.Random) -> str | None:
    """Draw one key with probability proportional to its weight.

    Keys are sorted before accumulating so the draw never depends on
    mapping order.  Returns None when no key has a positive weight.
    """
    keys = sorted(key for key, w in weights.items() if w > 0)
    if not keys:
        return None
    cumulative = list(itertools.accumulate(weights[key] for key in keys))
    total = cumulative[-1]
    r = rng.random() * total
    idx = bisect.bisect_right(cumulative, r)
    return keys[min(idx, len(keys) - 1)]


class IntelligentSpawner:
    """Per-round spawner with pity and guarantee overrides.

    Usage::

        pool = build_spawn_pool(profile)
        spawner = IntelligentSpawner(pool, profile, rng=random.Random(seed))
        item = spawner.spawn_next_item(SpawnContext(combo_count=7,
                                                    elapsed_seconds=42.0,
                                                    score=1800))
    """

    def __init__(
        self,
        pool: SpawnPool,
        profile: PlayerProfile,
        catalog: Mapping[str, ItemDefinition] = ITEM_CATALOG,
        *,
        rng: random.Random | None = None,
    ) -> None:
        self.pool = pool
        self.profile = profile
        self.catalog = catalog
        self._rng = rng or random.Random()

        self._counts: Counter[str] = Counter()
        self._recent: deque[str] = deque(maxlen=RECENT_WINDOW)
        self._low_tier_run = 0
        self._last_periodic_minute = 0
        self._forced: Counter[str] = Counter()

    @property
    def total_spawns(self) -> int:
        return sum(self._counts.values())

    @property
    def low_tier_run(self) -> int:
        """Consecutive common/uncommon spawns since the last rare+ item."""
        return self._low_tier_run

    # -------------------------------------------------------------------
    # Step 1: dynamic pool
    # -------------------------------------------------------------------
    def dynamic_weights(self, context: SpawnContext) -> dict[str, float]:
        weights = dict(self.pool.weights)
        minutes = context.elapsed_seconds / 60.0
        obstacle_factor = min(1.0 + OBSTACLE_RAMP_PER_MINUTE * minutes, OBSTACLE_RAMP_CAP)
        milestone_factor = 1.0 + SCORE_MILESTONE_BOOST * (
            max(context.score, 0) // SCORE_MILESTONE
        )

        for key in weights:
            item = self.catalog[key]
            if context.combo_count > CHAIN_COMBO_THRESHOLD and item.chain_bonus:
                weights[key] *= CHAIN_BOOST
            if item.category == Category.OBSTACLE:
                weights[key] *= obstacle_factor
            if item.rarity >= Rarity.RARE:
                weights[key] *= milestone_factor

        for key in set(self._recent):
            if key in weights:
                weights[key] *= RECENT_DAMPING
        return weights

    # -------------------------------------------------------------------
    # Step 2: guarantees
    # -------------------------------------------------------------------
    def forced_reason(self, context: SpawnContext) -> ForcedReason | None:
        """Return the highest-priority guarantee that fires this tick."""
        upcoming = self.total_spawns + 1
        if (
            self.profile.vip_tier >= VipTier.GOLD
            and upcoming % VIP_GUARANTEE_INTERVAL == 0
        ):
            return ForcedReason.VIP
        if self._low_tier_run >= PITY_THRESHOLD:
            return ForcedReason.PITY
        if context.combo_count >= COMBO_GUARANTEE:
            return ForcedReason.COMBO
        minute = int(context.elapsed_seconds // PERIODIC_SECONDS)
        if minute > self._last_periodic_minute:
            return ForcedReason.PERIODIC
        return None

    def forced_candidates(self) -> list[str]:
        """VIP ∪ event pools, falling back to pooled epic+ then rare+ items."""
        candidates = list(dict.fromkeys(self.pool.vip_pool + self.pool.event_pool))
        if candidates:
            return candidates
        pooled = sorted(self.pool.weights)
        candidates = [k for k in pooled if self.catalog[k].rarity in FORCED_RARITIES]
        if candidates:
            return candidates
        return [k for k in pooled if self.catalog[k].rarity >= Rarity.RARE]

    # -------------------------------------------------------------------
    # Main entry point
    # -------------------------------------------------------------------
    def spawn_next_item(self, context: SpawnContext) -> ItemDefinition | None:
        """Return the next item to drop, or None when the pool is empty."""
        reason = self.forced_reason(context)
        if reason is ForcedReason.PERIODIC:
            self._last_periodic_minute = int(context.elapsed_seconds // PERIODIC_SECONDS)

        key: str | None = None
        if reason is not None:
            candidates = self.forced_candidates()
            if candidates:
                key = self._rng.choice(candidates)
                self._forced[reason.value] += 1
                logger.debug("Forced spawn (%s): %s", reason.value, key)

        if key is None:
            key = weighted_choice(self.dynamic_weights(context), self._rng)
        if key is None:
            return None

        item = self.catalog[key]
        self.record_spawn(item)
        return item

    def record_spawn(self, item: ItemDefinition) -> None:
        self._counts[item.key] += 1
        self._recent.append(item.key)
        if item.rarity <= Rarity.UNCOMMON:
            self._low_tier_run += 1
        else:
            self._low_tier_run = 0

    # -------------------------------------------------------------------
    # Analytics
    # -------------------------------------------------------------------
    def statistics(self) -> dict:
        by_rarity: Counter[str] = Counter()
        by_category: Counter[str] = Counter()
        vip_items = 0
        event_items = 0
        for key, count in self._counts.items():
            item = self.catalog[key]
            by_rarity[item.rarity.label] += count
            by_category[item.category.value] += count
            if item.vip_required > 0:
                vip_items += count
            if item.event is not None:
                event_items += count
        return {
            "total_spawns": self.total_spawns,
            "by_rarity": dict(by_rarity),
            "by_category": dict(by_category),
            "vip_items": vip_items,
            "event_items": event_items,
            "forced": dict(self._forced),
            "low_tier_run": self._low_tier_run,
        }

    def reset(self) -> None:
        self._counts.clear()
        self._recent.clear()
        self._forced.clear()
        self._low_tier_run = 0
        self._last_periodic_minute = 0
