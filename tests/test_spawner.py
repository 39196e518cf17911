"""
tests/test_spawner.py — Intelligent Spawner Tests
===================================================
Weighted fairness, dynamic adjustments, guarantees and pity.
"""

from __future__ import annotations

import random
from collections import Counter
from datetime import date

import pytest

from potofgold.engine.items import ITEM_CATALOG, VipTier
from potofgold.engine.profile import PlayerProfile, SpawnContext
from potofgold.engine.spawn_pool import SpawnPool, build_spawn_pool
from potofgold.engine.spawner import (
    FORCED_RARITIES,
    PITY_THRESHOLD,
    ForcedReason,
    IntelligentSpawner,
    weighted_choice,
)

QUIET_DAY = date(2025, 4, 15)
CALM = SpawnContext(combo_count=0, elapsed_seconds=0.0, score=0)


def _spawner(seed: int = 7, **profile) -> IntelligentSpawner:
    p = PlayerProfile(**profile)
    return IntelligentSpawner(
        build_spawn_pool(p, today=QUIET_DAY), p, rng=random.Random(seed),
    )


class TestWeightedChoice:
    def test_distribution_matches_weights(self):
        weights = {"a": 1.0, "b": 2.0, "c": 7.0}
        rng = random.Random(42)
        draws = 100_000
        counts = Counter(weighted_choice(weights, rng) for _ in range(draws))

        total = sum(weights.values())
        chi_square = sum(
            (counts[k] - draws * w / total) ** 2 / (draws * w / total)
            for k, w in weights.items()
        )
        # df = 2, p = 0.001
        assert chi_square < 13.82

    def test_ignores_non_positive_weights(self):
        rng = random.Random(1)
        picks = {weighted_choice({"a": 0.0, "b": -1.0, "c": 1.0}, rng) for _ in range(50)}
        assert picks == {"c"}

    def test_empty_returns_none(self):
        assert weighted_choice({}, random.Random(1)) is None

    def test_independent_of_mapping_order(self):
        forward = {"a": 1.0, "b": 2.0, "c": 3.0}
        backward = dict(reversed(list(forward.items())))
        for seed in range(20):
            assert weighted_choice(forward, random.Random(seed)) == weighted_choice(
                backward, random.Random(seed)
            )


class TestDynamicWeights:
    def test_combo_boosts_chain_items(self):
        spawner = _spawner()
        base = spawner.pool.weights["coin"]
        weights = spawner.dynamic_weights(SpawnContext(combo_count=6))
        assert weights["coin"] == pytest.approx(base * 1.5)
        assert weights["magnet"] == pytest.approx(spawner.pool.weights["magnet"])

    def test_obstacle_ramp_is_capped(self):
        spawner = _spawner()
        base = spawner.pool.weights["rock"]
        assert spawner.dynamic_weights(SpawnContext(elapsed_seconds=300))["rock"] == (
            pytest.approx(base * 1.5)
        )
        assert spawner.dynamic_weights(SpawnContext(elapsed_seconds=3600))["rock"] == (
            pytest.approx(base * 2.0)
        )

    def test_score_milestones_boost_rare_items(self):
        spawner = _spawner()
        base = spawner.pool.weights["goldCoin"]
        weights = spawner.dynamic_weights(SpawnContext(score=2500))
        assert weights["goldCoin"] == pytest.approx(base * 1.2)
        assert weights["coin"] == pytest.approx(spawner.pool.weights["coin"])

    def test_recent_items_are_damped(self):
        spawner = _spawner()
        spawner.record_spawn(ITEM_CATALOG["coin"])
        weights = spawner.dynamic_weights(CALM)
        assert weights["coin"] == pytest.approx(spawner.pool.weights["coin"] * 0.3)

    def test_base_pool_is_not_mutated(self):
        spawner = _spawner()
        before = dict(spawner.pool.weights)
        spawner.dynamic_weights(SpawnContext(combo_count=10, elapsed_seconds=900, score=5000))
        assert spawner.pool.weights == before


class TestGuarantees:
    def test_pity_forces_epic_or_better(self):
        spawner = _spawner()
        for _ in range(PITY_THRESHOLD):
            spawner.record_spawn(ITEM_CATALOG["coin"])
        assert spawner.forced_reason(CALM) is ForcedReason.PITY

        item = spawner.spawn_next_item(CALM)
        assert item.rarity in FORCED_RARITIES
        assert spawner.low_tier_run == 0

    def test_rare_spawn_resets_low_tier_run(self):
        spawner = _spawner()
        for _ in range(40):
            spawner.record_spawn(ITEM_CATALOG["silverCoin"])
        spawner.record_spawn(ITEM_CATALOG["goldCoin"])
        assert spawner.low_tier_run == 0

    def test_vip_guarantee_every_fiftieth_spawn(self):
        spawner = _spawner(vip_tier=VipTier.GOLD)
        for _ in range(49):
            spawner.record_spawn(ITEM_CATALOG["coin"])
        assert spawner.forced_reason(CALM) is ForcedReason.VIP
        assert spawner.spawn_next_item(CALM).key == "vipCrown"

    def test_low_vip_gets_no_vip_guarantee(self):
        spawner = _spawner(vip_tier=VipTier.BRONZE)
        for _ in range(49):
            spawner.record_spawn(ITEM_CATALOG["coin"])
        assert spawner.forced_reason(CALM) is None

    def test_combo_guarantee(self):
        assert _spawner().forced_reason(SpawnContext(combo_count=20)) is ForcedReason.COMBO

    def test_periodic_fires_once_per_minute(self):
        spawner = _spawner()
        first = SpawnContext(elapsed_seconds=61)
        assert spawner.forced_reason(first) is ForcedReason.PERIODIC
        spawner.spawn_next_item(first)
        assert spawner.forced_reason(SpawnContext(elapsed_seconds=62)) is None
        assert spawner.forced_reason(SpawnContext(elapsed_seconds=121)) is ForcedReason.PERIODIC

    def test_forced_candidates_prefer_vip_and_event_pools(self):
        pool = SpawnPool(
            weights={"coin": 1.0, "vipCrown": 1.0, "snowflake": 1.0},
            vip_pool=("vipCrown",),
            event_pool=("snowflake",),
        )
        spawner = IntelligentSpawner(pool, PlayerProfile(), rng=random.Random(3))
        assert spawner.forced_candidates() == ["vipCrown", "snowflake"]

    def test_forced_candidates_fall_back_to_rare(self):
        pool = SpawnPool(weights={"coin": 1.0, "goldCoin": 1.0})
        spawner = IntelligentSpawner(pool, PlayerProfile(), rng=random.Random(3))
        assert spawner.forced_candidates() == ["goldCoin"]


class TestSpawnerState:
    def test_empty_pool_spawns_nothing(self):
        spawner = IntelligentSpawner(SpawnPool(), PlayerProfile(), rng=random.Random(1))
        assert spawner.spawn_next_item(CALM) is None

    def test_seeded_spawners_are_reproducible(self):
        a, b = _spawner(seed=11), _spawner(seed=11)
        ctx = SpawnContext(combo_count=3, elapsed_seconds=30, score=400)
        assert [a.spawn_next_item(ctx).key for _ in range(200)] == [
            b.spawn_next_item(ctx).key for _ in range(200)
        ]

    def test_statistics_and_reset(self):
        spawner = _spawner()
        for _ in range(30):
            spawner.spawn_next_item(CALM)
        stats = spawner.statistics()
        assert stats["total_spawns"] == 30
        assert sum(stats["by_rarity"].values()) == 30
        assert sum(stats["by_category"].values()) == 30

        spawner.reset()
        assert spawner.total_spawns == 0
        assert spawner.statistics()["by_rarity"] == {}

    def test_spawns_only_pooled_items(self):
        spawner = _spawner(level=3)
        for _ in range(500):
            item = spawner.spawn_next_item(SpawnContext(elapsed_seconds=10))
            assert item.key in spawner.pool
            assert item.unlock_level <= 3
