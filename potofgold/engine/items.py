"""
potofgold.engine.items — Item Catalog & Spawn Tuning Tables
============================================================

The static catalog of everything that can fall from the sky, plus the
lookup tables the spawn-pool builder applies on top of base weights:

* level-bracket rarity modifiers,
* VIP legendary bonuses and VIP-exclusive spawn pools,
* login-streak rare bonuses,
* the seasonal event calendar.

Everything here is defined once at import time and never mutated.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from types import MappingProxyType

__all__ = [
    "Category",
    "Difficulty",
    "EVENT_CALENDAR",
    "EventWindow",
    "ITEM_CATALOG",
    "ItemDefinition",
    "LEVEL_RARITY_MODIFIERS",
    "Rarity",
    "STREAK_RARE_BONUS",
    "VIP_LEGENDARY_BONUS",
    "VIP_SPAWN_POOLS",
    "VipTier",
    "active_events",
    "is_event_open",
    "floor_lookup",
]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Rarity(enum.IntEnum):
    """Ordered rarity tiers, common → cosmic."""
    COMMON = 0
    UNCOMMON = 1
    RARE = 2
    EPIC = 3
    LEGENDARY = 4
    MYTHIC = 5
    EXCLUSIVE = 6
    COSMIC = 7

    @property
    def label(self) -> str:
        return self.name.lower()


class Category(enum.StrEnum):
    CURRENCY = "currency"
    POWERUP = "powerup"
    MULTIPLIER = "multiplier"
    SPECIAL = "special"
    OBSTACLE = "obstacle"
    VIP = "vip"
    SEASONAL = "seasonal"
    COLLECTION = "collection"
    MYSTERY = "mystery"
    LEGENDARY = "legendary"


class VipTier(enum.IntEnum):
    """Loyalty tiers unlocked by cumulative spend."""
    NONE = 0
    BRONZE = 1
    SILVER = 2
    GOLD = 3
    PLATINUM = 4
    DIAMOND = 5
    MASTER = 6
    GRANDMASTER = 7
    LEGENDARY = 8
    MYTHIC = 9
    ETERNAL = 10


class Difficulty(enum.StrEnum):
    CASUAL = "casual"
    NORMAL = "normal"
    HARDCORE = "hardcore"


# ---------------------------------------------------------------------------
# ItemDefinition: one immutable catalog entry
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ItemDefinition:
    """A falling item.

    ``spawn_weight`` is a relative likelihood.  Seasonal items ship with a
    weight of 0 and only become spawnable through the active-event boost.
    """

    key: str
    category: Category
    rarity: Rarity
    score_value: int
    coin_value: int
    spawn_weight: float
    gem_value: int = 0
    fall_speed: float = 1.0

    # Gating
    vip_required: int = 0
    unlock_level: int = 0
    event: str | None = None
    subscriber_only: bool = False

    chain_bonus: bool = False
    collection_set: str | None = None

    def to_dict(self) -> dict:
        return {
            "type": self.key,
            "category": self.category.value,
            "rarity": self.rarity.label,
            "score_value": self.score_value,
            "coin_value": self.coin_value,
            "gem_value": self.gem_value,
            "fall_speed": self.fall_speed,
            "spawn_weight": self.spawn_weight,
        }


def _catalog(*items: ItemDefinition) -> Mapping[str, ItemDefinition]:
    by_key: dict[str, ItemDefinition] = {}
    for item in items:
        if item.key in by_key:
            raise ValueError(f"Duplicate item key in catalog: {item.key!r}")
        by_key[item.key] = item
    return MappingProxyType(by_key)


_C = Category
_R = Rarity

ITEM_CATALOG: Mapping[str, ItemDefinition] = _catalog(
    # Basic currency
    ItemDefinition("coin", _C.CURRENCY, _R.COMMON, 1, 1, 30, chain_bonus=True),
    ItemDefinition("silverCoin", _C.CURRENCY, _R.UNCOMMON, 5, 5, 20,
                   fall_speed=0.95, chain_bonus=True),
    ItemDefinition("goldCoin", _C.CURRENCY, _R.RARE, 10, 10, 12,
                   fall_speed=0.9, chain_bonus=True),
    # Premium currency
    ItemDefinition("gem", _C.CURRENCY, _R.EPIC, 50, 0, 5, gem_value=1, fall_speed=0.7),
    ItemDefinition("ruby", _C.CURRENCY, _R.LEGENDARY, 100, 0, 2, gem_value=3,
                   fall_speed=0.6),
    # VIP exclusives
    ItemDefinition("vipCrown", _C.VIP, _R.EXCLUSIVE, 100, 100, 3,
                   fall_speed=0.5, vip_required=VipTier.BRONZE),
    ItemDefinition("platinumChest", _C.VIP, _R.MYTHIC, 200, 0, 1,
                   fall_speed=0.4, vip_required=VipTier.PLATINUM),
    ItemDefinition("diamondRain", _C.VIP, _R.COSMIC, 500, 0, 0.5, gem_value=10,
                   fall_speed=0.3, vip_required=VipTier.DIAMOND),
    # Power-ups
    ItemDefinition("magnet", _C.POWERUP, _R.RARE, 0, 0, 8),
    ItemDefinition("shield", _C.POWERUP, _R.RARE, 0, 0, 7, fall_speed=0.9),
    ItemDefinition("turboBoost", _C.POWERUP, _R.EPIC, 0, 0, 5, fall_speed=1.5,
                   unlock_level=5),
    ItemDefinition("goldenTouch", _C.POWERUP, _R.LEGENDARY, 0, 0, 2, fall_speed=0.8,
                   unlock_level=10),
    # Multipliers
    ItemDefinition("x2Multiplier", _C.MULTIPLIER, _R.UNCOMMON, 25, 0, 10,
                   chain_bonus=True),
    ItemDefinition("x5Multiplier", _C.MULTIPLIER, _R.EPIC, 50, 0, 4,
                   fall_speed=0.9, chain_bonus=True, unlock_level=10),
    ItemDefinition("x10Multiplier", _C.MULTIPLIER, _R.MYTHIC, 100, 0, 1,
                   fall_speed=0.7, chain_bonus=True, unlock_level=25),
    # Specials
    ItemDefinition("timeSlow", _C.SPECIAL, _R.EPIC, 0, 0, 4, fall_speed=0.8),
    ItemDefinition("rainbowStar", _C.SPECIAL, _R.COSMIC, 1000, 100, 0.2, gem_value=5,
                   fall_speed=0.5, unlock_level=10),
    # Mystery
    ItemDefinition("mysteryBox", _C.MYSTERY, _R.RARE, 0, 0, 6, fall_speed=0.85),
    ItemDefinition("goldenEgg", _C.MYSTERY, _R.LEGENDARY, 0, 0, 1.5, fall_speed=0.6),
    # Seasonal (event-gated, weight comes from the event boost)
    ItemDefinition("snowflake", _C.SEASONAL, _R.EPIC, 50, 50, 0, fall_speed=0.7,
                   event="winter"),
    ItemDefinition("pumpkin", _C.SEASONAL, _R.EPIC, 100, 100, 0, fall_speed=0.8,
                   event="halloween"),
    ItemDefinition("fourLeafClover", _C.SEASONAL, _R.LEGENDARY, 77, 77, 0,
                   gem_value=7, fall_speed=0.77, event="stpatricks"),
    ItemDefinition("sunburst", _C.SEASONAL, _R.EPIC, 80, 40, 0, fall_speed=0.75,
                   event="summer"),
    ItemDefinition("birthdayCake", _C.SEASONAL, _R.LEGENDARY, 150, 100, 0,
                   gem_value=2, fall_speed=0.7, event="anniversary"),
    # Collectibles
    ItemDefinition("ancientCoin", _C.COLLECTION, _R.RARE, 100, 25, 3, fall_speed=0.8,
                   collection_set="ancient_treasures"),
    ItemDefinition("crystalShard", _C.COLLECTION, _R.EPIC, 150, 30, 2, gem_value=1,
                   fall_speed=0.75, collection_set="crystal_power"),
    # Legendaries
    ItemDefinition("phoenixFeather", _C.LEGENDARY, _R.COSMIC, 500, 200, 0.1,
                   gem_value=10, fall_speed=0.4, unlock_level=25),
    ItemDefinition("dragonScale", _C.LEGENDARY, _R.COSMIC, 666, 333, 0.05,
                   gem_value=15, fall_speed=0.3, unlock_level=50),
    ItemDefinition("infinityGem", _C.LEGENDARY, _R.COSMIC, 9999, 999, 0.01,
                   gem_value=99, fall_speed=0.1, unlock_level=100),
    # Obstacles
    ItemDefinition("rock", _C.OBSTACLE, _R.COMMON, -10, 0, 8, fall_speed=1.2),
    ItemDefinition("thundercloud", _C.OBSTACLE, _R.UNCOMMON, -20, 0, 4, fall_speed=0.8),
    ItemDefinition("blackHole", _C.OBSTACLE, _R.RARE, -50, -10, 2, fall_speed=0.5,
                   unlock_level=5),
    # Season-pass (subscriber) exclusives
    ItemDefinition("battleToken", _C.SPECIAL, _R.EPIC, 100, 50, 2, fall_speed=0.9,
                   subscriber_only=True),
    ItemDefinition("eliteChest", _C.SPECIAL, _R.LEGENDARY, 250, 0, 1, fall_speed=0.7,
                   subscriber_only=True),
)


# ---------------------------------------------------------------------------
# Progression tables
# ---------------------------------------------------------------------------
# Level bracket → rarity → weight multiplier.  Rarities not listed keep 1.0.
LEVEL_RARITY_MODIFIERS: Mapping[int, Mapping[Rarity, float]] = MappingProxyType({
    1: {_R.COMMON: 1.2, _R.UNCOMMON: 0.8, _R.RARE: 0.5, _R.EPIC: 0.3, _R.LEGENDARY: 0.1},
    10: {_R.COMMON: 1.0, _R.UNCOMMON: 1.0, _R.RARE: 0.8, _R.EPIC: 0.6, _R.LEGENDARY: 0.3},
    25: {_R.COMMON: 0.8, _R.UNCOMMON: 1.1, _R.RARE: 1.0, _R.EPIC: 0.8, _R.LEGENDARY: 0.5},
    50: {_R.COMMON: 0.6, _R.UNCOMMON: 1.2, _R.RARE: 1.2, _R.EPIC: 1.0, _R.LEGENDARY: 0.7},
    100: {_R.COMMON: 0.4, _R.UNCOMMON: 1.0, _R.RARE: 1.3, _R.EPIC: 1.2, _R.LEGENDARY: 1.0},
})

# Minimum VIP tier → multiplier for legendary-and-above items.
VIP_LEGENDARY_BONUS: Mapping[int, float] = MappingProxyType({
    VipTier.NONE: 1.0,
    VipTier.BRONZE: 1.2,
    VipTier.GOLD: 1.5,
    VipTier.DIAMOND: 2.0,
    VipTier.ETERNAL: 3.0,
})

# Minimum VIP tier → item keys eligible for guaranteed VIP spawns.
VIP_SPAWN_POOLS: Mapping[int, tuple[str, ...]] = MappingProxyType({
    VipTier.BRONZE: ("vipCrown",),
    VipTier.GOLD: ("vipCrown", "platinumChest"),
    VipTier.DIAMOND: ("vipCrown", "platinumChest", "diamondRain"),
    VipTier.ETERNAL: ("vipCrown", "platinumChest", "diamondRain", "infinityGem"),
})

# Minimum login streak → rare-item bonus fraction.
STREAK_RARE_BONUS: Mapping[int, float] = MappingProxyType({
    3: 0.1,
    7: 0.2,
    15: 0.3,
    30: 0.5,
})

OBSTACLE_VIP_FACTOR = 0.7
EVENT_WEIGHT_BOOST = 10.0


def floor_lookup(table: Mapping[int, object], value: int, default=None):
    """Return the entry for the largest key ≤ *value*, or *default*."""
    best = None
    for threshold in sorted(table):
        if value >= threshold:
            best = threshold
    if best is None:
        return default
    return table[best]


# ---------------------------------------------------------------------------
# Event calendar
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class EventWindow:
    """A yearly window given as ``MM-DD`` bounds (inclusive).

    Windows whose start is after their end wrap the new year
    (e.g. winter runs 12-01 → 02-28).
    """

    name: str
    start: str
    end: str
    items: tuple[str, ...]

    def contains(self, day: date) -> bool:
        mmdd = day.strftime("%m-%d")
        if self.start <= self.end:
            return self.start <= mmdd <= self.end
        return mmdd >= self.start or mmdd <= self.end


EVENT_CALENDAR: Mapping[str, EventWindow] = MappingProxyType({
    w.name: w
    for w in (
        EventWindow("winter", "12-01", "02-28", ("snowflake",)),
        EventWindow("halloween", "10-01", "11-01", ("pumpkin",)),
        EventWindow("stpatricks", "03-10", "03-20", ("fourLeafClover",)),
        EventWindow("summer", "06-01", "08-31", ("sunburst",)),
        EventWindow("anniversary", "01-01", "01-07", ("birthdayCake",)),
    )
})


def active_events(day: date) -> tuple[EventWindow, ...]:
    """Return every calendar event whose window contains *day*.

    Windows may overlap (the anniversary week falls inside winter).
    """
    return tuple(w for w in EVENT_CALENDAR.values() if w.contains(day))


def is_event_open(name: str, day: date) -> bool:
    window = EVENT_CALENDAR.get(name)
    return window is not None and window.contains(day)
