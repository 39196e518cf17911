"""
potofgold.engine.profile — Player Profile & Spawn Context
==========================================================

Read-only snapshots handed to the spawn engine.  Progression systems own
the underlying player row; the engine never mutates these.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from potofgold.engine.items import Difficulty, VipTier

if TYPE_CHECKING:
    from potofgold.database.models import Player


@dataclass(frozen=True, slots=True)
class EngagementMetrics:
    """Engagement signals that bias the spawn pool."""

    retention_days: int = 0
    purchase_history: int = 0  # number of completed purchases
    ad_watch_rate: float = 0.0
    sessions_today: int = 0
    average_score: float = 0.0


@dataclass(frozen=True, slots=True)
class PlayerProfile:
    level: int = 1
    vip_tier: VipTier = VipTier.NONE
    current_streak: int = 0
    preferred_difficulty: Difficulty = Difficulty.NORMAL
    is_subscriber: bool = False
    engagement: EngagementMetrics = field(default_factory=EngagementMetrics)

    @classmethod
    def from_player(cls, player: Player) -> PlayerProfile:
        """Snapshot a :class:`~potofgold.database.models.Player` row."""
        average = player.total_score / player.total_games if player.total_games else 0.0
        return cls(
            level=player.level,
            vip_tier=VipTier(min(max(player.vip_tier, 0), VipTier.ETERNAL)),
            current_streak=player.current_streak,
            preferred_difficulty=Difficulty(player.preferred_difficulty),
            is_subscriber=player.is_subscriber,
            engagement=EngagementMetrics(
                retention_days=player.retention_days,
                purchase_history=player.purchase_count,
                ad_watch_rate=player.ad_watch_rate,
                average_score=average,
            ),
        )


@dataclass(frozen=True, slots=True)
class SpawnContext:
    """Live round state passed on every spawn tick."""

    combo_count: int = 0
    elapsed_seconds: float = 0.0
    score: int = 0
