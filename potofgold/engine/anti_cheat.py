"""
potofgold.engine.anti_cheat — Cheat Detection & Final-Score Validation
=======================================================================

Seven independent detectors inspect a checkpoint together with the
evidence the service gathered for it.  Each returns a
:class:`DetectionResult`; :func:`aggregate` folds them into a
:class:`CheatVerdict`.

No DB I/O here.  The session service collects :class:`CheatEvidence`,
calls :func:`detect_cheating` and persists the verdict.

Verdict rules:
  * cheating  ⇔ any detector is invalid with confidence > 0.8
  * auto-ban  ⇔ cheating and the highest confidence overall > 0.9
  * otherwise cheating is queued for manual review
"""

from __future__ import annotations

import enum
import logging
import math
import statistics
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from potofgold.engine.checkpoints import Checkpoint, InputEvent

if TYPE_CHECKING:
    from potofgold.engine.reward import SessionStats

logger = logging.getLogger(__name__)

# Speed hack
SPEED_RATIO = 0.5
SUPERHUMAN_REACTION_MS = 100
SUPERHUMAN_SHARE = 0.5
# Memory manipulation
MAX_COINS_PER_CHECKPOINT = 100
MAX_SAFE_VALUE = 999_999_999
# Pattern anomaly
MIN_HISTORY_GAMES = 10
Z_SCORE_LIMIT = 5.0
MIN_COLLECTIONS = 50
PERFECT_SHARE = 0.95
# Impossible score
MAX_SCORE_PER_SECOND = 100
MIN_SCORE_PER_ITEM = 1
MAX_SCORE_PER_ITEM = 1000
POINTS_PER_LEVEL = 1000
LEVEL_TOLERANCE = 2
# Bot behaviour
MIN_INPUT_EVENTS = 10
MIN_TIMING_CV = 0.1
GRID_PIXELS = 10
GRID_SHARE = 0.8
# Multiple devices
MAX_DEVICES_PER_HOUR = 3
MAX_IPS_PER_HOUR = 5
# Clock manipulation
MAX_CLOCK_DRIFT_MS = 5 * 60 * 1000
MAX_FUTURE_MS = 60 * 1000
# Thresholds
CHEAT_CONFIDENCE = 0.8
AUTO_BAN_CONFIDENCE = 0.9
# Final-score validation
SCORE_TOLERANCE = 0.1
MAX_FINAL_SCORE_RATE = 200


class Detector(enum.StrEnum):
    SPEED_HACK = "speed_hack"
    MEMORY_MANIPULATION = "memory_manipulation"
    PATTERN_ANOMALY = "pattern_anomaly"
    IMPOSSIBLE_SCORE = "impossible_score"
    BOT_BEHAVIOR = "bot_behavior"
    MULTIPLE_DEVICES = "multiple_devices"
    CLOCK_MANIPULATION = "clock_manipulation"
    FINAL_SCORE = "final_score"


class CheatAction(enum.StrEnum):
    AUTO_BAN = "auto_ban"
    REVIEW = "review"


@dataclass(slots=True)
class DetectionResult:
    """Outcome of one detector.  Confidence is the max over fired rules."""

    detector: str
    is_valid: bool = True
    reason: str | None = None
    confidence: float = 0.0
    flags: list[str] = field(default_factory=list)

    def flag(self, flag: str, reason: str, confidence: float) -> None:
        self.is_valid = False
        self.flags.append(flag)
        if confidence >= self.confidence:
            self.confidence = confidence
            self.reason = reason

    def to_dict(self) -> dict:
        return {
            "detector": self.detector,
            "is_valid": self.is_valid,
            "reason": self.reason,
            "confidence": self.confidence,
            "flags": list(self.flags),
        }


@dataclass(frozen=True, slots=True)
class ScoreHistory:
    """Distribution of a player's recent completed-game scores."""

    games: int = 0
    mean: float = 0.0
    stddev: float = 0.0

    @classmethod
    def from_scores(cls, scores: Sequence[int]) -> ScoreHistory:
        if not scores:
            return cls()
        return cls(
            games=len(scores),
            mean=statistics.fmean(scores),
            stddev=statistics.pstdev(scores),
        )


@dataclass(frozen=True, slots=True)
class CheatEvidence:
    """Everything the detectors need about one incoming checkpoint."""

    checkpoint: Checkpoint
    previous: tuple[Checkpoint, ...] = ()       # accepted, oldest first
    elapsed_seconds: float = 0.0                 # server time since session start
    input_events: tuple[InputEvent, ...] = ()   # whole session, incl. this checkpoint
    history: ScoreHistory = field(default_factory=ScoreHistory)
    recent_devices: frozenset[str] = frozenset()
    recent_ips: frozenset[str] = frozenset()


@dataclass(frozen=True, slots=True)
class CheatVerdict:
    cheating: bool
    max_confidence: float
    flags: tuple[str, ...]
    action: CheatAction | None = None


# ---------------------------------------------------------------------------
# Detectors
# ---------------------------------------------------------------------------
def detect_speed_hack(
    checkpoint: Checkpoint, previous: Sequence[Checkpoint]
) -> DetectionResult:
    result = DetectionResult(Detector.SPEED_HACK)

    if len(previous) >= 2:
        deltas = [
            b.timestamp_ms - a.timestamp_ms for a, b in zip(previous, previous[1:])
        ]
        average = sum(deltas) / len(deltas)
        current = checkpoint.timestamp_ms - previous[-1].timestamp_ms
        if current < average * SPEED_RATIO:
            result.flag("SPEED_HACK", "Time acceleration detected", 0.9)

    reactions = checkpoint.reaction_times
    superhuman = sum(1 for rt in reactions if rt < SUPERHUMAN_REACTION_MS)
    if reactions and superhuman > len(reactions) * SUPERHUMAN_SHARE:
        result.flag("BOT_REACTION", "Superhuman reaction times", 0.85)
    return result


def detect_memory_manipulation(
    checkpoint: Checkpoint, previous: Checkpoint | None
) -> DetectionResult:
    result = DetectionResult(Detector.MEMORY_MANIPULATION)

    if previous is not None:
        if checkpoint.coins - previous.coins > MAX_COINS_PER_CHECKPOINT:
            result.flag("MEMORY_EDIT", "Impossible coin increase", 0.95)

    if checkpoint.score < 0 or checkpoint.coins < 0 or checkpoint.gems < 0:
        result.flag("MEMORY_CORRUPTION", "Negative values detected", 1.0)

    if checkpoint.score > MAX_SAFE_VALUE or checkpoint.coins > MAX_SAFE_VALUE:
        result.flag("VALUE_OVERFLOW", "Overflow values detected", 1.0)
    return result


def detect_pattern_anomaly(
    checkpoint: Checkpoint, history: ScoreHistory
) -> DetectionResult:
    result = DetectionResult(Detector.PATTERN_ANOMALY)

    if history.games >= MIN_HISTORY_GAMES and history.stddev > 0:
        z = (checkpoint.score - history.mean) / history.stddev
        if z > Z_SCORE_LIMIT:
            confidence = min(0.6 + (z - Z_SCORE_LIMIT) * 0.1, 0.95)
            result.flag("PATTERN_ANOMALY", "Anomalous score pattern", confidence)

    collections = checkpoint.item_collections
    if len(collections) >= MIN_COLLECTIONS:
        perfect = sum(1 for c in collections if c.perfect) / len(collections)
        if perfect > PERFECT_SHARE:
            result.flag("BOT_PATTERN", "Perfect collection pattern", 0.85)
    return result


def detect_impossible_score(
    checkpoint: Checkpoint, elapsed_seconds: float
) -> DetectionResult:
    result = DetectionResult(Detector.IMPOSSIBLE_SCORE)
    score = checkpoint.score

    if score > elapsed_seconds * MAX_SCORE_PER_SECOND:
        result.flag("IMPOSSIBLE_SCORE", "Score exceeds theoretical maximum", 1.0)

    if checkpoint.items_collected > 0 and score > 0:
        per_item = score / checkpoint.items_collected
        if not MIN_SCORE_PER_ITEM <= per_item <= MAX_SCORE_PER_ITEM:
            result.flag("INVALID_RATIO", "Invalid score to item ratio", 0.9)

    expected_level = score // POINTS_PER_LEVEL + 1
    if abs(checkpoint.level - expected_level) > LEVEL_TOLERANCE:
        result.flag("LEVEL_MISMATCH", "Invalid level progression", 0.8)
    return result


def detect_bot_behavior(events: Sequence[InputEvent]) -> DetectionResult:
    result = DetectionResult(Detector.BOT_BEHAVIOR)
    if len(events) < MIN_INPUT_EVENTS:
        return result

    intervals = [b.timestamp_ms - a.timestamp_ms for a, b in zip(events, events[1:])]
    mean = statistics.fmean(intervals)
    if mean <= 0:
        result.flag("BOT_INPUTS", "Robotic input pattern detected", 0.85)
    elif statistics.pstdev(intervals) / mean < MIN_TIMING_CV:
        result.flag("BOT_INPUTS", "Robotic input pattern detected", 0.85)

    on_grid = sum(
        1 for e in events
        if math.fmod(e.x, GRID_PIXELS) == 0 and math.fmod(e.y, GRID_PIXELS) == 0
    )
    if on_grid > len(events) * GRID_SHARE:
        result.flag("BOT_PRECISION", "Inhuman precision in movements", 0.75)
    return result


def detect_multiple_devices(
    devices: frozenset[str], ips: frozenset[str]
) -> DetectionResult:
    result = DetectionResult(Detector.MULTIPLE_DEVICES)
    if len(devices) > MAX_DEVICES_PER_HOUR:
        result.flag("MULTI_DEVICE", "Multiple devices detected", 0.7)
    if len(ips) > MAX_IPS_PER_HOUR:
        result.flag("IP_HOPPING", "Suspicious IP pattern", 0.6)
    return result


def detect_clock_manipulation(checkpoint: Checkpoint, now_ms: int) -> DetectionResult:
    result = DetectionResult(Detector.CLOCK_MANIPULATION)
    if abs(now_ms - checkpoint.timestamp_ms) > MAX_CLOCK_DRIFT_MS:
        result.flag("TIME_TRAVEL", "Clock manipulation detected", 0.9)
    if checkpoint.timestamp_ms > now_ms + MAX_FUTURE_MS:
        result.flag("FUTURE_TIME", "Future timestamp detected", 1.0)
    return result


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------
def aggregate(results: Sequence[DetectionResult]) -> CheatVerdict:
    """Fold detector results into a verdict."""
    cheating = any(
        not r.is_valid and r.confidence > CHEAT_CONFIDENCE for r in results
    )
    max_confidence = max((r.confidence for r in results), default=0.0)
    flags = tuple(flag for r in results for flag in r.flags)

    action = None
    if cheating:
        action = (
            CheatAction.AUTO_BAN
            if max_confidence > AUTO_BAN_CONFIDENCE
            else CheatAction.REVIEW
        )
    return CheatVerdict(
        cheating=cheating, max_confidence=max_confidence, flags=flags, action=action,
    )


def detect_cheating(
    evidence: CheatEvidence, *, now_ms: int
) -> tuple[CheatVerdict, list[DetectionResult]]:
    """Run all seven detectors and aggregate them.

    Returns ``(verdict, results)``; results are kept for the detection log.
    """
    cp = evidence.checkpoint
    last = evidence.previous[-1] if evidence.previous else None
    results = [
        detect_speed_hack(cp, evidence.previous),
        detect_memory_manipulation(cp, last),
        detect_pattern_anomaly(cp, evidence.history),
        detect_impossible_score(cp, evidence.elapsed_seconds),
        detect_bot_behavior(evidence.input_events),
        detect_multiple_devices(evidence.recent_devices, evidence.recent_ips),
        detect_clock_manipulation(cp, now_ms),
    ]
    verdict = aggregate(results)
    if verdict.cheating:
        logger.warning(
            "Cheating detected: confidence=%.2f action=%s flags=%s",
            verdict.max_confidence, verdict.action, ",".join(verdict.flags),
            extra={"flags": list(verdict.flags), "confidence": verdict.max_confidence},
        )
    return verdict, results


# ---------------------------------------------------------------------------
# Final-score validation
# ---------------------------------------------------------------------------
def expected_score(stats: SessionStats, duration_seconds: float) -> int:
    """Score the reported stats should roughly add up to."""
    base = stats.items_collected * 10
    combo = stats.max_combo * 5
    level = stats.level * 100
    time_bonus = int(duration_seconds // 10) * 2
    return base + combo + level + time_bonus


def validate_final_score(
    final_score: int,
    stats: SessionStats,
    *,
    last_checkpoint_score: int | None,
    duration_seconds: float,
) -> DetectionResult:
    """Check a session-end score against checkpoints, stats and duration."""
    result = DetectionResult(Detector.FINAL_SCORE)

    if last_checkpoint_score is not None and final_score < last_checkpoint_score:
        result.flag("SCORE_DECREASE", "Score decreased from checkpoint", 1.0)
        return result

    expected = expected_score(stats, duration_seconds)
    if abs(final_score - expected) > expected * SCORE_TOLERANCE:
        result.flag("SCORE_MISMATCH", "Score calculation mismatch", 0.85)

    if duration_seconds <= 0:
        if final_score > 0:
            result.flag("HIGH_SCORE_RATE", "Impossible score rate", 0.95)
    elif final_score / duration_seconds > MAX_FINAL_SCORE_RATE:
        result.flag("HIGH_SCORE_RATE", "Impossible score rate", 0.95)
    return result
