# scoring/balanced_scoring.py
# Leaderboard Scoring — Activity completion → capped reward points.
# Pure deterministic math; the only state is the per-student usage tracker.
# Imports from: scoring/state_store.py, utils/constants.py, utils/logger.py, utils/timeutils.py

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from scoring.state_store import InMemoryStateStore, StateStore
from utils.constants import (
    ACTIVITY_TYPE_CONFIGS,
    DIFFICULTY_MULTIPLIERS,
    FALLBACK_BASE_POINTS,
    NS_SCORING_USAGE,
    PERFORMANCE_BANDS,
    REPEAT_MULTIPLIER,
    TIME_MULTIPLIER_FLOOR,
    USAGE_RESET_HOURS,
)
from utils.logger import get_logger
from utils.timeutils import Clock, from_iso, to_iso, utc_now, week_start

log = get_logger("scoring.balanced_scoring")


# ─────────────────────────────────────────────
# Configuration contracts
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class ActivityTypeConfig:
    base_points:            int
    weight:                 float
    daily_max_points:       int
    weekly_max_points:      int
    scale_with_difficulty:  bool = False
    scale_with_performance: bool = False
    scale_with_time_spent:  bool = False
    max_time_spent:         Optional[float] = None   # minutes


@dataclass(frozen=True)
class PerformanceLevel:
    min_score:  float   # inclusive
    max_score:  float   # exclusive, except 100 in the top band
    multiplier: float

    def contains(self, score: float) -> bool:
        if self.min_score <= score < self.max_score:
            return True
        return score == self.max_score == 100.0


def default_activity_configs() -> dict[str, ActivityTypeConfig]:
    return {name: ActivityTypeConfig(**cfg) for name, cfg in ACTIVITY_TYPE_CONFIGS.items()}


def default_performance_levels() -> list[PerformanceLevel]:
    return [PerformanceLevel(lo, hi, mult) for lo, hi, mult in PERFORMANCE_BANDS]


# ─────────────────────────────────────────────
# Request / result contracts
# ─────────────────────────────────────────────

@dataclass
class PointsCalculationRequest:
    activity_type:     str
    difficulty:        Optional[str] = None     # easy | medium | hard | expert
    score:             Optional[float] = None   # 0–100
    time_spent:        Optional[float] = None   # minutes
    is_repeat:         bool = False
    custom_multiplier: Optional[float] = None


@dataclass
class PointsCalculationResult:
    base_points:       int
    calculated_points: int
    breakdown:         dict[str, float] = field(default_factory=dict)   # multiplier name -> value applied
    was_capped:        bool = False
    uncapped_points:   Optional[int] = None     # set only when was_capped


@dataclass
class StudentUsage:
    activity_type:   str
    daily_used:      int
    daily_remaining: int
    weekly_used:     int
    weekly_remaining: int


def round_half_up(value: float) -> int:
    # round(…, 9) absorbs float noise such as 58.49999999999999
    return int(math.floor(round(value, 9) + 0.5))


# ─────────────────────────────────────────────
# Service
# ─────────────────────────────────────────────

class BalancedScoringSystem:
    """
    Converts an activity completion into a point award.

    Multipliers apply in a fixed order: difficulty → performance →
    time spent → repeat → custom → activity weight, with a single
    round-half-up at the end. The result is then capped by the student's
    remaining daily and weekly allowance for that activity type.

    Usage resets are rolling: a student's whole tracker is cleared once
    more than USAGE_RESET_HOURS have passed since it was created or last
    reset, not at calendar boundaries.
    """

    def __init__(
        self,
        activity_configs: Optional[dict[str, ActivityTypeConfig]] = None,
        difficulty_multipliers: Optional[dict[str, float]] = None,
        performance_levels: Optional[list[PerformanceLevel]] = None,
        store: Optional[StateStore] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.activity_configs = dict(activity_configs or default_activity_configs())
        self.difficulty_multipliers = dict(difficulty_multipliers or DIFFICULTY_MULTIPLIERS)
        self.performance_levels = sorted(
            performance_levels or default_performance_levels(),
            key=lambda level: level.min_score,
        )
        _validate_bands(self.performance_levels)
        self.store = store or InMemoryStateStore()
        self.clock = clock

    # ── Public interface ──────────────────────

    def get_activity_config(self, activity_type: str) -> Optional[ActivityTypeConfig]:
        return self.activity_configs.get(activity_type)

    def calculate_points(
        self,
        student_id: str,
        request: PointsCalculationRequest,
    ) -> PointsCalculationResult:
        config = self.activity_configs.get(request.activity_type)
        if config is None:
            log.warning(
                "unknown_activity_type",
                student_id=student_id,
                activity_type=request.activity_type,
                fallback_points=FALLBACK_BASE_POINTS,
            )
            return PointsCalculationResult(
                base_points=FALLBACK_BASE_POINTS,
                calculated_points=FALLBACK_BASE_POINTS,
            )

        points: float = config.base_points
        breakdown: dict[str, float] = {}

        if config.scale_with_difficulty and request.difficulty is not None:
            multiplier = self.difficulty_multipliers.get(request.difficulty)
            if multiplier is not None:
                points *= multiplier
                breakdown["difficulty"] = multiplier

        if config.scale_with_performance and request.score is not None:
            multiplier = self._performance_multiplier(request.score)
            if multiplier is not None:
                points *= multiplier
                breakdown["performance"] = multiplier

        if config.scale_with_time_spent and request.time_spent is not None and config.max_time_spent:
            ratio = min(max(request.time_spent, 0.0) / config.max_time_spent, 1.0)
            multiplier = TIME_MULTIPLIER_FLOOR + (1.0 - TIME_MULTIPLIER_FLOOR) * ratio
            points *= multiplier
            breakdown["time_spent"] = multiplier

        if request.is_repeat:
            points *= REPEAT_MULTIPLIER
            breakdown["repeat"] = REPEAT_MULTIPLIER

        if request.custom_multiplier is not None:
            points *= request.custom_multiplier
            breakdown["custom"] = request.custom_multiplier

        points *= config.weight
        breakdown["activity_weight"] = config.weight

        uncapped = max(0, round_half_up(points))
        capped = self._apply_caps(student_id, request.activity_type, config, uncapped)

        result = PointsCalculationResult(
            base_points=config.base_points,
            calculated_points=capped,
            breakdown=breakdown,
        )
        if capped < uncapped:
            result.was_capped = True
            result.uncapped_points = uncapped
            log.info(
                "points_capped",
                student_id=student_id,
                activity_type=request.activity_type,
                uncapped_points=uncapped,
                calculated_points=capped,
            )

        return result

    def release_points(self, student_id: str, activity_type: str, amount: int) -> None:
        """
        Returns `amount` to today's and this week's allowance. Used by callers
        that computed an award but did not grant it (e.g. rate-limited).
        """
        if amount <= 0 or activity_type not in self.activity_configs:
            return
        daily_key, weekly_key = self._usage_keys(activity_type)

        def refund(stored: Optional[dict[str, Any]]) -> dict[str, Any]:
            tracker = self._current_tracker(student_id, stored)
            tracker["daily"][daily_key] = max(0, tracker["daily"].get(daily_key, 0) - amount)
            tracker["weekly"][weekly_key] = max(0, tracker["weekly"].get(weekly_key, 0) - amount)
            return tracker

        self.store.update(NS_SCORING_USAGE, student_id, refund)

    def get_student_usage(self, student_id: str, activity_type: str) -> Optional[StudentUsage]:
        config = self.activity_configs.get(activity_type)
        if config is None:
            return None
        tracker = self._current_tracker(student_id, self.store.get(NS_SCORING_USAGE, student_id))
        daily_key, weekly_key = self._usage_keys(activity_type)
        daily_used = tracker["daily"].get(daily_key, 0)
        weekly_used = tracker["weekly"].get(weekly_key, 0)
        return StudentUsage(
            activity_type=activity_type,
            daily_used=daily_used,
            daily_remaining=max(0, config.daily_max_points - daily_used),
            weekly_used=weekly_used,
            weekly_remaining=max(0, config.weekly_max_points - weekly_used),
        )

    def reset_student_usage(self, student_id: str) -> None:
        self.store.delete(NS_SCORING_USAGE, student_id)
        log.info("usage_reset", student_id=student_id, trigger="manual")

    # ── Internals ─────────────────────────────

    def _performance_multiplier(self, score: float) -> Optional[float]:
        for level in self.performance_levels:
            if level.contains(score):
                return level.multiplier
        return None

    def _usage_keys(self, activity_type: str) -> tuple[str, str]:
        today = self.clock().date()
        return (
            f"{activity_type}:{today.isoformat()}",
            f"{activity_type}:{week_start(today).isoformat()}",
        )

    def _current_tracker(self, student_id: str, stored: Optional[dict[str, Any]]) -> dict[str, Any]:
        """The stored tracker, or a fresh one once the rolling reset is due."""
        now = self.clock()
        if stored is not None:
            last_reset: datetime = from_iso(stored["last_reset"])
            if now - last_reset <= timedelta(hours=USAGE_RESET_HOURS):
                return stored
            log.info("usage_reset", student_id=student_id, trigger="rolling_24h")
        return {"daily": {}, "weekly": {}, "last_reset": to_iso(now)}

    def _apply_caps(
        self,
        student_id: str,
        activity_type: str,
        config: ActivityTypeConfig,
        requested: int,
    ) -> int:
        daily_key, weekly_key = self._usage_keys(activity_type)
        granted = 0

        def charge(stored: Optional[dict[str, Any]]) -> dict[str, Any]:
            nonlocal granted
            tracker = self._current_tracker(student_id, stored)
            daily_used = tracker["daily"].get(daily_key, 0)
            weekly_used = tracker["weekly"].get(weekly_key, 0)
            granted = min(
                requested,
                max(0, config.daily_max_points - daily_used),
                max(0, config.weekly_max_points - weekly_used),
            )
            tracker["daily"][daily_key] = daily_used + granted
            tracker["weekly"][weekly_key] = weekly_used + granted
            return tracker

        self.store.update(NS_SCORING_USAGE, student_id, charge)
        return granted


def _validate_bands(levels: list[PerformanceLevel]) -> None:
    """Bands must cover [0, 100] without gaps or overlaps."""
    if not levels:
        raise ValueError("At least one performance level is required.")
    if levels[0].min_score != 0.0 or levels[-1].max_score != 100.0:
        raise ValueError("Performance levels must span 0 to 100.")
    for prev, nxt in zip(levels, levels[1:]):
        if prev.max_score != nxt.min_score:
            raise ValueError(
                f"Performance levels leave a gap or overlap at {prev.max_score}–{nxt.min_score}."
            )
