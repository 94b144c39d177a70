# scoring/anomaly_detection.py
# Leaderboard Scoring — Statistical and heuristic fraud detection over point events.
# Per-event checks run in a fixed order and stop at the first hit;
# analyze_leaderboard() is a separate population-level outlier scan.
# Imports from: scoring/state_store.py, utils/constants.py, utils/logger.py, utils/timeutils.py

import statistics
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo

from scoring.state_store import InMemoryStateStore, StateStore
from utils.constants import (
    ACTION_FLAG,
    ACTION_REVIEW,
    ANOMALY_HISTORY_LIMIT,
    ANOMALY_LEADERBOARD_THRESHOLD_MUL,
    ANOMALY_MAX_DAILY_INCREASE_PCT,
    ANOMALY_MAX_POINTS_PER_EVENT,
    ANOMALY_MAX_POINTS_PER_WINDOW,
    ANOMALY_MIN_EVENT_GAP_SECONDS,
    ANOMALY_MIN_EVENTS_FOR_ANALYSIS,
    ANOMALY_MIN_LEADERBOARD_ENTRIES,
    ANOMALY_OUTLIER,
    ANOMALY_OUTLIER_THRESHOLD,
    ANOMALY_RATE_LIMIT,
    ANOMALY_RATE_WINDOW_SECONDS,
    ANOMALY_RECENT_EVENTS_FOR_GAP,
    ANOMALY_REPEAT_PATTERN_COUNT,
    ANOMALY_REPEAT_PATTERN_HOURS,
    ANOMALY_SCHOOL_HOURS_END,
    ANOMALY_SCHOOL_HOURS_START,
    ANOMALY_SUSPICIOUS_TIMING,
    ANOMALY_UNUSUAL_PATTERN,
    NS_EVENT_HISTORY,
)
from utils.logger import get_logger
from utils.timeutils import ensure_aware, from_iso, to_iso

log = get_logger("scoring.anomaly_detection")


# ─────────────────────────────────────────────
# Contracts
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class AnomalyDetectionConfig:
    max_points_per_event:        int = ANOMALY_MAX_POINTS_PER_EVENT
    max_points_per_window:       int = ANOMALY_MAX_POINTS_PER_WINDOW
    rate_window_seconds:         int = ANOMALY_RATE_WINDOW_SECONDS
    outlier_threshold:           float = ANOMALY_OUTLIER_THRESHOLD
    min_events_for_analysis:     int = ANOMALY_MIN_EVENTS_FOR_ANALYSIS
    max_daily_increase_percentage: float = ANOMALY_MAX_DAILY_INCREASE_PCT
    school_timezone:             str = "UTC"     # zone used to read "local" school hours


@dataclass
class PointEarningEvent:
    student_id: str
    amount:     int
    source:     str                  # e.g. activity type
    timestamp:  datetime
    source_id:  Optional[str] = None
    metadata:   dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "student_id": self.student_id,
            "amount":     self.amount,
            "source":     self.source,
            "source_id":  self.source_id,
            "timestamp":  to_iso(self.timestamp),
            "metadata":   self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PointEarningEvent":
        return cls(
            student_id=data["student_id"],
            amount=data["amount"],
            source=data["source"],
            source_id=data.get("source_id"),
            timestamp=from_iso(data["timestamp"]),
            metadata=data.get("metadata") or {},
        )


@dataclass
class AnomalyDetectionResult:
    is_anomaly:       bool
    confidence:       float = 0.0          # 0–1
    anomaly_type:     Optional[str] = None  # rate_limit | outlier | unusual_pattern | suspicious_timing
    details:          Optional[str] = None
    suggested_action: Optional[str] = None  # flag | review | block


@dataclass
class LeaderboardEntry:
    student_id:    str
    reward_points: float
    student_name:  Optional[str] = None
    rank:          Optional[int] = None


# ─────────────────────────────────────────────
# Service
# ─────────────────────────────────────────────

class AnomalyDetectionService:
    """
    Check order (first match wins):
        1. rate_limit         single event too large, or window total too large
        2. outlier            z-score of the amount against the student's history
        3. unusual_pattern    repeated identical events, or a daily-total spike
        4. suspicious_timing  large award outside school hours, or bursts < 5s apart
    """

    def __init__(
        self,
        config: Optional[AnomalyDetectionConfig] = None,
        store: Optional[StateStore] = None,
    ) -> None:
        self.config = config or AnomalyDetectionConfig()
        self.store = store or InMemoryStateStore()
        self._school_zone = ZoneInfo(self.config.school_timezone)

    # ── History ───────────────────────────────

    def track_event(self, event: PointEarningEvent) -> None:
        def append(stored: Optional[dict[str, Any]]) -> dict[str, Any]:
            history = [PointEarningEvent.from_dict(item) for item in (stored or {}).get("events", [])]
            history.append(event)
            history.sort(key=lambda e: ensure_aware(e.timestamp), reverse=True)
            del history[ANOMALY_HISTORY_LIMIT:]
            return {"events": [e.to_dict() for e in history]}

        self.store.update(NS_EVENT_HISTORY, event.student_id, append)

    def get_student_history(self, student_id: str) -> list[PointEarningEvent]:
        """Newest first."""
        stored = self.store.get(NS_EVENT_HISTORY, student_id)
        if stored is None:
            return []
        return [PointEarningEvent.from_dict(item) for item in stored["events"]]

    def clear_student_history(self, student_id: str) -> None:
        self.store.delete(NS_EVENT_HISTORY, student_id)

    # ── Per-event detection ───────────────────

    def detect_anomaly(
        self,
        event: PointEarningEvent,
        history: Optional[list[PointEarningEvent]] = None,
    ) -> AnomalyDetectionResult:
        """
        `history` holds the student's events prior to `event`; when omitted
        the tracked history is used.
        """
        if history is None:
            history = self.get_student_history(event.student_id)

        for check in (
            self._check_rate_limit,
            self._check_outlier,
            self._check_unusual_pattern,
            self._check_suspicious_timing,
        ):
            result = check(event, history)
            if result is not None:
                log.warning(
                    "anomaly_detected",
                    student_id=event.student_id,
                    amount=event.amount,
                    source=event.source,
                    anomaly_type=result.anomaly_type,
                    confidence=result.confidence,
                    suggested_action=result.suggested_action,
                )
                return result

        return AnomalyDetectionResult(is_anomaly=False, confidence=0.0)

    def _check_rate_limit(
        self,
        event: PointEarningEvent,
        history: list[PointEarningEvent],
    ) -> Optional[AnomalyDetectionResult]:
        cfg = self.config
        if event.amount > cfg.max_points_per_event:
            return AnomalyDetectionResult(
                is_anomaly=True,
                anomaly_type=ANOMALY_RATE_LIMIT,
                confidence=0.9,
                details=(
                    f"Single event of {event.amount} points exceeds the "
                    f"per-event maximum of {cfg.max_points_per_event}."
                ),
                suggested_action=ACTION_REVIEW,
            )

        now = ensure_aware(event.timestamp)
        window_start = now - timedelta(seconds=cfg.rate_window_seconds)
        window_total = event.amount + sum(
            e.amount for e in history if window_start <= ensure_aware(e.timestamp) <= now
        )
        if window_total > cfg.max_points_per_window:
            return AnomalyDetectionResult(
                is_anomaly=True,
                anomaly_type=ANOMALY_RATE_LIMIT,
                confidence=0.8,
                details=(
                    f"{window_total} points earned within {cfg.rate_window_seconds}s "
                    f"exceeds the window maximum of {cfg.max_points_per_window}."
                ),
                suggested_action=ACTION_FLAG,
            )
        return None

    def _check_outlier(
        self,
        event: PointEarningEvent,
        history: list[PointEarningEvent],
    ) -> Optional[AnomalyDetectionResult]:
        cfg = self.config
        if len(history) < cfg.min_events_for_analysis:
            return None

        amounts = [e.amount for e in history]
        mean = statistics.fmean(amounts)
        std_dev = statistics.pstdev(amounts)
        if std_dev == 0:
            return None

        z_score = (event.amount - mean) / std_dev
        if z_score <= cfg.outlier_threshold:
            return None

        confidence = min(0.95, 0.5 + (z_score - cfg.outlier_threshold) / 10.0)
        return AnomalyDetectionResult(
            is_anomaly=True,
            anomaly_type=ANOMALY_OUTLIER,
            confidence=confidence,
            details=(
                f"Award of {event.amount} points is {z_score:.2f} standard deviations "
                f"above the student's mean of {mean:.1f}."
            ),
            suggested_action=ACTION_REVIEW if confidence > 0.8 else ACTION_FLAG,
        )

    def _check_unusual_pattern(
        self,
        event: PointEarningEvent,
        history: list[PointEarningEvent],
    ) -> Optional[AnomalyDetectionResult]:
        now = ensure_aware(event.timestamp)
        since = now - timedelta(hours=ANOMALY_REPEAT_PATTERN_HOURS)
        identical = 1 + sum(
            1 for e in history
            if e.student_id == event.student_id
            and e.amount == event.amount
            and e.source == event.source
            and since <= ensure_aware(e.timestamp) <= now
        )
        if identical >= ANOMALY_REPEAT_PATTERN_COUNT:
            return AnomalyDetectionResult(
                is_anomaly=True,
                anomaly_type=ANOMALY_UNUSUAL_PATTERN,
                confidence=0.7,
                details=(
                    f"{identical} identical events ({event.amount} points from "
                    f"'{event.source}') within {ANOMALY_REPEAT_PATTERN_HOURS} hours."
                ),
                suggested_action=ACTION_FLAG,
            )

        today = self._local(now).date()
        daily_totals: dict[date, int] = {}
        for e in history:
            day = self._local(ensure_aware(e.timestamp)).date()
            daily_totals[day] = daily_totals.get(day, 0) + e.amount

        previous_days = [total for day, total in daily_totals.items() if day != today]
        if not previous_days:
            return None

        today_total = daily_totals.get(today, 0) + event.amount
        median_total = statistics.median(previous_days)
        if median_total <= 0:
            return None

        increase_pct = (today_total - median_total) / median_total * 100.0
        if increase_pct > self.config.max_daily_increase_percentage:
            return AnomalyDetectionResult(
                is_anomaly=True,
                anomaly_type=ANOMALY_UNUSUAL_PATTERN,
                confidence=0.6,
                details=(
                    f"Today's total of {today_total} points is {increase_pct:.0f}% above "
                    f"the median daily total of {median_total:g}."
                ),
                suggested_action=ACTION_FLAG,
            )
        return None

    def _check_suspicious_timing(
        self,
        event: PointEarningEvent,
        history: list[PointEarningEvent],
    ) -> Optional[AnomalyDetectionResult]:
        hour = self._local(ensure_aware(event.timestamp)).hour
        outside_school_hours = not (ANOMALY_SCHOOL_HOURS_START <= hour < ANOMALY_SCHOOL_HOURS_END)
        if outside_school_hours and event.amount > self.config.max_points_per_event / 2:
            return AnomalyDetectionResult(
                is_anomaly=True,
                anomaly_type=ANOMALY_SUSPICIOUS_TIMING,
                confidence=0.5,
                details=f"Award of {event.amount} points at {hour:02d}:00, outside school hours.",
                suggested_action=ACTION_FLAG,
            )

        recent = sorted(
            [ensure_aware(e.timestamp) for e in history] + [ensure_aware(event.timestamp)],
        )[-ANOMALY_RECENT_EVENTS_FOR_GAP:]
        if len(recent) < 2:
            return None

        min_gap = min((b - a).total_seconds() for a, b in zip(recent, recent[1:]))
        if min_gap < ANOMALY_MIN_EVENT_GAP_SECONDS:
            return AnomalyDetectionResult(
                is_anomaly=True,
                anomaly_type=ANOMALY_SUSPICIOUS_TIMING,
                confidence=0.6,
                details=f"Events only {min_gap:.1f}s apart.",
                suggested_action=ACTION_FLAG,
            )
        return None

    # ── Population scan ───────────────────────

    def analyze_leaderboard(
        self,
        entries: list[LeaderboardEntry],
    ) -> dict[str, AnomalyDetectionResult]:
        """Flags entries whose reward points are extreme outliers for the board."""
        if len(entries) < ANOMALY_MIN_LEADERBOARD_ENTRIES:
            return {}

        points = [entry.reward_points for entry in entries]
        mean = statistics.fmean(points)
        std_dev = statistics.pstdev(points)
        if std_dev == 0:
            return {}

        threshold = self.config.outlier_threshold * ANOMALY_LEADERBOARD_THRESHOLD_MUL
        flagged: dict[str, AnomalyDetectionResult] = {}
        for entry in entries:
            z_score = (entry.reward_points - mean) / std_dev
            if z_score > threshold:
                flagged[entry.student_id] = AnomalyDetectionResult(
                    is_anomaly=True,
                    anomaly_type=ANOMALY_OUTLIER,
                    confidence=0.7,
                    details=(
                        f"{entry.reward_points:g} reward points is {z_score:.2f} standard "
                        f"deviations above the leaderboard mean of {mean:.1f}."
                    ),
                    suggested_action=ACTION_REVIEW,
                )

        log.info(
            "leaderboard_analyzed",
            entries=len(entries),
            flagged=len(flagged),
            mean=round(mean, 2),
            std_dev=round(std_dev, 2),
        )
        return flagged

    def _local(self, value: datetime) -> datetime:
        return value.astimezone(self._school_zone)
