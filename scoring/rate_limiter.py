# scoring/rate_limiter.py
# Leaderboard Scoring — Per-student point rate limits and per-activity cooldowns.
# Imports from: scoring/state_store.py, utils/constants.py, utils/logger.py, utils/timeutils.py

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Optional

from scoring.state_store import InMemoryStateStore, StateStore
from utils.constants import (
    ACTIVITY_RATE_LIMITS,
    DEFAULT_RATE_LIMIT,
    NS_RATE_LIMIT,
    RATE_REASON_COOLDOWN,
    RATE_REASON_INSTANCE,
    RATE_REASON_WINDOW,
)
from utils.logger import get_logger
from utils.timeutils import Clock, ensure_aware, from_iso, to_iso, utc_now

log = get_logger("scoring.rate_limiter")


# ─────────────────────────────────────────────
# Contracts
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class RateLimitConfig:
    window_seconds:          int = DEFAULT_RATE_LIMIT["window_seconds"]
    max_points_per_window:   int = DEFAULT_RATE_LIMIT["max_points_per_window"]
    cooldown_seconds:        int = DEFAULT_RATE_LIMIT["cooldown_seconds"]
    max_points_per_instance: int = DEFAULT_RATE_LIMIT["max_points_per_instance"]
    exempt:                  bool = DEFAULT_RATE_LIMIT["exempt"]

    def __post_init__(self) -> None:
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive.")
        if self.cooldown_seconds < 0 or self.max_points_per_window < 0 or self.max_points_per_instance < 0:
            raise ValueError("Rate limit values must be non-negative.")


@dataclass
class PointsRequest:
    student_id:    str
    activity_type: str
    activity_id:   str
    amount:        int
    timestamp:     Optional[datetime] = None   # defaults to the limiter's clock


@dataclass
class RateLimitResult:
    allowed:        bool
    allowed_amount: int
    reason:         Optional[str] = None        # 'window_limit' | 'cooldown' | 'instance_limit' | None
    reset_time:     Optional[datetime] = None
    remaining:      Optional[int] = None        # window allowance left after this request


@dataclass
class StudentRateLimitStatus:
    student_id:   str
    window_start: datetime
    points_used:  int
    activities:   dict[str, datetime] = field(default_factory=dict)   # "type:id" -> last award


# ─────────────────────────────────────────────
# Service
# ─────────────────────────────────────────────

class PointsRateLimiter:
    """
    Gatekeeper applied after points are calculated.

    Priority per request:
        1. exempt activity type          → allow everything
        2. amount > per-instance cap     → allow, truncated (instance_limit)
        3. same activity inside cooldown → reject, 0 points (cooldown)
        4. amount > window remaining     → reject, 0 points (window_limit)
        5. otherwise                     → allow and record

    Cooldown and window violations are rejected outright rather than
    reduced to whatever allowance is left.
    """

    def __init__(
        self,
        default_config: Optional[RateLimitConfig] = None,
        activity_overrides: Optional[dict[str, dict[str, Any]]] = None,
        store: Optional[StateStore] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.default_config = default_config or RateLimitConfig()
        overrides = ACTIVITY_RATE_LIMITS if activity_overrides is None else activity_overrides
        self.activity_configs: dict[str, RateLimitConfig] = {
            activity_type: replace(self.default_config, **values)
            for activity_type, values in overrides.items()
        }
        self.store = store or InMemoryStateStore()
        self.clock = clock

    def get_config(self, activity_type: str) -> RateLimitConfig:
        return self.activity_configs.get(activity_type, self.default_config)

    # ── Public interface ──────────────────────

    def check_limit(self, request: PointsRequest) -> RateLimitResult:
        config = self.get_config(request.activity_type)
        now = self._request_time(request)

        if config.exempt:
            return RateLimitResult(allowed=True, allowed_amount=request.amount)

        if request.amount > config.max_points_per_instance:
            log.info(
                "points_truncated",
                student_id=request.student_id,
                activity_type=request.activity_type,
                activity_id=request.activity_id,
                requested=request.amount,
                allowed=config.max_points_per_instance,
            )
            return RateLimitResult(
                allowed=True,
                allowed_amount=config.max_points_per_instance,
                reason=RATE_REASON_INSTANCE,
            )

        outcome: list[RateLimitResult] = []

        def consume(stored: Optional[dict[str, Any]]) -> dict[str, Any]:
            entry = self._current_entry(stored, config, now)
            outcome[:] = [self._evaluate(request, config, entry, now)]
            return entry

        self.store.update(NS_RATE_LIMIT, request.student_id, consume)
        result = outcome[0]
        if not result.allowed:
            self._log_rejection(request, result.reason, result.reset_time)
        return result

    def register_points_awarded(self, request: PointsRequest, actual_amount: int) -> None:
        """Records a grant made outside check_limit (no checks applied)."""
        config = self.get_config(request.activity_type)
        now = self._request_time(request)

        def record(stored: Optional[dict[str, Any]]) -> dict[str, Any]:
            entry = self._current_entry(stored, config, now)
            entry["points_used"] += max(0, actual_amount)
            entry["activities"][_activity_key(request)] = to_iso(now)
            return entry

        self.store.update(NS_RATE_LIMIT, request.student_id, record)

    def refund_points(self, student_id: str, amount: int) -> None:
        """
        Removes `amount` from the student's current window, e.g. when a
        caller blocks an award after check_limit allowed it. Cooldown
        timestamps are kept.
        """
        if amount <= 0 or self.store.get(NS_RATE_LIMIT, student_id) is None:
            return

        def refund(stored: Optional[dict[str, Any]]) -> dict[str, Any]:
            entry = stored or {"window_start": to_iso(self.clock()), "points_used": 0, "activities": {}}
            entry["points_used"] = max(0, entry["points_used"] - amount)
            return entry

        self.store.update(NS_RATE_LIMIT, student_id, refund)

    def get_student_rate_limit_status(self, student_id: str) -> Optional[StudentRateLimitStatus]:
        entry = self.store.get(NS_RATE_LIMIT, student_id)
        if entry is None:
            return None
        return StudentRateLimitStatus(
            student_id=student_id,
            window_start=from_iso(entry["window_start"]),
            points_used=entry["points_used"],
            activities={key: from_iso(ts) for key, ts in entry["activities"].items()},
        )

    def reset_student(self, student_id: str) -> None:
        self.store.delete(NS_RATE_LIMIT, student_id)

    def prune_expired(self, now: Optional[datetime] = None) -> int:
        """
        Drops students whose window and every activity cooldown have lapsed.
        Returns the number of entries removed.
        """
        now = ensure_aware(now) if now is not None else self.clock()
        longest_window = max(
            [self.default_config.window_seconds]
            + [cfg.window_seconds for cfg in self.activity_configs.values()]
        )
        longest_cooldown = max(
            [self.default_config.cooldown_seconds]
            + [cfg.cooldown_seconds for cfg in self.activity_configs.values()]
        )

        removed = 0
        for student_id in self.store.keys(NS_RATE_LIMIT):
            entry = self.store.get(NS_RATE_LIMIT, student_id)
            if entry is None:
                continue
            window_done = now - from_iso(entry["window_start"]) > timedelta(seconds=longest_window)
            cooldowns_done = all(
                now - from_iso(ts) > timedelta(seconds=longest_cooldown)
                for ts in entry["activities"].values()
            )
            if window_done and cooldowns_done:
                self.store.delete(NS_RATE_LIMIT, student_id)
                removed += 1

        if removed:
            log.info("rate_limit_entries_pruned", removed=removed)
        return removed

    # ── Internals ─────────────────────────────

    def _request_time(self, request: PointsRequest) -> datetime:
        return ensure_aware(request.timestamp) if request.timestamp is not None else self.clock()

    def _current_entry(
        self,
        stored: Optional[dict[str, Any]],
        config: RateLimitConfig,
        now: datetime,
    ) -> dict[str, Any]:
        if stored is None:
            return {"window_start": to_iso(now), "points_used": 0, "activities": {}}

        if now - from_iso(stored["window_start"]) > timedelta(seconds=config.window_seconds):
            # New window; cooldown timestamps survive the reset
            stored["window_start"] = to_iso(now)
            stored["points_used"] = 0
        return stored

    @staticmethod
    def _evaluate(
        request: PointsRequest,
        config: RateLimitConfig,
        entry: dict[str, Any],
        now: datetime,
    ) -> RateLimitResult:
        """Cooldown, then window. Records the request in `entry` when allowed."""
        window_start = from_iso(entry["window_start"])
        window_remaining = max(0, config.max_points_per_window - entry["points_used"])

        last_award = from_iso(entry["activities"].get(_activity_key(request)))
        if config.cooldown_seconds > 0 and last_award is not None:
            cooldown_ends = last_award + timedelta(seconds=config.cooldown_seconds)
            if now < cooldown_ends:
                return RateLimitResult(
                    allowed=False,
                    allowed_amount=0,
                    reason=RATE_REASON_COOLDOWN,
                    reset_time=cooldown_ends,
                    remaining=window_remaining,
                )

        if request.amount > window_remaining:
            return RateLimitResult(
                allowed=False,
                allowed_amount=0,
                reason=RATE_REASON_WINDOW,
                reset_time=window_start + timedelta(seconds=config.window_seconds),
                remaining=window_remaining,
            )

        entry["points_used"] += request.amount
        entry["activities"][_activity_key(request)] = to_iso(now)
        return RateLimitResult(
            allowed=True,
            allowed_amount=request.amount,
            reset_time=window_start + timedelta(seconds=config.window_seconds),
            remaining=window_remaining - request.amount,
        )

    def _log_rejection(self, request: PointsRequest, reason: str, reset_time: datetime) -> None:
        log.warning(
            "points_rejected",
            student_id=request.student_id,
            activity_type=request.activity_type,
            activity_id=request.activity_id,
            requested=request.amount,
            reason=reason,
            reset_time=reset_time.isoformat(),
        )


def _activity_key(request: PointsRequest) -> str:
    return f"{request.activity_type}:{request.activity_id}"
