# scoring/normalized_scoring.py
# Leaderboard Scoring — Cross-context score normalization for fair ranking.
# Scores from different classes/subjects/campuses are mapped onto a common
# 0–100 scale after optional fairness adjustments.
# Imports from: utils/constants.py, utils/logger.py, utils/timeutils.py

import math
import statistics
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from utils.constants import (
    ASSUMED_TERM_LENGTH_MONTHS,
    COMPLETION_RATE_PIVOT,
    DIFFICULTY_RATING_CENTER,
    LATE_JOINER_DAYS_SCALE,
    LATE_JOINER_MAX_BONUS,
    METHOD_ADJUSTED_Z_SCORE,
    METHOD_MIN_MAX,
    METHOD_PERCENTILE,
    METHOD_Z_SCORE,
    NORMALIZATION_NEUTRAL_SCORE,
    Z_SCORE_CLIP,
)
from utils.logger import get_logger
from utils.timeutils import Clock, ensure_aware, months_before, utc_now

log = get_logger("scoring.normalized_scoring")


# ─────────────────────────────────────────────
# Contracts
# ─────────────────────────────────────────────

@dataclass
class NormalizationContext:
    id:                 str
    type:               str                     # class | subject | course | campus
    average_score:      float
    standard_deviation: float
    population_size:    int
    difficulty_rating:  Optional[float] = None  # 0–10, 5 = neutral


@dataclass
class StudentContext:
    student_id:           str
    context_id:           str
    raw_score:            float
    time_spent:           Optional[float] = None      # minutes
    activities_completed: Optional[int] = None
    total_activities:     Optional[int] = None
    join_date:            Optional[datetime] = None


@dataclass
class NormalizationOptions:
    method:                     str = METHOD_Z_SCORE
    adjust_for_difficulty:      bool = True
    adjust_for_time_spent:      bool = False
    adjust_for_late_joining:    bool = False
    adjust_for_completion_rate: bool = False
    include_percentile:         bool = True
    term_start:                 Optional[datetime] = None   # default: ASSUMED_TERM_LENGTH_MONTHS before now


@dataclass
class NormalizedScore:
    student_id:       str
    context_id:       str
    raw_score:        float
    normalized_score: float
    method:           str
    percentile_rank:  Optional[float] = None
    z_score:          Optional[float] = None
    adjustments:      dict[str, float] = field(default_factory=dict)
    rank:             Optional[int] = None


# ─────────────────────────────────────────────
# Adjustment formulas
# ─────────────────────────────────────────────

def difficulty_adjustment(difficulty_rating: float) -> float:
    return 1.0 + (difficulty_rating - DIFFICULTY_RATING_CENTER) / 10.0


def time_spent_adjustment(time_spent_minutes: float) -> float:
    """Diminishing returns on hours invested; never below 1.0."""
    hours = max(time_spent_minutes, 0.0) / 60.0
    return 1.0 + math.log10(1.0 + hours) / 10.0


def late_joiner_adjustment(join_date: datetime, term_start: datetime) -> float:
    days_late = (ensure_aware(join_date) - ensure_aware(term_start)).total_seconds() / 86400.0
    if days_late <= 0:
        return 1.0
    return 1.0 + min(LATE_JOINER_MAX_BONUS, days_late / LATE_JOINER_DAYS_SCALE)


def completion_rate_adjustment(completion_rate: float) -> float:
    """Penalises incomplete work; limited upside above the pivot."""
    if completion_rate <= COMPLETION_RATE_PIVOT:
        return 0.8 + completion_rate * 0.25
    return 1.0 + (completion_rate - COMPLETION_RATE_PIVOT) * 0.1


# ─────────────────────────────────────────────
# Service
# ─────────────────────────────────────────────

class NormalizedScoringService:
    """
    Contexts and student scores are registered explicitly by the caller
    (both are upserts), then normalized on demand. Every method falls back
    to the 50 midpoint when the context carries no information.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self.clock = clock
        self._contexts: dict[str, NormalizationContext] = {}
        # student_id -> context_id -> StudentContext
        self._student_contexts: dict[str, dict[str, StudentContext]] = {}

    # ── Registration ──────────────────────────

    def register_context(self, context: NormalizationContext) -> None:
        self._contexts[context.id] = context
        log.info(
            "context_registered",
            context_id=context.id,
            context_type=context.type,
            average_score=context.average_score,
            standard_deviation=context.standard_deviation,
            population_size=context.population_size,
        )

    def register_student_context(self, student_context: StudentContext) -> None:
        self._student_contexts.setdefault(student_context.student_id, {})[
            student_context.context_id
        ] = student_context

    def get_context(self, context_id: str) -> Optional[NormalizationContext]:
        return self._contexts.get(context_id)

    def get_student_context(self, student_id: str, context_id: str) -> Optional[StudentContext]:
        return self._student_contexts.get(student_id, {}).get(context_id)

    def students_in_context(self, context_id: str) -> list[StudentContext]:
        return [
            contexts[context_id]
            for contexts in self._student_contexts.values()
            if context_id in contexts
        ]

    def compute_context_statistics(self, context_id: str) -> Optional[NormalizationContext]:
        """
        Recomputes mean, population standard deviation and size from the
        registered raw scores and upserts the context. Type and difficulty
        rating are kept from an existing registration.
        """
        scores = [sc.raw_score for sc in self.students_in_context(context_id)]
        if not scores:
            return None

        existing = self._contexts.get(context_id)
        context = NormalizationContext(
            id=context_id,
            type=existing.type if existing else "class",
            average_score=statistics.fmean(scores),
            standard_deviation=statistics.pstdev(scores),
            population_size=len(scores),
            difficulty_rating=existing.difficulty_rating if existing else None,
        )
        self.register_context(context)
        return context

    # ── Normalization ─────────────────────────

    def normalize_score(
        self,
        student_id: str,
        context_id: str,
        options: Optional[NormalizationOptions] = None,
    ) -> Optional[NormalizedScore]:
        options = options or NormalizationOptions()
        student_context = self.get_student_context(student_id, context_id)
        if student_context is None:
            log.warning("student_context_missing", student_id=student_id, context_id=context_id)
            return None

        context = self._contexts.get(context_id)
        adjusted, adjustments = self._apply_adjustments(student_context, context, options)

        z_score: Optional[float] = None
        if options.method == METHOD_Z_SCORE:
            z_score = self._z_score(adjusted, context)
            normalized = self._z_to_linear(z_score)
        elif options.method == METHOD_ADJUSTED_Z_SCORE:
            z_score = self._z_score(adjusted, context)
            normalized = self._z_to_sigmoid(z_score)
        elif options.method == METHOD_PERCENTILE:
            normalized = self._percentile(adjusted, context)
        elif options.method == METHOD_MIN_MAX:
            normalized = self._min_max(adjusted, context)
        else:
            log.warning("unknown_normalization_method", method=options.method, context_id=context_id)
            normalized = NORMALIZATION_NEUTRAL_SCORE

        percentile_rank = (
            self._percentile(adjusted, context) if options.include_percentile else None
        )

        return NormalizedScore(
            student_id=student_id,
            context_id=context_id,
            raw_score=student_context.raw_score,
            normalized_score=normalized,
            method=options.method,
            percentile_rank=percentile_rank,
            z_score=z_score,
            adjustments=adjustments,
        )

    def normalize_all_scores(
        self,
        context_id: str,
        options: Optional[NormalizationOptions] = None,
    ) -> list[NormalizedScore]:
        results: list[NormalizedScore] = []
        for student_context in self.students_in_context(context_id):
            normalized = self.normalize_score(student_context.student_id, context_id, options)
            if normalized is not None:
                results.append(normalized)

        log.info(
            "context_normalized",
            context_id=context_id,
            method=(options or NormalizationOptions()).method,
            students=len(results),
        )
        return results

    @staticmethod
    def rank_scores(scores: list[NormalizedScore]) -> list[NormalizedScore]:
        """Highest normalized score first; rank = position + 1."""
        ordered = sorted(
            scores,
            key=lambda s: (-s.normalized_score, -s.raw_score, s.student_id),
        )
        for index, score in enumerate(ordered):
            score.rank = index + 1
        return ordered

    # ── Internals ─────────────────────────────

    def _apply_adjustments(
        self,
        student_context: StudentContext,
        context: Optional[NormalizationContext],
        options: NormalizationOptions,
    ) -> tuple[float, dict[str, float]]:
        score = student_context.raw_score
        adjustments: dict[str, float] = {}

        if options.adjust_for_difficulty and context and context.difficulty_rating is not None:
            adjustments["difficulty"] = difficulty_adjustment(context.difficulty_rating)

        if options.adjust_for_time_spent and student_context.time_spent is not None:
            adjustments["time_spent"] = time_spent_adjustment(student_context.time_spent)

        if options.adjust_for_late_joining and student_context.join_date is not None:
            term_start = options.term_start or months_before(self.clock(), ASSUMED_TERM_LENGTH_MONTHS)
            adjustments["late_joiner"] = late_joiner_adjustment(student_context.join_date, term_start)

        if (
            options.adjust_for_completion_rate
            and student_context.activities_completed is not None
            and student_context.total_activities
        ):
            rate = student_context.activities_completed / student_context.total_activities
            adjustments["completion_rate"] = completion_rate_adjustment(rate)

        for multiplier in adjustments.values():
            score *= multiplier
        return score, adjustments

    @staticmethod
    def _z_score(score: float, context: Optional[NormalizationContext]) -> float:
        if context is None or context.standard_deviation == 0:
            return 0.0
        return (score - context.average_score) / context.standard_deviation

    @staticmethod
    def _z_to_linear(z_score: float) -> float:
        clipped = max(-Z_SCORE_CLIP, min(Z_SCORE_CLIP, z_score))
        return (clipped + Z_SCORE_CLIP) / (2 * Z_SCORE_CLIP) * 100.0

    @staticmethod
    def _z_to_sigmoid(z_score: float) -> float:
        # exp overflows past ~709
        return 100.0 / (1.0 + math.exp(min(-z_score, 700.0)))

    def _context_scores(self, context: Optional[NormalizationContext]) -> list[float]:
        """Registered raw scores; empty when the context itself is unregistered."""
        if context is None:
            return []
        return [sc.raw_score for sc in self.students_in_context(context.id)]

    def _percentile(self, score: float, context: Optional[NormalizationContext]) -> float:
        scores = self._context_scores(context)
        if not scores:
            return NORMALIZATION_NEUTRAL_SCORE
        below = sum(1 for s in scores if s < score)
        return below / len(scores) * 100.0

    def _min_max(self, score: float, context: Optional[NormalizationContext]) -> float:
        scores = self._context_scores(context)
        if not scores:
            return NORMALIZATION_NEUTRAL_SCORE
        low, high = min(scores), max(scores)
        if low == high:
            return NORMALIZATION_NEUTRAL_SCORE
        # Adjusted scores can fall outside the raw range
        return max(0.0, min(100.0, (score - low) / (high - low) * 100.0))
