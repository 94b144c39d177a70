# api/routes_points.py
# Leaderboard Scoring — POST /points/award and per-student point introspection.
# POST /points/award runs the full award pipeline:
#   calculate → rate-limit → anomaly check → track → persist
# Imports from: api/dependencies.py, database/*, scoring/*, schemas/points.py, utils/*

import json
from dataclasses import replace

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from api.dependencies import ScoringServices, get_services
from database.db import get_db
from database.models import AnomalyFlag, PointAward
from scoring.anomaly_detection import AnomalyDetectionResult, PointEarningEvent
from scoring.balanced_scoring import PointsCalculationRequest, PointsCalculationResult
from scoring.rate_limiter import PointsRequest, RateLimitResult
from schemas.points import (
    AnomalySchema,
    AwardHistoryItem,
    AwardHistoryResponse,
    AwardPointsRequest,
    AwardPointsResponse,
    RateLimitResponse,
    RateLimitStatusResponse,
    UsageResponse,
)
from utils.constants import ACTION_BLOCK, RATE_REASON_INSTANCE
from utils.logger import get_logger
from utils.timeutils import ensure_aware

router = APIRouter(prefix="/points", tags=["points"])
log    = get_logger("api.routes_points")


# ─────────────────────────────────────────────
# POST /points/award
# ─────────────────────────────────────────────

@router.post(
    "/award",
    response_model=AwardPointsResponse,
    summary="Calculate, rate-limit, screen and record a point award",
    responses={
        429: {"model": RateLimitResponse, "description": "Rate limit or cooldown active"},
    },
)
def award_points(
    body:     AwardPointsRequest,
    db:       Session = Depends(get_db),
    services: ScoringServices = Depends(get_services),
) -> AwardPointsResponse:
    """
    Award pipeline for one completed activity:

        1. BalancedScoringSystem  → multiplied and daily/weekly-capped points
        2. PointsRateLimiter      → reject (429) on cooldown / window limit,
                                    truncate on per-instance limit
        3. AnomalyDetectionService → screen against the student's history,
                                    then record the event
        4. Persist PointAward (+ AnomalyFlag when flagged)

    Steps 1–3 run under the student's lock so concurrent awards cannot
    undercount usage.
    """
    timestamp = ensure_aware(body.timestamp) if body.timestamp else services.clock()
    log.info(
        "award_request",
        student_id=body.student_id,
        activity_type=body.activity_type,
        activity_id=body.activity_id,
    )

    with services.student_lock(body.student_id):

        # ── Step 1: calculate ──────────────────────────────────────────────
        calc: PointsCalculationResult = services.scoring.calculate_points(
            body.student_id,
            PointsCalculationRequest(
                activity_type=body.activity_type,
                difficulty=body.difficulty,
                score=body.score,
                time_spent=body.time_spent,
                is_repeat=body.is_repeat,
                custom_multiplier=body.custom_multiplier,
            ),
        )

        awarded = calc.calculated_points
        rate: RateLimitResult = RateLimitResult(allowed=True, allowed_amount=awarded)
        anomaly = AnomalyDetectionResult(is_anomaly=False, confidence=0.0)

        if awarded > 0:
            # ── Step 2: rate limit ─────────────────────────────────────────
            points_request = PointsRequest(
                student_id=body.student_id,
                activity_type=body.activity_type,
                activity_id=body.activity_id,
                amount=awarded,
                timestamp=timestamp,
            )
            rate = services.rate_limiter.check_limit(points_request)

            if not rate.allowed:
                services.scoring.release_points(body.student_id, body.activity_type, awarded)
                raise HTTPException(
                    status_code=429,
                    detail=RateLimitResponse(
                        detail="Points not awarded: rate limit active.",
                        reason=rate.reason,
                        reset_time=rate.reset_time,
                        remaining=rate.remaining,
                    ).model_dump(mode="json"),
                )

            if rate.reason == RATE_REASON_INSTANCE:
                services.rate_limiter.register_points_awarded(points_request, rate.allowed_amount)
                services.scoring.release_points(
                    body.student_id, body.activity_type, awarded - rate.allowed_amount,
                )
            awarded = rate.allowed_amount

            # ── Step 3: anomaly screen + track ─────────────────────────────
            event = PointEarningEvent(
                student_id=body.student_id,
                amount=awarded,
                source=body.activity_type,
                source_id=body.activity_id,
                timestamp=timestamp,
            )
            anomaly = services.detector.detect_anomaly(event)

            if anomaly.is_anomaly and anomaly.suggested_action == ACTION_BLOCK:
                log.warning("award_blocked", student_id=body.student_id, anomaly_type=anomaly.anomaly_type)
                services.scoring.release_points(body.student_id, body.activity_type, awarded)
                services.rate_limiter.refund_points(body.student_id, awarded)
                awarded = 0
                event = replace(event, amount=0)

            services.detector.track_event(event)

    # ── Step 4: persist ────────────────────────────────────────────────────
    award = PointAward(
        student_id=body.student_id,
        activity_type=body.activity_type,
        activity_id=body.activity_id,
        base_points=calc.base_points,
        calculated_points=calc.calculated_points,
        uncapped_points=calc.uncapped_points,
        awarded_points=awarded,
        was_capped=calc.was_capped,
        breakdown=json.dumps(calc.breakdown),
        rate_limit_reason=rate.reason,
        anomaly_flagged=anomaly.is_anomaly,
        awarded_at=timestamp,
    )
    db.add(award)
    db.flush()

    if anomaly.is_anomaly:
        db.add(AnomalyFlag(
            student_id=body.student_id,
            award_id=award.award_id,
            anomaly_type=anomaly.anomaly_type,
            confidence=anomaly.confidence,
            details=anomaly.details,
            suggested_action=anomaly.suggested_action,
        ))

    log.info(
        "award_recorded",
        award_id=award.award_id,
        student_id=body.student_id,
        awarded_points=awarded,
        was_capped=calc.was_capped,
        rate_limit_reason=rate.reason,
        anomaly_flagged=anomaly.is_anomaly,
    )

    return AwardPointsResponse(
        award_id=award.award_id,
        student_id=body.student_id,
        activity_type=body.activity_type,
        base_points=calc.base_points,
        calculated_points=calc.calculated_points,
        awarded_points=awarded,
        was_capped=calc.was_capped,
        uncapped_points=calc.uncapped_points,
        breakdown=calc.breakdown,
        rate_limit_reason=rate.reason,
        anomaly=AnomalySchema(
            anomaly_type=anomaly.anomaly_type,
            confidence=anomaly.confidence,
            details=anomaly.details,
            suggested_action=anomaly.suggested_action,
        ) if anomaly.is_anomaly else None,
    )


# ─────────────────────────────────────────────
# GET /points/{student_id}/usage/{activity_type}
# ─────────────────────────────────────────────

@router.get(
    "/{student_id}/usage/{activity_type}",
    response_model=UsageResponse,
    summary="Daily and weekly cap usage for one activity type",
)
def get_usage(
    student_id:    str,
    activity_type: str,
    services:      ScoringServices = Depends(get_services),
) -> UsageResponse:
    usage = services.scoring.get_student_usage(student_id, activity_type)
    if usage is None:
        raise HTTPException(status_code=404, detail=f"Unknown activity type '{activity_type}'.")
    return UsageResponse(
        student_id=student_id,
        activity_type=activity_type,
        daily_used=usage.daily_used,
        daily_remaining=usage.daily_remaining,
        weekly_used=usage.weekly_used,
        weekly_remaining=usage.weekly_remaining,
    )


# ─────────────────────────────────────────────
# GET /points/{student_id}/rate-limit
# ─────────────────────────────────────────────

@router.get(
    "/{student_id}/rate-limit",
    response_model=RateLimitStatusResponse,
    summary="Current rate-limit window for a student",
)
def get_rate_limit_status(
    student_id: str,
    services:   ScoringServices = Depends(get_services),
) -> RateLimitStatusResponse:
    status = services.rate_limiter.get_student_rate_limit_status(student_id)
    if status is None:
        return RateLimitStatusResponse(student_id=student_id)
    return RateLimitStatusResponse(
        student_id=student_id,
        window_start=status.window_start,
        points_used=status.points_used,
        activities=status.activities,
    )


# ─────────────────────────────────────────────
# GET /points/{student_id}/history
# ─────────────────────────────────────────────

@router.get(
    "/{student_id}/history",
    response_model=AwardHistoryResponse,
    summary="Recorded awards for a student, newest first",
)
def get_award_history(
    student_id: str,
    limit:  int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db:     Session = Depends(get_db),
) -> AwardHistoryResponse:
    query = db.query(PointAward).filter(PointAward.student_id == student_id)
    total = query.count()
    total_points: int = (
        db.query(func.coalesce(func.sum(PointAward.awarded_points), 0))
        .filter(PointAward.student_id == student_id)
        .scalar()
    )

    rows: list[PointAward] = (
        query.order_by(PointAward.awarded_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )

    return AwardHistoryResponse(
        student_id=student_id,
        total=total,
        total_points=total_points,
        awards=[
            AwardHistoryItem(
                award_id=row.award_id,
                activity_type=row.activity_type,
                activity_id=row.activity_id,
                awarded_points=row.awarded_points,
                was_capped=row.was_capped,
                rate_limit_reason=row.rate_limit_reason,
                anomaly_flagged=row.anomaly_flagged,
                awarded_at=row.awarded_at.isoformat() if row.awarded_at else None,
            )
            for row in rows
        ],
    )
