# api/routes_anomalies.py
# Leaderboard Scoring — Leaderboard-wide anomaly scan and the staff review queue.
# Imports from: api/dependencies.py, database/*, scoring/anomaly_detection.py,
#               schemas/anomaly.py, utils/logger.py

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.dependencies import ScoringServices, get_services
from database.db import get_db
from database.models import AnomalyFlag
from schemas.anomaly import (
    AnomalyFlagListResponse,
    AnomalyFlagSchema,
    FlaggedStudentSchema,
    LeaderboardScanRequest,
    LeaderboardScanResponse,
)
from scoring.anomaly_detection import LeaderboardEntry
from utils.logger import get_logger

router = APIRouter(prefix="/anomalies", tags=["anomalies"])
log    = get_logger("api.routes_anomalies")


# ─────────────────────────────────────────────
# POST /anomalies/leaderboard
# ─────────────────────────────────────────────

@router.post(
    "/leaderboard",
    response_model=LeaderboardScanResponse,
    summary="Scan a leaderboard for population-level outliers",
)
def scan_leaderboard(
    body:     LeaderboardScanRequest,
    db:       Session = Depends(get_db),
    services: ScoringServices = Depends(get_services),
) -> LeaderboardScanResponse:
    entries = [LeaderboardEntry(**entry.model_dump()) for entry in body.entries]
    results = services.detector.analyze_leaderboard(entries)

    flagged = [
        FlaggedStudentSchema(
            student_id=student_id,
            anomaly_type=result.anomaly_type,
            confidence=result.confidence,
            details=result.details,
            suggested_action=result.suggested_action,
        )
        for student_id, result in results.items()
    ]

    if body.persist_flags:
        for item in flagged:
            db.add(AnomalyFlag(
                student_id=item.student_id,
                anomaly_type=item.anomaly_type,
                confidence=item.confidence,
                details=item.details,
                suggested_action=item.suggested_action,
            ))

    return LeaderboardScanResponse(total_entries=len(entries), flagged=flagged)


# ─────────────────────────────────────────────
# GET /anomalies/flags
# ─────────────────────────────────────────────

@router.get(
    "/flags",
    response_model=AnomalyFlagListResponse,
    summary="Unresolved anomaly flags, oldest first",
)
def get_unresolved_flags(db: Session = Depends(get_db)) -> AnomalyFlagListResponse:
    rows: list[AnomalyFlag] = (
        db.query(AnomalyFlag)
        .filter(AnomalyFlag.resolved == False)  # noqa: E712
        .order_by(AnomalyFlag.flagged_at.asc())
        .all()
    )
    log.info("anomaly_flags_returned", count=len(rows))
    return AnomalyFlagListResponse(
        total=len(rows),
        flags=[
            AnomalyFlagSchema(
                flag_id=row.flag_id,
                student_id=row.student_id,
                award_id=row.award_id,
                anomaly_type=row.anomaly_type,
                confidence=row.confidence,
                details=row.details,
                suggested_action=row.suggested_action,
                flagged_at=row.flagged_at.isoformat() if row.flagged_at else None,
            )
            for row in rows
        ],
    )


# ─────────────────────────────────────────────
# POST /anomalies/flags/{flag_id}/resolve
# ─────────────────────────────────────────────

@router.post("/flags/{flag_id}/resolve", summary="Mark an anomaly flag as reviewed")
def resolve_flag(flag_id: str, db: Session = Depends(get_db)) -> dict:
    row = db.query(AnomalyFlag).filter(AnomalyFlag.flag_id == flag_id).first()
    if row is None:
        raise HTTPException(status_code=404, detail=f"Anomaly flag '{flag_id}' not found.")

    row.resolved = True
    log.info("anomaly_flag_resolved", flag_id=flag_id, student_id=row.student_id)
    return {"flag_id": flag_id, "resolved": True}
