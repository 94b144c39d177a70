# api/routes_normalization.py
# Leaderboard Scoring — Context registration and normalized, ranked leaderboards.
# Imports from: api/dependencies.py, scoring/normalized_scoring.py,
#               schemas/normalization.py, utils/logger.py

from dataclasses import asdict
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import ScoringServices, get_services
from schemas.normalization import (
    ContextRegisterRequest,
    ContextSchema,
    Method,
    NormalizedLeaderboardResponse,
    NormalizedScoreSchema,
    StudentContextRequest,
)
from scoring.normalized_scoring import (
    NormalizationContext,
    NormalizationOptions,
    StudentContext,
)
from utils.logger import get_logger

router = APIRouter(prefix="/normalization", tags=["normalization"])
log    = get_logger("api.routes_normalization")


def _options(
    method: Method = Query(default="z-score"),
    adjust_for_difficulty:      bool = Query(default=True),
    adjust_for_time_spent:      bool = Query(default=False),
    adjust_for_late_joining:    bool = Query(default=False),
    adjust_for_completion_rate: bool = Query(default=False),
    include_percentile:         bool = Query(default=True),
    term_start: Optional[datetime] = Query(default=None,
                                           description="Defaults to four months before now"),
) -> NormalizationOptions:
    return NormalizationOptions(
        method=method,
        adjust_for_difficulty=adjust_for_difficulty,
        adjust_for_time_spent=adjust_for_time_spent,
        adjust_for_late_joining=adjust_for_late_joining,
        adjust_for_completion_rate=adjust_for_completion_rate,
        include_percentile=include_percentile,
        term_start=term_start,
    )


@router.post("/contexts", response_model=ContextSchema, summary="Register or replace a context")
def register_context(
    body:     ContextRegisterRequest,
    services: ScoringServices = Depends(get_services),
) -> ContextSchema:
    context = NormalizationContext(**body.model_dump())
    services.normalizer.register_context(context)
    return ContextSchema(**asdict(context))


@router.post("/students", summary="Register or replace a student's score in a context")
def register_student_context(
    body:     StudentContextRequest,
    services: ScoringServices = Depends(get_services),
) -> dict:
    services.normalizer.register_student_context(StudentContext(**body.model_dump()))
    log.info("student_context_registered", student_id=body.student_id, context_id=body.context_id)
    return {"student_id": body.student_id, "context_id": body.context_id, "registered": True}


@router.post(
    "/contexts/{context_id}/recompute",
    response_model=ContextSchema,
    summary="Recompute context statistics from registered scores",
)
def recompute_context(
    context_id: str,
    services:   ScoringServices = Depends(get_services),
) -> ContextSchema:
    context = services.normalizer.compute_context_statistics(context_id)
    if context is None:
        raise HTTPException(status_code=404, detail=f"No scores registered for context '{context_id}'.")
    return ContextSchema(**asdict(context))


@router.get(
    "/contexts/{context_id}/scores",
    response_model=NormalizedLeaderboardResponse,
    summary="Normalized and ranked scores for every student in a context",
)
def get_context_scores(
    context_id: str,
    options:    NormalizationOptions = Depends(_options),
    services:   ScoringServices = Depends(get_services),
) -> NormalizedLeaderboardResponse:
    scores = services.normalizer.normalize_all_scores(context_id, options)
    ranked = services.normalizer.rank_scores(scores)
    return NormalizedLeaderboardResponse(
        context_id=context_id,
        method=options.method,
        total=len(ranked),
        scores=[NormalizedScoreSchema(**asdict(score)) for score in ranked],
    )


@router.get(
    "/contexts/{context_id}/students/{student_id}",
    response_model=NormalizedScoreSchema,
    summary="Normalized score for one student",
)
def get_student_score(
    context_id: str,
    student_id: str,
    options:    NormalizationOptions = Depends(_options),
    services:   ScoringServices = Depends(get_services),
) -> NormalizedScoreSchema:
    score = services.normalizer.normalize_score(student_id, context_id, options)
    if score is None:
        raise HTTPException(
            status_code=404,
            detail=f"Student '{student_id}' has no score in context '{context_id}'.",
        )
    return NormalizedScoreSchema(**asdict(score))
