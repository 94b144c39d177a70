# schemas/points.py
# Leaderboard Scoring — Pydantic request/response models for the /points endpoints.
# Imports from: pydantic only.

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


# ─────────────────────────────────────────────
# Request model
# ─────────────────────────────────────────────

class AwardPointsRequest(BaseModel):
    """
    POST /points/award request body.
    One graded/completed activity for one student.
    """
    student_id:        str = Field(..., min_length=1, max_length=64)
    activity_type:     str = Field(..., min_length=1, max_length=64,
                                   description="quiz | assignment | exam | discussion | "
                                               "participation | attendance | achievement")
    activity_id:       str = Field(..., min_length=1, max_length=64)
    difficulty:        Optional[Literal["easy", "medium", "hard", "expert"]] = None
    score:             Optional[float] = Field(default=None, ge=0.0, le=100.0)
    time_spent:        Optional[float] = Field(default=None, ge=0.0,
                                               description="Minutes spent on the activity")
    is_repeat:         bool = False
    custom_multiplier: Optional[float] = Field(default=None, ge=0.0)
    timestamp:         Optional[datetime] = None

    @field_validator("student_id", "activity_type", "activity_id")
    @classmethod
    def no_whitespace_ids(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Value must be non-empty after stripping whitespace.")
        return stripped


# ─────────────────────────────────────────────
# Response models
# ─────────────────────────────────────────────

class AnomalySchema(BaseModel):
    anomaly_type:     Optional[str] = None
    confidence:       float = Field(..., ge=0.0, le=1.0)
    details:          Optional[str] = None
    suggested_action: Optional[str] = None


class AwardPointsResponse(BaseModel):
    """POST /points/award response body."""
    award_id:          str
    student_id:        str
    activity_type:     str
    base_points:       int
    calculated_points: int
    awarded_points:    int
    was_capped:        bool
    uncapped_points:   Optional[int] = None
    breakdown:         dict[str, float]
    rate_limit_reason: Optional[str] = None
    anomaly:           Optional[AnomalySchema] = None


class RateLimitResponse(BaseModel):
    """429 body when the rate limiter rejects an award."""
    detail:     str
    reason:     str
    reset_time: Optional[datetime] = None
    remaining:  Optional[int] = None


class UsageResponse(BaseModel):
    student_id:       str
    activity_type:    str
    daily_used:       int
    daily_remaining:  int
    weekly_used:      int
    weekly_remaining: int


class RateLimitStatusResponse(BaseModel):
    student_id:   str
    window_start: Optional[datetime] = None
    points_used:  int = 0
    activities:   dict[str, datetime] = {}


class AwardHistoryItem(BaseModel):
    award_id:          str
    activity_type:     str
    activity_id:       str
    awarded_points:    int
    was_capped:        bool
    rate_limit_reason: Optional[str] = None
    anomaly_flagged:   bool
    awarded_at:        Optional[str] = None


class AwardHistoryResponse(BaseModel):
    student_id:   str
    total:        int
    total_points: int
    awards:       list[AwardHistoryItem]
