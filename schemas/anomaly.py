# schemas/anomaly.py
# Leaderboard Scoring — Pydantic models for the /anomalies endpoints.
# Imports from: pydantic only.

from typing import Optional

from pydantic import BaseModel, Field


class LeaderboardEntrySchema(BaseModel):
    student_id:    str = Field(..., min_length=1, max_length=64)
    reward_points: float = Field(..., ge=0.0)
    student_name:  Optional[str] = None
    rank:          Optional[int] = Field(default=None, ge=1)


class LeaderboardScanRequest(BaseModel):
    """POST /anomalies/leaderboard request body."""
    entries:       list[LeaderboardEntrySchema]
    persist_flags: bool = Field(default=True,
                                description="Store flagged students as AnomalyFlag rows")


class FlaggedStudentSchema(BaseModel):
    student_id:       str
    anomaly_type:     str
    confidence:       float = Field(..., ge=0.0, le=1.0)
    details:          Optional[str] = None
    suggested_action: str


class LeaderboardScanResponse(BaseModel):
    total_entries: int
    flagged:       list[FlaggedStudentSchema]


class AnomalyFlagSchema(BaseModel):
    flag_id:          str
    student_id:       str
    award_id:         Optional[str] = None
    anomaly_type:     str
    confidence:       float
    details:          Optional[str] = None
    suggested_action: str
    flagged_at:       Optional[str] = None


class AnomalyFlagListResponse(BaseModel):
    total: int
    flags: list[AnomalyFlagSchema]
