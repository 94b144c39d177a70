# schemas/normalization.py
# Leaderboard Scoring — Pydantic models for the /normalization endpoints.
# Imports from: pydantic only.

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

Method = Literal["z-score", "percentile", "min-max", "adjusted-z-score"]


class ContextRegisterRequest(BaseModel):
    """POST /normalization/contexts: upsert a comparison scope."""
    id:                 str = Field(..., min_length=1, max_length=64)
    type:               Literal["class", "subject", "course", "campus"] = "class"
    average_score:      float = Field(..., ge=0.0)
    standard_deviation: float = Field(..., ge=0.0)
    population_size:    int = Field(..., ge=0)
    difficulty_rating:  Optional[float] = Field(default=None, ge=0.0, le=10.0)


class StudentContextRequest(BaseModel):
    """POST /normalization/students: upsert one student's raw score in a context."""
    student_id:           str = Field(..., min_length=1, max_length=64)
    context_id:           str = Field(..., min_length=1, max_length=64)
    raw_score:            float = Field(..., ge=0.0)
    time_spent:           Optional[float] = Field(default=None, ge=0.0,
                                                  description="Minutes")
    activities_completed: Optional[int] = Field(default=None, ge=0)
    total_activities:     Optional[int] = Field(default=None, ge=0)
    join_date:            Optional[datetime] = None

    @model_validator(mode="after")
    def completed_within_total(self) -> "StudentContextRequest":
        if (
            self.activities_completed is not None
            and self.total_activities is not None
            and self.activities_completed > self.total_activities
        ):
            raise ValueError("activities_completed cannot exceed total_activities.")
        return self


class ContextSchema(BaseModel):
    id:                 str
    type:               str
    average_score:      float
    standard_deviation: float
    population_size:    int
    difficulty_rating:  Optional[float] = None


class NormalizedScoreSchema(BaseModel):
    student_id:       str
    context_id:       str
    raw_score:        float
    normalized_score: float = Field(..., ge=0.0, le=100.0)
    method:           str
    percentile_rank:  Optional[float] = None
    z_score:          Optional[float] = None
    adjustments:      dict[str, float] = {}
    rank:             Optional[int] = None


class NormalizedLeaderboardResponse(BaseModel):
    """GET /normalization/contexts/{context_id}/scores, ranked, best first."""
    context_id: str
    method:     str
    total:      int
    scores:     list[NormalizedScoreSchema]
