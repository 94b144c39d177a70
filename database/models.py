# database/models.py
# Leaderboard Scoring — SQLAlchemy ORM models for the 3 tables.
# Imports from: sqlalchemy only. Zero internal dependencies.

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    TypeDecorator,
    event,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC timestamps on every backend. SQLite drops offsets,
    so values are normalised to UTC on the way in and tagged UTC on the
    way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        return _as_utc(value)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        return _as_utc(value)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ─────────────────────────────────────────────
# TABLE 1: ScoringState
# Composite PK: (namespace, state_key). Backs database/state_store.py.
# ─────────────────────────────────────────────

class ScoringState(Base):
    __tablename__ = "scoring_state"

    namespace   = Column(String, primary_key=True)     # 'scoring_usage' | 'rate_limit' | 'event_history'
    state_key   = Column(String, primary_key=True)     # usually a student_id
    payload     = Column(Text, nullable=False)         # JSON document
    updated_at  = Column(UTCDateTime, nullable=False, default=_now)

    def __repr__(self) -> str:
        return f"<ScoringState namespace={self.namespace} key={self.state_key}>"


# ─────────────────────────────────────────────
# TABLE 2: PointAward
# One row per award decision made by POST /points/award.
# ─────────────────────────────────────────────

class PointAward(Base):
    __tablename__ = "point_awards"

    award_id            = Column(String, primary_key=True, default=_uuid)
    student_id          = Column(String, nullable=False, index=True)
    activity_type       = Column(String, nullable=False)
    activity_id         = Column(String, nullable=False)

    base_points         = Column(Integer, nullable=False)
    calculated_points   = Column(Integer, nullable=False)    # after daily/weekly caps
    uncapped_points     = Column(Integer, nullable=True)     # only when capped
    awarded_points      = Column(Integer, nullable=False)    # after rate limiting; what the student got
    was_capped          = Column(Boolean, nullable=False, default=False)
    breakdown           = Column(Text, nullable=True)        # JSON {multiplier: value}

    rate_limit_reason   = Column(String, nullable=True)      # 'instance_limit' | 'cooldown' | 'window_limit'
    anomaly_flagged     = Column(Boolean, nullable=False, default=False)

    awarded_at          = Column(UTCDateTime, nullable=False, default=_now)

    anomaly_flags = relationship("AnomalyFlag", back_populates="award", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return (
            f"<PointAward id={self.award_id} student={self.student_id} "
            f"activity={self.activity_type}:{self.activity_id} points={self.awarded_points}>"
        )


# ─────────────────────────────────────────────
# TABLE 3: AnomalyFlag
# Event- or leaderboard-level detections awaiting staff review.
# ─────────────────────────────────────────────

class AnomalyFlag(Base):
    __tablename__ = "anomaly_flags"

    flag_id             = Column(String, primary_key=True, default=_uuid)
    student_id          = Column(String, nullable=False, index=True)
    award_id            = Column(String, ForeignKey("point_awards.award_id"), nullable=True)  # NULL for leaderboard scans
    anomaly_type        = Column(String, nullable=False)
    confidence          = Column(Float, nullable=False)
    details             = Column(Text, nullable=True)
    suggested_action    = Column(String, nullable=False)     # 'flag' | 'review' | 'block'
    resolved            = Column(Boolean, nullable=False, default=False)
    flagged_at          = Column(UTCDateTime, nullable=False, default=_now)

    award = relationship("PointAward", back_populates="anomaly_flags")

    def __repr__(self) -> str:
        return f"<AnomalyFlag id={self.flag_id} student={self.student_id} type={self.anomaly_type}>"


# ─────────────────────────────────────────────
# DB-level enforcement: confidence in [0, 1]
# ─────────────────────────────────────────────

@event.listens_for(AnomalyFlag, "before_insert")
@event.listens_for(AnomalyFlag, "before_update")
def enforce_confidence_range(mapper, connection, target: AnomalyFlag) -> None:
    if target.confidence is not None and not 0.0 <= target.confidence <= 1.0:
        raise ValueError(
            f"AnomalyFlag for '{target.student_id}' has confidence={target.confidence}, "
            f"expected a value between 0 and 1."
        )
