# api/dependencies.py
# Leaderboard Scoring — Builds the scoring services shared by every route.
# The four services never call each other; the routes compose them.
# Imports from: database/state_store.py, scoring/*.py, utils/logger.py

import os
import threading
from contextlib import contextmanager
from typing import Generator, Optional

from dotenv import load_dotenv

from scoring.anomaly_detection import AnomalyDetectionConfig, AnomalyDetectionService
from scoring.balanced_scoring import BalancedScoringSystem
from scoring.normalized_scoring import NormalizedScoringService
from scoring.rate_limiter import PointsRateLimiter
from scoring.state_store import InMemoryStateStore, StateStore
from utils.logger import get_logger
from utils.timeutils import Clock, utc_now

load_dotenv()

log = get_logger("api.dependencies")

STATE_BACKEND: str = os.getenv("STATE_BACKEND", "memory")      # 'memory' | 'sql'
SCHOOL_TIMEZONE: str = os.getenv("SCHOOL_TIMEZONE", "UTC")


class ScoringServices:
    """
    One instance of each service plus per-student locks.

    The services mutate per-student state without synchronisation, so
    every read-modify-write for a student must run under student_lock().
    """

    def __init__(
        self,
        store: Optional[StateStore] = None,
        clock: Clock = utc_now,
        school_timezone: str = "UTC",
    ) -> None:
        self.store = store or InMemoryStateStore()
        self.clock = clock
        self.scoring = BalancedScoringSystem(store=self.store, clock=clock)
        self.rate_limiter = PointsRateLimiter(store=self.store, clock=clock)
        self.normalizer = NormalizedScoringService(clock=clock)
        self.detector = AnomalyDetectionService(
            config=AnomalyDetectionConfig(school_timezone=school_timezone),
            store=self.store,
        )
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def student_lock(self, student_id: str) -> Generator[None, None, None]:
        with self._locks_guard:
            lock = self._locks.setdefault(student_id, threading.Lock())
        with lock:
            yield


def build_services() -> ScoringServices:
    if STATE_BACKEND == "sql":
        # Deferred so the memory backend never opens a DB connection
        from database.state_store import SqlStateStore
        store: StateStore = SqlStateStore()
    else:
        store = InMemoryStateStore()
    log.info("scoring_services_built", state_backend=STATE_BACKEND, school_timezone=SCHOOL_TIMEZONE)
    return ScoringServices(store=store, school_timezone=SCHOOL_TIMEZONE)


_services: Optional[ScoringServices] = None


def get_services() -> ScoringServices:
    """FastAPI dependency. Overridden in tests via app.dependency_overrides."""
    global _services
    if _services is None:
        _services = build_services()
    return _services
