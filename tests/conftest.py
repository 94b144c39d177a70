"""
Shared fixtures.

Every service takes a clock callable; tests use FakeClock so windows,
cooldowns and resets are deterministic.
"""

from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from api.dependencies import ScoringServices, get_services
from database.db import get_db
from database.models import Base
from main import app
from scoring.state_store import InMemoryStateStore

# Monday, inside school hours
START = datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStateStore:
    return InMemoryStateStore()


# ============================================================================
# Database fixtures
# ============================================================================

@pytest.fixture
def session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    engine.dispose()


# ============================================================================
# API fixtures
# ============================================================================

@pytest.fixture
def services(clock: FakeClock) -> ScoringServices:
    return ScoringServices(clock=clock)


@pytest.fixture
def client(session_factory: sessionmaker, services: ScoringServices) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()
