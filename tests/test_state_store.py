import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.orm import sessionmaker

from api.dependencies import ScoringServices
from database.db import build_engine, init_db
from database.state_store import SqlStateStore
from scoring.anomaly_detection import PointEarningEvent
from scoring.balanced_scoring import PointsCalculationRequest
from scoring.rate_limiter import PointsRequest
from scoring.state_store import InMemoryStateStore


@pytest.fixture
def sql_store(session_factory) -> SqlStateStore:
    return SqlStateStore(session_factory=session_factory)


@pytest.fixture(params=["memory", "sql"])
def any_store(request, session_factory):
    if request.param == "memory":
        return InMemoryStateStore()
    return SqlStateStore(session_factory=session_factory)


def test_get_missing_key(any_store):
    assert any_store.get("ns", "nobody") is None
    assert any_store.keys("ns") == []


def test_put_then_get(any_store):
    any_store.put("ns", "s1", {"points_used": 10, "activities": {"quiz:q1": "2025-03-10T10:00:00+00:00"}})
    assert any_store.get("ns", "s1") == {"points_used": 10, "activities": {"quiz:q1": "2025-03-10T10:00:00+00:00"}}


def test_put_overwrites(any_store):
    any_store.put("ns", "s1", {"v": 1})
    any_store.put("ns", "s1", {"v": 2})
    assert any_store.get("ns", "s1") == {"v": 2}
    assert any_store.keys("ns") == ["s1"]


def test_namespaces_are_isolated(any_store):
    any_store.put("usage", "s1", {"v": 1})
    any_store.put("history", "s1", {"v": 2})

    any_store.delete("usage", "s1")

    assert any_store.get("usage", "s1") is None
    assert any_store.get("history", "s1") == {"v": 2}


def test_returned_value_is_detached(any_store):
    any_store.put("ns", "s1", {"items": [1]})
    value = any_store.get("ns", "s1")
    value["items"].append(2)
    assert any_store.get("ns", "s1") == {"items": [1]}


def test_delete_missing_key_is_noop(any_store):
    any_store.delete("ns", "ghost")


def test_keys_lists_every_student(sql_store):
    for student_id in ("s1", "s2", "s3"):
        sql_store.put("rate_limit", student_id, {})
    assert sorted(sql_store.keys("rate_limit")) == ["s1", "s2", "s3"]


# ============================================================================
# Services sharing one SQL-backed store
# ============================================================================

def test_services_survive_restart_on_sql_store(sql_store, clock):
    first = ScoringServices(store=sql_store, clock=clock)
    first.scoring.calculate_points("s1", PointsCalculationRequest("quiz", difficulty="hard", score=85))
    first.rate_limiter.check_limit(PointsRequest("s1", "quiz", "q1", 59))
    first.detector.track_event(PointEarningEvent("s1", 59, "quiz", clock()))

    clock.advance(seconds=30)
    # a second replica sees the same state
    second = ScoringServices(store=sql_store, clock=clock)

    assert second.scoring.get_student_usage("s1", "quiz").daily_used == 59
    assert second.rate_limiter.check_limit(PointsRequest("s1", "quiz", "q1", 59)).reason == "cooldown"
    assert [e.amount for e in second.detector.get_student_history("s1")] == [59]


def test_rolling_reset_on_sql_store(sql_store, clock):
    services = ScoringServices(store=sql_store, clock=clock)
    for _ in range(4):
        services.scoring.calculate_points("s1", PointsCalculationRequest("quiz", difficulty="hard", score=85))

    clock.advance(hours=25)

    assert services.scoring.get_student_usage("s1", "quiz").daily_used == 0


# ============================================================================
# Atomic read-modify-write
# ============================================================================

def increment(stored):
    value = stored or {"count": 0}
    value["count"] += 1
    return value


def test_update_creates_missing_key(any_store):
    seen = []

    def fn(stored):
        seen.append(stored)
        return {"count": 1}

    assert any_store.update("ns", "s1", fn) == {"count": 1}
    assert seen == [None]
    assert any_store.get("ns", "s1") == {"count": 1}


def test_update_sees_current_value(any_store):
    any_store.put("ns", "s1", {"count": 4})
    any_store.update("ns", "s1", increment)
    assert any_store.get("ns", "s1") == {"count": 5}


def test_concurrent_updates_are_not_lost_in_memory():
    store = InMemoryStateStore()
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: store.update("ns", "s1", increment), range(200)))
    assert store.get("ns", "s1") == {"count": 200}


# ============================================================================
# Two replicas sharing one database file
# ============================================================================

@pytest.fixture
def replicas(tmp_path, clock):
    url = f"sqlite:///{tmp_path / 'shared.db'}"
    engines = [build_engine(url), build_engine(url)]
    init_db(bind=engines[0])

    pair = []
    for engine in engines:
        factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
        store = SqlStateStore(session_factory=factory)
        store.get("warmup", "x")
        pair.append(ScoringServices(store=store, clock=clock))
    yield pair
    for engine in engines:
        engine.dispose()


def test_replicas_share_counter_updates(replicas):
    stores = [replica.store for replica in replicas]

    def bump(i):
        stores[i % 2].update("ns", "s1", increment)

    with ThreadPoolExecutor(max_workers=4) as pool:
        list(pool.map(bump, range(40)))

    assert stores[0].get("ns", "s1") == {"count": 40}


def test_replicas_cannot_overrun_daily_cap(replicas):
    first, second = replicas
    hard_quiz = PointsCalculationRequest("quiz", difficulty="hard", score=85)
    for _ in range(3):
        first.scoring.calculate_points("s1", hard_quiz)          # 177 of 200 used

    barrier = threading.Barrier(2)

    def award(replica):
        barrier.wait()
        return replica.scoring.calculate_points("s1", hard_quiz).calculated_points

    with ThreadPoolExecutor(max_workers=2) as pool:
        awarded = list(pool.map(award, replicas))

    assert sorted(awarded) == [0, 23]
    assert second.scoring.get_student_usage("s1", "quiz").daily_used == 200
