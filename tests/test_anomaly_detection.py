from datetime import datetime, timedelta, timezone

import pytest

from scoring.anomaly_detection import (
    AnomalyDetectionConfig,
    AnomalyDetectionService,
    LeaderboardEntry,
    PointEarningEvent,
)

START = datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)   # Monday, inside school hours


@pytest.fixture
def detector(store) -> AnomalyDetectionService:
    return AnomalyDetectionService(store=store)


def event(amount: int = 50, at: datetime = START, source: str = "quiz", student_id: str = "s1") -> PointEarningEvent:
    return PointEarningEvent(student_id=student_id, amount=amount, source=source, timestamp=at)


def spaced_history(amounts: list[int], start: datetime, gap: timedelta) -> list[PointEarningEvent]:
    """Events newest first, each `gap` apart, ending just before `start`."""
    return [
        event(amount=amount, at=start - gap * (i + 1), source=f"src-{i}")
        for i, amount in enumerate(amounts)
    ]


def test_single_large_event_is_rate_limit(detector):
    result = detector.detect_anomaly(event(amount=150), history=[])

    assert result.is_anomaly is True
    assert result.anomaly_type == "rate_limit"
    assert result.confidence == 0.9
    assert result.suggested_action == "review"


def test_large_event_wins_regardless_of_timing(detector):
    night = datetime(2025, 3, 10, 2, 0, tzinfo=timezone.utc)
    result = detector.detect_anomaly(event(amount=101, at=night, source="exam"))
    assert result.anomaly_type == "rate_limit"


def test_window_total_exceeded(detector):
    history = spaced_history([90] * 5, START, timedelta(minutes=5))   # 450 in the last 25 min

    result = detector.detect_anomaly(event(amount=60), history=history)

    assert result.anomaly_type == "rate_limit"
    assert result.confidence == 0.8
    assert result.suggested_action == "flag"


def test_window_ignores_events_outside_window(detector):
    history = spaced_history([90] * 5, START - timedelta(hours=2), timedelta(minutes=5))
    result = detector.detect_anomaly(event(amount=60), history=history)
    assert result.anomaly_type != "rate_limit"


def test_outlier_against_history(detector):
    amounts = [10, 12, 8, 10, 11, 9, 10, 12, 8, 10]
    history = spaced_history(amounts, START, timedelta(days=1))

    result = detector.detect_anomaly(event(amount=95), history=history)

    assert result.anomaly_type == "outlier"
    assert 0.5 <= result.confidence <= 0.95
    assert result.suggested_action == ("review" if result.confidence > 0.8 else "flag")


def test_outlier_skipped_with_short_history(detector):
    history = spaced_history([10, 10, 11], START, timedelta(days=1))
    result = detector.detect_anomaly(event(amount=60), history=history)
    assert result.anomaly_type != "outlier"


def test_repeated_identical_events_flag_fifth(detector):
    results = []
    for i in range(6):
        e = event(amount=50, at=START + timedelta(minutes=10 * i))
        results.append(detector.detect_anomaly(e))
        detector.track_event(e)

    assert [r.is_anomaly for r in results[:4]] == [False] * 4
    assert results[4].anomaly_type == "unusual_pattern"
    assert results[4].confidence == 0.7
    assert results[4].suggested_action == "flag"


def test_daily_spike_against_median(detector):
    # one 20-point event on each of the previous five days
    history = [event(amount=20, at=START - timedelta(days=d), source=f"d{d}") for d in range(1, 6)]
    history.insert(0, event(amount=30, at=START - timedelta(hours=1), source="today-1"))

    result = detector.detect_anomaly(event(amount=40, source="today-2"), history=history)

    assert result.anomaly_type == "unusual_pattern"
    assert result.confidence == 0.6


def test_large_award_outside_school_hours(detector):
    evening = datetime(2025, 3, 10, 21, 30, tzinfo=timezone.utc)
    result = detector.detect_anomaly(event(amount=60, at=evening), history=[])

    assert result.anomaly_type == "suspicious_timing"
    assert result.confidence == 0.5


def test_small_award_outside_school_hours_is_fine(detector):
    evening = datetime(2025, 3, 10, 21, 30, tzinfo=timezone.utc)
    assert detector.detect_anomaly(event(amount=50, at=evening), history=[]).is_anomaly is False


def test_school_hours_use_configured_timezone(store):
    detector = AnomalyDetectionService(
        config=AnomalyDetectionConfig(school_timezone="Asia/Karachi"),   # UTC+5
        store=store,
    )
    # 10:00 UTC is 15:00 in Karachi; 15:00 UTC is 20:00
    assert detector.detect_anomaly(event(amount=60), history=[]).is_anomaly is False
    late = detector.detect_anomaly(event(amount=60, at=START + timedelta(hours=5)), history=[])
    assert late.anomaly_type == "suspicious_timing"


def test_burst_of_events(detector):
    history = [event(amount=10, at=START - timedelta(seconds=2), source="other")]
    result = detector.detect_anomaly(event(amount=10), history=history)

    assert result.anomaly_type == "suspicious_timing"
    assert result.confidence == 0.6


def test_normal_event(detector):
    history = spaced_history([40, 45, 50], START, timedelta(hours=3))
    result = detector.detect_anomaly(event(amount=45), history=history)

    assert result.is_anomaly is False
    assert result.confidence == 0.0
    assert result.anomaly_type is None


def test_history_capped_and_newest_first(detector):
    for i in range(120):
        detector.track_event(event(amount=i % 7, at=START + timedelta(minutes=i)))

    history = detector.get_student_history("s1")
    assert len(history) == 100
    assert history[0].timestamp == START + timedelta(minutes=119)
    assert all(a.timestamp >= b.timestamp for a, b in zip(history, history[1:]))


def test_clear_student_history(detector):
    detector.track_event(event())
    detector.clear_student_history("s1")
    assert detector.get_student_history("s1") == []


def test_leaderboard_flags_extreme_outlier(detector):
    entries = [LeaderboardEntry(student_id=f"s{i}", reward_points=100 + i) for i in range(30)]
    entries.append(LeaderboardEntry(student_id="cheater", reward_points=10_000))

    flagged = detector.analyze_leaderboard(entries)

    assert list(flagged) == ["cheater"]
    assert flagged["cheater"].anomaly_type == "outlier"
    assert flagged["cheater"].confidence == 0.7
    assert flagged["cheater"].suggested_action == "review"


def test_leaderboard_needs_five_entries(detector):
    entries = [LeaderboardEntry(student_id=f"s{i}", reward_points=p) for i, p in enumerate([1, 2, 3, 9999])]
    assert detector.analyze_leaderboard(entries) == {}


def test_leaderboard_uniform_points(detector):
    entries = [LeaderboardEntry(student_id=f"s{i}", reward_points=200) for i in range(10)]
    assert detector.analyze_leaderboard(entries) == {}


def test_event_round_trips_through_store(detector):
    original = PointEarningEvent(
        student_id="s1", amount=30, source="exam", timestamp=START, source_id="e1", metadata={"class": "7B"},
    )
    detector.track_event(original)
    assert detector.get_student_history("s1") == [original]
