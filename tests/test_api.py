"""End-to-end checks of the HTTP surface against an in-memory SQLite database."""

from scoring.anomaly_detection import AnomalyDetectionResult


def award(client, **overrides):
    body = {
        "student_id": "s1",
        "activity_type": "quiz",
        "activity_id": "q1",
        "difficulty": "hard",
        "score": 85,
    }
    body.update(overrides)
    return client.post("/points/award", json=body)


def leaderboard(outlier_points: int = 10_000) -> list[dict]:
    entries = [{"student_id": f"s{i}", "reward_points": 100 + i} for i in range(30)]
    entries.append({"student_id": "cheater", "reward_points": outlier_points})
    return entries


# ============================================================================
# /points
# ============================================================================

def test_award_points(client):
    response = award(client)

    assert response.status_code == 200
    data = response.json()
    assert data["calculated_points"] == 59
    assert data["awarded_points"] == 59
    assert data["was_capped"] is False
    assert data["breakdown"] == {"difficulty": 1.3, "performance": 0.9, "activity_weight": 1.0}
    assert data["rate_limit_reason"] is None
    assert data["anomaly"] is None


def test_cooldown_returns_429_and_releases_allowance(client):
    assert award(client).status_code == 200

    response = award(client)

    assert response.status_code == 429
    detail = response.json()["detail"]
    assert detail["reason"] == "cooldown"
    assert detail["reset_time"] is not None

    usage = client.get("/points/s1/usage/quiz").json()
    assert usage["daily_used"] == 59
    assert usage["daily_remaining"] == 141


def test_instance_limit_truncates_award(client):
    response = award(client, difficulty=None, score=None, custom_multiplier=3.0)   # 150 points

    data = response.json()
    assert data["calculated_points"] == 150
    assert data["awarded_points"] == 100
    assert data["rate_limit_reason"] == "instance_limit"

    assert client.get("/points/s1/usage/quiz").json()["daily_used"] == 100
    status = client.get("/points/s1/rate-limit").json()
    assert status["points_used"] == 100
    assert "quiz:q1" in status["activities"]


def test_daily_cap_reported(client):
    results = [award(client, activity_id=f"q{i}").json() for i in range(4)]

    assert [r["awarded_points"] for r in results] == [59, 59, 59, 23]
    assert results[3]["was_capped"] is True
    assert results[3]["uncapped_points"] == 59


def test_large_award_is_flagged_but_granted(client):
    response = award(
        client, student_id="s9", activity_type="achievement", activity_id="a1",
        difficulty=None, score=None, custom_multiplier=2.0,
    )

    data = response.json()
    assert data["awarded_points"] == 200
    assert data["anomaly"]["anomaly_type"] == "rate_limit"
    assert data["anomaly"]["suggested_action"] == "review"

    flags = client.get("/anomalies/flags").json()
    assert flags["total"] == 1
    assert flags["flags"][0]["award_id"] == data["award_id"]


def test_award_history(client):
    award(client, activity_id="q1")
    award(client, activity_id="q2")

    history = client.get("/points/s1/history").json()

    assert history["total"] == 2
    assert history["total_points"] == 118
    assert {a["activity_id"] for a in history["awards"]} == {"q1", "q2"}


def test_rate_limit_status_without_activity(client):
    data = client.get("/points/nobody/rate-limit").json()
    assert data["points_used"] == 0
    assert data["window_start"] is None


def test_usage_for_unknown_activity_type(client):
    assert client.get("/points/s1/usage/karaoke").status_code == 404


def test_invalid_score_rejected(client):
    assert award(client, score=150).status_code == 422


def test_blank_student_id_rejected(client):
    assert award(client, student_id="   ").status_code == 422


# ============================================================================
# /normalization
# ============================================================================

def register_class(client) -> None:
    client.post("/normalization/contexts", json={
        "id": "class-a", "type": "class", "average_score": 70, "standard_deviation": 10, "population_size": 3,
    })
    for student_id, score in (("s1", 60), ("s2", 90), ("s3", 70)):
        client.post("/normalization/students", json={
            "student_id": student_id, "context_id": "class-a", "raw_score": score,
        })


def test_ranked_context_scores(client):
    register_class(client)

    data = client.get("/normalization/contexts/class-a/scores").json()

    assert data["total"] == 3
    assert [s["student_id"] for s in data["scores"]] == ["s2", "s3", "s1"]
    assert [s["rank"] for s in data["scores"]] == [1, 2, 3]
    assert data["scores"][1]["normalized_score"] == 50.0


def test_student_score_with_method(client):
    register_class(client)

    response = client.get("/normalization/contexts/class-a/students/s2", params={"method": "min-max"})

    assert response.status_code == 200
    assert response.json()["normalized_score"] == 100.0
    assert response.json()["method"] == "min-max"


def test_student_without_score_is_404(client):
    register_class(client)
    assert client.get("/normalization/contexts/class-a/students/ghost").status_code == 404


def test_recompute_context(client):
    register_class(client)

    data = client.post("/normalization/contexts/class-a/recompute").json()

    assert data["average_score"] == 220 / 3
    assert data["population_size"] == 3


def test_recompute_empty_context_is_404(client):
    assert client.post("/normalization/contexts/empty/recompute").status_code == 404


def test_completed_cannot_exceed_total(client):
    response = client.post("/normalization/students", json={
        "student_id": "s1", "context_id": "c", "raw_score": 10,
        "activities_completed": 5, "total_activities": 3,
    })
    assert response.status_code == 422


# ============================================================================
# /anomalies
# ============================================================================

def test_leaderboard_scan_persists_flags(client):
    response = client.post("/anomalies/leaderboard", json={"entries": leaderboard()})

    data = response.json()
    assert data["total_entries"] == 31
    assert [f["student_id"] for f in data["flagged"]] == ["cheater"]

    flags = client.get("/anomalies/flags").json()
    assert flags["total"] == 1
    assert flags["flags"][0]["award_id"] is None


def test_leaderboard_scan_without_persisting(client):
    client.post("/anomalies/leaderboard", json={"entries": leaderboard(), "persist_flags": False})
    assert client.get("/anomalies/flags").json()["total"] == 0


def test_resolve_flag(client):
    client.post("/anomalies/leaderboard", json={"entries": leaderboard()})
    flag_id = client.get("/anomalies/flags").json()["flags"][0]["flag_id"]

    response = client.post(f"/anomalies/flags/{flag_id}/resolve")

    assert response.status_code == 200
    assert client.get("/anomalies/flags").json()["total"] == 0


def test_resolve_unknown_flag(client):
    assert client.post("/anomalies/flags/nope/resolve").status_code == 404


def test_root(client):
    assert client.get("/").json()["docs"] == "/docs"


def test_blocked_award_grants_nothing_and_keeps_state_consistent(client, services, monkeypatch):
    monkeypatch.setattr(
        services.detector,
        "detect_anomaly",
        lambda event: AnomalyDetectionResult(
            is_anomaly=True, confidence=0.99, anomaly_type="rate_limit",
            details="blocked by policy", suggested_action="block",
        ),
    )

    data = award(client).json()

    assert data["calculated_points"] == 59
    assert data["awarded_points"] == 0
    assert data["anomaly"]["suggested_action"] == "block"
    assert client.get("/points/s1/usage/quiz").json()["daily_used"] == 0
    assert client.get("/points/s1/rate-limit").json()["points_used"] == 0
    assert [e.amount for e in services.detector.get_student_history("s1")] == [0]
    assert client.get("/points/s1/history").json()["total_points"] == 0


def test_persisted_timestamps_carry_utc_offset(client):
    award(client)
    client.post("/anomalies/leaderboard", json={"entries": leaderboard()})

    awarded_at = client.get("/points/s1/history").json()["awards"][0]["awarded_at"]
    flagged_at = client.get("/anomalies/flags").json()["flags"][0]["flagged_at"]

    assert awarded_at == "2025-03-10T10:00:00+00:00"
    assert flagged_at.endswith("+00:00")
