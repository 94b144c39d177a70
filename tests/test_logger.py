import json
import logging

from utils.logger import get_logger


def test_level_resolved_when_logger_is_created(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    log = get_logger("tests.debug_level")
    assert log._logger.level == logging.DEBUG


def test_events_render_as_json_lines(capsys, monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    log = get_logger("tests.json_lines")

    log.info("points_capped", student_id="s1", calculated_points=23)
    log.debug("hidden")

    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["event"] == "points_capped"
    assert record["component"] == "tests.json_lines"
    assert record["level"] == "INFO"
    assert record["student_id"] == "s1"
    assert record["calculated_points"] == 23
