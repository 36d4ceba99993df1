"""
Tests for settings loading, structured logging and token utilities.
"""

import json
import logging

import pytest

from lesson_tutor.shared.config import TutorSettings
from lesson_tutor.shared.logging import StructuredFormatter, log_with_context
from lesson_tutor.shared.tokens import count_tokens, truncate_to_tokens


def test_settings_from_yaml(tmp_path):
    path = tmp_path / "tutor.yaml"
    path.write_text(
        "tutor:\n"
        "  log_level: DEBUG\n"
        "  rules:\n"
        "    max_attempts_per_moment: 5\n"
        "    initial_target_mastery: 0.25\n"
        "  session:\n"
        "    reject_concurrent_turns: true\n",
        encoding="utf-8",
    )
    loaded = TutorSettings.load_from_yaml(path)

    assert loaded.log_level == "DEBUG"
    assert loaded.tutor.max_attempts_per_moment == 5
    assert loaded.tutor.initial_target_mastery == 0.25
    assert loaded.session.reject_concurrent_turns is True
    assert loaded.prompt.summary_tokens == 250


def test_settings_defaults_without_file(tmp_path):
    loaded = TutorSettings.load_from_yaml(tmp_path / "missing.yaml")
    assert loaded.tutor.summary_max_chars == 600
    assert loaded.tutor.question_prefix_chars == 20


def test_initial_mastery_validated(tmp_path):
    path = tmp_path / "tutor.yaml"
    path.write_text("tutor:\n  rules:\n    initial_target_mastery: 1.5\n", encoding="utf-8")
    with pytest.raises(ValueError):
        TutorSettings.load_from_yaml(path)


def test_structured_formatter_includes_context():
    logger = logging.getLogger("test.structured")
    record = logger.makeRecord(
        logger.name, logging.INFO, __file__, 1, "Turn committed", None, None,
        extra={"session_id": "s1", "action": "turn.evaluated", "delta": 0.15},
    )
    data = json.loads(StructuredFormatter().format(record))

    assert data["message"] == "Turn committed"
    assert data["session_id"] == "s1"
    assert data["action"] == "turn.evaluated"
    assert data["delta"] == "0.15"
    assert data["level"] == "INFO"


def test_log_with_context(caplog):
    logger = logging.getLogger("test.context")
    with caplog.at_level(logging.INFO, logger="test.context"):
        log_with_context(logger, logging.INFO, "hello", session_id="s9", action="turn.intent", term="hazard")

    record = caplog.records[-1]
    assert record.session_id == "s9"
    assert record.action == "turn.intent"
    assert record.term == "hazard"


def test_truncate_to_tokens():
    text = "risk " * 200
    truncated = truncate_to_tokens(text, 20)

    assert truncated.endswith("...")
    assert count_tokens(truncated) <= 22
    assert truncate_to_tokens("short", 20) == "short"
