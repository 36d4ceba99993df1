"""
Pytest fixtures for lesson tutor tests.
"""

import pytest
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

from lesson_tutor.core.orchestrator import TurnOrchestrator
from lesson_tutor.core.prompt.composer import PromptComposer
from lesson_tutor.lesson.catalog import LessonCatalog
from lesson_tutor.lesson.models import Lesson
from lesson_tutor.session.locks import SessionLockRegistry
from lesson_tutor.session.store import SqliteSessionStore


def _rubric(prefix: str) -> List[Dict[str, Any]]:
    names = ["Initial", "Basic", "Competent", "Advanced", "Mastery"]
    return [
        {"level": i + 1, "name": name, "criteria": [f"{prefix} criterion {i + 1}"]}
        for i, name in enumerate(names)
    ]


def _target(target_id: str, title: str, min_mastery: float = 0.7, weight: float = 1.0) -> Dict[str, Any]:
    return {
        "id": target_id,
        "title": title,
        "description": f"Understand {title.lower()}",
        "min_mastery": min_mastery,
        "weight": weight,
        "rubric": _rubric(title),
        "common_errors": [f"Confusing {title.lower()} with something else", "Answering too vaguely"],
        "hints": ["Subtle hint", "Direct hint", "Explicit hint"],
    }


@pytest.fixture
def lesson_data() -> Dict[str, Any]:
    """Raw five-moment lesson, one target per moment except the first two."""
    return {
        "id": "safety_101",
        "title": "Workplace safety basics",
        "description": "Hazards, risks and controls",
        "learning_objectives": ["Identify hazards", "Assess risks", "Choose controls"],
        "check_points": ["Hazard is the source, risk is probability and severity"],
        "targets": [
            _target("hazard_vs_risk", "Hazard versus risk"),
            _target("hazard_types", "Hazard types"),
            _target("risk_rating", "Risk rating", weight=2.0),
            _target("controls", "Control hierarchy"),
        ],
        "moments": [
            {"id": 0, "title": "Introduction", "goal": "Explain what IPERC is",
             "primary_target_id": "hazard_vs_risk",
             "reference_questions": ["What does IPERC stand for?"]},
            {"id": 1, "title": "Hazard or risk", "goal": "Tell a hazard from a risk",
             "primary_target_id": "hazard_vs_risk",
             "reference_questions": ["What is the difference between a hazard and a risk?"]},
            {"id": 2, "title": "Hazard types", "goal": "Classify hazards by type",
             "primary_target_id": "hazard_types",
             "reference_questions": ["Which hazard types exist in a warehouse?"]},
            {"id": 3, "title": "Risk rating", "goal": "Rate a risk with probability and severity",
             "primary_target_id": "risk_rating",
             "reference_questions": ["How would you rate the forklift risk?"]},
            {"id": 4, "title": "Controls", "goal": "Apply the hierarchy of controls",
             "primary_target_id": "controls",
             "reference_questions": ["Which controls reduce solvent exposure?"]},
        ],
    }


@pytest.fixture
def sample_lesson(lesson_data) -> Lesson:
    return Lesson.model_validate(lesson_data)


@pytest.fixture
def catalog(sample_lesson) -> LessonCatalog:
    return LessonCatalog([sample_lesson])


@pytest.fixture
def store(tmp_path) -> SqliteSessionStore:
    return SqliteSessionStore(tmp_path / "sessions.sqlite")


@pytest.fixture
def make_response():
    """Factory for raw model payloads in the wire (camelCase) shape."""
    def _make(
        intent: str = "ANSWER",
        message: str = "Good work on that answer.\nWhat is the next step?",
        delta: float = 0.1,
        next_step: str = "RETRY",
        tags: Optional[List[str]] = None,
        hints: Optional[List[str]] = None,
        signals: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        return {
            "turnIntent": intent,
            "chat": {"message": message, "hints": hints or []},
            "progress": {
                "masteryDelta": delta,
                "nextStep": next_step,
                "tags": tags or ["CORRECT"],
            },
            "analytics": {
                "difficulty": "MEDIUM",
                "confidenceScore": 0.8,
                "reasoningSignals": signals or [],
            },
        }
    return _make


@pytest.fixture
def mock_llm(make_response):
    """Mock LLM client that returns canned turn payloads."""
    mock = AsyncMock()
    mock.get_structured_completion.return_value = make_response()

    def set_response(**kwargs):
        mock.get_structured_completion.return_value = make_response(**kwargs)

    mock.set_response = set_response
    return mock


@pytest.fixture
def composer(tmp_path) -> PromptComposer:
    """Composer without a system prompt file (uses the built-in fallback)."""
    return PromptComposer(system_prompt_path=tmp_path / "missing.md")


@pytest.fixture
def orchestrator(catalog, store, mock_llm, composer) -> TurnOrchestrator:
    return TurnOrchestrator(
        catalog=catalog,
        store=store,
        llm_client=mock_llm,
        composer=composer,
        locks=SessionLockRegistry(reject_concurrent=False),
        timeout_seconds=1.0,
    )
