"""
Per-session tutoring state: the only entity a turn mutates.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field, field_validator

from lesson_tutor.core.mastery import calculate_global_mastery, clamp
from lesson_tutor.shared.logging import get_logger

logger = get_logger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionState(BaseModel):
    """Snapshot of one learner's progress through one lesson."""
    session_id: str
    lesson_id: str
    learner_id: str

    current_moment_id: int = Field(default=0, ge=0)
    current_target_id: str
    target_mastery: Dict[str, float] = Field(default_factory=dict)
    completed_targets: Set[str] = Field(default_factory=set)
    completed_moments: Set[int] = Field(default_factory=set)
    global_mastery: float = Field(default=0.0, ge=0.0, le=1.0)

    consecutive_correct: int = Field(default=0, ge=0)
    attempts_in_current: int = Field(default=0, ge=0)
    total_attempts: int = Field(default=0, ge=0)
    correct_answers: int = Field(default=0, ge=0)
    clarify_turns: int = Field(default=0, ge=0)
    offtopic_turns: int = Field(default=0, ge=0)

    last_question_shown: Optional[str] = None
    session_summary: str = ""
    is_completed: bool = False

    last_mastery_delta: float = 0.0
    last_tags: List[str] = Field(default_factory=list)
    next_step_hint: Optional[str] = None

    version: int = Field(default=0, ge=0)
    created_at: str = Field(default_factory=_now)
    updated_at: str = Field(default_factory=_now)

    @field_validator("target_mastery")
    @classmethod
    def _mastery_in_range(cls, value: Dict[str, float]) -> Dict[str, float]:
        for target_id, mastery in value.items():
            if not 0.0 <= mastery <= 1.0:
                logger.warning(
                    f"Mastery for {target_id} out of range ({mastery}), clamping",
                    extra={"action": "invariant.mastery"},
                )
                value[target_id] = clamp(mastery, 0.0, 1.0)
        return value

    @property
    def current_mastery(self) -> float:
        return self.target_mastery.get(self.current_target_id, 0.0)

    def ensure_target(self, target_id: str, initial_mastery: float):
        """Start tracking a target the first time it becomes active."""
        if target_id not in self.target_mastery:
            self.target_mastery[target_id] = clamp(initial_mastery, 0.0, 1.0)

    def refresh_global_mastery(self, weights: Dict[str, float]) -> float:
        """Recompute global mastery from the tracked targets; call after any target change."""
        self.global_mastery = calculate_global_mastery(self.target_mastery, weights)
        return self.global_mastery

    def touch(self):
        self.updated_at = _now()

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "SessionState":
        return cls.model_validate_json(data)
