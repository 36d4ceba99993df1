"""
Pydantic models for static lesson content: targets, rubrics and moments.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Dict


RUBRIC_LEVELS = (1, 2, 3, 4, 5)


class RubricLevel(BaseModel):
    """One level of a 5-level target rubric."""
    model_config = ConfigDict(frozen=True)

    level: int = Field(ge=1, le=5)
    name: str
    criteria: List[str] = Field(default_factory=list)


class LessonTarget(BaseModel):
    """A skill evaluated across one or more moments."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""
    min_mastery: float = Field(default=0.7, ge=0.0, le=1.0)
    weight: float = Field(default=1.0, ge=0.0)
    rubric: List[RubricLevel]
    common_errors: List[str] = Field(default_factory=list)
    hints: List[str] = Field(default_factory=list, max_length=3)  # subtle, direct, explicit

    @field_validator("rubric")
    @classmethod
    def _five_ordered_levels(cls, rubric: List[RubricLevel]) -> List[RubricLevel]:
        if tuple(level.level for level in rubric) != RUBRIC_LEVELS:
            raise ValueError("rubric must list exactly levels 1..5 in order")
        return rubric

    def rubric_level(self, level: int) -> Optional[RubricLevel]:
        for rubric_level in self.rubric:
            if rubric_level.level == level:
                return rubric_level
        return None

    def hint(self, attempt: int) -> Optional[str]:
        """Graduated hint for the given attempt number (1-based), capped at the last hint."""
        if not self.hints:
            return None
        index = min(max(attempt, 1), len(self.hints)) - 1
        return self.hints[index]


class LessonMoment(BaseModel):
    """One step of the lesson, bound to the target it primarily evaluates."""
    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=0)
    title: str
    goal: str
    primary_target_id: str
    reference_questions: List[str] = Field(default_factory=list)


class Lesson(BaseModel):
    """Ordered sequence of moments plus the targets they evaluate."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str = ""
    language: str = "en"
    learning_objectives: List[str] = Field(default_factory=list)
    check_points: List[str] = Field(default_factory=list)  # evaluator-only
    targets: List[LessonTarget]
    moments: List[LessonMoment] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_references(self) -> "Lesson":
        if [moment.id for moment in self.moments] != list(range(len(self.moments))):
            raise ValueError("moment ids must be 0..n-1 in order")

        target_ids = [target.id for target in self.targets]
        if len(set(target_ids)) != len(target_ids):
            raise ValueError("target ids must be unique")

        for moment in self.moments:
            if moment.primary_target_id not in target_ids:
                raise ValueError(
                    f"moment {moment.id} references unknown target {moment.primary_target_id}"
                )
        return self

    def moment(self, moment_id: int) -> LessonMoment:
        if 0 <= moment_id < len(self.moments):
            return self.moments[moment_id]
        raise KeyError(f"Moment {moment_id} not found in lesson {self.id}")

    def target(self, target_id: str) -> LessonTarget:
        for target in self.targets:
            if target.id == target_id:
                return target
        raise KeyError(f"Target {target_id} not found in lesson {self.id}")

    def next_moment(self, moment_id: int) -> Optional[LessonMoment]:
        if moment_id + 1 < len(self.moments):
            return self.moments[moment_id + 1]
        return None

    def is_last_moment(self, moment_id: int) -> bool:
        return moment_id >= len(self.moments) - 1

    def target_weights(self) -> Dict[str, float]:
        return {target.id: target.weight for target in self.targets}
