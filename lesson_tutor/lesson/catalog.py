"""
Read-only catalog of lessons loaded from YAML files.
"""

from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import ValidationError

from lesson_tutor.lesson.models import Lesson
from lesson_tutor.shared.config import settings
from lesson_tutor.shared.exceptions import LessonContentError, LessonNotFoundError
from lesson_tutor.shared.logging import get_logger

logger = get_logger(__name__)


class LessonCatalog:
    """Holds validated, immutable lessons keyed by id."""

    def __init__(self, lessons: Optional[List[Lesson]] = None):
        self._lessons: Dict[str, Lesson] = {}
        for lesson in lessons or []:
            self.add(lesson)

    @classmethod
    def from_directory(cls, lessons_dir: Optional[Path] = None) -> "LessonCatalog":
        """Load every *.yaml / *.yml lesson file in a directory."""
        lessons_dir = Path(lessons_dir or settings.session.lessons_dir)
        catalog = cls()

        if not lessons_dir.exists():
            logger.warning(f"Lessons directory not found: {lessons_dir}")
            return catalog

        paths = sorted(lessons_dir.glob("*.yaml")) + sorted(lessons_dir.glob("*.yml"))
        for path in paths:
            catalog.add(load_lesson_file(path))

        logger.info(f"Loaded {len(catalog)} lessons from {lessons_dir}")
        return catalog

    def add(self, lesson: Lesson):
        if lesson.id in self._lessons:
            raise LessonContentError(f"Duplicate lesson id: {lesson.id}")
        self._lessons[lesson.id] = lesson

    def get(self, lesson_id: str) -> Lesson:
        lesson = self._lessons.get(lesson_id)
        if lesson is None:
            raise LessonNotFoundError(f"Lesson {lesson_id} not found")
        return lesson

    def ids(self) -> List[str]:
        return list(self._lessons)

    def __len__(self) -> int:
        return len(self._lessons)

    def __contains__(self, lesson_id: str) -> bool:
        return lesson_id in self._lessons


def load_lesson_file(path: Path) -> Lesson:
    """Parse and validate a single lesson file."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    try:
        return Lesson.model_validate(data.get("lesson", data))
    except ValidationError as e:
        raise LessonContentError(f"Invalid lesson file {path}: {e}") from e
