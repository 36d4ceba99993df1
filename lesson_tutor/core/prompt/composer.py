"""
Prompt composer: system prompt file plus a per-turn user prompt built from
independently token-capped sections.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from lesson_tutor.core.mastery import mastery_to_level
from lesson_tutor.lesson.models import Lesson, LessonMoment, LessonTarget
from lesson_tutor.shared.config import settings
from lesson_tutor.shared.logging import get_logger
from lesson_tutor.shared.tokens import count_tokens, truncate_to_tokens

logger = get_logger(__name__)


FALLBACK_SYSTEM_PROMPT = """You are a patient one-on-one tutor guiding a learner through a structured lesson.
Each turn, read the learner's message and decide what it is:
- ANSWER: an attempt to answer the standing question. Evaluate it against the active target's rubric.
- CLARIFY: a question about a term or about the question itself. Explain briefly, do not evaluate, masteryDelta 0, nextStep RETRY, and end with the standing question.
- OFFTOPIC: greetings, thanks or unrelated chat. Reply briefly, masteryDelta 0, and end with the standing question.
Ask at most one new question per turn. Give graduated hints before explaining.
Never reuse reference questions verbatim.
Reply ONLY with the JSON object described by the response schema."""

SECTION_ORDER = ("lesson", "target", "moment", "summary", "recent_turns", "current_turn")


def default_budget() -> Dict[str, Optional[int]]:
    """Token cap per section; None means uncapped."""
    return {
        "lesson": settings.prompt.lesson_facts_tokens,
        "target": settings.prompt.target_tokens,
        "moment": settings.prompt.moment_tokens,
        "summary": settings.prompt.summary_tokens,
        "recent_turns": settings.prompt.recent_turns_tokens,
        "current_turn": None,
    }


@dataclass
class PromptSlots:
    """Everything the composer needs for one turn."""
    lesson: Lesson
    moment: LessonMoment
    target: LessonTarget
    target_mastery: float
    attempts: int
    summary: str
    question_shown: str
    student_answer: str
    recent_messages: Sequence[Dict[str, Any]] = field(default_factory=list)
    global_mastery: float = 0.0
    consecutive_correct: int = 0


@dataclass
class ComposedPrompt:
    system_prompt: str
    user_prompt: str
    section_tokens: Dict[str, int]

    @property
    def total_tokens(self) -> int:
        return sum(self.section_tokens.values())


class PromptComposer:
    """Assemble the per-turn prompt within fixed section budgets."""

    def __init__(
        self,
        system_prompt_path: Optional[Path] = None,
        budget: Optional[Dict[str, Optional[int]]] = None,
        recent_turns: Optional[int] = None,
        turn_message_tokens: Optional[int] = None,
        model: Optional[str] = None
    ):
        self.system_prompt_path = Path(system_prompt_path or settings.prompt.system_prompt_path)
        self.budget = default_budget()
        if budget:
            self.budget.update(budget)
        self.recent_turns = recent_turns if recent_turns is not None else settings.tutor.recent_turns
        self.turn_message_tokens = turn_message_tokens or settings.prompt.turn_message_tokens
        self.model = model
        self._system_prompt: Optional[str] = None

    @property
    def system_prompt(self) -> str:
        if self._system_prompt is None:
            self._system_prompt = self._load_system_prompt()
        return self._system_prompt

    def _load_system_prompt(self) -> str:
        if self.system_prompt_path.exists():
            return self.system_prompt_path.read_text(encoding="utf-8").strip()
        logger.warning(f"System prompt not found: {self.system_prompt_path}, using fallback")
        return FALLBACK_SYSTEM_PROMPT

    def compose(self, slots: PromptSlots) -> ComposedPrompt:
        """
        Build the user prompt.

        Each section is truncated on its own; the whole prompt is never cut,
        so the current exchange always reaches the model intact.
        """
        raw = {
            "lesson": self._lesson_section(slots.lesson),
            "target": self._target_section(slots),
            "moment": self._moment_section(slots.moment),
            "summary": self._summary_section(slots),
            "current_turn": self._current_turn_section(slots),
        }

        sections: Dict[str, str] = {}
        for name, text in raw.items():
            limit = self.budget.get(name)
            sections[name] = self._cap(text, limit)
        sections["recent_turns"] = self._recent_turns_section(slots.recent_messages)

        parts = [sections[name] for name in SECTION_ORDER if sections.get(name)]
        section_tokens = {
            name: count_tokens(text, self.model) for name, text in sections.items() if text
        }
        logger.debug(f"Composed prompt sections: {section_tokens}")

        return ComposedPrompt(
            system_prompt=self.system_prompt,
            user_prompt="\n\n".join(parts),
            section_tokens=section_tokens,
        )

    def _cap(self, text: str, limit: Optional[int]) -> str:
        if limit is None or not text:
            return text
        return truncate_to_tokens(text, limit, model=self.model)

    def _lesson_section(self, lesson: Lesson) -> str:
        lines = ["## Lesson", f"Title: {lesson.title}"]
        if lesson.description:
            lines.append(f"Description: {lesson.description}")
        lines.append(f"Language: {lesson.language}")
        if lesson.learning_objectives:
            lines.append("Objectives:")
            lines.extend(f"- {objective}" for objective in lesson.learning_objectives[:5])
        if lesson.check_points:
            lines.append("Key points (for evaluation only, do not quote):")
            lines.extend(f"- {point}" for point in lesson.check_points[:5])
        return "\n".join(lines)

    def _target_section(self, slots: PromptSlots) -> str:
        target = slots.target
        level = mastery_to_level(slots.target_mastery)
        lines = [
            "## Active target",
            f"{target.id}: {target.title}",
            f"Current mastery: {slots.target_mastery:.2f} (level {level}), required {target.min_mastery:.2f}",
        ]
        if target.description:
            lines.append(target.description)

        # Rubric excerpt: the learner's level and its neighbours
        lines.append("Rubric:")
        for rubric_level in target.rubric:
            if abs(rubric_level.level - level) <= 1:
                criteria = "; ".join(rubric_level.criteria)
                lines.append(f"- L{rubric_level.level} {rubric_level.name}: {criteria}")

        if target.common_errors:
            lines.append("Common errors: " + "; ".join(target.common_errors))
        hint = target.hint(slots.attempts + 1)
        if hint:
            lines.append(f"Hint for this attempt: {hint}")
        return "\n".join(lines)

    def _moment_section(self, moment: LessonMoment) -> str:
        lines = ["## Current moment", f"{moment.id}. {moment.title}", f"Goal: {moment.goal}"]
        if moment.reference_questions:
            lines.append("Reference questions (inspiration only, do not reuse verbatim):")
            lines.extend(f"- {question}" for question in moment.reference_questions)
        return "\n".join(lines)

    def _summary_section(self, slots: PromptSlots) -> str:
        lines = [
            "## Session summary",
            f"Global mastery: {slots.global_mastery:.2f}. "
            f"Consecutive correct: {slots.consecutive_correct}. Attempts on this moment: {slots.attempts}.",
        ]
        if slots.summary:
            lines.append(slots.summary)
        return "\n".join(lines)

    def _recent_turns_section(self, messages: Sequence[Dict[str, Any]]) -> str:
        """Last K exchanges, filled newest first until the budget is spent."""
        if not messages or self.recent_turns <= 0:
            return ""

        recent = list(messages)[-2 * self.recent_turns:]
        limit = self.budget.get("recent_turns")
        header = "## Recent turns"
        used = count_tokens(header, self.model)

        kept: List[str] = []
        for message in reversed(recent):
            content = truncate_to_tokens(
                str(message.get("content", "")), self.turn_message_tokens, model=self.model
            )
            line = f"{message.get('role', 'user')}: {content}"
            cost = count_tokens(line, self.model) + 1
            if limit is not None and used + cost > limit:
                break
            kept.append(line)
            used += cost

        if not kept:
            return ""
        return "\n".join([header] + list(reversed(kept)))

    def _current_turn_section(self, slots: PromptSlots) -> str:
        return "\n".join([
            "## Current turn",
            f"Question shown: {slots.question_shown}",
            f"Learner message: {slots.student_answer}",
        ])
