"""
Rolling session summary, rebuilt after every evaluated turn.

The summary replaces the full chat history in the prompt, so it is kept
under a fixed character budget (600 by default) whatever the history length.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

from lesson_tutor.core.mastery import mastery_to_level
from lesson_tutor.core.schemas import NextStep, ResponseTag
from lesson_tutor.lesson.models import Lesson, LessonMoment, LessonTarget
from lesson_tutor.session.state import SessionState


SUMMARY_MAX_CHARS = 600
SECTIONS = ("STATE", "EVIDENCE", "GAP", "PLAN")

_UNCERTAINTY_PHRASES = (
    "i don't know", "i dont know", "not sure", "no idea", "no clue",
    "no sé", "no se", "no estoy seguro", "ni idea",
)
_PREV_TAGS = re.compile(r"\[EVIDENCE\][^\n]*?-> \[([A-Z_,]*)\]")


@dataclass(frozen=True)
class TurnEvidence:
    """What the evaluated turn contributed, captured before any moment transition."""
    moment_id: int
    target_id: str
    answer: str
    tags: List[ResponseTag]
    mastery_delta: float
    next_step: NextStep
    attempts: int
    signals: List[str] = field(default_factory=list)


def _words(text: str) -> List[str]:
    return text.split()


def gist(text: str, max_words: int = 15) -> str:
    words = _words(text)
    if len(words) <= max_words:
        return " ".join(words)
    return " ".join(words[:max_words]) + "..."


def shorten(text: str, limit: int) -> str:
    """Cut text at a word boundary so the result, suffix included, fits in limit."""
    if len(text) <= limit:
        return text
    cut = text[:max(limit - 3, 0)]
    if " " in cut:
        cut = cut[:cut.rfind(" ")]
    return cut.rstrip(" ,.;:") + "..."


def _pct(value: float) -> str:
    return f"{value * 100:.0f}%"


def _signed_pct(value: float) -> str:
    return f"{value * 100:+.0f}%"


def analyze_pattern(state: SessionState, attempts: int) -> str:
    if state.consecutive_correct >= 3:
        return "positive flow"
    if state.consecutive_correct == 0 and attempts >= 2:
        return "persistent difficulty"
    if state.global_mastery > 0.7:
        return "high mastery"
    if state.global_mastery < 0.3:
        return "weak foundations"
    return "variable progress"


def infer_gap(evidence: TurnEvidence, moment: LessonMoment) -> str:
    tags = evidence.tags

    if ResponseTag.CONCEPTUAL in tags:
        return f"CONCEPTUAL: needs precision on {gist(moment.goal, 8).lower()}"
    if ResponseTag.COMPUTATIONAL in tags:
        return "PROCEDURAL: steps imprecise, guide them one by one"
    if ResponseTag.NEEDS_HELP in tags:
        return "ASSISTANCE: high confusion, needs step-by-step guidance"

    # Model observations, skipping our own trace markers
    for signal in evidence.signals:
        if signal and not signal.startswith(("DELTA_FIX:", "MODE:")):
            return f"OBSERVATION: {gist(signal, 10)}"

    if len(_words(evidence.answer)) < 4:
        return "INCOMPLETE: answer too brief, needs development"
    lowered = evidence.answer.lower()
    if any(phrase in lowered for phrase in _UNCERTAINTY_PHRASES):
        return "BARRIER: declared uncertainty, use the direct hint"

    if ResponseTag.INCORRECT in tags:
        return "DEVIATION: misconception to correct"
    if ResponseTag.PARTIAL in tags:
        return f"PARTIAL: still missing {gist(moment.goal, 6).lower()}"
    return "ON TRACK: keep the current pace"


def common_error_for(target: LessonTarget, attempts: int) -> Optional[str]:
    """Rotate through the target's common errors as attempts accumulate."""
    if not target.common_errors:
        return None
    return target.common_errors[max(attempts - 1, 0) % len(target.common_errors)]


def decide_plan(evidence: TurnEvidence, lesson: Lesson) -> str:
    """Deterministic suggestion for the next turn."""
    correct = ResponseTag.CORRECT in evidence.tags

    if evidence.attempts >= 3 and not correct:
        return "Short explanation (2-3 sentences) plus a concrete example, then ADVANCE."

    if evidence.next_step == NextStep.ADVANCE:
        next_moment = lesson.next_moment(evidence.moment_id)
        if next_moment is not None:
            return f"Acknowledge progress and move to moment {next_moment.id}."
        return "Acknowledge progress and prepare the lesson wrap-up."

    if evidence.next_step == NextStep.COMPLETE:
        return "Wrap-up: recap 3 key points plus 1 optional challenge."

    if evidence.next_step == NextStep.RETRY:
        if ResponseTag.INCORRECT in evidence.tags or ResponseTag.NEEDS_HELP in evidence.tags:
            return "Give the direct hint plus an example; ask for a short answer."
        return "Ask for a specific clarification or correction."

    if evidence.next_step == NextStep.REINFORCE:
        return "Reinforce with a similar but more guided question."

    return "Rephrase with a more concrete question and a subtle hint."


def previous_evidence_tags(previous_summary: Optional[str]) -> Optional[str]:
    """Tags recorded in the [EVIDENCE] line of an earlier summary."""
    if not previous_summary:
        return None
    match = _PREV_TAGS.search(previous_summary)
    return match.group(1) if match else None


def build_session_summary(
    lesson: Lesson,
    state: SessionState,
    evidence: TurnEvidence,
    previous_summary: Optional[str] = None,
    max_chars: int = SUMMARY_MAX_CHARS
) -> str:
    """
    Distill the session into four labelled lines.

    Args:
        lesson: Lesson being taught
        state: Session state after this turn (post-transition)
        evidence: The evaluated turn
        previous_summary: Summary before this turn, compressed into the evidence line
        max_chars: Hard character budget

    Returns:
        Summary text no longer than max_chars
    """
    current_moment = lesson.moment(state.current_moment_id)
    evaluated_moment = lesson.moment(evidence.moment_id)
    evaluated_target = lesson.target(evidence.target_id)
    total = len(lesson.moments)

    mastery = state.target_mastery.get(evidence.target_id, 0.0)
    level = mastery_to_level(mastery)
    pattern = analyze_pattern(state, evidence.attempts)

    others = [
        f"{target_id} {_pct(value)}"
        for target_id, value in sorted(state.target_mastery.items())
        if target_id != evidence.target_id
    ]
    state_line = (
        f'M{current_moment.id}/{total} "{current_moment.title}". '
        f"{evidence.target_id} L{level}: {_pct(mastery)} vs {_pct(evaluated_target.min_mastery)} "
        f"(delta {_signed_pct(evidence.mastery_delta)}). Attempts: {evidence.attempts}."
    )
    if others:
        state_line += f" Others: {', '.join(others)}."
    state_line += f" Pattern: {pattern}."

    tag_text = ",".join(tag.value for tag in evidence.tags)
    evidence_line = f'Last: "{gist(evidence.answer)}" -> [{tag_text}].'
    prev_tags = previous_evidence_tags(previous_summary)
    if prev_tags:
        evidence_line += f" Prev: [{prev_tags}]."

    distance = max(evaluated_target.min_mastery - mastery, 0.0)
    gap_line = f"{_pct(distance)} to required. {infer_gap(evidence, evaluated_moment)}."
    if ResponseTag.CORRECT not in evidence.tags:
        error = common_error_for(evaluated_target, evidence.attempts)
        if error:
            gap_line += f" Watch: {error}"

    plan_line = decide_plan(evidence, lesson)

    lines = [state_line, evidence_line, gap_line, plan_line]
    summary = _assemble(lines)
    if len(summary) <= max_chars:
        return summary

    compact = [
        f"M{current_moment.id}/{total}. {evidence.target_id} L{level} {_pct(mastery)}. {pattern}.",
        f'"{gist(evidence.answer, 10)}" -> [{tag_text}].',
        gap_line,
        plan_line,
    ]
    return _assemble(compact, line_limit=(max_chars - len(SECTIONS) + 1) // len(SECTIONS))


def _assemble(lines: List[str], line_limit: Optional[int] = None) -> str:
    out = []
    for section, line in zip(SECTIONS, lines):
        text = f"[{section}] {line}"
        if line_limit is not None:
            text = shorten(text, line_limit)
        out.append(text)
    return "\n".join(out)


def build_initial_summary(lesson: Lesson, max_chars: int = SUMMARY_MAX_CHARS) -> str:
    """Opening summary for a session with no interactions yet."""
    first = lesson.moments[0]
    text = (
        f'New session: "{lesson.title}". Starting moment 0: "{first.title}". '
        f"Goal: {first.goal}. No previous interactions."
    )
    return shorten(text, max_chars)
