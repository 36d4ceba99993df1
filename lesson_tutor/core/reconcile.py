"""
Reconciliation of the model's evaluation with the deterministic checks.

Every function here is pure: the validated model response is frozen, and a
corrected copy is returned instead of mutating it.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from lesson_tutor.core.mastery import (
    MasteryCorrection,
    get_level_mapping,
    infer_level_from_output,
    mastery_to_level,
    validate_and_correct_mastery_delta,
)
from lesson_tutor.core.schemas import (
    MAX_SIGNALS,
    ModelTurnResponse,
    NextStep,
    ResponseTag,
    TurnIntent,
)


CLARIFY_MARKER = "MODE:CLARIFY"
OFFTOPIC_MARKER = "MODE:OFFTOPIC"
CLARIFY_COMPATIBLE_TAGS = frozenset({ResponseTag.NEEDS_HELP, ResponseTag.CONCEPTUAL})


@dataclass(frozen=True)
class IntentReconciliation:
    response: ModelTurnResponse
    heuristic_intent: TurnIntent
    overridden: bool


@dataclass(frozen=True)
class DeltaReconciliation:
    level: int
    proposed_delta: float
    correction: MasteryCorrection
    level_source: str  # "current" or "inferred"

    @property
    def delta(self) -> float:
        return self.correction.corrected_delta

    @property
    def signal(self) -> Optional[str]:
        if self.correction.is_valid:
            return None
        return f"DELTA_FIX:L{self.level} {self.proposed_delta:+.2f}->{self.delta:+.2f}"


def with_signal(signals: Iterable[str], marker: str) -> List[str]:
    """Append a marker once, keeping the list within the signal limit."""
    kept = [s for s in signals if s != marker][:MAX_SIGNALS - 1]
    return kept + [marker]


def apply_clarify_override(response: ModelTurnResponse) -> ModelTurnResponse:
    """Force the response into the unevaluated CLARIFY shape."""
    tags = list(response.progress.tags)
    if not all(tag in CLARIFY_COMPATIBLE_TAGS for tag in tags):
        tags = [ResponseTag.NEEDS_HELP]

    progress = response.progress.model_copy(update={
        "mastery_delta": 0.0,
        "next_step": NextStep.RETRY,
        "tags": tags,
    })
    analytics = response.analytics.model_copy(update={
        "reasoning_signals": with_signal(response.analytics.reasoning_signals, CLARIFY_MARKER),
    })
    return response.model_copy(update={
        "turn_intent": TurnIntent.CLARIFY,
        "progress": progress,
        "analytics": analytics,
    })


def apply_offtopic_override(response: ModelTurnResponse) -> ModelTurnResponse:
    """Strip the evaluation from a reply to small talk."""
    progress = response.progress.model_copy(update={
        "mastery_delta": 0.0,
        "next_step": NextStep.RETRY,
    })
    analytics = response.analytics.model_copy(update={
        "reasoning_signals": with_signal(response.analytics.reasoning_signals, OFFTOPIC_MARKER),
    })
    return response.model_copy(update={
        "turn_intent": TurnIntent.OFFTOPIC,
        "progress": progress,
        "analytics": analytics,
    })


def reconcile_intent(
    response: ModelTurnResponse,
    heuristic_intent: TurnIntent
) -> IntentReconciliation:
    """
    Settle the turn intent.

    A heuristic CLARIFY always wins. A heuristic OFFTOPIC wins over a model
    ANSWER, so greetings are never scored. Non-answers the model reports on
    its own are normalised to the same unevaluated shape.
    """
    model_intent = response.turn_intent

    if heuristic_intent == TurnIntent.CLARIFY and model_intent != TurnIntent.CLARIFY:
        return IntentReconciliation(apply_clarify_override(response), heuristic_intent, True)
    if heuristic_intent == TurnIntent.OFFTOPIC and model_intent == TurnIntent.ANSWER:
        return IntentReconciliation(apply_offtopic_override(response), heuristic_intent, True)

    if model_intent == TurnIntent.CLARIFY:
        response = apply_clarify_override(response)
    elif model_intent == TurnIntent.OFFTOPIC:
        response = apply_offtopic_override(response)
    return IntentReconciliation(response, heuristic_intent, False)


def reconcile_mastery_delta(
    tags: Iterable[ResponseTag],
    proposed_delta: float,
    current_mastery: float
) -> DeltaReconciliation:
    """
    Check a proposed delta against the rubric level table.

    The learner's current level is used when the tags fit it; otherwise the
    level implied by the output itself, so an incorrect answer at a high
    level is not rewarded with that level's positive range.
    """
    tags = list(tags)
    level = mastery_to_level(current_mastery)
    source = "current"

    mapping = get_level_mapping(level)
    if mapping is None or not mapping.accepts_tags(tags):
        level = infer_level_from_output(tags, proposed_delta)
        source = "inferred"

    correction = validate_and_correct_mastery_delta(level, tags, proposed_delta)
    return DeltaReconciliation(level, proposed_delta, correction, source)


def apply_delta_reconciliation(
    response: ModelTurnResponse,
    reconciliation: DeltaReconciliation
) -> ModelTurnResponse:
    """Copy of the response carrying the corrected delta and its trace signal."""
    if reconciliation.correction.is_valid:
        return response

    progress = response.progress.model_copy(update={"mastery_delta": reconciliation.delta})
    analytics = response.analytics.model_copy(update={
        "reasoning_signals": with_signal(
            response.analytics.reasoning_signals, reconciliation.signal
        ),
    })
    return response.model_copy(update={"progress": progress, "analytics": analytics})


def enforce_standing_question(message: str, question: str, prefix_chars: int = 20) -> str:
    """
    Make a reply end on the question the learner is still answering.

    If the last line does not contain a prefix of the question, the last line
    is replaced by the question verbatim (appended for one-line replies).
    """
    question = (question or "").strip()
    if not question:
        return message

    lines = [line for line in message.rstrip().split("\n")]
    last_line = lines[-1].strip() if lines else ""
    prefix = question[:prefix_chars].lower()

    if prefix and prefix in last_line.lower():
        return message.rstrip()

    if len(lines) > 1:
        lines[-1] = question
    else:
        lines.append(question)
    return "\n".join(lines)


def trailing_question(message: str) -> Optional[str]:
    """Last line of a reply when it is a question."""
    lines = [line.strip() for line in message.strip().split("\n") if line.strip()]
    if lines and lines[-1].endswith("?"):
        return lines[-1]
    return None
