"""
Progression state machine across lesson moments.

Runs on evaluated (ANSWER) turns only, after the attempt counter for the
current moment has been incremented.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from lesson_tutor.core.mastery import is_target_complete
from lesson_tutor.core.schemas import NextStep
from lesson_tutor.lesson.models import Lesson
from lesson_tutor.session.state import SessionState
from lesson_tutor.shared.exceptions import SessionError
from lesson_tutor.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)


class TransitionKind(str, Enum):
    STAY = "STAY"
    ADVANCE = "ADVANCE"
    FORCED_ADVANCE = "FORCED_ADVANCE"
    COMPLETE = "COMPLETE"


@dataclass(frozen=True)
class Transition:
    kind: TransitionKind
    from_moment: int
    to_moment: Optional[int]

    @property
    def moved(self) -> bool:
        return self.kind in (TransitionKind.ADVANCE, TransitionKind.FORCED_ADVANCE)


def decide_transition(
    state: SessionState,
    lesson: Lesson,
    next_step: NextStep,
    max_attempts: int = 3
) -> TransitionKind:
    """Pick the transition without touching state."""
    if next_step == NextStep.COMPLETE:
        return TransitionKind.COMPLETE

    target = lesson.target(state.current_target_id)
    if is_target_complete(state.current_mastery, target.min_mastery) or next_step == NextStep.ADVANCE:
        return TransitionKind.ADVANCE

    if state.attempts_in_current > max_attempts:
        return TransitionKind.FORCED_ADVANCE

    return TransitionKind.STAY


def apply_progression(
    state: SessionState,
    lesson: Lesson,
    next_step: NextStep,
    max_attempts: int = 3,
    initial_mastery: float = 0.3
) -> Transition:
    """
    Advance the session according to the model's suggestion and the rubric.

    Args:
        state: Session state, mutated in place
        lesson: Lesson the session runs on
        next_step: Reconciled next step from the evaluation
        max_attempts: Attempts allowed on one moment before a forced advance
        initial_mastery: Starting mastery for a target touched for the first time

    Returns:
        The transition that was applied

    Raises:
        SessionError: the session is already completed
    """
    if state.is_completed:
        raise SessionError(f"Session {state.session_id} is already completed")

    from_moment = state.current_moment_id
    kind = decide_transition(state, lesson, next_step, max_attempts)

    if kind == TransitionKind.STAY:
        return Transition(kind, from_moment, from_moment)

    state.completed_moments.add(from_moment)

    if kind == TransitionKind.COMPLETE:
        state.is_completed = True
        to_moment = None
    else:
        to_moment = _move_to_next_moment(state, lesson, initial_mastery)
        if to_moment is None:
            kind = TransitionKind.COMPLETE

    log_with_context(
        logger, logging.INFO,
        f"Moment transition {kind.value}: {from_moment} -> {to_moment}",
        session_id=state.session_id,
        action="progression.transition",
        attempts=state.attempts_in_current,
    )
    return Transition(kind, from_moment, to_moment)


def _move_to_next_moment(
    state: SessionState,
    lesson: Lesson,
    initial_mastery: float
) -> Optional[int]:
    if lesson.is_last_moment(state.current_moment_id):
        state.is_completed = True
        return None

    next_moment = lesson.next_moment(state.current_moment_id)

    state.current_moment_id = next_moment.id
    state.current_target_id = next_moment.primary_target_id
    state.ensure_target(next_moment.primary_target_id, initial_mastery)
    state.attempts_in_current = 0
    return next_moment.id
