"""
Tests for the progression state machine.
"""

import pytest

from lesson_tutor.core.progression import TransitionKind, apply_progression, decide_transition
from lesson_tutor.core.schemas import NextStep
from lesson_tutor.session.state import SessionState
from lesson_tutor.shared.exceptions import SessionError


def _state(moment_id=0, target_id="hazard_vs_risk", mastery=0.3, attempts=1, **kwargs):
    return SessionState(
        session_id="s1",
        lesson_id="safety_101",
        learner_id="learner",
        current_moment_id=moment_id,
        current_target_id=target_id,
        target_mastery={target_id: mastery},
        attempts_in_current=attempts,
        **kwargs,
    )


def test_retry_below_threshold_stays(sample_lesson):
    state = _state(attempts=2)
    transition = apply_progression(state, sample_lesson, NextStep.RETRY)

    assert transition.kind == TransitionKind.STAY
    assert state.current_moment_id == 0
    assert state.attempts_in_current == 2


def test_mastery_threshold_advances_even_on_retry(sample_lesson):
    state = _state(mastery=0.8)
    transition = apply_progression(state, sample_lesson, NextStep.RETRY)

    assert transition.kind == TransitionKind.ADVANCE
    assert transition.to_moment == 1
    assert 0 in state.completed_moments
    assert state.attempts_in_current == 0


def test_model_advance_moves_on_below_threshold(sample_lesson):
    state = _state(moment_id=1, mastery=0.4)
    transition = apply_progression(state, sample_lesson, NextStep.ADVANCE)

    assert transition.kind == TransitionKind.ADVANCE
    assert state.current_moment_id == 2
    assert state.current_target_id == "hazard_types"


def test_next_target_initialised_when_untouched(sample_lesson):
    state = _state(moment_id=1, mastery=0.9)
    apply_progression(state, sample_lesson, NextStep.ADVANCE, initial_mastery=0.3)

    assert state.target_mastery["hazard_types"] == 0.3
    assert state.target_mastery["hazard_vs_risk"] == 0.9


def test_touched_target_keeps_mastery(sample_lesson):
    # Moments 0 and 1 share a target
    state = _state(moment_id=0, mastery=0.75)
    apply_progression(state, sample_lesson, NextStep.ADVANCE)
    assert state.current_target_id == "hazard_vs_risk"
    assert state.target_mastery["hazard_vs_risk"] == 0.75


def test_fourth_attempt_forces_advance(sample_lesson):
    state = _state(moment_id=2, target_id="hazard_types", mastery=0.1, attempts=4)
    transition = apply_progression(state, sample_lesson, NextStep.RETRY, max_attempts=3)

    assert transition.kind == TransitionKind.FORCED_ADVANCE
    assert transition.from_moment == 2
    assert transition.to_moment == 3
    assert state.attempts_in_current == 0


def test_third_attempt_does_not_force(sample_lesson):
    state = _state(moment_id=2, target_id="hazard_types", mastery=0.1, attempts=3)
    assert decide_transition(state, sample_lesson, NextStep.REINFORCE, 3) == TransitionKind.STAY


def test_complete_ends_lesson(sample_lesson):
    state = _state(moment_id=2, target_id="hazard_types")
    transition = apply_progression(state, sample_lesson, NextStep.COMPLETE)

    assert transition.kind == TransitionKind.COMPLETE
    assert transition.to_moment is None
    assert state.is_completed
    assert 2 in state.completed_moments


def test_advance_on_last_moment_completes(sample_lesson):
    state = _state(moment_id=4, target_id="controls", mastery=0.8)
    transition = apply_progression(state, sample_lesson, NextStep.ADVANCE)

    assert transition.kind == TransitionKind.COMPLETE
    assert state.is_completed
    assert state.current_moment_id == 4
    assert 4 in state.completed_moments


def test_completed_session_rejects_transitions(sample_lesson):
    state = _state(is_completed=True)
    with pytest.raises(SessionError):
        apply_progression(state, sample_lesson, NextStep.ADVANCE)


def test_consecutive_correct_survives_moment_change(sample_lesson):
    state = _state(mastery=0.8, consecutive_correct=2)
    apply_progression(state, sample_lesson, NextStep.ADVANCE)
    assert state.consecutive_correct == 2
