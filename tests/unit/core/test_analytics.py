"""
Tests for learner-profile analytics and feedback personalization.
"""

import pytest

from lesson_tutor.core.analytics import (
    CHALLENGES,
    ENCOURAGEMENTS,
    REVIEW_SUGGESTION,
    AnswerRecord,
    FeedbackTone,
    Pace,
    analyze_learner_profile,
    performance_label,
    personalize_feedback,
    recommend,
    session_metrics,
)


def _records(*outcomes, moment_id=0, delta=0.1):
    return [AnswerRecord(moment_id=moment_id, is_correct=ok, mastery_delta=delta) for ok in outcomes]


def test_empty_history_is_neutral():
    profile = analyze_learner_profile([])
    assert profile.answers == 0
    assert profile.preferred_pace == Pace.MODERATE
    assert not profile.needs_encouragement


def test_strengths_and_weaknesses_by_moment(sample_lesson):
    history = (
        _records(True, True, True, moment_id=0)
        + _records(False, False, True, moment_id=1)
        + _records(True, False, moment_id=2)
    )
    profile = analyze_learner_profile(history, sample_lesson)

    assert profile.strength_moments == ["Introduction"]
    assert profile.weakness_moments == ["Hazard or risk"]


def test_moment_names_fall_back_to_ids():
    profile = analyze_learner_profile(_records(True, True, moment_id=9))
    assert profile.strength_moments == ["Moment 9"]


@pytest.mark.parametrize("delta,pace", [(0.2, Pace.FAST), (0.05, Pace.MODERATE), (-0.1, Pace.SLOW)])
def test_pace_from_mean_delta(delta, pace):
    assert analyze_learner_profile(_records(True, False, delta=delta)).preferred_pace == pace


def test_needs_encouragement_after_three_recent_misses():
    history = _records(True, True, True, True, False, False, False)
    assert analyze_learner_profile(history).needs_encouragement

    history = _records(False, False, False, True, True, True, False)
    assert not analyze_learner_profile(history).needs_encouragement


def test_personalize_prefixes_encouragement():
    profile = analyze_learner_profile(_records(False, False, False, delta=-0.1))
    message = personalize_feedback("Let's look at the floor again.", profile)

    assert message.endswith("Let's look at the floor again.")
    assert any(message.startswith(e) for e in ENCOURAGEMENTS)


def test_personalize_leaves_message_alone_when_doing_well():
    profile = analyze_learner_profile(_records(True, True, True))
    assert personalize_feedback("Great.", profile) == "Great."


def test_personalize_with_recommendations_keeps_question_last(sample_lesson):
    struggling = analyze_learner_profile(_records(False, False, False, moment_id=1, delta=-0.1), sample_lesson)
    rec = recommend(struggling, "Hazard or risk", "incorrect")
    message = personalize_feedback("Not quite.\nWhich one is the hazard?", struggling, rec)

    assert any(message.startswith(e) for e in ENCOURAGEMENTS)
    assert REVIEW_SUGGESTION in message
    assert message.endswith("\nWhich one is the hazard?")


def test_personalize_challenges_fast_learners():
    fast = analyze_learner_profile(_records(True, True, True, delta=0.25))
    rec = recommend(fast, "Introduction", "correct")
    message = personalize_feedback("Spot on.", fast, rec)

    assert message.startswith("Spot on. ")
    assert any(message.endswith(c) for c in CHALLENGES)
    assert REVIEW_SUGGESTION not in message


@pytest.mark.parametrize("correct,tags,label", [
    (True, ["CORRECT"], "correct"),
    (False, ["PARTIAL"], "partial"),
    (False, ["INCORRECT", "CONCEPTUAL"], "incorrect"),
])
def test_performance_label(correct, tags, label):
    assert performance_label(correct, tags) == label


def test_recommendations():
    struggling = analyze_learner_profile(_records(False, False, False, delta=-0.1))
    rec = recommend(struggling, "Introduction", "incorrect")
    assert rec.tone == FeedbackTone.ENCOURAGING
    assert rec.hint_level == 3
    assert rec.include_example
    assert rec.suggest_review is False

    fast = analyze_learner_profile(_records(True, True, delta=0.25))
    rec = recommend(fast, "Introduction", "correct")
    assert rec.tone == FeedbackTone.CHALLENGING
    assert rec.hint_level == 1


def test_session_metrics(sample_lesson):
    history = _records(True, True, moment_id=0, delta=0.2) + _records(False, moment_id=1, delta=-0.1)
    metrics = session_metrics(history, sample_lesson)

    assert metrics["overall_accuracy"] == pytest.approx(2 / 3)
    assert metrics["strongest_moment"] == "Introduction"
    assert metrics["weakest_moment"] == "Hazard or risk"
    assert metrics["learning_velocity"] == pytest.approx(0.1)
    assert session_metrics([])["strongest_moment"] is None
