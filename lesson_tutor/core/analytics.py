"""
Learner-profile analytics over evaluated answers, and feedback personalization.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from lesson_tutor.lesson.models import Lesson


STRENGTH_ACCURACY = 0.7
WEAKNESS_ACCURACY = 0.4
RECENT_WINDOW = 5
RECENT_MISSES_FOR_ENCOURAGEMENT = 3

ENCOURAGEMENTS = (
    "Don't get discouraged, you're improving. ",
    "Keep going, every attempt counts. ",
    "Good effort, let's keep working on it. ",
    "You're making progress, don't give up. ",
)

CHALLENGES = (
    "Try to go one level deeper.",
    "See what else you could add.",
    "Let's take it to the next level.",
    "Excellent, a bigger challenge is coming.",
)

REVIEW_SUGGESTION = "Let's review this concept once more to consolidate it."


class Pace(str, Enum):
    SLOW = "slow"
    MODERATE = "moderate"
    FAST = "fast"


class FeedbackTone(str, Enum):
    ENCOURAGING = "encouraging"
    NEUTRAL = "neutral"
    CHALLENGING = "challenging"


@dataclass(frozen=True)
class AnswerRecord:
    """One evaluated answer, as read back from the evaluation log."""
    moment_id: int
    is_correct: bool
    mastery_delta: float
    tags: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class LearnerProfile:
    strength_moments: List[str]
    weakness_moments: List[str]
    preferred_pace: Pace
    needs_encouragement: bool
    answers: int


@dataclass(frozen=True)
class Recommendations:
    tone: FeedbackTone
    hint_level: int
    include_example: bool
    suggest_review: bool


def _moment_name(lesson: Optional[Lesson], moment_id: int) -> str:
    if lesson is not None and 0 <= moment_id < len(lesson.moments):
        return lesson.moments[moment_id].title
    return f"Moment {moment_id}"


def _accuracy_by_moment(evaluations: Sequence[AnswerRecord]) -> Dict[int, float]:
    totals: Dict[int, List[int]] = {}
    for record in evaluations:
        correct, total = totals.get(record.moment_id, [0, 0])
        totals[record.moment_id] = [correct + int(record.is_correct), total + 1]
    return {moment_id: correct / total for moment_id, (correct, total) in totals.items()}


def analyze_learner_profile(
    evaluations: Sequence[AnswerRecord],
    lesson: Optional[Lesson] = None
) -> LearnerProfile:
    """
    Derive strengths, weaknesses, pace and encouragement need from answer history.

    Args:
        evaluations: Evaluated answers, oldest first
        lesson: Used to name moments; ids are used when absent

    Returns:
        LearnerProfile (neutral when there is no history)
    """
    if not evaluations:
        return LearnerProfile([], [], Pace.MODERATE, False, 0)

    strengths: List[str] = []
    weaknesses: List[str] = []
    for moment_id, accuracy in sorted(_accuracy_by_moment(evaluations).items()):
        if accuracy >= STRENGTH_ACCURACY:
            strengths.append(_moment_name(lesson, moment_id))
        elif accuracy < WEAKNESS_ACCURACY:
            weaknesses.append(_moment_name(lesson, moment_id))

    mean_delta = sum(r.mastery_delta for r in evaluations) / len(evaluations)
    if mean_delta > 0.1:
        pace = Pace.FAST
    elif mean_delta > 0:
        pace = Pace.MODERATE
    else:
        pace = Pace.SLOW

    recent_misses = sum(1 for r in evaluations[-RECENT_WINDOW:] if not r.is_correct)

    return LearnerProfile(
        strength_moments=strengths,
        weakness_moments=weaknesses,
        preferred_pace=pace,
        needs_encouragement=recent_misses >= RECENT_MISSES_FOR_ENCOURAGEMENT,
        answers=len(evaluations),
    )


def recommend(
    profile: LearnerProfile,
    moment_name: str,
    performance: str
) -> Recommendations:
    """Feedback tone and scaffolding for a performance of "correct", "partial" or "incorrect"."""
    if profile.needs_encouragement:
        tone = FeedbackTone.ENCOURAGING
    elif profile.preferred_pace == Pace.FAST:
        tone = FeedbackTone.CHALLENGING
    else:
        tone = FeedbackTone.NEUTRAL

    if performance == "correct":
        hint_level = 1
    elif performance == "partial":
        hint_level = 2
    else:
        hint_level = 3 if profile.preferred_pace == Pace.SLOW else 2

    return Recommendations(
        tone=tone,
        hint_level=hint_level,
        include_example=profile.preferred_pace == Pace.SLOW or performance == "incorrect",
        suggest_review=moment_name in profile.weakness_moments and performance != "correct",
    )


def performance_label(is_correct: bool, tags: Sequence[str]) -> str:
    if is_correct:
        return "correct"
    if "PARTIAL" in tags:
        return "partial"
    return "incorrect"


def _insert_before_question(message: str, extra: str) -> str:
    """Add a sentence while keeping a trailing question as the last line."""
    text = message.rstrip()
    lines = text.split("\n")
    if len(lines) > 1 and lines[-1].strip().endswith("?"):
        return "\n".join(lines[:-1]) + " " + extra + "\n" + lines[-1]
    if text.endswith("?"):
        return extra + "\n" + text
    return text + " " + extra


def personalize_feedback(
    message: str,
    profile: LearnerProfile,
    recommendations: Optional[Recommendations] = None
) -> str:
    """
    Adapt a tutor reply to the learner profile.

    Prefixes an encouragement when the learner has been missing a lot, adds a
    stretch sentence for fast learners and a review suggestion for weak
    moments. A trailing question stays on the last line.
    """
    tone = recommendations.tone if recommendations is not None else None
    personalized = message

    if profile.needs_encouragement and tone in (None, FeedbackTone.ENCOURAGING):
        encouragement = ENCOURAGEMENTS[profile.answers % len(ENCOURAGEMENTS)]
        if not personalized.startswith(encouragement.strip()):
            personalized = encouragement + personalized

    if recommendations is None:
        return personalized

    if profile.preferred_pace == Pace.FAST and tone == FeedbackTone.CHALLENGING:
        challenge = CHALLENGES[profile.answers % len(CHALLENGES)]
        personalized = _insert_before_question(personalized, challenge)

    if recommendations.suggest_review:
        personalized = _insert_before_question(personalized, REVIEW_SUGGESTION)

    return personalized


def session_metrics(evaluations: Sequence[AnswerRecord], lesson: Optional[Lesson] = None) -> Dict:
    """Aggregate accuracy and learning velocity for logging."""
    if not evaluations:
        return {
            "overall_accuracy": 0.0,
            "strongest_moment": None,
            "weakest_moment": None,
            "learning_velocity": 0.0,
        }

    accuracy = _accuracy_by_moment(evaluations)
    strongest = max(accuracy, key=lambda m: accuracy[m])
    weakest = min(accuracy, key=lambda m: accuracy[m])

    return {
        "overall_accuracy": sum(r.is_correct for r in evaluations) / len(evaluations),
        "strongest_moment": _moment_name(lesson, strongest),
        "weakest_moment": _moment_name(lesson, weakest),
        "learning_velocity": sum(r.mastery_delta for r in evaluations) / len(evaluations),
    }
