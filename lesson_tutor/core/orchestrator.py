"""
Turn orchestrator: one learner message in, one reconciled tutor reply out.

Pipeline per turn:
classify intent -> compose prompt -> model call (with timeout) -> validate ->
reconcile intent and mastery -> progression -> summary -> atomic commit.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from lesson_tutor.core.analytics import (
    AnswerRecord,
    analyze_learner_profile,
    performance_label,
    personalize_feedback,
    recommend,
    session_metrics,
)
from lesson_tutor.core.intent import detect_turn_intent, extract_clarification_term
from lesson_tutor.core.mastery import (
    clamp,
    is_target_complete,
    update_consecutive_correct,
    update_target_mastery,
)
from lesson_tutor.core.progression import Transition, apply_progression
from lesson_tutor.core.prompt.composer import PromptComposer, PromptSlots
from lesson_tutor.core.reconcile import (
    apply_delta_reconciliation,
    enforce_standing_question,
    reconcile_intent,
    reconcile_mastery_delta,
    trailing_question,
)
from lesson_tutor.core.schemas import (
    TURN_RESPONSE_SCHEMA,
    ModelTurnResponse,
    TurnIntent,
    parse_turn_response,
)
from lesson_tutor.core.summary import TurnEvidence, build_initial_summary, build_session_summary
from lesson_tutor.lesson.catalog import LessonCatalog
from lesson_tutor.lesson.models import Lesson
from lesson_tutor.session.locks import SessionLockRegistry
from lesson_tutor.session.state import SessionState
from lesson_tutor.session.store import ChatMessage, EvaluationRecord, SqliteSessionStore
from lesson_tutor.shared.config import settings
from lesson_tutor.shared.exceptions import ProviderError, ProviderTimeoutError
from lesson_tutor.shared.llm import LLMClient
from lesson_tutor.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)


COMPLETED_MESSAGE = (
    "This lesson is already completed. Great work! Start a new session to review it again."
)


@dataclass
class TurnResult:
    turn_intent: TurnIntent
    message: str
    hints: List[str]
    session_state: SessionState
    summary: str
    evaluated: bool
    transition: Optional[Transition] = None
    corrections: List[str] = field(default_factory=list)


def temperature_for_mastery(global_mastery: float) -> float:
    """Lower temperature while the learner is still shaky."""
    if global_mastery < 0.4:
        return 0.5
    if global_mastery < 0.7:
        return 0.6
    return 0.7


def answer_score(is_correct: bool, mastery_delta: float) -> float:
    base = 0.8 if is_correct else 0.3
    return clamp(base + mastery_delta, 0.0, 1.0)


class TurnOrchestrator:
    """Processes learner turns against persisted session state."""

    def __init__(
        self,
        catalog: Optional[LessonCatalog] = None,
        store: Optional[SqliteSessionStore] = None,
        llm_client: Optional[LLMClient] = None,
        composer: Optional[PromptComposer] = None,
        locks: Optional[SessionLockRegistry] = None,
        timeout_seconds: Optional[float] = None
    ):
        self.catalog = catalog or LessonCatalog.from_directory()
        self.store = store or SqliteSessionStore()
        self._llm_client = llm_client
        self.composer = composer or PromptComposer()
        self.locks = locks or SessionLockRegistry()
        self.timeout_seconds = timeout_seconds or settings.llm.timeout_seconds
        self.rules = settings.tutor

    @property
    def llm_client(self) -> LLMClient:
        if self._llm_client is None:
            self._llm_client = LLMClient()
        return self._llm_client

    def start_session(
        self,
        learner_id: str,
        lesson_id: str,
        opening_question: Optional[str] = None
    ) -> SessionState:
        """Return the learner's active session on the lesson, creating it if needed."""
        lesson = self.catalog.get(lesson_id)

        existing = self.store.find_active_session(learner_id, lesson_id)
        if existing is not None:
            log_with_context(
                logger, logging.INFO, "Resuming active session",
                session_id=existing.session_id, action="session.resumed",
            )
            return existing

        first = lesson.moments[0]
        question = opening_question or _opening_question(lesson)
        state = SessionState(
            session_id=uuid.uuid4().hex,
            lesson_id=lesson.id,
            learner_id=learner_id,
            current_moment_id=first.id,
            current_target_id=first.primary_target_id,
            last_question_shown=question,
            session_summary=build_initial_summary(lesson, self.rules.summary_max_chars),
        )
        state.ensure_target(first.primary_target_id, self.rules.initial_target_mastery)
        state.refresh_global_mastery(lesson.target_weights())

        opening = [ChatMessage(role="assistant", content=question, moment_id=first.id)]
        return self.store.create_session(state, opening)

    def get_session_state(self, session_id: str) -> SessionState:
        return self.store.load_state(session_id)

    def get_session_messages(self, session_id: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        return self.store.get_messages(session_id, limit=limit)

    async def process_turn(
        self,
        session_id: str,
        moment_id: int,
        question_shown: str,
        student_answer: str
    ) -> TurnResult:
        """
        Process one learner message.

        Args:
            session_id: Session to advance
            moment_id: Moment the client believes is active
            question_shown: Question the learner was answering
            student_answer: Raw learner text

        Returns:
            TurnResult with the reply and the committed session state

        Raises:
            SessionNotFoundError: unknown session
            SessionBusyError: a turn is in flight and concurrent turns are rejected
            ProviderError: timeout, provider failure or invalid model output;
                nothing is stored in that case
        """
        async with self.locks.hold(session_id):
            state = await asyncio.to_thread(self.store.load_state, session_id)
            lesson = self.catalog.get(state.lesson_id)

            if state.is_completed:
                log_with_context(
                    logger, logging.INFO, "Turn on completed session ignored",
                    session_id=session_id, action="turn.completed_session",
                )
                return TurnResult(
                    turn_intent=detect_turn_intent(student_answer),
                    message=COMPLETED_MESSAGE,
                    hints=[],
                    session_state=state,
                    summary=state.session_summary,
                    evaluated=False,
                )

            if moment_id != state.current_moment_id:
                log_with_context(
                    logger, logging.WARNING,
                    f"Client moment {moment_id} differs from session moment {state.current_moment_id}",
                    session_id=session_id, action="turn.moment_mismatch",
                )

            heuristic_intent = detect_turn_intent(student_answer)
            log_with_context(
                logger, logging.INFO, f"Heuristic intent {heuristic_intent.value}",
                session_id=session_id, action="turn.intent",
                term=extract_clarification_term(student_answer) if heuristic_intent == TurnIntent.CLARIFY else None,
            )

            response = await self._evaluate(state, lesson, question_shown, student_answer)

            reconciled = reconcile_intent(response, heuristic_intent)
            response = reconciled.response
            corrections: List[str] = []
            if reconciled.overridden:
                corrections.append(f"intent:{response.turn_intent.value}")
                log_with_context(
                    logger, logging.INFO,
                    f"Model intent overridden to {response.turn_intent.value}",
                    session_id=session_id, action="turn.intent_override",
                )

            if response.turn_intent == TurnIntent.ANSWER:
                return await self._apply_answer(
                    state, lesson, response, question_shown, student_answer, corrections
                )
            return await self._apply_non_answer(
                state, response, question_shown, student_answer, corrections
            )

    async def _evaluate(
        self,
        state: SessionState,
        lesson: Lesson,
        question_shown: str,
        student_answer: str
    ) -> ModelTurnResponse:
        moment = lesson.moment(state.current_moment_id)
        target = lesson.target(state.current_target_id)
        recent = await asyncio.to_thread(
            self.store.get_messages, state.session_id, limit=2 * self.rules.recent_turns
        )

        prompt = self.composer.compose(PromptSlots(
            lesson=lesson,
            moment=moment,
            target=target,
            target_mastery=state.target_mastery.get(target.id, self.rules.initial_target_mastery),
            attempts=state.attempts_in_current,
            summary=state.session_summary,
            question_shown=question_shown,
            student_answer=student_answer,
            recent_messages=recent,
            global_mastery=state.global_mastery,
            consecutive_correct=state.consecutive_correct,
        ))

        try:
            raw = await asyncio.wait_for(
                self.llm_client.get_structured_completion(
                    prompt=prompt.user_prompt,
                    schema=TURN_RESPONSE_SCHEMA,
                    system_prompt=prompt.system_prompt,
                    schema_name="turn_response",
                    temperature=temperature_for_mastery(state.global_mastery),
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            log_with_context(
                logger, logging.ERROR, f"Provider timed out after {self.timeout_seconds}s",
                session_id=state.session_id, action="turn.provider_timeout",
            )
            raise ProviderTimeoutError(
                f"Model did not answer within {self.timeout_seconds}s"
            ) from e
        except ProviderError as e:
            log_with_context(
                logger, logging.ERROR, f"Provider call failed: {e}",
                session_id=state.session_id, action="turn.provider_error",
            )
            raise

        try:
            return parse_turn_response(raw)
        except ProviderError as e:
            log_with_context(
                logger, logging.ERROR, f"Model response rejected: {e}",
                session_id=state.session_id, action="turn.invalid_response",
            )
            raise

    async def _apply_answer(
        self,
        state: SessionState,
        lesson: Lesson,
        response: ModelTurnResponse,
        question_shown: str,
        student_answer: str,
        corrections: List[str]
    ) -> TurnResult:
        moment_id = state.current_moment_id
        target = lesson.target(state.current_target_id)
        state.ensure_target(target.id, self.rules.initial_target_mastery)
        current = state.target_mastery[target.id]

        delta_check = reconcile_mastery_delta(
            response.progress.tags, response.progress.mastery_delta, current
        )
        response = apply_delta_reconciliation(response, delta_check)
        if not delta_check.correction.is_valid:
            corrections.append(delta_check.signal)
            log_with_context(
                logger, logging.INFO, f"Mastery delta corrected: {delta_check.correction.reason}",
                session_id=state.session_id, action="turn.delta_corrected",
                level=delta_check.level, proposed=delta_check.proposed_delta,
                corrected=delta_check.delta,
            )

        delta = delta_check.delta
        tags = list(response.progress.tags)
        is_correct = response.is_correct

        state.target_mastery[target.id] = update_target_mastery(current, delta)
        state.consecutive_correct = update_consecutive_correct(state.consecutive_correct, tags)
        state.correct_answers += int(is_correct)
        state.attempts_in_current += 1
        state.total_attempts += 1
        if is_target_complete(state.target_mastery[target.id], target.min_mastery):
            state.completed_targets.add(target.id)

        state.last_mastery_delta = delta
        state.last_tags = response.tag_values()
        state.next_step_hint = response.progress.next_step.value
        attempt = state.attempts_in_current

        evidence = TurnEvidence(
            moment_id=moment_id,
            target_id=target.id,
            answer=student_answer,
            tags=tags,
            mastery_delta=delta,
            next_step=response.progress.next_step,
            attempts=attempt,
            signals=list(response.analytics.reasoning_signals),
        )

        transition = apply_progression(
            state, lesson, response.progress.next_step,
            max_attempts=self.rules.max_attempts_per_moment,
            initial_mastery=self.rules.initial_target_mastery,
        )
        # Progression may start tracking a new target
        state.refresh_global_mastery(lesson.target_weights())
        state.session_summary = build_session_summary(
            lesson, state, evidence,
            previous_summary=state.session_summary,
            max_chars=self.rules.summary_max_chars,
        )

        history = await self._answer_history(state.session_id, moment_id, is_correct, delta, response.tag_values())
        message = self._personalize(state.session_id, lesson, response.chat.message, moment_id, history)
        state.last_question_shown = trailing_question(message) or question_shown

        evaluation = EvaluationRecord(
            moment_id=moment_id,
            question=question_shown,
            answer=student_answer,
            is_evaluated=True,
            is_correct=is_correct,
            score=answer_score(is_correct, delta),
            feedback=message,
            turn_intent=TurnIntent.ANSWER.value,
            attempt=attempt,
            mastery_delta=delta,
            tags=response.tag_values(),
            hints=list(response.chat.hints),
            raw_response=response.to_payload(),
        )
        messages = [
            ChatMessage(role="user", content=student_answer, moment_id=moment_id),
            ChatMessage(role="assistant", content=message, moment_id=moment_id),
        ]
        committed = await asyncio.to_thread(self.store.commit_turn, state, messages, evaluation)

        log_with_context(
            logger, logging.INFO, "Evaluated turn committed",
            session_id=state.session_id, action="turn.evaluated",
            tags=",".join(evaluation.tags), delta=delta,
            mastery=committed.target_mastery.get(target.id), transition=transition.kind.value,
        )
        if committed.is_completed:
            log_with_context(
                logger, logging.INFO, "Lesson completed",
                session_id=state.session_id, action="session.completed",
                global_mastery=committed.global_mastery,
                **session_metrics(history, lesson),
            )
        return TurnResult(
            turn_intent=TurnIntent.ANSWER,
            message=message,
            hints=list(response.chat.hints),
            session_state=committed,
            summary=committed.session_summary,
            evaluated=True,
            transition=transition,
            corrections=corrections,
        )

    async def _apply_non_answer(
        self,
        state: SessionState,
        response: ModelTurnResponse,
        question_shown: str,
        student_answer: str,
        corrections: List[str]
    ) -> TurnResult:
        moment_id = state.current_moment_id
        intent = response.turn_intent

        if intent == TurnIntent.CLARIFY:
            state.clarify_turns += 1
        else:
            state.offtopic_turns += 1

        standing = question_shown or state.last_question_shown or ""
        message = enforce_standing_question(
            response.chat.message, standing, self.rules.question_prefix_chars
        )
        if standing:
            state.last_question_shown = standing

        evaluation = EvaluationRecord(
            moment_id=moment_id,
            question=question_shown,
            answer=student_answer,
            is_evaluated=False,
            is_correct=False,
            score=None,
            feedback=message,
            turn_intent=intent.value,
            attempt=state.attempts_in_current,
            tags=response.tag_values(),
            hints=list(response.chat.hints),
            raw_response=response.to_payload(),
        )
        messages = [
            ChatMessage(role="user", content=student_answer, moment_id=moment_id),
            ChatMessage(role="assistant", content=message, moment_id=moment_id),
        ]
        committed = await asyncio.to_thread(self.store.commit_turn, state, messages, evaluation)

        log_with_context(
            logger, logging.INFO, f"Unevaluated {intent.value} turn committed",
            session_id=state.session_id, action="turn.unevaluated",
        )
        return TurnResult(
            turn_intent=intent,
            message=message,
            hints=list(response.chat.hints),
            session_state=committed,
            summary=committed.session_summary,
            evaluated=False,
            corrections=corrections,
        )

    async def _answer_history(
        self,
        session_id: str,
        moment_id: int,
        is_correct: bool,
        delta: float,
        tags: List[str]
    ) -> List[AnswerRecord]:
        """Stored evaluated answers plus the one being committed, oldest first."""
        stored = await asyncio.to_thread(self.store.get_evaluations, session_id, evaluated_only=True)
        history = [
            AnswerRecord(
                moment_id=record["moment_id"],
                is_correct=record["is_correct"],
                mastery_delta=record["mastery_delta"] or 0.0,
                tags=record["tags"],
            )
            for record in stored
        ]
        history.append(AnswerRecord(moment_id, is_correct, delta, list(tags)))
        return history

    def _personalize(
        self,
        session_id: str,
        lesson: Lesson,
        message: str,
        moment_id: int,
        history: List[AnswerRecord]
    ) -> str:
        if len(history) < self.rules.personalize_after_answers:
            return message

        latest = history[-1]
        profile = analyze_learner_profile(history, lesson)
        recommendations = recommend(
            profile,
            lesson.moment(moment_id).title,
            performance_label(latest.is_correct, latest.tags),
        )
        log_with_context(
            logger, logging.DEBUG, "Feedback personalized",
            session_id=session_id, action="turn.personalized",
            tone=recommendations.tone.value, hint_level=recommendations.hint_level,
            include_example=recommendations.include_example,
            suggest_review=recommendations.suggest_review,
        )
        return personalize_feedback(message, profile, recommendations)


def _opening_question(lesson: Lesson) -> str:
    first = lesson.moments[0]
    if first.reference_questions:
        return first.reference_questions[0]
    return f"Let's start with {first.title}. {first.goal} What do you already know about it?"
