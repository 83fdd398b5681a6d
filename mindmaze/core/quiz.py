from __future__ import annotations

import hmac
import logging
import random
import secrets
from collections.abc import Callable
from dataclasses import dataclass

from mindmaze.catalog.registry import Catalog
from mindmaze.core.errors import AlreadyAnswered, NoActiveQuestion, NoQuestionsAvailable, UnknownQuestion
from mindmaze.core.events import (
    AnswerResolved,
    EventBus,
    EventKind,
    HintRequested,
    QuestionCancelled,
    QuestionPresented,
    QuestionSkipped,
    TimerTick,
)
from mindmaze.core.fsm import QuestionFSM, QuestionPhase
from mindmaze.core.models import CategoryProgress, PresentedQuestion, Question, QuizStatistics, now_ms
from mindmaze.core.progress import GameProgress
from mindmaze.core.timer import Countdown
from mindmaze.core.tokens import ShuffledAnswers, shuffle_answers, validation_token

logger = logging.getLogger(__name__)

DEFAULT_TIME_LIMIT_MS = 30_000
DEFAULT_TICK_MS = 250
DEFAULT_SKIP_PENALTY = 10

NO_HINT_TEXT = "No hint available for this question."

# Accuracy (0..1) above which the adaptive picker moves up a difficulty tier.
HARD_ACCURACY = 0.8
MEDIUM_ACCURACY = 0.6
UNKNOWN_ACCURACY = 0.5


@dataclass(slots=True)
class ActiveQuestion:
    question: Question
    presented_at_ms: float
    shuffled: ShuffledAnswers
    token: str
    view: PresentedQuestion


class QuizEngine:
    """One active question at a time: presentation, countdown, resolution.

    Flow:
      present_question -> (tick ...) -> validate_answer | handle_timeout | skip_question

    Every resolution path goes through the QuestionFSM `resolving` state, so a
    timeout racing a submission (or a duplicate submission) resolves the question
    exactly once. Scoring is delegated to GameProgress.
    """

    def __init__(
        self,
        *,
        catalog: Catalog,
        progress: GameProgress,
        bus: EventBus,
        clock: Callable[[], float] = now_ms,
        rng: random.Random | None = None,
        time_limit_ms: int = DEFAULT_TIME_LIMIT_MS,
        tick_ms: int = DEFAULT_TICK_MS,
        skip_penalty: int = DEFAULT_SKIP_PENALTY,
        salt: bytes | None = None,
    ):
        self.catalog = catalog
        self.progress = progress
        self.bus = bus
        self.clock = clock
        self.rng = rng or random.Random()
        self.time_limit_ms = time_limit_ms
        self.skip_penalty = skip_penalty
        self.salt = salt if salt is not None else secrets.token_bytes(16)

        self._fsm = QuestionFSM()
        self._active: ActiveQuestion | None = None
        self._countdown = Countdown(on_tick=self.tick, interval_ms=tick_ms)
        self._pool: list[Question] = []
        self.shuffle_question_pool()

    @property
    def phase(self) -> str:
        return self._fsm.phase

    @property
    def active_question(self) -> PresentedQuestion | None:
        return self._active.view if self._active else None

    @property
    def countdown_running(self) -> bool:
        return self._countdown.running

    # --- selection ----------------------------------------------------------------

    def shuffle_question_pool(self) -> None:
        self._pool = list(self.catalog.questions)
        self.rng.shuffle(self._pool)

    def next_question(self, category: str | None = None) -> Question | None:
        """Unanswered question, from `category` when it still has one, else the pool head."""

        answered = self.progress.snapshot.answered_questions
        available = [q for q in self._pool if q.id not in answered]
        if not available:
            self.shuffle_question_pool()
            logger.info("All questions answered, reshuffling pool")

        if category:
            in_category = [q for q in self.catalog.questions_by_category(category) if q.id not in answered]
            if in_category:
                return self.rng.choice(in_category)

        return available[0] if available else None

    def adaptive_question(self) -> Question | None:
        """Pick a difficulty tier from the player's accuracy so far."""

        snapshot = self.progress.snapshot
        accuracy = snapshot.correct_attempts / snapshot.total_attempts if snapshot.total_attempts else UNKNOWN_ACCURACY
        if accuracy > HARD_ACCURACY:
            difficulty = "hard"
        elif accuracy > MEDIUM_ACCURACY:
            difficulty = "medium"
        else:
            difficulty = "easy"

        answered = snapshot.answered_questions
        candidates = [q for q in self.catalog.questions if q.difficulty == difficulty and q.id not in answered]
        if candidates:
            return self.rng.choice(candidates)
        return self.next_question()

    # --- presentation -------------------------------------------------------------

    def present_question(self, question_id: str | None = None, category: str | None = None) -> PresentedQuestion | None:
        """Present a question and start its countdown.

        An explicit `question_id` wins over `category`. A question already on screen
        is cancelled and replaced. Returns None (and changes nothing) while a
        resolution is in flight.
        """

        if self._fsm.phase == QuestionPhase.resolving:
            logger.debug("Presentation ignored while a resolution is in flight")
            return None

        if question_id is not None:
            question = self.catalog.get_question(question_id)
            if question is None:
                self.bus.reject(UnknownQuestion(question_id))
            if self.progress.is_answered(question_id):
                self.bus.reject(AlreadyAnswered(question_id))
        else:
            question = self.next_question(category)
            if question is None:
                self.bus.reject(NoQuestionsAvailable(category))

        if self._active is not None:
            self._cancel_active()

        presented_at = self.clock()
        shuffled = shuffle_answers(question.answers, question.correct_answer, rng=self.rng)
        token = validation_token(
            question_id=question.id,
            index=shuffled.correct_index,
            presented_at_ms=presented_at,
            salt=self.salt,
        )
        view = PresentedQuestion(
            id=question.id,
            category=question.category,
            difficulty=question.difficulty,
            points=question.points,
            question=question.question,
            answers=shuffled.answers,
            validation_token=token,
            time_limit_ms=self.time_limit_ms,
            presented_at_ms=presented_at,
            has_hint=bool(question.hint),
        )
        self._active = ActiveQuestion(
            question=question,
            presented_at_ms=presented_at,
            shuffled=shuffled,
            token=token,
            view=view,
        )
        self._fsm.present()
        self.progress.start_question_timer()

        logger.info("Presenting question %s (%s)", question.id, question.category)
        self.bus.publish(EventKind.question_presented, QuestionPresented(question=view))
        self._countdown.start()
        return view

    def _cancel_active(self) -> None:
        active, self._active = self._active, None
        self._countdown.cancel()
        self._fsm.discard()
        logger.info("Cancelled question %s", active.question.id)
        self.bus.publish(EventKind.question_cancelled, QuestionCancelled(question_id=active.question.id))

    # --- resolution ---------------------------------------------------------------

    def validate_answer(self, selected_index: int) -> AnswerResolved | None:
        """Resolve the active question with the answer at `selected_index` (shuffled order).

        Returns None when another resolution is already in flight.
        """

        if self._fsm.phase == QuestionPhase.resolving:
            logger.warning("Answer processing already in progress, ignoring duplicate submission")
            return None
        active = self._active
        if active is None:
            self.bus.reject(NoActiveQuestion())

        self._fsm.begin_resolution()
        self._countdown.cancel()
        try:
            question = active.question
            elapsed = max(0.0, self.clock() - active.presented_at_ms)

            submitted = validation_token(
                question_id=question.id,
                index=selected_index,
                presented_at_ms=active.presented_at_ms,
                salt=self.salt,
            )
            token_correct = hmac.compare_digest(submitted, active.token)

            answered = self.progress.answer_question(
                question.id,
                active.shuffled.to_catalog_index(selected_index),
                elapsed_ms=elapsed,
            )
            if answered.correct != token_correct:
                logger.error("Token check disagrees with catalog for question %s", question.id)

            resolved = AnswerResolved(
                question_id=question.id,
                correct=answered.correct,
                selected_index=selected_index,
                correct_index=active.shuffled.correct_index,
                points_earned=answered.points_earned,
                time_bonus=answered.time_bonus,
                elapsed_ms=elapsed,
                explanation=question.explanation,
            )
            logger.info(
                "Answer validation: %s (%d points)",
                "Correct" if resolved.correct else "Incorrect",
                resolved.points_earned,
            )
            self.bus.publish(EventKind.answer_resolved, resolved)
            return resolved
        finally:
            self._active = None
            self._fsm.finish_resolution()

    def handle_timeout(self) -> AnswerResolved | None:
        if self._fsm.phase != QuestionPhase.presented or self._active is None:
            logger.debug("Timeout ignored in phase %s", self._fsm.phase)
            return None

        active = self._active
        self._fsm.begin_resolution()
        self._countdown.cancel()
        try:
            resolved = AnswerResolved(
                question_id=active.question.id,
                correct=False,
                selected_index=None,
                correct_index=active.shuffled.correct_index,
                points_earned=0,
                elapsed_ms=self.time_limit_ms,
                explanation=active.question.explanation,
                timed_out=True,
            )
            logger.info("Time up for question %s", active.question.id)
            self.bus.publish(EventKind.answer_resolved, resolved)
            return resolved
        finally:
            self._active = None
            self._fsm.finish_resolution()

    def tick(self) -> bool:
        """Emit one timer tick; fires the timeout once time runs out.

        Returns whether the countdown should keep going.
        """

        active = self._active
        if self._fsm.phase != QuestionPhase.presented or active is None:
            return False

        elapsed = max(0.0, self.clock() - active.presented_at_ms)
        remaining = max(0.0, self.time_limit_ms - elapsed)
        self.bus.publish(
            EventKind.timer_tick,
            TimerTick(
                question_id=active.question.id,
                remaining_ms=remaining,
                elapsed_ms=elapsed,
                percentage=min(100.0, elapsed / self.time_limit_ms * 100),
            ),
        )
        if self._fsm.phase != QuestionPhase.presented or self._active is not active:
            # A tick subscriber resolved or replaced the question.
            return False
        if remaining <= 0:
            self.handle_timeout()
            return False
        return True

    def skip_question(self) -> QuestionSkipped | None:
        """Drop the active question with a score penalty; it stays answerable later."""

        if self._fsm.phase != QuestionPhase.presented or self._active is None:
            return None

        active = self._active
        self._fsm.begin_resolution()
        self._countdown.cancel()
        try:
            delta = self.progress.apply_penalty(self.skip_penalty, reason="skip")
            skipped = QuestionSkipped(
                question_id=active.question.id,
                penalty=-self.skip_penalty,
                score_delta=delta,
                score=self.progress.score,
            )
            logger.info("Question skipped: %s", active.question.id)
            self.bus.publish(EventKind.question_skipped, skipped)
            return skipped
        finally:
            self._active = None
            self._fsm.finish_resolution()

    def get_hint(self) -> str | None:
        if self._active is None:
            return None
        question = self._active.question
        if not question.hint:
            return NO_HINT_TEXT
        self.bus.publish(EventKind.hint_requested, HintRequested(question_id=question.id, hint=question.hint))
        return question.hint

    # --- reporting ----------------------------------------------------------------

    def quiz_statistics(self) -> QuizStatistics:
        answered = self.progress.snapshot.answered_questions
        total = self.catalog.question_count

        categories = []
        for category in self.catalog.categories():
            questions = self.catalog.questions_by_category(category)
            done = sum(1 for q in questions if q.id in answered)
            categories.append(
                CategoryProgress(
                    category=category,
                    total=len(questions),
                    answered=done,
                    percentage=round(done / len(questions) * 100),
                )
            )

        return QuizStatistics(
            total_questions=total,
            answered_questions=len(answered),
            remaining_questions=total - len(answered),
            completion_percentage=round(len(answered) / total * 100) if total else 0,
            categories=categories,
        )

    def destroy(self) -> None:
        """Stop the countdown and forget the active question without resolving it."""

        self._countdown.cancel()
        if self._fsm.phase == QuestionPhase.presented:
            self._fsm.discard()
        self._active = None
