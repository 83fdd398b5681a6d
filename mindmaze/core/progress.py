from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import UTC, datetime

import redis

from mindmaze.catalog.registry import Catalog
from mindmaze.core.errors import AlreadyAnswered, InvalidRoom, RoomLocked, UnknownQuestion
from mindmaze.core.events import (
    ErrorRaised,
    EventBus,
    EventKind,
    GameCompleted,
    GameLoaded,
    GameReset,
    GameSaved,
    QuestionAnswered,
    RoomChanged,
    RoomUnlocked,
    ScoreChanged,
)
from mindmaze.core.fsm import ProgressFSM
from mindmaze.core.models import BonusBreakdown, CompletionProgress, GameStatistics, ProgressSnapshot, Room, now_ms
from mindmaze.infra.store import PROGRESS_KEY, delete_record, load_record, save_record

logger = logging.getLogger(__name__)

MAX_TIME_BONUS = 50
TIME_BONUS_CUTOFF_MS = 10_000

ROOMS_REQUIRED_PERCENT = 80
QUESTIONS_REQUIRED_PERCENT = 70
ACCURACY_REQUIRED_PERCENT = 70

COMPLETION_BONUS = 500
EXPLORATION_BONUS_PER_ROOM = 10
PERFECT_BONUS = 1000
SPEED_RUN_BONUS = 750
SPEED_RUN_THRESHOLD_MS = 10 * 60 * 1000


def time_bonus(elapsed_ms: float) -> int:
    """Linear decay from MAX_TIME_BONUS at 0 ms to nothing at the cutoff."""
    elapsed = max(0.0, elapsed_ms)
    if elapsed >= TIME_BONUS_CUTOFF_MS:
        return 0
    return math.floor(MAX_TIME_BONUS * (1 - elapsed / TIME_BONUS_CUTOFF_MS))


def format_duration(milliseconds: float) -> str:
    seconds = int(milliseconds // 1000)
    minutes = seconds // 60
    hours = minutes // 60
    if hours > 0:
        return f"{hours}h {minutes % 60}m {seconds % 60}s"
    if minutes > 0:
        return f"{minutes}m {seconds % 60}s"
    return f"{seconds}s"


def _percent(part: int, whole: int) -> float:
    return part / whole * 100 if whole > 0 else 0.0


class GameProgress:
    """Owns the progress snapshot: room, score, room sets, answered questions, completion.

    Every score mutation goes through this class (`answer_question` and
    `apply_penalty`). User errors are raised to the caller and mirrored as an
    `error` event.
    """

    def __init__(
        self,
        *,
        catalog: Catalog,
        bus: EventBus,
        r: redis.Redis,
        clock: Callable[[], float] = now_ms,
    ):
        self.catalog = catalog
        self.bus = bus
        self.r = r
        self.clock = clock
        self._snapshot = ProgressSnapshot.initial(starting_room_id=catalog.starting_room_id, started_at_ms=clock())
        self._fsm = ProgressFSM(self._snapshot)
        self._question_started_at: float | None = None

    @property
    def snapshot(self) -> ProgressSnapshot:
        return self._snapshot

    @property
    def current_room(self) -> Room:
        return self.catalog.rooms[self._snapshot.current_room_id]

    @property
    def score(self) -> int:
        return self._snapshot.score

    @property
    def game_completed(self) -> bool:
        return self._fsm.latched

    def is_answered(self, question_id: str) -> bool:
        return question_id in self._snapshot.answered_questions

    def accuracy(self) -> float:
        """Correct attempts over all attempts, in percent."""
        s = self._snapshot
        return _percent(s.correct_attempts, s.total_attempts)

    def play_time_ms(self) -> float:
        return max(0.0, self.clock() - self._snapshot.started_at_ms)

    # --- navigation ---------------------------------------------------------------

    def move_to_room(self, room_id: str) -> Room:
        room = self.catalog.get_room(room_id)
        if room is None:
            self.bus.reject(InvalidRoom(room_id))
        if room_id not in self._snapshot.unlocked_rooms:
            self.bus.reject(RoomLocked(room_id))

        previous = self._snapshot.current_room_id
        self._snapshot.current_room_id = room_id
        self._snapshot.visited_rooms.add(room_id)

        logger.info("Moved from %s to %s", previous, room_id)
        self.bus.publish(EventKind.room_changed, RoomChanged(from_room_id=previous, to_room_id=room_id, room=room))
        return room

    def available_rooms(self) -> list[str]:
        """Unlocked connections of the current room."""
        return [rid for rid in self.current_room.connections if rid in self._snapshot.unlocked_rooms]

    # --- answering ----------------------------------------------------------------

    def start_question_timer(self) -> None:
        self._question_started_at = self.clock()

    def time_bonus(self, elapsed_ms: float) -> int:
        return time_bonus(elapsed_ms)

    def answer_question(self, question_id: str, answer_index: int, *, elapsed_ms: float | None = None) -> QuestionAnswered:
        """Authoritative scoring of one answer.

        `answer_index` is in catalog order. When `elapsed_ms` is omitted it is measured
        from the last `start_question_timer()` call (zero if the timer was never started).
        """

        question = self.catalog.get_question(question_id)
        if question is None:
            self.bus.reject(UnknownQuestion(question_id))
        if question_id in self._snapshot.answered_questions:
            self.bus.reject(AlreadyAnswered(question_id))

        if elapsed_ms is None:
            started = self._question_started_at
            elapsed_ms = self.clock() - started if started is not None else 0.0

        correct = answer_index == question.correct_answer
        bonus = 0
        points = 0

        if correct:
            bonus = self.time_bonus(elapsed_ms)
            points = question.points + bonus
            self._snapshot.score += points
            self._snapshot.answered_questions.add(question_id)
            self._snapshot.correct_attempts += 1
            logger.info("Correct answer to %s: %d points (%d + %d time bonus)", question_id, points, question.points, bonus)
            self.bus.publish(EventKind.score_changed, ScoreChanged(score=self._snapshot.score, delta=points, reason="answer"))
            self._unlock_connected_rooms()
        else:
            self._snapshot.incorrect_attempts += 1
            logger.info("Incorrect answer to %s", question_id)

        result = QuestionAnswered(
            question_id=question_id,
            correct=correct,
            answer_index=answer_index,
            correct_answer=question.correct_answer,
            points_earned=points,
            time_bonus=bonus,
            elapsed_ms=elapsed_ms,
            current_score=self._snapshot.score,
            explanation=question.explanation,
        )
        self.bus.publish(EventKind.question_answered, result)

        self.check_completion()
        return result

    def _unlock_connected_rooms(self) -> None:
        for room_id in self.current_room.connections:
            if room_id not in self._snapshot.unlocked_rooms:
                self._snapshot.unlocked_rooms.add(room_id)
                logger.info("Unlocked room: %s", room_id)
                self.bus.publish(EventKind.room_unlocked, RoomUnlocked(room_id=room_id))

    def apply_penalty(self, points: int, *, reason: str) -> int:
        """Remove up to `points` from the score (never below zero); returns the applied delta."""

        delta = -min(max(points, 0), self._snapshot.score)
        if delta:
            self._snapshot.score += delta
            self.bus.publish(EventKind.score_changed, ScoreChanged(score=self._snapshot.score, delta=delta, reason=reason))
        logger.info("Penalty (%s): %d, score now %d", reason, delta, self._snapshot.score)
        return delta

    # --- completion ---------------------------------------------------------------

    def completion_progress(self) -> CompletionProgress:
        s = self._snapshot
        rooms_pct = _percent(len(s.visited_rooms), self.catalog.room_count)
        questions_pct = _percent(len(s.answered_questions), self.catalog.question_count)
        accuracy = self.accuracy()
        return CompletionProgress(
            rooms_percentage=rooms_pct,
            questions_percentage=questions_pct,
            accuracy=accuracy,
            has_visited_enough_rooms=rooms_pct >= ROOMS_REQUIRED_PERCENT,
            has_answered_enough_questions=questions_pct >= QUESTIONS_REQUIRED_PERCENT,
            meets_accuracy_requirement=accuracy >= ACCURACY_REQUIRED_PERCENT,
        )

    def check_completion(self) -> GameCompleted | None:
        """Latch completion the first time every threshold is met.

        Returns the completion payload on the latching call only; later calls are no-ops.
        """

        if self._fsm.latched:
            return None

        progress = self.completion_progress()
        if not progress.satisfied:
            return None

        self._fsm.complete()
        self._fsm.sync_phase_to_model()

        breakdown = self.bonus_breakdown()
        stats = self.statistics()
        completed = GameCompleted(
            final_score=self._snapshot.score + breakdown.total,
            breakdown=breakdown,
            statistics=stats,
            perfect=breakdown.perfect_bonus > 0,
            speed_run=breakdown.speed_bonus > 0,
        )
        logger.info("Game completed with final score %d", completed.final_score)
        self.bus.publish(EventKind.game_completed, completed)
        return completed

    def bonus_breakdown(self) -> BonusBreakdown:
        s = self._snapshot
        completed = self._fsm.latched
        perfect = (
            completed
            and len(s.visited_rooms) >= self.catalog.room_count
            and s.total_attempts > 0
            and s.incorrect_attempts == 0
        )
        return BonusBreakdown(
            completion_bonus=COMPLETION_BONUS if completed else 0,
            exploration_bonus=len(s.visited_rooms) * EXPLORATION_BONUS_PER_ROOM,
            perfect_bonus=PERFECT_BONUS if perfect else 0,
            speed_bonus=SPEED_RUN_BONUS if completed and self.play_time_ms() < SPEED_RUN_THRESHOLD_MS else 0,
        )

    def final_score(self) -> int:
        return self._snapshot.score + self.bonus_breakdown().total

    def statistics(self) -> GameStatistics:
        s = self._snapshot
        rooms_pct = _percent(len(s.visited_rooms), self.catalog.room_count)
        questions_pct = _percent(len(s.answered_questions), self.catalog.question_count)
        accuracy = self.accuracy()
        play_time = self.play_time_ms()
        bonuses = self.bonus_breakdown()
        return GameStatistics(
            score=s.score,
            final_score=s.score + bonuses.total,
            play_time_ms=play_time,
            play_time_formatted=format_duration(play_time),
            rooms_visited=len(s.visited_rooms),
            rooms_total=self.catalog.room_count,
            rooms_explored_percent=round(rooms_pct, 1),
            questions_answered=len(s.answered_questions),
            questions_total=self.catalog.question_count,
            questions_answered_percent=round(questions_pct, 1),
            correct_answers=s.correct_attempts,
            incorrect_answers=s.incorrect_attempts,
            accuracy=round(accuracy, 1),
            bonuses=bonuses,
            performance_score=round(accuracy * 0.5 + rooms_pct * 0.3 + questions_pct * 0.2),
            game_completed=self._fsm.latched,
        )

    # --- persistence --------------------------------------------------------------

    def save_progress(self) -> bool:
        self._snapshot.saved_at = datetime.now(tz=UTC)
        if not save_record(r=self.r, key=PROGRESS_KEY, record=self._snapshot):
            self.bus.publish(EventKind.error, ErrorRaised(kind="save", message="Failed to save game"))
            return False
        logger.info("Game saved")
        self.bus.publish(EventKind.game_saved, GameSaved(saved_at=self._snapshot.saved_at))
        return True

    def load_progress(self) -> bool:
        """Replace the snapshot with the stored one; leaves state untouched on failure."""

        loaded = load_record(r=self.r, key=PROGRESS_KEY, model=ProgressSnapshot)
        if loaded is None:
            return False

        unknown_rooms = {loaded.current_room_id, *loaded.unlocked_rooms} - set(self.catalog.rooms)
        if unknown_rooms:
            logger.warning("Saved game references unknown rooms %s; ignoring it", sorted(unknown_rooms))
            self.bus.publish(EventKind.error, ErrorRaised(kind="load", message="Saved game does not match the catalog"))
            return False

        self._snapshot = loaded
        self._fsm = ProgressFSM(loaded)
        self._question_started_at = None
        logger.info("Game loaded: room=%s score=%d", loaded.current_room_id, loaded.score)
        self.bus.publish(EventKind.game_loaded, GameLoaded(snapshot=loaded))
        return True

    def reset(self) -> None:
        self._snapshot = ProgressSnapshot.initial(starting_room_id=self.catalog.starting_room_id, started_at_ms=self.clock())
        self._fsm = ProgressFSM(self._snapshot)
        self._question_started_at = None
        delete_record(r=self.r, key=PROGRESS_KEY)
        logger.info("Game reset to initial state")
        self.bus.publish(EventKind.game_reset, GameReset())
