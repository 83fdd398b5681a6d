from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any

from mindmaze.core.models import ProgressSnapshot

RECENT_OUTCOMES = 10
# Correct answers faster than this are remembered for the quick-answer conditions.
QUICK_ANSWER_MS = 10_000


@dataclass(frozen=True, slots=True)
class AnswerOutcome:
    correct: bool
    elapsed_ms: float


@dataclass(slots=True)
class SessionStatistics:
    """Running counters the achievement conditions are evaluated against.

    Updated in O(1) per event. Only the recent-outcome ring and the quick answer
    latencies keep history, and the ring is bounded.
    """

    started_at_ms: float
    correct_answers: int = 0
    total_questions: int = 0
    consecutive_correct: int = 0
    max_consecutive_correct: int = 0
    consecutive_wrong: int = 0
    rooms_visited: set[str] = field(default_factory=set)
    quick_answers: list[float] = field(default_factory=list)
    recent: deque[AnswerOutcome] = field(default_factory=lambda: deque(maxlen=RECENT_OUTCOMES))
    completed: bool = False
    completed_at_ms: float | None = None

    @staticmethod
    def from_snapshot(snapshot: ProgressSnapshot) -> "SessionStatistics":
        """Counters recoverable from a progress snapshot; streaks and history start empty."""
        return SessionStatistics(
            started_at_ms=snapshot.started_at_ms,
            correct_answers=snapshot.correct_attempts,
            total_questions=snapshot.total_attempts,
            rooms_visited=set(snapshot.visited_rooms),
            completed=snapshot.game_completed,
        )

    def record_answer(self, *, correct: bool, elapsed_ms: float) -> None:
        self.total_questions += 1
        if correct:
            self.correct_answers += 1
            self.consecutive_correct += 1
            self.consecutive_wrong = 0
            self.max_consecutive_correct = max(self.max_consecutive_correct, self.consecutive_correct)
            if elapsed_ms < QUICK_ANSWER_MS:
                self.quick_answers.append(elapsed_ms)
        else:
            self.consecutive_correct = 0
            self.consecutive_wrong += 1
        self.recent.append(AnswerOutcome(correct=correct, elapsed_ms=elapsed_ms))

    def record_room(self, room_id: str) -> None:
        self.rooms_visited.add(room_id)

    def record_completion(self, at_ms: float) -> None:
        if self.completed:
            return
        self.completed = True
        self.completed_at_ms = at_ms

    def quick_answer_count(self, threshold_ms: float) -> int:
        return sum(1 for elapsed in self.quick_answers if elapsed < threshold_ms)

    def recent_outcomes(self, n: int) -> list[bool]:
        """Correctness of the last `n` answers, oldest first (fewer if not enough history)."""
        if n <= 0:
            return []
        return [o.correct for o in list(self.recent)[-n:]]

    @property
    def accuracy(self) -> float:
        return self.correct_answers / self.total_questions if self.total_questions else 0.0

    @property
    def completion_time_ms(self) -> float | None:
        if not self.completed or self.completed_at_ms is None:
            return None
        return self.completed_at_ms - self.started_at_ms

    def as_dict(self) -> dict[str, Any]:
        return {
            "started_at_ms": self.started_at_ms,
            "correct_answers": self.correct_answers,
            "total_questions": self.total_questions,
            "consecutive_correct": self.consecutive_correct,
            "max_consecutive_correct": self.max_consecutive_correct,
            "consecutive_wrong": self.consecutive_wrong,
            "rooms_visited": sorted(self.rooms_visited),
            "quick_answers": list(self.quick_answers),
            "recent": [{"correct": o.correct, "elapsed_ms": o.elapsed_ms} for o in self.recent],
            "completed": self.completed,
            "completed_at_ms": self.completed_at_ms,
        }
