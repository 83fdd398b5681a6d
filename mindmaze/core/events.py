from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, NoReturn

from pydantic import BaseModel, ConfigDict

from mindmaze.core.errors import GameError
from mindmaze.core.models import (
    AchievementView,
    BonusBreakdown,
    GameStatistics,
    PresentedQuestion,
    ProgressSnapshot,
    Room,
)

logger = logging.getLogger(__name__)


class EventKind(StrEnum):
    room_changed = "room_changed"
    room_unlocked = "room_unlocked"
    question_answered = "question_answered"
    score_changed = "score_changed"
    game_completed = "game_completed"
    game_saved = "game_saved"
    game_loaded = "game_loaded"
    game_reset = "game_reset"
    question_presented = "question_presented"
    question_cancelled = "question_cancelled"
    timer_tick = "timer_tick"
    answer_resolved = "answer_resolved"
    question_skipped = "question_skipped"
    hint_requested = "hint_requested"
    achievement_unlocked = "achievement_unlocked"
    achievements_reset = "achievements_reset"
    error = "error"


class EventPayload(BaseModel):
    model_config = ConfigDict(frozen=True)


class RoomChanged(EventPayload):
    from_room_id: str
    to_room_id: str
    room: Room


class RoomUnlocked(EventPayload):
    room_id: str


class QuestionAnswered(EventPayload):
    question_id: str
    correct: bool
    answer_index: int
    # Index in catalog order; the engine reveals its shuffled counterpart separately.
    correct_answer: int
    points_earned: int
    time_bonus: int
    elapsed_ms: float
    current_score: int
    explanation: str = ""


class ScoreChanged(EventPayload):
    score: int
    delta: int
    reason: str


class GameCompleted(EventPayload):
    final_score: int
    breakdown: BonusBreakdown
    statistics: GameStatistics
    perfect: bool
    speed_run: bool


class GameSaved(EventPayload):
    saved_at: datetime


class GameLoaded(EventPayload):
    snapshot: ProgressSnapshot


class GameReset(EventPayload):
    pass


class QuestionPresented(EventPayload):
    question: PresentedQuestion


class QuestionCancelled(EventPayload):
    question_id: str


class TimerTick(EventPayload):
    question_id: str
    remaining_ms: float
    elapsed_ms: float
    percentage: float


class AnswerResolved(EventPayload):
    question_id: str
    correct: bool
    selected_index: int | None
    correct_index: int
    points_earned: int
    time_bonus: int = 0
    elapsed_ms: float
    explanation: str = ""
    timed_out: bool = False


class QuestionSkipped(EventPayload):
    question_id: str
    # Configured penalty (negative); score_delta is what was actually removed.
    penalty: int
    score_delta: int
    score: int


class HintRequested(EventPayload):
    question_id: str
    hint: str


class AchievementUnlocked(EventPayload):
    achievement: AchievementView
    total_points: int
    unlocked_count: int


class AchievementsReset(EventPayload):
    pass


class ErrorRaised(EventPayload):
    kind: str
    message: str


PAYLOAD_TYPES: dict[EventKind, type[EventPayload]] = {
    EventKind.room_changed: RoomChanged,
    EventKind.room_unlocked: RoomUnlocked,
    EventKind.question_answered: QuestionAnswered,
    EventKind.score_changed: ScoreChanged,
    EventKind.game_completed: GameCompleted,
    EventKind.game_saved: GameSaved,
    EventKind.game_loaded: GameLoaded,
    EventKind.game_reset: GameReset,
    EventKind.question_presented: QuestionPresented,
    EventKind.question_cancelled: QuestionCancelled,
    EventKind.timer_tick: TimerTick,
    EventKind.answer_resolved: AnswerResolved,
    EventKind.question_skipped: QuestionSkipped,
    EventKind.hint_requested: HintRequested,
    EventKind.achievement_unlocked: AchievementUnlocked,
    EventKind.achievements_reset: AchievementsReset,
    EventKind.error: ErrorRaised,
}


@dataclass(frozen=True, slots=True)
class GameEvent:
    type: EventKind
    payload: EventPayload
    ts: datetime

    @staticmethod
    def now(*, type: EventKind, payload: EventPayload) -> "GameEvent":
        return GameEvent(type=type, payload=payload, ts=datetime.now(timezone.utc))

    def as_message(self) -> dict[str, Any]:
        """JSON-ready form used by the WebSocket fan-out."""
        return {
            "type": self.type.value,
            "ts": self.ts.isoformat(),
            "payload": self.payload.model_dump(mode="json"),
        }


Handler = Callable[[GameEvent], None]


@dataclass(slots=True, eq=False)
class Subscription:
    bus: "EventBus"
    kind: EventKind | None
    handler: Handler
    active: bool = True

    def unsubscribe(self) -> None:
        self.bus.unsubscribe(self)


@dataclass(slots=True)
class EventBus:
    """Synchronous publish/subscribe keyed by `EventKind`.

    Handlers run in subscription order, inline with `publish`. A failing handler is
    logged and skipped; it never breaks the publisher or the remaining handlers.
    """

    _by_kind: dict[EventKind | None, list[Subscription]] = field(default_factory=lambda: defaultdict(list))

    def subscribe(self, kind: EventKind, handler: Handler) -> Subscription:
        sub = Subscription(bus=self, kind=kind, handler=handler)
        self._by_kind[kind].append(sub)
        return sub

    def subscribe_all(self, handler: Handler) -> Subscription:
        sub = Subscription(bus=self, kind=None, handler=handler)
        self._by_kind[None].append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        subs = self._by_kind.get(sub.kind)
        if subs and sub in subs:
            subs.remove(sub)
        sub.active = False

    def publish(self, kind: EventKind, payload: EventPayload) -> GameEvent:
        expected = PAYLOAD_TYPES[kind]
        if not isinstance(payload, expected):
            raise TypeError(f"{kind.value} expects {expected.__name__}, got {type(payload).__name__}")

        event = GameEvent.now(type=kind, payload=payload)
        targets = [*self._by_kind.get(kind, ()), *self._by_kind.get(None, ())]
        for sub in targets:
            if not sub.active:
                continue
            try:
                sub.handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", kind.value)
        return event

    def handler_count(self, kind: EventKind | None = None) -> int:
        return len(self._by_kind.get(kind, ()))

    def reject(self, error: GameError) -> NoReturn:
        """Mirror a user error as an `error` event, then raise it to the caller."""
        logger.warning("Rejected: %s", error)
        self.publish(EventKind.error, ErrorRaised(kind=error.kind, message=str(error)))
        raise error
