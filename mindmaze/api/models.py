from __future__ import annotations

from pydantic import BaseModel, Field

from mindmaze.core.events import AnswerResolved, QuestionSkipped
from mindmaze.core.models import (
    AchievementStats,
    AchievementView,
    CompletionProgress,
    GameStatistics,
    PresentedQuestion,
    ProgressSnapshot,
    QuizStatistics,
    Room,
)


class NavigateRequest(BaseModel):
    room_id: str = Field(..., min_length=1)


class PresentRequest(BaseModel):
    question_id: str | None = None
    category: str | None = None
    # Pick the difficulty from the player's accuracy; ignored when question_id is set.
    adaptive: bool = False


class AnswerRequest(BaseModel):
    index: int


class StateResponse(BaseModel):
    progress: ProgressSnapshot
    current_room: Room
    available_rooms: list[str]
    completion: CompletionProgress
    question_phase: str
    active_question: PresentedQuestion | None = None


class RoomsResponse(BaseModel):
    rooms: list[Room]


class NavigateResponse(BaseModel):
    room: Room
    available_rooms: list[str]


class PresentResponse(BaseModel):
    # None when a resolution was already in flight.
    question: PresentedQuestion | None


class AnswerResponse(BaseModel):
    result: AnswerResolved | None
    score: int
    game_completed: bool


class HintResponse(BaseModel):
    hint: str | None


class SkipResponse(BaseModel):
    result: QuestionSkipped | None
    score: int


class PersistResponse(BaseModel):
    ok: bool


class StatisticsResponse(BaseModel):
    game: GameStatistics
    quiz: QuizStatistics


class AchievementsResponse(BaseModel):
    achievements: list[AchievementView]
    stats: AchievementStats
