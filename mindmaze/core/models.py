from __future__ import annotations

import time
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


def now_ms() -> float:
    """Wall-clock milliseconds; the default clock of every engine."""
    return time.time() * 1000.0


# Catalog records use the camelCase keys of the shipped JSON documents.
_CATALOG_CONFIG = ConfigDict(frozen=True, populate_by_name=True)


class Room(BaseModel):
    model_config = _CATALOG_CONFIG

    id: str
    name: str
    description: str = ""
    connections: tuple[str, ...] = ()
    question_category: str | None = Field(default=None, alias="questionCategory")
    is_starting_room: bool = Field(default=False, alias="isStartingRoom")


class Question(BaseModel):
    model_config = _CATALOG_CONFIG

    id: str
    category: str = "general"
    difficulty: str = "medium"
    points: int
    question: str = ""
    answers: tuple[str, ...]
    correct_answer: int = Field(alias="correctAnswer")
    explanation: str = ""
    hint: str | None = None


class ConditionKind(StrEnum):
    correct_answers = "correct_answers"
    total_questions = "total_questions"
    rooms_visited = "rooms_visited"
    quick_answers = "quick_answers"
    consecutive_correct = "consecutive_correct"
    comeback_correct = "comeback_correct"
    accuracy_with_minimum = "accuracy_with_minimum"
    completion_time = "completion_time"
    all_rooms_visited = "all_rooms_visited"
    specific_room_visited = "specific_room_visited"
    game_completed = "game_completed"
    game_completed_perfect = "game_completed_perfect"


class Condition(BaseModel):
    model_config = _CATALOG_CONFIG

    type: ConditionKind
    # Count for the counting kinds, milliseconds for completion_time, room id for specific_room_visited.
    value: int | str | None = None
    min_questions: int | None = Field(default=None, alias="minQuestions")
    accuracy: float | None = None
    # Seconds, quick_answers only.
    time_limit: float | None = Field(default=None, alias="timeLimit")


class AchievementDefinition(BaseModel):
    model_config = _CATALOG_CONFIG

    id: str
    name: str
    description: str
    category: str = "general"
    icon: str = ""
    points: int = 0
    condition: Condition


class GamePhase(StrEnum):
    playing = "playing"
    completed = "completed"


class ProgressSnapshot(BaseModel):
    """Mutable progress of one session; also the persisted progress record."""

    current_room_id: str
    score: int = Field(default=0, ge=0)
    visited_rooms: set[str] = Field(default_factory=set)
    unlocked_rooms: set[str] = Field(default_factory=set)
    answered_questions: set[str] = Field(default_factory=set)

    # Exact attempt counters; accuracy is derived from these, never from score.
    correct_attempts: int = Field(default=0, ge=0)
    incorrect_attempts: int = Field(default=0, ge=0)

    started_at_ms: float
    game_completed: bool = False
    saved_at: datetime | None = None

    @model_validator(mode="after")
    def _check_room_sets(self) -> "ProgressSnapshot":
        if self.current_room_id not in self.unlocked_rooms:
            raise ValueError("current room must be unlocked")
        if not self.visited_rooms <= self.unlocked_rooms:
            raise ValueError("visited rooms must be a subset of unlocked rooms")
        return self

    @property
    def phase(self) -> GamePhase:
        return GamePhase.completed if self.game_completed else GamePhase.playing

    @property
    def total_attempts(self) -> int:
        return self.correct_attempts + self.incorrect_attempts

    @staticmethod
    def initial(*, starting_room_id: str, started_at_ms: float) -> "ProgressSnapshot":
        return ProgressSnapshot(
            current_room_id=starting_room_id,
            visited_rooms={starting_room_id},
            unlocked_rooms={starting_room_id},
            started_at_ms=started_at_ms,
        )


class BonusBreakdown(BaseModel):
    completion_bonus: int = 0
    exploration_bonus: int = 0
    perfect_bonus: int = 0
    speed_bonus: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        return self.completion_bonus + self.exploration_bonus + self.perfect_bonus + self.speed_bonus


class GameStatistics(BaseModel):
    score: int
    final_score: int
    play_time_ms: float
    play_time_formatted: str
    rooms_visited: int
    rooms_total: int
    rooms_explored_percent: float
    questions_answered: int
    questions_total: int
    questions_answered_percent: float
    correct_answers: int
    incorrect_answers: int
    accuracy: float
    bonuses: BonusBreakdown
    performance_score: int
    game_completed: bool


class CompletionProgress(BaseModel):
    rooms_percentage: float
    questions_percentage: float
    accuracy: float
    has_visited_enough_rooms: bool
    has_answered_enough_questions: bool
    meets_accuracy_requirement: bool

    @property
    def satisfied(self) -> bool:
        return self.has_visited_enough_rooms and self.has_answered_enough_questions and self.meets_accuracy_requirement


class PresentedQuestion(BaseModel):
    """What presentation consumers see; never carries the answer key."""

    id: str
    category: str
    difficulty: str
    points: int
    question: str
    answers: list[str]
    validation_token: str
    time_limit_ms: int
    presented_at_ms: float
    has_hint: bool


class AchievementView(BaseModel):
    id: str
    name: str
    description: str
    category: str
    icon: str
    points: int
    unlocked: bool
    unlocked_at_ms: float | None
    progress: int
    max_progress: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def progress_percentage(self) -> float:
        if self.max_progress <= 0:
            return 0.0
        return self.progress / self.max_progress * 100


class AchievementRecord(BaseModel):
    """Persisted achievement state, stored apart from game progress."""

    unlocked_achievements: list[str] = Field(default_factory=list)
    achievement_progress: dict[str, int] = Field(default_factory=dict)
    total_points: int = 0
    unlock_times: dict[str, float] = Field(default_factory=dict)
    last_saved: datetime | None = None


class CategoryProgress(BaseModel):
    category: str
    total: int
    answered: int
    percentage: int


class QuizStatistics(BaseModel):
    total_questions: int
    answered_questions: int
    remaining_questions: int
    completion_percentage: int
    categories: list[CategoryProgress]


class AchievementCategoryStats(BaseModel):
    total: int = 0
    unlocked: int = 0
    percentage: float = 0.0


class AchievementStats(BaseModel):
    total: int
    unlocked: int
    percentage: float
    total_points: int
    categories: dict[str, AchievementCategoryStats]
