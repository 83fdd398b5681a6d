"""Shared test doubles and catalog builders."""
from __future__ import annotations

from collections.abc import Iterable

from mindmaze.catalog.registry import Catalog
from mindmaze.core.events import EventBus, EventKind, GameEvent
from mindmaze.core.models import AchievementDefinition, Question, Room
from mindmaze.core.quiz import QuizEngine


class FakeClock:
    """Manually advanced millisecond clock shared by the engines under test."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class EventRecorder:
    def __init__(self, bus: EventBus) -> None:
        self.events: list[GameEvent] = []
        bus.subscribe_all(self.events.append)

    def kinds(self) -> list[EventKind]:
        return [e.type for e in self.events]

    def of(self, kind: EventKind) -> list:
        return [e.payload for e in self.events if e.type == kind]

    def clear(self) -> None:
        self.events.clear()


def make_catalog(achievements: Iterable[AchievementDefinition] = ()) -> Catalog:
    """Three rooms around a hall and four questions; small enough to finish a game by hand."""

    rooms = [
        Room(id="hall", name="Hall", connections=("study", "vault"), question_category="history", is_starting_room=True),
        Room(id="study", name="Study", connections=("hall",), question_category="science"),
        Room(id="vault", name="Vault", connections=("hall",)),
    ]
    questions = [
        Question(
            id="h1",
            category="history",
            difficulty="easy",
            points=100,
            question="First?",
            answers=("alpha", "beta", "gamma", "delta"),
            correct_answer=0,
            explanation="alpha came first",
            hint="Think of the first letter.",
        ),
        Question(
            id="h2",
            category="history",
            difficulty="medium",
            points=100,
            question="Second?",
            answers=("one", "two", "three"),
            correct_answer=1,
        ),
        Question(
            id="s1",
            category="science",
            difficulty="hard",
            points=150,
            question="Third?",
            answers=("red", "green", "blue", "violet"),
            correct_answer=2,
            explanation="blue",
        ),
        Question(
            id="s2",
            category="science",
            difficulty="easy",
            points=50,
            question="Fourth?",
            answers=("yes", "no"),
            correct_answer=1,
        ),
    ]
    return Catalog.from_rows(rooms=rooms, questions=questions, achievements=achievements)


def achievement(achievement_id: str, condition: dict, *, points: int = 10, category: str = "general") -> AchievementDefinition:
    return AchievementDefinition.model_validate(
        {
            "id": achievement_id,
            "name": achievement_id.replace("_", " ").title(),
            "description": f"{achievement_id} description",
            "category": category,
            "points": points,
            "condition": condition,
        }
    )


def correct_shuffled_index(quiz: QuizEngine) -> int:
    view = quiz.active_question
    assert view is not None
    question = quiz.catalog.get_question(view.id)
    return view.answers.index(question.answers[question.correct_answer])


def wrong_shuffled_index(quiz: QuizEngine) -> int:
    return (correct_shuffled_index(quiz) + 1) % len(quiz.active_question.answers)


