from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from mindmaze.core.models import AchievementDefinition, Question, Room

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_DIR = Path(__file__).resolve().parent / "data"

ROOMS_FILE = "rooms.json"
QUESTIONS_FILE = "questions.json"
ACHIEVEMENTS_FILE = "achievements.json"


class CatalogLoadError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class Catalog:
    """Immutable rooms, questions and achievement definitions.

    Questions keep file order; the quiz engine builds its own shuffled pools.
    """

    rooms: dict[str, Room]
    questions: tuple[Question, ...]
    achievements: tuple[AchievementDefinition, ...]
    _question_by_id: dict[str, Question]
    _by_category: dict[str, tuple[Question, ...]]
    starting_room_id: str

    @staticmethod
    def from_rows(
        *,
        rooms: Iterable[Room],
        questions: Iterable[Question],
        achievements: Iterable[AchievementDefinition] = (),
    ) -> "Catalog":
        room_rows = list(rooms)
        question_rows = list(questions)
        achievement_rows = list(achievements)

        by_room: dict[str, Room] = {}
        for room in room_rows:
            if room.id in by_room:
                raise CatalogLoadError(f"Duplicate room ID: {room.id}")
            by_room[room.id] = room
        if not by_room:
            raise CatalogLoadError("At least one room must be defined")

        starting = [r.id for r in room_rows if r.is_starting_room]
        if len(starting) != 1:
            raise CatalogLoadError(f"Exactly one room must be marked as starting room (found {len(starting)})")

        for room in room_rows:
            for target in room.connections:
                if target not in by_room:
                    raise CatalogLoadError(f"Room {room.id} references non-existent room: {target}")

        by_question: dict[str, Question] = {}
        by_category_build: dict[str, list[Question]] = {}
        for q in question_rows:
            if q.id in by_question:
                raise CatalogLoadError(f"Duplicate question ID: {q.id}")
            if len(q.answers) < 2:
                raise CatalogLoadError(f"Question {q.id} must have at least 2 answers")
            if not 0 <= q.correct_answer < len(q.answers):
                raise CatalogLoadError(f"Question {q.id} has invalid correctAnswer index")
            if q.points <= 0:
                raise CatalogLoadError(f"Question {q.id} must have positive points value")
            by_question[q.id] = q
            by_category_build.setdefault(q.category, []).append(q)
        if not by_question:
            raise CatalogLoadError("At least one question must be defined")

        seen_achievements: set[str] = set()
        for a in achievement_rows:
            if a.id in seen_achievements:
                raise CatalogLoadError(f"Duplicate achievement ID: {a.id}")
            seen_achievements.add(a.id)

        for room in room_rows:
            if room.question_category and room.question_category not in by_category_build:
                logger.warning("Room %s references unused question category: %s", room.id, room.question_category)

        return Catalog(
            rooms=by_room,
            questions=tuple(question_rows),
            achievements=tuple(achievement_rows),
            _question_by_id=by_question,
            _by_category={k: tuple(v) for k, v in by_category_build.items()},
            starting_room_id=starting[0],
        )

    def get_room(self, room_id: str) -> Room | None:
        return self.rooms.get(room_id)

    def get_question(self, question_id: str) -> Question | None:
        return self._question_by_id.get(question_id)

    def questions_by_category(self, category: str) -> tuple[Question, ...]:
        return self._by_category.get(category, ())

    def categories(self) -> list[str]:
        return list(self._by_category.keys())

    @property
    def starting_room(self) -> Room:
        return self.rooms[self.starting_room_id]

    @property
    def room_count(self) -> int:
        return len(self.rooms)

    @property
    def question_count(self) -> int:
        return len(self.questions)


def _read_rows(path: Path, key: str) -> list[dict[str, Any]]:
    try:
        doc = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise CatalogLoadError(f"Catalog file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise CatalogLoadError(f"Catalog file is not valid JSON: {path}: {e}") from e

    rows = doc.get(key) if isinstance(doc, dict) else None
    if not isinstance(rows, list):
        raise CatalogLoadError(f"{path.name} must contain a '{key}' array")
    return rows


def load_catalog(directory: Path | None = None) -> Catalog:
    """Load and validate the three catalog documents from `directory`.

    Expected layout:
      <directory>/rooms.json         {"rooms": [...]}
      <directory>/questions.json     {"questions": [...]}
      <directory>/achievements.json  {"achievements": [...]}  (optional)
    """

    root = directory or DEFAULT_CATALOG_DIR

    try:
        rooms = [Room.model_validate(r) for r in _read_rows(root / ROOMS_FILE, "rooms")]
        questions = [Question.model_validate(q) for q in _read_rows(root / QUESTIONS_FILE, "questions")]
        achievements: list[AchievementDefinition] = []
        if (root / ACHIEVEMENTS_FILE).exists():
            achievements = [
                AchievementDefinition.model_validate(a) for a in _read_rows(root / ACHIEVEMENTS_FILE, "achievements")
            ]
    except ValidationError as e:
        raise CatalogLoadError(f"Invalid catalog record in {root}: {e}") from e

    catalog = Catalog.from_rows(rooms=rooms, questions=questions, achievements=achievements)
    logger.info(
        "Loaded catalog: %d rooms, %d questions, %d achievements",
        catalog.room_count,
        catalog.question_count,
        len(catalog.achievements),
    )
    return catalog
