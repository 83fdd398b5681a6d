"""Error taxonomy for the rules engine.

User errors derive from `GameError` (a `ValueError`, so the HTTP layer can keep
treating every domain rejection the same way). Each carries a stable `kind` that
is mirrored into the `error` event.
"""
from __future__ import annotations


class GameError(ValueError):
    kind = "game"


class InvalidRoom(GameError):
    kind = "invalid_room"

    def __init__(self, room_id: str):
        self.room_id = room_id
        super().__init__(f"Room {room_id} does not exist")


class RoomLocked(GameError):
    kind = "room_locked"

    def __init__(self, room_id: str):
        self.room_id = room_id
        super().__init__(f"Room {room_id} is locked. Answer questions to unlock new areas.")


class UnknownQuestion(GameError):
    kind = "unknown_question"

    def __init__(self, question_id: str):
        self.question_id = question_id
        super().__init__(f"Question {question_id} not found")


class AlreadyAnswered(GameError):
    kind = "already_answered"

    def __init__(self, question_id: str):
        self.question_id = question_id
        super().__init__(f"Question {question_id} already answered")


class NoActiveQuestion(GameError):
    kind = "no_active_question"

    def __init__(self) -> None:
        super().__init__("No question currently active")


class NoQuestionsAvailable(GameError):
    kind = "no_questions_available"

    def __init__(self, category: str | None = None):
        self.category = category
        super().__init__("No questions available")
