"""Answer shuffling and the validation token.

The token lets the presentation layer hold something to submit against without
ever seeing the correct index. It is obfuscation only: anyone holding the salt
and the presentation timestamp can brute-force the handful of candidate indexes.
Authoritative scoring happens in `GameProgress.answer_question`.
"""
from __future__ import annotations

import hashlib
import random
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ShuffledAnswers:
    answers: list[str]
    # order[shuffled_index] == catalog index
    order: list[int]
    correct_index: int

    def to_catalog_index(self, shuffled_index: int) -> int:
        if 0 <= shuffled_index < len(self.order):
            return self.order[shuffled_index]
        return -1


def shuffle_answers(answers: tuple[str, ...] | list[str], correct_answer: int, *, rng: random.Random) -> ShuffledAnswers:
    """Fisher-Yates shuffle (`random.shuffle`) of answer positions, tracking the correct one."""

    order = list(range(len(answers)))
    rng.shuffle(order)
    return ShuffledAnswers(
        answers=[answers[i] for i in order],
        order=order,
        correct_index=order.index(correct_answer),
    )


def validation_token(*, question_id: str, index: int, presented_at_ms: float, salt: bytes) -> str:
    seed = f"{question_id}:{index}:{presented_at_ms!r}".encode()
    return hashlib.blake2b(seed, key=salt, digest_size=8).hexdigest()
