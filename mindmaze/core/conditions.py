"""Achievement condition kinds as pure functions over SessionStatistics.

Each kind maps to a predicate and a display-progress function. `room_count`
is the catalog room total, needed by the room-coverage kinds.
"""
from __future__ import annotations

from collections.abc import Callable

from mindmaze.core.models import Condition, ConditionKind
from mindmaze.core.statistics import QUICK_ANSWER_MS, SessionStatistics

Predicate = Callable[[Condition, SessionStatistics, int], bool]

COUNTING_KINDS = frozenset(
    {
        ConditionKind.correct_answers,
        ConditionKind.total_questions,
        ConditionKind.rooms_visited,
        ConditionKind.quick_answers,
        ConditionKind.consecutive_correct,
    }
)


def _count(condition: Condition) -> int:
    value = condition.value
    if isinstance(value, bool) or value is None:
        return 0
    return int(value)


def _quick_threshold_ms(condition: Condition) -> float:
    if condition.time_limit is None:
        return QUICK_ANSWER_MS
    return condition.time_limit * 1000


def _comeback(condition: Condition, stats: SessionStatistics, room_count: int) -> bool:
    wrongs = _count(condition)
    recent = stats.recent_outcomes(wrongs + 1)
    return len(recent) == wrongs + 1 and recent == [False] * wrongs + [True]


def _accuracy_with_minimum(condition: Condition, stats: SessionStatistics, room_count: int) -> bool:
    minimum = condition.min_questions or 0
    if stats.total_questions == 0 or stats.total_questions < minimum:
        return False
    return stats.accuracy >= (condition.accuracy or 0.0)


def _completion_time(condition: Condition, stats: SessionStatistics, room_count: int) -> bool:
    elapsed = stats.completion_time_ms
    return elapsed is not None and elapsed <= _count(condition)


_PREDICATES: dict[ConditionKind, Predicate] = {
    ConditionKind.correct_answers: lambda c, s, n: s.correct_answers >= _count(c),
    ConditionKind.total_questions: lambda c, s, n: s.total_questions >= _count(c),
    ConditionKind.rooms_visited: lambda c, s, n: len(s.rooms_visited) >= _count(c),
    ConditionKind.quick_answers: lambda c, s, n: s.quick_answer_count(_quick_threshold_ms(c)) >= _count(c),
    ConditionKind.consecutive_correct: lambda c, s, n: s.max_consecutive_correct >= _count(c),
    ConditionKind.comeback_correct: _comeback,
    ConditionKind.accuracy_with_minimum: _accuracy_with_minimum,
    ConditionKind.completion_time: _completion_time,
    ConditionKind.all_rooms_visited: lambda c, s, n: len(s.rooms_visited) >= n,
    ConditionKind.specific_room_visited: lambda c, s, n: str(c.value) in s.rooms_visited,
    ConditionKind.game_completed: lambda c, s, n: s.completed,
    ConditionKind.game_completed_perfect: lambda c, s, n: s.completed and len(s.rooms_visited) >= n,
}


def is_satisfied(condition: Condition, stats: SessionStatistics, *, room_count: int) -> bool:
    return _PREDICATES[condition.type](condition, stats, room_count)


def max_progress(condition: Condition) -> int:
    if condition.type in COUNTING_KINDS or condition.type == ConditionKind.comeback_correct:
        return max(_count(condition), 1)
    if condition.type == ConditionKind.accuracy_with_minimum:
        return max(condition.min_questions or 0, 1)
    return 1


def current_progress(condition: Condition, stats: SessionStatistics) -> int:
    """Display-only progress, capped at `max_progress`; binary kinds report 0 until unlocked."""

    kind = condition.type
    if kind == ConditionKind.correct_answers:
        value = stats.correct_answers
    elif kind == ConditionKind.total_questions:
        value = stats.total_questions
    elif kind == ConditionKind.rooms_visited:
        value = len(stats.rooms_visited)
    elif kind == ConditionKind.quick_answers:
        value = stats.quick_answer_count(_quick_threshold_ms(condition))
    elif kind == ConditionKind.consecutive_correct:
        value = stats.max_consecutive_correct
    elif kind == ConditionKind.comeback_correct:
        value = stats.consecutive_wrong
    elif kind == ConditionKind.accuracy_with_minimum:
        value = stats.total_questions
    else:
        value = 0
    return min(value, max_progress(condition))
