from __future__ import annotations

import json

import pytest
import redis
from pydantic import ValidationError

from mindmaze.catalog.registry import load_catalog
from mindmaze.core.errors import AlreadyAnswered, InvalidRoom, RoomLocked, UnknownQuestion
from mindmaze.core.events import EventBus, EventKind
from mindmaze.core.models import ProgressSnapshot
from mindmaze.core.progress import GameProgress, format_duration, time_bonus
from mindmaze.infra.store import PROGRESS_KEY
from support import EventRecorder, FakeClock


def _assert_room_invariants(progress: GameProgress) -> None:
    s = progress.snapshot
    assert s.visited_rooms <= s.unlocked_rooms
    assert s.current_room_id in s.unlocked_rooms


def _finish_small_game(progress: GameProgress) -> None:
    progress.answer_question("h1", 0, elapsed_ms=10_000)
    progress.move_to_room("study")
    progress.move_to_room("vault")
    progress.answer_question("h2", 1, elapsed_ms=10_000)
    progress.answer_question("s1", 2, elapsed_ms=10_000)


def test_initial_snapshot_starts_in_the_starting_room(progress: GameProgress) -> None:
    s = progress.snapshot
    assert s.current_room_id == "hall"
    assert s.visited_rooms == {"hall"}
    assert s.unlocked_rooms == {"hall"}
    assert s.answered_questions == set()
    assert s.score == 0
    assert progress.game_completed is False
    assert progress.available_rooms() == []


def test_locked_room_is_rejected_and_mirrored_as_error_event(r, clock: FakeClock) -> None:
    bus = EventBus()
    recorder = EventRecorder(bus)
    progress = GameProgress(catalog=load_catalog(), bus=bus, r=r, clock=clock)

    with pytest.raises(RoomLocked):
        progress.move_to_room("library")

    assert progress.snapshot.current_room_id == "entrance"
    errors = recorder.of(EventKind.error)
    assert len(errors) == 1
    assert errors[0].kind == "room_locked"


def test_unknown_room_is_invalid(progress: GameProgress, recorder: EventRecorder) -> None:
    with pytest.raises(InvalidRoom):
        progress.move_to_room("nowhere")
    assert recorder.of(EventKind.error)[0].kind == "invalid_room"


def test_time_bonus_decays_linearly_to_zero_at_cutoff() -> None:
    assert time_bonus(0) == 50
    assert time_bonus(5_000) == 25
    assert time_bonus(4_000) == 30
    assert time_bonus(9_999) == 0
    assert time_bonus(10_000) == 0
    assert time_bonus(60_000) == 0
    assert time_bonus(-100) == 50


def test_correct_answer_at_zero_elapsed_gets_full_bonus(progress: GameProgress) -> None:
    result = progress.answer_question("h1", 0, elapsed_ms=0)
    assert result.correct is True
    assert result.points_earned == 150
    assert progress.score == 150


def test_correct_answer_after_cutoff_gets_base_points_only(progress: GameProgress) -> None:
    result = progress.answer_question("h1", 0, elapsed_ms=10_000)
    assert result.points_earned == 100
    assert result.time_bonus == 0
    assert progress.score == 100


def test_elapsed_is_measured_from_question_timer(progress: GameProgress, clock: FakeClock) -> None:
    progress.start_question_timer()
    clock.advance(4_000)
    result = progress.answer_question("h1", 0)
    assert result.time_bonus == 30
    assert progress.score == 130


def test_correct_answer_unlocks_connected_rooms(progress: GameProgress, recorder: EventRecorder) -> None:
    progress.answer_question("h1", 0, elapsed_ms=10_000)

    assert progress.snapshot.unlocked_rooms == {"hall", "study", "vault"}
    assert progress.snapshot.answered_questions == {"h1"}
    assert [p.room_id for p in recorder.of(EventKind.room_unlocked)] == ["study", "vault"]
    assert recorder.kinds() == [
        EventKind.score_changed,
        EventKind.room_unlocked,
        EventKind.room_unlocked,
        EventKind.question_answered,
    ]
    assert sorted(progress.available_rooms()) == ["study", "vault"]


def test_wrong_answer_leaves_question_answerable(progress: GameProgress, recorder: EventRecorder) -> None:
    result = progress.answer_question("h1", 3, elapsed_ms=0)

    assert result.correct is False
    assert result.points_earned == 0
    assert progress.score == 0
    assert progress.snapshot.answered_questions == set()
    assert progress.snapshot.incorrect_attempts == 1
    assert progress.snapshot.unlocked_rooms == {"hall"}
    assert recorder.kinds() == [EventKind.question_answered]

    again = progress.answer_question("h1", 0, elapsed_ms=10_000)
    assert again.correct is True


def test_question_is_scored_at_most_once(progress: GameProgress, recorder: EventRecorder) -> None:
    progress.answer_question("h1", 0, elapsed_ms=10_000)

    with pytest.raises(AlreadyAnswered):
        progress.answer_question("h1", 0, elapsed_ms=0)

    assert progress.score == 100
    assert len(recorder.of(EventKind.question_answered)) == 1
    assert recorder.of(EventKind.error)[-1].kind == "already_answered"


def test_unknown_question_is_rejected(progress: GameProgress) -> None:
    with pytest.raises(UnknownQuestion):
        progress.answer_question("nope", 0)


def test_accuracy_uses_exact_attempt_counts(progress: GameProgress) -> None:
    assert progress.accuracy() == 0.0
    progress.answer_question("h1", 1, elapsed_ms=0)
    progress.answer_question("h1", 0, elapsed_ms=0)
    progress.answer_question("h2", 1, elapsed_ms=0)
    progress.answer_question("s1", 2, elapsed_ms=0)
    assert progress.accuracy() == pytest.approx(75.0)


def test_room_invariants_hold_through_play(progress: GameProgress) -> None:
    _assert_room_invariants(progress)
    progress.answer_question("h1", 0, elapsed_ms=0)
    _assert_room_invariants(progress)
    progress.move_to_room("study")
    _assert_room_invariants(progress)
    progress.move_to_room("hall")
    progress.move_to_room("vault")
    _assert_room_invariants(progress)
    assert progress.snapshot.visited_rooms == {"hall", "study", "vault"}


def test_snapshot_rejects_current_room_outside_unlocked() -> None:
    with pytest.raises(ValidationError):
        ProgressSnapshot(current_room_id="study", unlocked_rooms={"hall"}, visited_rooms={"hall"}, started_at_ms=0)
    with pytest.raises(ValidationError):
        ProgressSnapshot(current_room_id="hall", unlocked_rooms={"hall"}, visited_rooms={"hall", "study"}, started_at_ms=0)


def test_completion_latches_once_with_bonuses(progress: GameProgress, recorder: EventRecorder) -> None:
    _finish_small_game(progress)

    assert progress.game_completed is True
    assert progress.snapshot.game_completed is True
    completed = recorder.of(EventKind.game_completed)
    assert len(completed) == 1

    event = completed[0]
    assert event.breakdown.completion_bonus == 500
    assert event.breakdown.exploration_bonus == 30
    assert event.breakdown.perfect_bonus == 1000
    assert event.breakdown.speed_bonus == 750
    assert event.final_score == 350 + 2280
    assert event.perfect is True
    assert event.speed_run is True
    assert event.statistics.game_completed is True

    score_before = progress.score
    assert progress.check_completion() is None
    assert progress.check_completion() is None
    assert len(recorder.of(EventKind.game_completed)) == 1
    assert progress.score == score_before

    progress.answer_question("s2", 1, elapsed_ms=10_000)
    assert len(recorder.of(EventKind.game_completed)) == 1
    assert progress.game_completed is True


def test_completion_not_reached_below_thresholds(progress: GameProgress, recorder: EventRecorder) -> None:
    progress.answer_question("h1", 0, elapsed_ms=0)
    progress.answer_question("h2", 1, elapsed_ms=0)
    progress.answer_question("s1", 2, elapsed_ms=0)

    # Only the hall has been visited.
    assert progress.completion_progress().has_visited_enough_rooms is False
    assert progress.game_completed is False
    assert recorder.of(EventKind.game_completed) == []


def test_wrong_answer_rules_out_perfect_bonus(progress: GameProgress, clock: FakeClock) -> None:
    progress.answer_question("h1", 2, elapsed_ms=0)
    clock.advance(11 * 60 * 1000)
    _finish_small_game(progress)

    breakdown = progress.bonus_breakdown()
    assert progress.game_completed is True
    assert breakdown.perfect_bonus == 0
    assert breakdown.speed_bonus == 0
    assert progress.final_score() == progress.score + 500 + 30


def test_apply_penalty_never_goes_below_zero(progress: GameProgress, recorder: EventRecorder) -> None:
    assert progress.apply_penalty(10, reason="skip") == 0
    assert progress.score == 0
    assert recorder.of(EventKind.score_changed) == []

    progress.answer_question("h1", 0, elapsed_ms=10_000)
    assert progress.apply_penalty(10, reason="skip") == -10
    assert progress.score == 90
    assert recorder.of(EventKind.score_changed)[-1].delta == -10


def test_statistics_report(progress: GameProgress, clock: FakeClock) -> None:
    progress.answer_question("h1", 0, elapsed_ms=10_000)
    progress.answer_question("h2", 0, elapsed_ms=10_000)
    progress.move_to_room("study")
    clock.advance(125_000)

    stats = progress.statistics()
    assert stats.score == 100
    assert stats.rooms_visited == 2
    assert stats.rooms_total == 3
    assert stats.questions_answered == 1
    assert stats.questions_total == 4
    assert stats.correct_answers == 1
    assert stats.incorrect_answers == 1
    assert stats.accuracy == 50.0
    assert stats.play_time_formatted == "2m 5s"
    # 50 * 0.5 + 66.67 * 0.3 + 25 * 0.2
    assert stats.performance_score == 50
    assert stats.bonuses.exploration_bonus == 20
    assert stats.final_score == 120


def test_format_duration() -> None:
    assert format_duration(3_723_000) == "1h 2m 3s"
    assert format_duration(123_000) == "2m 3s"
    assert format_duration(3_400) == "3s"


def test_save_then_load_restores_snapshot(progress: GameProgress, recorder: EventRecorder, r) -> None:
    progress.answer_question("h1", 0, elapsed_ms=10_000)
    progress.move_to_room("study")
    assert progress.save_progress() is True
    assert r.get(PROGRESS_KEY)
    saved = progress.snapshot.model_copy(deep=True)

    progress.move_to_room("hall")
    progress.answer_question("h2", 1, elapsed_ms=0)
    assert progress.snapshot.current_room_id == "hall"

    assert progress.load_progress() is True
    s = progress.snapshot
    assert s.current_room_id == saved.current_room_id == "study"
    assert s.score == saved.score == 100
    assert s.visited_rooms == saved.visited_rooms
    assert s.unlocked_rooms == saved.unlocked_rooms
    assert s.answered_questions == saved.answered_questions == {"h1"}
    assert s.saved_at is not None
    assert EventKind.game_saved in recorder.kinds()
    assert EventKind.game_loaded in recorder.kinds()


def test_load_restores_completion_latch(progress: GameProgress, recorder: EventRecorder, small_catalog, bus, r, clock) -> None:
    _finish_small_game(progress)
    progress.save_progress()

    fresh = GameProgress(catalog=small_catalog, bus=bus, r=r, clock=clock)
    assert fresh.game_completed is False

    assert fresh.load_progress() is True
    assert fresh.game_completed is True
    assert fresh.check_completion() is None
    assert len(recorder.of(EventKind.game_completed)) == 1


def test_load_without_record_is_non_fatal(progress: GameProgress) -> None:
    progress.answer_question("h1", 0, elapsed_ms=0)
    before = progress.snapshot.model_dump()

    assert progress.load_progress() is False
    assert progress.snapshot.model_dump() == before


def test_load_of_malformed_record_is_non_fatal(progress: GameProgress, r) -> None:
    r.set(PROGRESS_KEY, "{not json")
    assert progress.load_progress() is False
    assert progress.snapshot.current_room_id == "hall"


def test_load_of_record_from_another_catalog_is_rejected(progress: GameProgress, recorder: EventRecorder, r) -> None:
    foreign = ProgressSnapshot.initial(starting_room_id="moon_base", started_at_ms=0)
    r.set(PROGRESS_KEY, foreign.model_dump_json())

    assert progress.load_progress() is False
    assert progress.snapshot.current_room_id == "hall"
    assert recorder.of(EventKind.error)[-1].kind == "load"


def test_save_failure_is_reported_not_raised(progress: GameProgress, recorder: EventRecorder, monkeypatch) -> None:
    def _boom(*args, **kwargs):
        raise redis.ConnectionError("store unavailable")

    monkeypatch.setattr(progress.r, "set", _boom)

    assert progress.save_progress() is False
    assert recorder.of(EventKind.error)[-1].kind == "save"


def test_reset_restores_initial_state_and_clears_record(progress: GameProgress, recorder: EventRecorder, r) -> None:
    _finish_small_game(progress)
    progress.save_progress()

    progress.reset()

    s = progress.snapshot
    assert s.current_room_id == "hall"
    assert s.visited_rooms == {"hall"}
    assert s.unlocked_rooms == {"hall"}
    assert s.answered_questions == set()
    assert s.score == 0
    assert progress.game_completed is False
    assert r.get(PROGRESS_KEY) is None
    assert recorder.kinds()[-1] == EventKind.game_reset


def test_persisted_record_holds_only_engine_state(progress: GameProgress, r) -> None:
    progress.save_progress()

    stored = json.loads(r.get(PROGRESS_KEY))
    assert set(stored) == {
        "current_room_id",
        "score",
        "visited_rooms",
        "unlocked_rooms",
        "answered_questions",
        "correct_attempts",
        "incorrect_attempts",
        "started_at_ms",
        "game_completed",
        "saved_at",
    }
