from __future__ import annotations

from statemachine import State, StateMachine

from mindmaze.core.models import GamePhase, ProgressSnapshot


class ProgressFSM(StateMachine):
    """Completion latch around a ProgressSnapshot.

    playing -> completed is the only transition; `completed` is final, so the
    latch can only be cleared by building a fresh machine on a reset snapshot.
    """

    playing = State(GamePhase.playing.value, value=GamePhase.playing.value, initial=True)
    completed = State(GamePhase.completed.value, value=GamePhase.completed.value, final=True)

    complete = playing.to(completed)

    def __init__(self, progress: ProgressSnapshot):
        self.progress = progress
        super().__init__(start_value=progress.phase.value)

    @property
    def latched(self) -> bool:
        return self.current_state == self.completed

    def sync_phase_to_model(self) -> None:
        self.progress.game_completed = GamePhase(str(self.current_state.value)) == GamePhase.completed


class QuestionPhase:
    idle = "idle"
    presented = "presented"
    resolving = "resolving"


class QuestionFSM(StateMachine):
    """Lifecycle of the single active question.

    - idle: nothing presented
    - presented: countdown running, awaiting exactly one resolution
    - resolving: a validation or timeout has won and is being applied

    `resolving` is the single-flight guard: any validate/timeout/skip that arrives
    while in it is a no-op.
    """

    idle = State(QuestionPhase.idle, value=QuestionPhase.idle, initial=True)
    presented = State(QuestionPhase.presented, value=QuestionPhase.presented)
    resolving = State(QuestionPhase.resolving, value=QuestionPhase.resolving)

    # Replacing a presented question goes through `discard` first.
    present = idle.to(presented)
    begin_resolution = presented.to(resolving)
    finish_resolution = resolving.to(idle)
    discard = presented.to(idle)

    @property
    def phase(self) -> str:
        return str(self.current_state.value)
