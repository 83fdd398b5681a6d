from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import redis

from mindmaze.catalog.registry import Catalog
from mindmaze.core import conditions
from mindmaze.core.events import (
    AchievementsReset,
    AchievementUnlocked,
    ErrorRaised,
    EventBus,
    EventKind,
    GameEvent,
    Subscription,
)
from mindmaze.core.models import (
    AchievementCategoryStats,
    AchievementDefinition,
    AchievementRecord,
    AchievementStats,
    AchievementView,
    now_ms,
)
from mindmaze.core.progress import GameProgress
from mindmaze.core.statistics import SessionStatistics
from mindmaze.infra.store import ACHIEVEMENTS_KEY, delete_record, load_record, save_record

logger = logging.getLogger(__name__)


class AchievementManager:
    """Evaluates achievement conditions against session statistics.

    Statistics are fed by progress events (`attach()` subscribes to the bus).
    Unlocks are one-way until `reset_achievements()`. The unlock state is stored
    under its own key, apart from game progress.
    """

    def __init__(
        self,
        *,
        catalog: Catalog,
        progress: GameProgress,
        bus: EventBus,
        r: redis.Redis,
        clock: Callable[[], float] = now_ms,
    ):
        self.catalog = catalog
        self.progress = progress
        self.bus = bus
        self.r = r
        self.clock = clock

        self.definitions: dict[str, AchievementDefinition] = {a.id: a for a in catalog.achievements}
        self._unlocked_at: dict[str, float] = {}
        self._progress: dict[str, int] = {}
        self._total_points = 0
        self.stats = SessionStatistics.from_snapshot(progress.snapshot)
        self._subscriptions: list[Subscription] = []

    # --- wiring -------------------------------------------------------------------

    def attach(self) -> None:
        if self._subscriptions:
            return
        self._subscriptions = [
            self.bus.subscribe(EventKind.question_answered, self._on_question_answered),
            self.bus.subscribe(EventKind.room_changed, self._on_room_changed),
            self.bus.subscribe(EventKind.game_completed, self._on_game_completed),
            self.bus.subscribe(EventKind.game_reset, self._on_progress_reset),
            self.bus.subscribe(EventKind.game_loaded, self._on_progress_loaded),
        ]

    def detach(self) -> None:
        for sub in self._subscriptions:
            sub.unsubscribe()
        self._subscriptions = []

    def _on_question_answered(self, event: GameEvent) -> None:
        payload = event.payload
        self.stats.record_answer(correct=payload.correct, elapsed_ms=payload.elapsed_ms)
        self.check_unlocks()

    def _on_room_changed(self, event: GameEvent) -> None:
        self.stats.record_room(event.payload.to_room_id)
        self.check_unlocks()

    def _on_game_completed(self, event: GameEvent) -> None:
        self.stats.record_completion(self.clock())
        self.check_unlocks()

    def _on_progress_reset(self, event: GameEvent) -> None:
        # A fresh game only re-seeds; unlocks are checked on the next play event.
        self.stats = SessionStatistics.from_snapshot(self.progress.snapshot)

    def _on_progress_loaded(self, event: GameEvent) -> None:
        self.stats = SessionStatistics.from_snapshot(self.progress.snapshot)
        self.check_unlocks()

    # --- evaluation ---------------------------------------------------------------

    @property
    def total_points(self) -> int:
        return self._total_points

    @property
    def unlocked_count(self) -> int:
        return len(self._unlocked_at)

    def is_unlocked(self, achievement_id: str) -> bool:
        return achievement_id in self._unlocked_at

    def check_unlocks(self) -> list[AchievementView]:
        """Unlock every satisfied, still-locked achievement; refresh progress on the rest.

        The record is saved once per pass, before the unlock events go out.
        """

        newly: list[AchievementDefinition] = []
        room_count = self.catalog.room_count
        for definition in self.definitions.values():
            if definition.id in self._unlocked_at:
                continue
            if conditions.is_satisfied(definition.condition, self.stats, room_count=room_count):
                self._unlocked_at[definition.id] = self.clock()
                self._progress[definition.id] = conditions.max_progress(definition.condition)
                self._total_points += definition.points
                newly.append(definition)
            else:
                self._progress[definition.id] = conditions.current_progress(definition.condition, self.stats)

        if not newly:
            return []
        self.save_progress()

        count = self.unlocked_count - len(newly)
        points = self._total_points - sum(d.points for d in newly)
        views: list[AchievementView] = []
        for definition in newly:
            count += 1
            points += definition.points
            view = self.view(definition)
            logger.info("Achievement unlocked: %s (+%d points)", definition.name, definition.points)
            self.bus.publish(
                EventKind.achievement_unlocked,
                AchievementUnlocked(achievement=view, total_points=points, unlocked_count=count),
            )
            views.append(view)
        return views

    # --- persistence --------------------------------------------------------------

    def save_progress(self) -> bool:
        record = AchievementRecord(
            unlocked_achievements=list(self._unlocked_at),
            achievement_progress=dict(self._progress),
            total_points=self._total_points,
            unlock_times=dict(self._unlocked_at),
            last_saved=datetime.now(tz=UTC),
        )
        if not save_record(r=self.r, key=ACHIEVEMENTS_KEY, record=record):
            self.bus.publish(EventKind.error, ErrorRaised(kind="save", message="Failed to save achievements"))
            return False
        return True

    def load_progress(self) -> bool:
        record = load_record(r=self.r, key=ACHIEVEMENTS_KEY, model=AchievementRecord)
        if record is None:
            return False

        unlocked: dict[str, float] = {}
        for achievement_id in record.unlocked_achievements:
            if achievement_id not in self.definitions:
                logger.warning("Ignoring unknown stored achievement %s", achievement_id)
                continue
            unlocked[achievement_id] = record.unlock_times.get(achievement_id, self.clock())

        self._unlocked_at = unlocked
        self._progress = {k: v for k, v in record.achievement_progress.items() if k in self.definitions}
        self._total_points = record.total_points
        logger.info("Loaded %d unlocked achievements", len(unlocked))
        return True

    def reset_achievements(self) -> None:
        self._unlocked_at.clear()
        self._progress.clear()
        self._total_points = 0
        self.stats = SessionStatistics.from_snapshot(self.progress.snapshot)
        delete_record(r=self.r, key=ACHIEVEMENTS_KEY)
        logger.info("Achievement progress reset")
        self.bus.publish(EventKind.achievements_reset, AchievementsReset())

    # --- views --------------------------------------------------------------------

    def view(self, definition: AchievementDefinition) -> AchievementView:
        return AchievementView(
            id=definition.id,
            name=definition.name,
            description=definition.description,
            category=definition.category,
            icon=definition.icon,
            points=definition.points,
            unlocked=definition.id in self._unlocked_at,
            unlocked_at_ms=self._unlocked_at.get(definition.id),
            progress=self._progress.get(definition.id, 0),
            max_progress=conditions.max_progress(definition.condition),
        )

    def all_achievements(self) -> list[AchievementView]:
        return [self.view(d) for d in self.definitions.values()]

    def unlocked_achievements(self) -> list[AchievementView]:
        return [v for v in self.all_achievements() if v.unlocked]

    def in_progress(self) -> list[AchievementView]:
        return [v for v in self.all_achievements() if not v.unlocked and v.progress > 0]

    def by_category(self, category: str) -> list[AchievementView]:
        return [v for v in self.all_achievements() if v.category == category]

    def achievement_stats(self) -> AchievementStats:
        categories: dict[str, AchievementCategoryStats] = {}
        for definition in self.definitions.values():
            entry = categories.setdefault(definition.category, AchievementCategoryStats())
            entry.total += 1
            if definition.id in self._unlocked_at:
                entry.unlocked += 1
        for entry in categories.values():
            entry.percentage = entry.unlocked / entry.total * 100 if entry.total else 0.0

        total = len(self.definitions)
        percentage = self.unlocked_count / total * 100 if total else 0.0
        return AchievementStats(
            total=total,
            unlocked=self.unlocked_count,
            percentage=round(percentage, 1),
            total_points=self._total_points,
            categories=categories,
        )

    def debug_info(self) -> dict[str, Any]:
        return {
            "achievement_count": len(self.definitions),
            "unlocked_count": self.unlocked_count,
            "session_stats": self.stats.as_dict(),
            "achievement_progress": dict(self._progress),
            "total_points": self._total_points,
        }
