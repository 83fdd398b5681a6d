from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass

import redis

from mindmaze.catalog.registry import Catalog, load_catalog
from mindmaze.config import Settings, load_settings
from mindmaze.core.achievements import AchievementManager
from mindmaze.core.events import EventBus
from mindmaze.core.models import now_ms
from mindmaze.core.progress import GameProgress
from mindmaze.core.quiz import QuizEngine
from mindmaze.infra.redis_client import create_redis

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class GameSession:
    """The three rules components of one player session, sharing a single bus.

    Built once and handed to whoever needs it; nothing here is a module global.
    """

    settings: Settings
    catalog: Catalog
    bus: EventBus
    progress: GameProgress
    quiz: QuizEngine
    achievements: AchievementManager
    r: redis.Redis

    @staticmethod
    def create(
        *,
        settings: Settings | None = None,
        r: redis.Redis | None = None,
        catalog: Catalog | None = None,
        clock: Callable[[], float] = now_ms,
        rng: random.Random | None = None,
        salt: bytes | None = None,
    ) -> "GameSession":
        settings = settings or load_settings()
        catalog = catalog or load_catalog(settings.catalog_dir)
        r = r if r is not None else create_redis(settings)
        bus = EventBus()

        progress = GameProgress(catalog=catalog, bus=bus, r=r, clock=clock)
        quiz = QuizEngine(
            catalog=catalog,
            progress=progress,
            bus=bus,
            clock=clock,
            rng=rng,
            time_limit_ms=settings.question_time_limit_ms,
            tick_ms=settings.timer_tick_ms,
            skip_penalty=settings.skip_penalty,
            salt=salt,
        )
        achievements = AchievementManager(catalog=catalog, progress=progress, bus=bus, r=r, clock=clock)
        achievements.load_progress()
        achievements.attach()

        logger.info("Game session ready (%d rooms, %d questions)", catalog.room_count, catalog.question_count)
        return GameSession(
            settings=settings,
            catalog=catalog,
            bus=bus,
            progress=progress,
            quiz=quiz,
            achievements=achievements,
            r=r,
        )

    def save(self) -> bool:
        return self.progress.save_progress() and self.achievements.save_progress()

    def load(self) -> bool:
        if not self.progress.load_progress():
            return False
        self.quiz.destroy()
        return True

    def reset(self) -> None:
        """New game: clears progress and achievements alike."""
        self.quiz.destroy()
        # Progress first: achievement statistics are re-seeded from the fresh snapshot.
        self.progress.reset()
        self.achievements.reset_achievements()

    def close(self) -> None:
        self.quiz.destroy()
        self.achievements.detach()
