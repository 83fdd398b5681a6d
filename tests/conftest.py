from __future__ import annotations

import random
from collections.abc import Generator

import fakeredis
import pytest
from fastapi.testclient import TestClient

from mindmaze.catalog.registry import Catalog
from mindmaze.config import Settings
from mindmaze.core.achievements import AchievementManager
from mindmaze.core.events import EventBus
from mindmaze.core.models import AchievementDefinition
from mindmaze.core.progress import GameProgress
from mindmaze.core.quiz import QuizEngine
from support import EventRecorder, FakeClock, make_catalog


@pytest.fixture()
def r() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def recorder(bus: EventBus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture()
def small_catalog() -> Catalog:
    return make_catalog()


@pytest.fixture()
def progress(small_catalog: Catalog, bus: EventBus, r: fakeredis.FakeRedis, clock: FakeClock) -> GameProgress:
    return GameProgress(catalog=small_catalog, bus=bus, r=r, clock=clock)


@pytest.fixture()
def quiz(small_catalog: Catalog, progress: GameProgress, bus: EventBus, clock: FakeClock) -> QuizEngine:
    return QuizEngine(
        catalog=small_catalog,
        progress=progress,
        bus=bus,
        clock=clock,
        rng=random.Random(7),
        salt=b"test-salt",
    )


@pytest.fixture()
def make_manager(bus: EventBus, r: fakeredis.FakeRedis, clock: FakeClock):
    """Build a catalog with the given achievements plus its progress and an attached manager."""

    def _make(*definitions: AchievementDefinition) -> tuple[GameProgress, AchievementManager]:
        catalog = make_catalog(definitions)
        progress = GameProgress(catalog=catalog, bus=bus, r=r, clock=clock)
        manager = AchievementManager(catalog=catalog, progress=progress, bus=bus, r=r, clock=clock)
        manager.attach()
        return progress, manager

    return _make


@pytest.fixture()
def client_and_redis() -> Generator[tuple[TestClient, fakeredis.FakeRedis], None, None]:
    """TestClient over the shipped catalog, with fakeredis as the store."""

    from mindmaze.main import create_app

    r = fakeredis.FakeRedis(decode_responses=True)
    app = create_app(settings=Settings(), redis_client=r)
    with TestClient(app) as c:
        yield c, r
