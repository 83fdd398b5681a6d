from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from mindmaze.catalog.registry import DEFAULT_CATALOG_DIR


@dataclass(frozen=True, slots=True)
class Settings:
    redis_url: str = "redis://localhost:6379/0"
    catalog_dir: Path = DEFAULT_CATALOG_DIR
    # Countdown length per question.
    question_time_limit_ms: int = 30_000
    # How often the countdown publishes a timer tick.
    timer_tick_ms: int = 250
    # Points removed when the player skips a question.
    skip_penalty: int = 10
    log_level: str = "INFO"


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ
    defaults = Settings()

    catalog_dir = env.get("MINDMAZE_CATALOG_DIR")
    return Settings(
        redis_url=env.get("REDIS_URL", defaults.redis_url),
        catalog_dir=Path(catalog_dir) if catalog_dir else defaults.catalog_dir,
        question_time_limit_ms=int(env.get("MINDMAZE_QUESTION_TIME_LIMIT_MS", defaults.question_time_limit_ms)),
        timer_tick_ms=int(env.get("MINDMAZE_TIMER_TICK_MS", defaults.timer_tick_ms)),
        skip_penalty=int(env.get("MINDMAZE_SKIP_PENALTY", defaults.skip_penalty)),
        log_level=env.get("MINDMAZE_LOG_LEVEL", defaults.log_level).upper(),
    )
