from __future__ import annotations

import redis

from mindmaze.config import Settings, load_settings


def create_redis(settings: Settings | None = None) -> redis.Redis:
    """Client for the local key-value store that holds saves and achievements."""

    url = (settings or load_settings()).redis_url
    # decode_responses=True => strings in/out instead of bytes
    return redis.Redis.from_url(url, decode_responses=True)
