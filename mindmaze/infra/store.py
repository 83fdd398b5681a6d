"""Key-value persistence for progress and achievement records.

Both records live under fixed keys. Every helper is non-fatal: store failures and
malformed records are logged and reported through the return value, never raised.
"""
from __future__ import annotations

import logging
from typing import TypeVar

import redis
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

PROGRESS_KEY = "mindmaze:progress"
ACHIEVEMENTS_KEY = "mindmaze:achievements"

M = TypeVar("M", bound=BaseModel)


def save_record(*, r: redis.Redis, key: str, record: BaseModel) -> bool:
    try:
        r.set(key, record.model_dump_json())
    except redis.RedisError:
        logger.exception("Failed to save %s", key)
        return False
    return True


def load_record(*, r: redis.Redis, key: str, model: type[M]) -> M | None:
    try:
        raw = r.get(key)
    except redis.RedisError:
        logger.exception("Failed to read %s", key)
        return None
    if not raw:
        logger.info("No record stored at %s", key)
        return None
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        logger.warning("Discarding malformed record at %s: %s", key, e)
        return None


def delete_record(*, r: redis.Redis, key: str) -> None:
    try:
        r.delete(key)
    except redis.RedisError:
        logger.exception("Failed to delete %s", key)
