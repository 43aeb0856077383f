# signalcore/cache.py
from __future__ import annotations

import logging
from typing import Any, Optional

import redis

from signalcore.config import settings
from signalcore.schemas import MetadataIndex

log = logging.getLogger("cache")

_redis_client: Optional[redis.Redis] = None


def get_redis() -> Optional[redis.Redis]:
    global _redis_client
    if _redis_client is None and settings.redis_url:
        _redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


def healthcheck() -> bool:
    client = get_redis()
    return bool(client and client.ping())


class IndexCache:
    """Holds the serialized MetadataIndex under one redis key. Failures only log."""

    def __init__(self, client: Any = None, key: Optional[str] = None):
        self.client = client if client is not None else get_redis()
        self.key = key or settings.index_cache_key

    def load(self) -> Optional[MetadataIndex]:
        if not self.client:
            return None
        try:
            raw = self.client.get(self.key)
        except Exception as exc:
            log.warning("index_cache_load_failed key=%s error=%s", self.key, exc)
            return None
        if not raw:
            return None
        try:
            return MetadataIndex.model_validate_json(raw)
        except Exception as exc:
            log.warning("index_cache_corrupt key=%s error=%s", self.key, exc)
            return None

    def save(self, index: MetadataIndex) -> None:
        if not self.client:
            return
        try:
            self.client.set(self.key, index.model_dump_json())
        except Exception as exc:
            log.warning("index_cache_save_failed key=%s error=%s", self.key, exc)

    def clear(self) -> None:
        if not self.client:
            return
        try:
            self.client.delete(self.key)
        except Exception as exc:
            log.warning("index_cache_clear_failed key=%s error=%s", self.key, exc)
