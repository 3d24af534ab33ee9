from __future__ import annotations

import logging
from typing import Optional, Tuple

import redis

from services.errors import CacheError
from utils.config import Settings

logger = logging.getLogger(__name__)


class CacheService:
    """Small string key/value cache on top of Redis, entries expire after `ttl` seconds."""

    def __init__(self, client, ttl: int = 300):
        self.client = client
        self.ttl = ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheService":
        client = redis.Redis(
            host=settings.REDISHOST,
            port=settings.REDISPORT,
            password=settings.REDISPASSWORD or None,
            db=0,
            decode_responses=True,
            socket_timeout=5.0,
            socket_connect_timeout=5.0,
        )
        return cls(client, ttl=settings.CACHE_TTL_SECONDS)

    def get(self, key: str) -> Tuple[Optional[str], bool]:
        """Returns (value, found). A missing key is not an error."""
        try:
            value = self.client.get(key)
        except redis.RedisError as exc:
            raise CacheError(f"failed to get value for key {key}. reason: {exc}") from exc
        if value is None:
            return None, False
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value, True

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        """Stores `value` for `ttl` seconds (the service default when None)."""
        try:
            self.client.set(key, value, ex=ttl if ttl is not None else self.ttl)
        except redis.RedisError as exc:
            raise CacheError(f"failed to set value for key: {key}. reason: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.RedisError as exc:
            raise CacheError(f"failed to delete key: {key}. reason: {exc}") from exc

    def ping(self) -> None:
        try:
            self.client.ping()
        except redis.RedisError as exc:
            raise CacheError(f"could not ping the cache: {exc}") from exc
