"""
Record store for catalog snapshots.

Wraps a key-value backend with expiry. The whole snapshot is serialized
to a single JSON value and written with one SETEX-style call, so a reader
sees either the previous snapshot or the complete new one.

Backends:
- RedisCacheBackend: shared Redis server (production)
- MemoryCacheBackend: in-process TLRU cache (local runs, tests)
"""

import json
import logging
import time
from typing import Callable, Optional, Protocol

from cachetools import TLRUCache
from pydantic import ValidationError as PydanticValidationError

from .models import Ad

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """Raised when the cache backend is unreachable."""
    pass


class CacheBackend(Protocol):
    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def get(self, key: str) -> Optional[str]: ...

    def delete(self, key: str) -> None: ...


class RedisCacheBackend:
    """
    Redis-backed cache with bounded socket timeouts.

    Example:
        backend = RedisCacheBackend.from_url("redis://localhost:6379/0")
        backend.set_with_ttl("ads_data", payload, 3600)
    """

    def __init__(self, client):
        self._client = client

    @classmethod
    def from_url(cls, url: str, timeout: float = 5.0) -> "RedisCacheBackend":
        from redis import Redis

        logger.info(f"Connecting to Redis: {url}")
        client = Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True,
        )
        return cls(client)

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        from redis import RedisError

        try:
            self._client.setex(key, ttl_seconds, value)
        except RedisError as e:
            raise CacheError(f"Redis SETEX failed for {key}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        from redis import RedisError

        try:
            value = self._client.get(key)
        except RedisError as e:
            raise CacheError(f"Redis GET failed for {key}: {e}") from e
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def delete(self, key: str) -> None:
        from redis import RedisError

        try:
            self._client.delete(key)
        except RedisError as e:
            raise CacheError(f"Redis DEL failed for {key}: {e}") from e

    def ping(self) -> bool:
        from redis import RedisError

        try:
            return bool(self._client.ping())
        except RedisError:
            return False

    def close(self) -> None:
        self._client.close()


def _ttu(key, value, now):
    # value is (ttl_seconds, payload)
    return now + value[0]


class MemoryCacheBackend:
    """In-process backend with per-item expiry."""

    def __init__(self, maxsize: int = 16, timer: Callable[[], float] = time.monotonic):
        self._cache: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_ttu, timer=timer)

    def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        self._cache[key] = (ttl_seconds, value)

    def get(self, key: str) -> Optional[str]:
        entry = self._cache.get(key)
        return entry[1] if entry is not None else None

    def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        self._cache.clear()


class RecordStore:
    """
    Stores and retrieves catalog snapshots.

    Example:
        store = RecordStore(MemoryCacheBackend())
        store.put("ads_data", ads, ttl=3600)
        ads = store.get("ads_data")
    """

    def __init__(self, backend: CacheBackend):
        self.backend = backend

    @staticmethod
    def serialize(snapshot: list[Ad]) -> str:
        return json.dumps([ad.to_public() for ad in snapshot])

    @staticmethod
    def deserialize(payload: str) -> list[Ad]:
        return [Ad.model_validate(item) for item in json.loads(payload)]

    def put(self, key: str, snapshot: list[Ad], ttl: int) -> None:
        """
        Store a snapshot, replacing any previous one and resetting expiry.

        Raises:
            CacheError: If the backend is unreachable
        """
        payload = self.serialize(snapshot)
        self.backend.set_with_ttl(key, payload, ttl)
        logger.info(f"Data cached with key: {key} ({len(snapshot)} ads, TTL: {ttl}s)")

    def get(self, key: str) -> Optional[list[Ad]]:
        """
        Return the snapshot under ``key``, or None if absent/expired.

        A payload that no longer decodes is reported as absent.

        Raises:
            CacheError: If the backend is unreachable
        """
        payload = self.backend.get(key)
        if payload is None:
            return None
        try:
            return self.deserialize(payload)
        except (ValueError, TypeError, PydanticValidationError) as e:
            logger.warning(f"Discarding undecodable cache entry {key}: {e}")
            return None

    def clear(self, key: str) -> None:
        """
        Remove the snapshot immediately.

        Raises:
            CacheError: If the backend is unreachable
        """
        self.backend.delete(key)
        logger.info(f"Cache cleared for key: {key}")
