from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from time import monotonic
from typing import Any, Protocol

import redis.asyncio as redis

from core.config import RedisConfig

LOGGER = logging.getLogger(__name__)

KEY_PREFIX = "ticket-reminders:"


class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...
    async def set(self, key: str, value: str, ttl: int | None = None) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def close(self) -> None: ...


@dataclass(slots=True)
class _Entry:
    value: str
    deadline: float | None


class MemoryCache(CacheBackend):
    """Process-local cache used when Redis is disabled and in tests."""

    def __init__(self, max_entries: int = 4096) -> None:
        self._entries: dict[str, _Entry] = {}
        self._max_entries = max_entries
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.deadline is not None and monotonic() >= entry.deadline:
                del self._entries[key]
                return None
            return entry.value

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        async with self._lock:
            if key not in self._entries and len(self._entries) >= self._max_entries:
                # Oldest insertion goes first.
                self._entries.pop(next(iter(self._entries)))
            self._entries[key] = _Entry(value, monotonic() + ttl if ttl else None)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def close(self) -> None:
        self._entries.clear()


class RedisCache(CacheBackend):
    """Redis-backed cache. Connection problems degrade to cache misses."""

    def __init__(self, url: str) -> None:
        self._client = redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(KEY_PREFIX + key)
        except redis.RedisError as exc:
            LOGGER.warning("Redis read failed for %s: %s", key, exc)
            return None

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        try:
            await self._client.set(KEY_PREFIX + key, value, ex=ttl or None)
        except redis.RedisError as exc:
            LOGGER.warning("Redis write failed for %s: %s", key, exc)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(KEY_PREFIX + key)
        except redis.RedisError as exc:
            LOGGER.warning("Redis delete failed for %s: %s", key, exc)

    async def close(self) -> None:
        await self._client.aclose()


async def get_json(cache: CacheBackend, key: str) -> dict[str, Any] | None:
    raw = await cache.get(key)
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        LOGGER.warning("Dropping unreadable cache entry %s", key)
        await cache.delete(key)
        return None
    return data if isinstance(data, dict) else None


async def set_json(cache: CacheBackend, key: str, payload: dict[str, Any], ttl: int | None = None) -> None:
    await cache.set(key, json.dumps(payload, separators=(",", ":")), ttl=ttl)


def build_cache(config: RedisConfig) -> CacheBackend:
    if config.enabled:
        LOGGER.info("Using Redis cache at %s", config.url.split("@")[-1])
        return RedisCache(config.url)
    LOGGER.info("Redis disabled; settings are cached in process memory")
    return MemoryCache()
