from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import structlog
from redis import asyncio as aioredis

logger = structlog.get_logger(__name__)


class TTLStore(Protocol):
    """String key-value store with per-key expiry. ``ttl=None`` keeps a key until deleted."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def claim(self, key: str, ttl: float) -> bool:
        """Set ``key`` only if absent; True when this caller created it."""
        ...

    async def close(self) -> None:
        ...


@dataclass(slots=True)
class _Entry:
    value: str
    expires_at: Optional[float]


class InMemoryTTLStore:
    """Process-local store; expired keys are swept on writes at most once per ``prune_interval``."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic, prune_interval: float = 60.0) -> None:
        self._clock = clock
        self._store: dict[str, _Entry] = {}
        self._prune_interval = prune_interval
        self._next_prune = clock() + prune_interval

    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            self._store.pop(key, None)
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        entry = self._live(key)
        return entry.value if entry else None

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        now = self._clock()
        if now >= self._next_prune:
            self.prune()
        expires_at = None if ttl is None else now + max(ttl, 0)
        self._store[key] = _Entry(value=value, expires_at=expires_at)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def claim(self, key: str, ttl: float) -> bool:
        if self._live(key) is not None:
            return False
        await self.set(key, "1", ttl)
        return True

    def prune(self) -> int:
        now = self._clock()
        self._next_prune = now + self._prune_interval
        stale = [key for key, entry in self._store.items() if entry.expires_at is not None and entry.expires_at <= now]
        for key in stale:
            self._store.pop(key, None)
        return len(stale)

    async def close(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


class RedisTTLStore:
    def __init__(self, client: aioredis.Redis, *, prefix: str = "automod:") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, **kwargs: object) -> "RedisTTLStore":
        client = aioredis.Redis.from_url(url, decode_responses=True)
        logger.info("redis_ttl_store_connected", url=url.split("@")[-1])
        return cls(client, **kwargs)  # type: ignore[arg-type]

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        value = await self._client.get(self._key(key))
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        if ttl is None:
            await self._client.set(self._key(key), value)
            return
        seconds = max(1, math.ceil(ttl))
        await self._client.set(self._key(key), value, ex=seconds)

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def claim(self, key: str, ttl: float) -> bool:
        created = await self._client.set(self._key(key), "1", ex=max(1, math.ceil(ttl)), nx=True)
        return bool(created)

    async def close(self) -> None:
        await self._client.aclose()


def build_ttl_store(redis_url: Optional[str]) -> TTLStore:
    if redis_url:
        return RedisTTLStore.from_url(redis_url)
    logger.info("memory_ttl_store_selected")
    return InMemoryTTLStore()
