from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from ..models import Cooldown
from ..storage.base import CooldownRepository
from ..storage.kv import TTLStore

logger = structlog.get_logger(__name__)

MUTE_MARKER = "mute"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ActiveCooldown:
    affected_user_id: str
    channel_id: str
    expires_at: Optional[datetime]

    @property
    def is_mute(self) -> bool:
        return self.expires_at is None


class CooldownGate:
    """Answers "is this user suppressed in this channel" from the TTL store, falling back to the database.

    Also de-duplicates repeated deliveries of the same inbound event.
    """

    def __init__(
        self,
        storage: CooldownRepository,
        store: TTLStore,
        *,
        dedupe_ttl_seconds: float = 3600,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._storage = storage
        self._store = store
        self._dedupe_ttl = dedupe_ttl_seconds
        self._clock = clock

    @staticmethod
    def key(affected_user_id: str, channel_id: str) -> str:
        return f"cooldown:{channel_id}:{affected_user_id}"

    async def active_cooldown(self, affected_user_id: str, channel_id: str) -> Optional[ActiveCooldown]:
        now = self._clock()
        cached = await self._store.get(self.key(affected_user_id, channel_id))
        if cached is not None:
            if cached == MUTE_MARKER:
                return ActiveCooldown(affected_user_id, channel_id, None)
            expires_at = datetime.fromisoformat(cached)
            if expires_at > now:
                return ActiveCooldown(affected_user_id, channel_id, expires_at)

        cooldown = await self._storage.get_cooldown(affected_user_id, channel_id)
        if cooldown is None or not cooldown.is_in_effect(now):
            return None
        await self.remember(cooldown)
        logger.debug("cooldown_cache_filled", fid=affected_user_id, channel_id=channel_id)
        return ActiveCooldown(affected_user_id, channel_id, cooldown.expires_at)

    async def remember(self, cooldown: Cooldown) -> None:
        key = self.key(cooldown.affected_user_id, cooldown.channel_id)
        if cooldown.expires_at is None:
            await self._store.set(key, MUTE_MARKER)
            return
        ttl = (cooldown.expires_at - self._clock()).total_seconds()
        if ttl <= 0:
            await self._store.delete(key)
            return
        await self._store.set(key, cooldown.expires_at.isoformat(), ttl)

    async def forget(self, affected_user_id: str, channel_id: str) -> None:
        await self._store.delete(self.key(affected_user_id, channel_id))

    async def claim_event(self, event_key: str) -> bool:
        claimed = await self._store.claim(f"event:{event_key}", self._dedupe_ttl)
        if not claimed:
            logger.info("duplicate_event_skipped", event_key=event_key)
        return claimed

    async def release_event(self, event_key: str) -> None:
        await self._store.delete(f"event:{event_key}")
        logger.info("event_claim_released", event_key=event_key)
