from __future__ import annotations

import abc
from datetime import datetime
from typing import Optional

from ..models import Cooldown, LogPage, ModeratedChannel, ModerationLog, ModerationStats


class ChannelRepository(abc.ABC):
    @abc.abstractmethod
    async def save_channel(self, channel: ModeratedChannel) -> None:
        ...

    @abc.abstractmethod
    async def get_channel(self, channel_id: str) -> Optional[ModeratedChannel]:
        ...

    @abc.abstractmethod
    async def delete_channel(self, channel_id: str) -> bool:
        ...

    @abc.abstractmethod
    async def ban_user(self, fid: str, reason: str = "") -> None:
        ...

    @abc.abstractmethod
    async def is_banned(self, fid: str) -> bool:
        ...


class CooldownRepository(abc.ABC):
    @abc.abstractmethod
    async def upsert_cooldown(
        self,
        affected_user_id: str,
        channel_id: str,
        expires_at: Optional[datetime],
        now: datetime,
    ) -> Cooldown:
        ...

    @abc.abstractmethod
    async def deactivate_cooldown(
        self,
        affected_user_id: str,
        channel_id: str,
        now: datetime,
        *,
        mute: Optional[bool] = None,
    ) -> bool:
        """Flip an active row to inactive; False when nothing changed.

        ``mute`` narrows the match to mutes (True) or timed cooldowns (False).
        """

    @abc.abstractmethod
    async def get_cooldown(self, affected_user_id: str, channel_id: str) -> Optional[Cooldown]:
        ...

    @abc.abstractmethod
    async def list_expired_cooldowns(self, now: datetime) -> list[Cooldown]:
        ...


class ModerationLogRepository(abc.ABC):
    @abc.abstractmethod
    async def append_log(self, entry: ModerationLog) -> ModerationLog:
        ...

    @abc.abstractmethod
    async def list_logs(self, channel_id: str, page: int, page_size: int) -> LogPage:
        ...

    @abc.abstractmethod
    async def moderation_stats(self, channel_id: str, since: datetime) -> ModerationStats:
        ...


class StorageGateway(ChannelRepository, CooldownRepository, ModerationLogRepository, abc.ABC):
    """Combined repository interface for convenience."""

    @abc.abstractmethod
    async def connect(self) -> None:
        ...

    @abc.abstractmethod
    async def disconnect(self) -> None:
        ...
