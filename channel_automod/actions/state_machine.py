"""Moderation transitions for a (user, channel) pair.

Each transition changes persisted state first and appends exactly one audit
log entry afterwards, and only when the state actually changed. Transitions for
the same pair are serialized with a keyed lock.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional, Union

import structlog

from ..adapters.farcaster import CastActionsClient, NeynarClient
from ..errors import PreconditionError
from ..models import ActionType, Cast, Cooldown, ModerationAction, ModerationLog, Profile, RuleAction
from ..storage.base import StorageGateway
from ..utils.concurrency import KeyedLock
from .cooldowns import CooldownGate, utcnow

logger = structlog.get_logger(__name__)

SYSTEM_ACTOR = "system"
AUTOMOD_ACTOR = "automod"
DEFAULT_WARNING = "Your cast was hidden by the channel moderators: {reason}"

ActionOutcome = Union[Cooldown, ModerationLog, bool]


class ModerationActions:
    def __init__(
        self,
        storage: StorageGateway,
        gate: CooldownGate,
        cast_actions: CastActionsClient,
        *,
        warnings: Optional[NeynarClient] = None,
        default_cooldown_hours: float = 24.0,
        clock: Callable[[], datetime] = utcnow,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        self._storage = storage
        self._gate = gate
        self._cast_actions = cast_actions
        self._warnings = warnings
        self._default_cooldown_hours = default_cooldown_hours
        self._clock = clock
        self._locks = locks or KeyedLock()

    async def _log(
        self,
        action: ModerationAction,
        channel_id: str,
        user: Profile,
        *,
        actor: str,
        reason: str,
        cast_hash: Optional[str] = None,
    ) -> ModerationLog:
        entry = ModerationLog(
            channel_id=channel_id,
            action=action,
            actor=actor,
            reason=reason,
            affected_user_fid=str(user.fid),
            affected_username=user.username,
            affected_user_avatar_url=user.pfp_url,
            created_at=self._clock(),
            cast_hash=cast_hash,
        )
        return await self._storage.append_log(entry)

    # cooldown / mute

    async def cooldown(
        self,
        channel_id: str,
        user: Profile,
        *,
        actor: str,
        reason: str = "",
        duration_hours: Optional[float] = None,
    ) -> Cooldown:
        hours = self._default_cooldown_hours if duration_hours is None else float(duration_hours)
        if hours <= 0:
            raise PreconditionError("Cooldown duration must be positive")
        user_id = str(user.fid)
        async with self._locks.hold((user_id, channel_id)):
            now = self._clock()
            expires_at = now + timedelta(hours=hours)
            cooldown = await self._storage.upsert_cooldown(user_id, channel_id, expires_at, now)
            await self._log(
                ModerationAction.COOLDOWN,
                channel_id,
                user,
                actor=actor,
                reason=reason or f"Cooldown until {expires_at.isoformat(timespec='seconds')}",
            )
            await self._gate.remember(cooldown)
        logger.info("cooldown_started", fid=user_id, channel_id=channel_id, expires_at=expires_at.isoformat())
        return cooldown

    async def mute(self, channel_id: str, user: Profile, *, actor: str, reason: str = "Muted") -> Cooldown:
        user_id = str(user.fid)
        async with self._locks.hold((user_id, channel_id)):
            cooldown = await self._storage.upsert_cooldown(user_id, channel_id, None, self._clock())
            await self._log(ModerationAction.MUTE, channel_id, user, actor=actor, reason=reason)
            await self._gate.remember(cooldown)
        logger.info("user_muted", fid=user_id, channel_id=channel_id)
        return cooldown

    async def end_cooldown(
        self,
        channel_id: str,
        user: Profile,
        *,
        actor: str,
        reason: str = "Cooldown ended",
    ) -> bool:
        return await self._deactivate(
            ModerationAction.COOLDOWN_ENDED, channel_id, user, actor=actor, reason=reason, mute=False
        )

    async def unmute(self, channel_id: str, user: Profile, *, actor: str, reason: str = "Unmuted") -> bool:
        return await self._deactivate(ModerationAction.UNMUTED, channel_id, user, actor=actor, reason=reason, mute=True)

    async def _deactivate(
        self,
        action: ModerationAction,
        channel_id: str,
        user: Profile,
        *,
        actor: str,
        reason: str,
        mute: bool,
    ) -> bool:
        user_id = str(user.fid)
        async with self._locks.hold((user_id, channel_id)):
            changed = await self._storage.deactivate_cooldown(user_id, channel_id, self._clock(), mute=mute)
            if not changed:
                logger.debug("transition_noop", action=action.value, fid=user_id, channel_id=channel_id)
                return False
            await self._gate.forget(user_id, channel_id)
            await self._log(action, channel_id, user, actor=actor, reason=reason)
        logger.info("transition_applied", action=action.value, fid=user_id, channel_id=channel_id)
        return True

    async def expire_cooldowns(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        ended = 0
        for cooldown in await self._storage.list_expired_cooldowns(now):
            key = (cooldown.affected_user_id, cooldown.channel_id)
            async with self._locks.hold(key):
                changed = await self._storage.deactivate_cooldown(
                    cooldown.affected_user_id, cooldown.channel_id, now, mute=False
                )
                await self._gate.forget(*key)
                if not changed:
                    continue
                await self._storage.append_log(
                    ModerationLog(
                        channel_id=cooldown.channel_id,
                        action=ModerationAction.COOLDOWN_ENDED,
                        actor=SYSTEM_ACTOR,
                        reason="Cooldown expired",
                        affected_user_fid=cooldown.affected_user_id,
                        affected_username=cooldown.affected_user_id,
                        affected_user_avatar_url=None,
                        created_at=now,
                    )
                )
                ended += 1
        if ended:
            logger.info("cooldowns_expired", count=ended)
        return ended

    # casts

    async def hide_quietly(
        self,
        channel_id: str,
        user: Profile,
        cast: Cast,
        *,
        actor: str,
        reason: str,
    ) -> ModerationLog:
        await self._cast_actions.hide_cast(cast.hash)
        return await self._log(
            ModerationAction.HIDE_QUIETLY, channel_id, user, actor=actor, reason=reason, cast_hash=cast.hash
        )

    async def warn_and_hide(
        self,
        channel_id: str,
        user: Profile,
        cast: Cast,
        *,
        actor: str,
        reason: str,
        message: Optional[str] = None,
    ) -> ModerationLog:
        await self._cast_actions.hide_cast(cast.hash)
        if self._warnings is None:
            logger.warning("warning_sender_missing", channel_id=channel_id, cast_hash=cast.hash)
        else:
            text = message or DEFAULT_WARNING.format(reason=reason)
            await self._warnings.send_warning(parent_hash=cast.hash, channel_id=channel_id, text=text)
        return await self._log(
            ModerationAction.WARN_AND_HIDE, channel_id, user, actor=actor, reason=reason, cast_hash=cast.hash
        )

    async def unhide(
        self,
        channel_id: str,
        user: Profile,
        cast_hash: Optional[str],
        *,
        actor: str,
        reason: str = "Unhidden",
    ) -> ModerationLog:
        if not cast_hash:
            raise PreconditionError("Cast hash is required to unhide a cast")
        await self._cast_actions.unhide_cast(cast_hash)
        return await self._log(ModerationAction.UNHIDE, channel_id, user, actor=actor, reason=reason, cast_hash=cast_hash)

    # members

    async def invite(self, channel_id: str, user: Profile, *, actor: str, reason: str) -> ModerationLog:
        await self._cast_actions.invite_member(channel_id, user.fid)
        return await self._log(ModerationAction.INVITE, channel_id, user, actor=actor, reason=reason)

    async def apply(
        self,
        action: RuleAction,
        *,
        channel_id: str,
        user: Profile,
        cast: Optional[Cast] = None,
        actor: str = AUTOMOD_ACTOR,
        reason: str,
    ) -> ActionOutcome:
        """Run one configured rule-set action."""
        if action.type is ActionType.COOLDOWN:
            hours = action.args.get("duration_hours", action.args.get("duration"))
            return await self.cooldown(
                channel_id,
                user,
                actor=actor,
                reason=reason,
                duration_hours=float(hours) if hours is not None else None,
            )
        if action.type is ActionType.END_COOLDOWN:
            return await self.end_cooldown(channel_id, user, actor=actor, reason=reason)
        if action.type is ActionType.MUTE:
            return await self.mute(channel_id, user, actor=actor, reason=reason)
        if action.type is ActionType.UNMUTE:
            return await self.unmute(channel_id, user, actor=actor, reason=reason)
        if action.type is ActionType.UNHIDE:
            return await self.unhide(channel_id, user, cast.hash if cast else None, actor=actor, reason=reason)
        if cast is None:
            raise PreconditionError(f"{action.type.value} needs a cast")
        if action.type is ActionType.HIDE_QUIETLY:
            return await self.hide_quietly(channel_id, user, cast, actor=actor, reason=reason)
        return await self.warn_and_hide(
            channel_id, user, cast, actor=actor, reason=reason, message=action.args.get("message")
        )
