from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional, Union

import httpx
import structlog

from ..actions.cooldowns import CooldownGate, utcnow
from ..actions.state_machine import AUTOMOD_ACTOR, ModerationActions
from ..adapters.chain import ChainReader
from ..adapters.farcaster import CastActionsClient, NeynarClient
from ..checks.base import CheckServices
from ..config import AutomodSettings
from ..errors import AuthorizationError, ChannelNotFoundError
from ..logging.events import setup_logging
from ..models import (
    ActionType,
    Cast,
    CastRuleSet,
    ChannelRef,
    Cooldown,
    EvaluationInput,
    EvaluationResult,
    LogPage,
    ModeratedChannel,
    ModerationAction,
    ModerationLog,
    ModerationStats,
    Profile,
    RuleAction,
    RuleGroup,
)
from ..rules.config import validate_rule_group, validate_token_contracts
from ..rules.engine import EMPTY_GROUP_REASON, RuleEngine
from ..rules.registry import RuleRegistry, default_registry
from ..storage.base import StorageGateway
from ..storage.kv import TTLStore, build_ttl_store
from ..storage.sqlite import SQLiteStorage
from ..utils.text import localize_timestamps
from .authorization import Authorizer
from .worker import EventWorker, InboundEvent, ResultCallback

logger = structlog.get_logger(__name__)

# actions taken through rule sets, keyed by the transition they log
_LOGGED_ACTIONS = {
    ActionType.COOLDOWN: ModerationAction.COOLDOWN,
    ActionType.END_COOLDOWN: ModerationAction.COOLDOWN_ENDED,
    ActionType.MUTE: ModerationAction.MUTE,
    ActionType.UNMUTE: ModerationAction.UNMUTED,
    ActionType.HIDE_QUIETLY: ModerationAction.HIDE_QUIETLY,
    ActionType.WARN_AND_HIDE: ModerationAction.WARN_AND_HIDE,
    ActionType.UNHIDE: ModerationAction.UNHIDE,
}

_CAST_VISIBILITY_ACTIONS = {ActionType.HIDE_QUIETLY, ActionType.WARN_AND_HIDE}


def _cast_actions_first(actions: list[RuleAction]) -> list[RuleAction]:
    """Hide the triggering cast before any cooldown or mute is committed."""
    return sorted(actions, key=lambda action: action.type not in _CAST_VISIBILITY_ACTIONS)


@dataclass(slots=True)
class ModerationDecision:
    result: bool
    reason: str
    evaluation: Optional[EvaluationResult] = None
    actions: list[ModerationAction] = field(default_factory=list)
    skipped: Optional[str] = None


@dataclass(slots=True)
class MemberDecision(ModerationDecision):
    pass


@dataclass(slots=True)
class CastDecision(ModerationDecision):
    rule_set_id: Optional[str] = None


class ModerationCoordinator:
    def __init__(
        self,
        settings: AutomodSettings,
        *,
        storage: Optional[StorageGateway] = None,
        ttl_store: Optional[TTLStore] = None,
        cast_actions: Optional[CastActionsClient] = None,
        warnings: Optional[NeynarClient] = None,
        chain: Optional[ChainReader] = None,
        http: Optional[httpx.AsyncClient] = None,
        registry: Optional[RuleRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
        result_callback: Optional[ResultCallback] = None,
        configure_logging: bool = True,
    ) -> None:
        if configure_logging:
            log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)
            setup_logging(level=log_level, use_json=settings.logging.use_json)
        self._settings = settings
        self._clock = clock
        self._storage = storage or SQLiteStorage(settings.storage.sqlite_path)
        self._ttl_store = ttl_store or build_ttl_store(settings.storage.redis_url)
        self._http = http or httpx.AsyncClient()
        self._owns_http = http is None
        self._cast_actions = cast_actions or CastActionsClient(
            settings.warpcast.api_key,
            base_url=settings.warpcast.base_url,
            timeout=settings.warpcast.timeout_seconds,
        )
        if warnings is None and settings.neynar.api_key:
            warnings = NeynarClient(
                settings.neynar.api_key,
                settings.neynar.signer_uuid,
                base_url=settings.neynar.base_url,
                timeout=settings.neynar.timeout_seconds,
            )
        self._warnings = warnings
        if chain is None and settings.chain.rpc_urls:
            chain = ChainReader(settings.chain.rpc_urls, timeout=settings.chain.timeout_seconds)
        self._chain = chain
        self._registry = registry or default_registry()
        self._engine = RuleEngine(self._registry, default_timeout=settings.evaluation.check_timeout_seconds)
        self._services = CheckServices(http=self._http, chain=self._chain, webhook_secret=settings.webhook_secret)
        self._gate = CooldownGate(
            self._storage,
            self._ttl_store,
            dedupe_ttl_seconds=settings.evaluation.event_dedupe_ttl_seconds,
            clock=clock,
        )
        self._actions = ModerationActions(
            self._storage,
            self._gate,
            self._cast_actions,
            warnings=self._warnings,
            default_cooldown_hours=settings.cooldown.default_duration_hours,
            clock=clock,
        )
        self._authorizer = Authorizer(self._storage)
        self._worker = EventWorker(
            self.handle_event,
            concurrency=settings.worker.concurrency,
            queue_size=settings.worker.queue_size,
            result_callback=result_callback,
        )
        self._ready = asyncio.Event()

    @property
    def registry(self) -> RuleRegistry:
        return self._registry

    @property
    def actions(self) -> ModerationActions:
        return self._actions

    @property
    def authorizer(self) -> Authorizer:
        return self._authorizer

    async def start(self) -> None:
        await self._storage.connect()
        await self._worker.start()
        self._ready.set()
        logger.info("moderation_coordinator_started")

    async def shutdown(self) -> None:
        await self._worker.stop()
        await self._storage.disconnect()
        await self._ttl_store.close()
        await self._cast_actions.close()
        if self._warnings:
            await self._warnings.close()
        if self._chain:
            await self._chain.close()
        if self._owns_http:
            await self._http.aclose()
        self._ready.clear()
        logger.info("moderation_coordinator_stopped")

    # inbound events

    async def submit(self, event: InboundEvent) -> None:
        await self._ready.wait()
        await self._worker.submit(event)

    async def handle_event(self, event: InboundEvent) -> ModerationDecision:
        if event.kind == "cast":
            if event.cast is None:
                raise ValueError("Cast events need a cast")
            return await self.handle_cast(event.user, event.channel_id, event.cast)
        return await self.handle_member_request(event.user, event.channel_id)

    async def handle_member_request(self, user: Profile, channel_id: str) -> MemberDecision:
        channel = await self._channel(channel_id)
        log = logger.bind(channel_id=channel_id, fid=user.fid)

        if not channel.disable_banned_list and await self._storage.is_banned(str(user.fid)):
            log.warning("member_request_banned")
            return MemberDecision(result=False, reason="User is on the banned list", skipped="banned")

        if channel.member_rule_set is None:
            log.info("member_request_no_rules")
            return MemberDecision(result=False, reason=EMPTY_GROUP_REASON)

        evaluation = await self._evaluate(channel.member_rule_set, user, channel_id)
        decision = MemberDecision(result=evaluation.result, reason=evaluation.reason, evaluation=evaluation)
        if evaluation.result:
            await self._actions.invite(channel_id, user, actor=AUTOMOD_ACTOR, reason=evaluation.reason)
            decision.actions.append(ModerationAction.INVITE)
        log.info("member_request_handled", result=decision.result, reason=decision.reason)
        return decision

    async def handle_cast(self, user: Profile, channel_id: str, cast: Cast) -> CastDecision:
        channel = await self._channel(channel_id)
        log = logger.bind(channel_id=channel_id, fid=user.fid, cast_hash=cast.hash)

        event_key = f"cast:{cast.hash}"
        if not await self._gate.claim_event(event_key):
            return CastDecision(result=False, reason="Cast already processed", skipped="duplicate")
        try:
            return await self._moderate_cast(channel, user, cast)
        except Exception:
            # redelivery of the same cast must be processed again
            await self._gate.release_event(event_key)
            log.warning("cast_handling_failed", exc_info=True)
            raise

    async def _moderate_cast(self, channel: ModeratedChannel, user: Profile, cast: Cast) -> CastDecision:
        channel_id = channel.id
        log = logger.bind(channel_id=channel_id, fid=user.fid, cast_hash=cast.hash)

        active = await self._gate.active_cooldown(str(user.fid), channel_id)
        if active is not None and active.is_mute:
            await self._actions.hide_quietly(channel_id, user, cast, actor=AUTOMOD_ACTOR, reason="User is muted")
            log.info("cast_hidden_muted")
            return CastDecision(result=True, reason="User is muted", actions=[ModerationAction.HIDE_QUIETLY])
        if active is not None:
            assert active.expires_at is not None
            log.info("cast_skipped_cooldown", expires_at=active.expires_at.isoformat())
            return CastDecision(
                result=False,
                reason=f"User is in cooldown until {active.expires_at.isoformat(timespec='seconds')}",
                skipped="cooldown",
            )

        if not channel.cast_rule_sets:
            return CastDecision(result=False, reason=EMPTY_GROUP_REASON)

        evaluation: Optional[EvaluationResult] = None
        for rule_set in channel.cast_rule_sets:
            evaluation = await self._evaluate(rule_set.rule, user, channel_id, cast)
            if not evaluation.result:
                continue
            decision = CastDecision(
                result=True,
                reason=evaluation.reason,
                evaluation=evaluation,
                rule_set_id=rule_set.id,
            )
            for action in _cast_actions_first(rule_set.actions):
                await self._actions.apply(
                    action, channel_id=channel_id, user=user, cast=cast, reason=evaluation.reason
                )
                decision.actions.append(_LOGGED_ACTIONS[action.type])
            log.info(
                "cast_rule_set_triggered",
                rule_set_id=rule_set.id,
                actions=[action.value for action in decision.actions],
            )
            return decision

        assert evaluation is not None
        log.info("cast_passed", reason=evaluation.reason)
        return CastDecision(result=False, reason=evaluation.reason, evaluation=evaluation)

    async def _evaluate(
        self,
        group: RuleGroup,
        user: Profile,
        channel_id: str,
        cast: Optional[Cast] = None,
    ) -> EvaluationResult:
        event = EvaluationInput(user=user, channel=ChannelRef(id=channel_id), cast=cast, services=self._services)
        return await self._engine.evaluate(group, event)

    async def _channel(self, channel_id: str) -> ModeratedChannel:
        channel = await self._storage.get_channel(channel_id)
        if channel is None:
            raise ChannelNotFoundError(channel_id)
        return channel

    # manual transitions

    async def _authorize(self, actor_id: Union[str, int], channel_id: str, action: ActionType) -> None:
        if not await self._authorizer.can_user_execute_action(actor_id, channel_id, action):
            logger.warning("authorization_denied", actor=str(actor_id), channel_id=channel_id, action=action.value)
            raise AuthorizationError(str(actor_id), channel_id, action.value)

    async def cooldown_user(
        self,
        actor_id: Union[str, int],
        channel_id: str,
        user: Profile,
        *,
        duration_hours: Optional[float] = None,
        reason: str = "",
    ) -> Cooldown:
        await self._authorize(actor_id, channel_id, ActionType.COOLDOWN)
        return await self._actions.cooldown(
            channel_id, user, actor=str(actor_id), reason=reason, duration_hours=duration_hours
        )

    async def mute_user(
        self, actor_id: Union[str, int], channel_id: str, user: Profile, *, reason: str = "Muted"
    ) -> Cooldown:
        await self._authorize(actor_id, channel_id, ActionType.MUTE)
        return await self._actions.mute(channel_id, user, actor=str(actor_id), reason=reason)

    async def end_cooldown(
        self, actor_id: Union[str, int], channel_id: str, user: Profile, *, reason: str = "Cooldown ended"
    ) -> bool:
        await self._authorize(actor_id, channel_id, ActionType.END_COOLDOWN)
        return await self._actions.end_cooldown(channel_id, user, actor=str(actor_id), reason=reason)

    async def unmute_user(
        self, actor_id: Union[str, int], channel_id: str, user: Profile, *, reason: str = "Unmuted"
    ) -> bool:
        await self._authorize(actor_id, channel_id, ActionType.UNMUTE)
        return await self._actions.unmute(channel_id, user, actor=str(actor_id), reason=reason)

    async def unhide_cast(
        self,
        actor_id: Union[str, int],
        channel_id: str,
        user: Profile,
        cast_hash: Optional[str],
        *,
        reason: str = "Unhidden",
    ) -> ModerationLog:
        await self._authorize(actor_id, channel_id, ActionType.UNHIDE)
        return await self._actions.unhide(channel_id, user, cast_hash, actor=str(actor_id), reason=reason)

    async def expire_cooldowns(self, now: Optional[datetime] = None) -> int:
        return await self._actions.expire_cooldowns(now)

    # channel configuration and audit log

    async def save_channel(self, channel: ModeratedChannel) -> ModeratedChannel:
        member_rule_set = None
        if channel.member_rule_set is not None:
            member_rule_set = validate_rule_group(channel.member_rule_set, self._registry, event_type="user")
        cast_rule_sets = []
        for rule_set in channel.cast_rule_sets:
            rule = validate_rule_group(rule_set.rule, self._registry, event_type="cast")
            cast_rule_sets.append(CastRuleSet(id=rule_set.id, rule=rule, actions=list(rule_set.actions)))
        if self._chain is not None:
            for group in [member_rule_set, *(rule_set.rule for rule_set in cast_rule_sets)]:
                if group is not None:
                    await validate_token_contracts(group, self._chain)

        validated = ModeratedChannel(
            id=channel.id,
            user_id=channel.user_id,
            disable_banned_list=channel.disable_banned_list,
            member_rule_set=member_rule_set,
            cast_rule_sets=cast_rule_sets,
            comods=list(channel.comods),
            roles=list(channel.roles),
        )
        await self._storage.save_channel(validated)
        return validated

    async def get_channel(self, channel_id: str) -> Optional[ModeratedChannel]:
        return await self._storage.get_channel(channel_id)

    async def delete_channel(self, actor_id: Union[str, int], channel_id: str) -> bool:
        channel = await self._storage.get_channel(channel_id)
        if channel is None:
            return False
        if str(actor_id) != channel.user_id:
            logger.warning("authorization_denied", actor=str(actor_id), channel_id=channel_id, action="deleteChannel")
            raise AuthorizationError(str(actor_id), channel_id, "deleteChannel")
        return await self._storage.delete_channel(channel_id)

    async def ban_user(self, fid: Union[str, int], reason: str = "") -> None:
        await self._storage.ban_user(str(fid), reason)

    async def list_moderation_logs(
        self,
        channel_id: str,
        page: int = 1,
        page_size: int = 50,
        *,
        tz: Optional[str] = None,
    ) -> LogPage:
        result = await self._storage.list_logs(channel_id, page, page_size)
        if tz:
            for entry in result.entries:
                entry.reason = localize_timestamps(entry.reason, tz)
        return result

    async def moderation_stats(
        self,
        channel_id: str,
        *,
        since: Optional[datetime] = None,
        days: int = 30,
    ) -> ModerationStats:
        since = since or self._clock() - timedelta(days=days)
        return await self._storage.moderation_stats(channel_id, since)
