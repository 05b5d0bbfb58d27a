from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from channel_automod.config import AutomodSettings, StorageSettings, WarpcastSettings
from channel_automod.models import (
    Cast,
    CastRuleSet,
    ChannelRef,
    Comod,
    EvaluationInput,
    GroupOperator,
    ModeratedChannel,
    Profile,
    Role,
    RuleAction,
    RuleGroup,
    RuleInstance,
)

_ids = itertools.count(1)

ADDRESS = "0x" + "ab" * 20
TOKEN = "0x" + "cd" * 20


def make_profile(
    fid: int = 10,
    *,
    username: str = "tester",
    display_name: Optional[str] = "Tester",
    bio: str = "gm",
    follower_count: int = 100,
    verifications: Optional[list[str]] = None,
    custody_address: Optional[str] = None,
    power_badge: bool = False,
) -> Profile:
    return Profile(
        fid=fid,
        username=username,
        display_name=display_name,
        pfp_url=f"https://example.com/{fid}.png",
        bio=bio,
        follower_count=follower_count,
        following_count=10,
        custody_address=custody_address,
        verifications=verifications if verifications is not None else [ADDRESS],
        power_badge=power_badge,
    )


def make_cast(text: str = "hello world", *, hash: Optional[str] = None, embeds: Optional[list[str]] = None) -> Cast:
    return Cast(hash=hash or f"0x{next(_ids):040x}", text=text, embeds=embeds or [], author_fid=10)


def make_rule(name: str, args: Optional[dict[str, Any]] = None, *, inverted: bool = False, rule_id: Optional[str] = None) -> RuleInstance:
    return RuleInstance(id=rule_id or f"rule-{next(_ids)}", rule_name=name, args=dict(args or {}), inverted=inverted)


def make_group(*children: Any, operator: GroupOperator = GroupOperator.AND, group_id: Optional[str] = None) -> RuleGroup:
    return RuleGroup(id=group_id or f"group-{next(_ids)}", operator=operator, children=list(children))


def make_input(
    user: Optional[Profile] = None,
    *,
    channel_id: str = "memes",
    cast: Optional[Cast] = None,
    services: Any = None,
) -> EvaluationInput:
    return EvaluationInput(user=user or make_profile(), channel=ChannelRef(id=channel_id), cast=cast, services=services)


def make_channel(
    channel_id: str = "memes",
    *,
    lead: str = "1",
    member_rule_set: Optional[RuleGroup] = None,
    cast_rule_sets: Optional[list[CastRuleSet]] = None,
    comods: Optional[list[Comod]] = None,
    roles: Optional[list[Role]] = None,
    disable_banned_list: bool = False,
) -> ModeratedChannel:
    return ModeratedChannel(
        id=channel_id,
        user_id=lead,
        disable_banned_list=disable_banned_list,
        member_rule_set=member_rule_set,
        cast_rule_sets=cast_rule_sets or [],
        comods=comods or [],
        roles=roles or [],
    )


def make_rule_set(rule: RuleGroup, *actions: RuleAction, rule_set_id: Optional[str] = None) -> CastRuleSet:
    return CastRuleSet(id=rule_set_id or f"set-{next(_ids)}", rule=rule, actions=list(actions))


def make_settings(sqlite_path: str = ":memory:") -> AutomodSettings:
    return AutomodSettings(
        warpcast=WarpcastSettings(api_key="test-key"),
        storage=StorageSettings(sqlite_path=sqlite_path),
        _env_file=None,
    )


class FrozenClock:
    def __init__(self, moment: Optional[datetime] = None) -> None:
        self.now = moment or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)
