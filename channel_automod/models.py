from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal, Optional, Union

from .utils.text import truncate

if TYPE_CHECKING:
    from .checks.base import CheckServices

MAX_MESSAGE_LENGTH = 75


class RuleCategory(str, Enum):
    USER = "user"
    CAST = "cast"
    ALL = "all"


class ArgType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SELECT = "select"
    MULTISELECT = "multiselect"


class GroupOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class FailureMode(str, Enum):
    TRIGGER = "trigger"
    DO_NOT_TRIGGER = "doNotTrigger"


class ModerationAction(str, Enum):
    COOLDOWN = "cooldown"
    COOLDOWN_ENDED = "cooldownEnded"
    MUTE = "mute"
    UNMUTED = "unmuted"
    HIDE_QUIETLY = "hideQuietly"
    WARN_AND_HIDE = "warnAndHide"
    UNHIDE = "unhide"
    INVITE = "invite"


class ActionType(str, Enum):
    """Actions a moderator or delegate can request, or a rule set can apply."""

    COOLDOWN = "cooldown"
    END_COOLDOWN = "endCooldown"
    MUTE = "mute"
    UNMUTE = "unmute"
    HIDE_QUIETLY = "hideQuietly"
    WARN_AND_HIDE = "warnAndHide"
    UNHIDE = "unhide"


EventType = Literal["user", "cast"]
Option = tuple[str, str]


@dataclass(frozen=True, slots=True)
class ArgSpec:
    type: ArgType
    required: bool = False
    default: Any = None
    options: tuple[Option, ...] = ()
    pattern: Optional[str] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    friendly_name: str = ""
    description: str = ""

    def option_values(self) -> set[str]:
        return {value for value, _label in self.options}


@dataclass(frozen=True, slots=True)
class RuleDefinition:
    name: str
    friendly_name: str
    description: str
    category: RuleCategory
    check_type: RuleCategory
    invertable: bool = False
    allow_multiple: bool = False
    hidden: bool = False
    timeout_seconds: Optional[float] = None
    args: dict[str, ArgSpec] = field(default_factory=dict)

    def applies_to(self, event_type: EventType) -> bool:
        return self.check_type == RuleCategory.ALL or self.check_type.value == event_type


@dataclass(slots=True)
class RuleInstance:
    id: str
    rule_name: str
    args: dict[str, Any] = field(default_factory=dict)
    inverted: bool = False
    parent_group_id: Optional[str] = None

    def invert(self) -> "RuleInstance":
        return replace(self, inverted=not self.inverted, args=dict(self.args))


@dataclass(slots=True)
class RuleGroup:
    id: str
    operator: GroupOperator
    children: list[Union["RuleGroup", RuleInstance]] = field(default_factory=list)
    parent_group_id: Optional[str] = None


RuleNode = Union[RuleGroup, RuleInstance]


@dataclass(slots=True)
class Profile:
    fid: int
    username: str
    display_name: Optional[str] = None
    pfp_url: Optional[str] = None
    bio: str = ""
    follower_count: int = 0
    following_count: int = 0
    custody_address: Optional[str] = None
    verifications: list[str] = field(default_factory=list)
    power_badge: bool = False

    def addresses(self) -> list[str]:
        seen: list[str] = []
        for address in [self.custody_address, *self.verifications]:
            if address and address.startswith("0x") and address.lower() not in seen:
                seen.append(address.lower())
        return seen

    def to_payload(self) -> dict[str, Any]:
        return {
            "fid": self.fid,
            "username": self.username,
            "display_name": self.display_name,
            "pfp_url": self.pfp_url,
            "profile": {"bio": {"text": self.bio}},
            "follower_count": self.follower_count,
            "following_count": self.following_count,
            "custody_address": self.custody_address,
            "verifications": list(self.verifications),
            "power_badge": self.power_badge,
        }


@dataclass(slots=True)
class ChannelRef:
    id: str


@dataclass(slots=True)
class Cast:
    hash: str
    text: str = ""
    embeds: list[str] = field(default_factory=list)
    author_fid: Optional[int] = None
    parent_hash: Optional[str] = None


@dataclass(slots=True)
class CheckFunctionArgs:
    user: Profile
    channel: ChannelRef
    rule: RuleInstance
    cast: Optional[Cast] = None
    services: Optional["CheckServices"] = None


@dataclass(slots=True)
class EvaluationInput:
    """Inbound event data shared by every rule of one evaluation."""

    user: Profile
    channel: ChannelRef
    cast: Optional[Cast] = None
    services: Optional["CheckServices"] = None

    @property
    def event_type(self) -> EventType:
        return "cast" if self.cast is not None else "user"

    def for_rule(self, rule: RuleInstance) -> CheckFunctionArgs:
        return CheckFunctionArgs(
            user=self.user,
            channel=self.channel,
            rule=rule,
            cast=self.cast,
            services=self.services,
        )


@dataclass(slots=True)
class CheckResult:
    result: bool
    message: str = ""

    def __post_init__(self) -> None:
        self.result = bool(self.result)
        if not self.message:
            self.message = "Rule triggered" if self.result else "Rule did not trigger"
        self.message = truncate(str(self.message), MAX_MESSAGE_LENGTH)


@dataclass(slots=True)
class RuleOutcome:
    rule_id: str
    rule_name: str
    raw_result: bool
    result: bool
    inverted: bool
    message: str
    error: Optional[Literal["timeout", "error"]] = None


@dataclass(slots=True)
class EvaluationResult:
    result: bool
    reason: str
    triggered_rule_name: Optional[str] = None
    outcomes: list[RuleOutcome] = field(default_factory=list)


@dataclass(slots=True)
class Cooldown:
    affected_user_id: str
    channel_id: str
    active: bool
    expires_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    @property
    def is_mute(self) -> bool:
        return self.expires_at is None

    def is_in_effect(self, now: datetime) -> bool:
        if not self.active:
            return False
        return self.expires_at is None or self.expires_at > now


@dataclass(slots=True)
class ModerationLog:
    channel_id: str
    action: ModerationAction
    actor: str
    reason: str
    affected_user_fid: str
    affected_username: str
    affected_user_avatar_url: Optional[str]
    created_at: datetime
    cast_hash: Optional[str] = None
    id: Optional[int] = None


@dataclass(slots=True)
class LogPage:
    entries: list[ModerationLog]
    page: int
    page_size: int
    total: int
    next_page: Optional[int]


@dataclass(slots=True)
class ModerationStats:
    """Audit-log aggregates for one channel since ``since``."""

    since: datetime
    total_actions: int
    unique_users: int
    unique_invited: int

    @property
    def approval_rate(self) -> float:
        """Share of moderated users that were invited."""
        if not self.unique_users:
            return 0.0
        return self.unique_invited / self.unique_users


@dataclass(slots=True)
class RuleAction:
    type: ActionType
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CastRuleSet:
    id: str
    rule: RuleGroup
    actions: list[RuleAction] = field(default_factory=list)


@dataclass(slots=True)
class Comod:
    fid: str
    username: str
    avatar_url: Optional[str] = None


@dataclass(slots=True)
class Delegate:
    fid: str
    username: str
    role_id: str
    avatar_url: Optional[str] = None


@dataclass(slots=True)
class Role:
    id: str
    name: str
    permissions: list[str] = field(default_factory=list)
    is_cohost_role: bool = False
    delegates: list[Delegate] = field(default_factory=list)


@dataclass(slots=True)
class ModeratedChannel:
    id: str
    user_id: str
    disable_banned_list: bool = False
    member_rule_set: Optional[RuleGroup] = None
    cast_rule_sets: list[CastRuleSet] = field(default_factory=list)
    comods: list[Comod] = field(default_factory=list)
    roles: list[Role] = field(default_factory=list)


__all__ = [
    "ActionType",
    "ArgSpec",
    "ArgType",
    "Cast",
    "CastRuleSet",
    "ChannelRef",
    "CheckFunctionArgs",
    "CheckResult",
    "Comod",
    "Cooldown",
    "Delegate",
    "EvaluationInput",
    "EvaluationResult",
    "EventType",
    "FailureMode",
    "GroupOperator",
    "LogPage",
    "ModeratedChannel",
    "ModerationAction",
    "ModerationLog",
    "Profile",
    "Role",
    "RuleAction",
    "RuleCategory",
    "RuleDefinition",
    "RuleGroup",
    "RuleInstance",
    "RuleNode",
    "RuleOutcome",
]
