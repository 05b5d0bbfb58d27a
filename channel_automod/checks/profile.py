from __future__ import annotations

from typing import Any, Optional

from ..models import ArgSpec, ArgType, CheckFunctionArgs, CheckResult, RuleCategory, RuleDefinition
from .base import CheckFunction


def _number(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    return float(value)


def _contains(haystack: str, needle: str, case_sensitive: bool) -> bool:
    if not case_sensitive:
        haystack, needle = haystack.lower(), needle.lower()
    return needle in haystack


async def user_follower_count(args: CheckFunctionArgs) -> CheckResult:
    minimum = _number(args.rule.args.get("min"))
    maximum = _number(args.rule.args.get("max"))
    count = args.user.follower_count

    if minimum is not None and count < minimum:
        return CheckResult(result=False, message=f"Follower count {count} is less than {minimum:g}")
    if maximum is not None and count > maximum:
        return CheckResult(result=False, message=f"Follower count {count} is more than {maximum:g}")
    return CheckResult(result=True, message=f"Follower count {count} is within range")


async def user_fid_in_range(args: CheckFunctionArgs) -> CheckResult:
    min_fid = _number(args.rule.args.get("minFid"))
    max_fid = _number(args.rule.args.get("maxFid"))
    fid = args.user.fid

    if min_fid is not None and fid < min_fid:
        return CheckResult(result=False, message=f"FID #{fid} is less than {min_fid:g}")
    if max_fid is not None and fid > max_fid:
        return CheckResult(result=False, message=f"FID #{fid} is greater than {max_fid:g}")
    return CheckResult(result=True, message=f"FID #{fid} is within range")


async def user_profile_contains_text(args: CheckFunctionArgs) -> CheckResult:
    search = str(args.rule.args["searchText"])
    case_sensitive = bool(args.rule.args.get("caseSensitive", False))
    found = _contains(args.user.bio or "", search, case_sensitive)
    return CheckResult(
        result=found,
        message=f'Profile contains "{search}"' if found else f'Profile does not contain "{search}"',
    )


async def user_display_name_contains_text(args: CheckFunctionArgs) -> CheckResult:
    search = str(args.rule.args["searchText"])
    case_sensitive = bool(args.rule.args.get("caseSensitive", False))
    found = _contains(args.user.display_name or "", search, case_sensitive)
    return CheckResult(
        result=found,
        message=f'Display name contains "{search}"' if found else f'Display name does not contain "{search}"',
    )


async def user_has_power_badge(args: CheckFunctionArgs) -> CheckResult:
    if args.user.power_badge:
        return CheckResult(result=True, message="User has a power badge")
    return CheckResult(result=False, message="User does not have a power badge")


_SEARCH_TEXT = ArgSpec(type=ArgType.STRING, required=True, friendly_name="Search Text")
_CASE_SENSITIVE = ArgSpec(type=ArgType.BOOLEAN, default=False, friendly_name="Case Sensitive")

DEFINITIONS: dict[str, RuleDefinition] = {
    "userFollowerCount": RuleDefinition(
        name="userFollowerCount",
        friendly_name="Follower Count",
        description="Check if the user's follower count is within a range.",
        category=RuleCategory.USER,
        check_type=RuleCategory.USER,
        args={
            "min": ArgSpec(type=ArgType.NUMBER, minimum=0, friendly_name="Minimum"),
            "max": ArgSpec(type=ArgType.NUMBER, minimum=0, friendly_name="Maximum"),
        },
    ),
    "userFidInRange": RuleDefinition(
        name="userFidInRange",
        friendly_name="FID Range",
        description="Check if the user's FID is within a range.",
        category=RuleCategory.USER,
        check_type=RuleCategory.USER,
        args={
            "minFid": ArgSpec(type=ArgType.NUMBER, minimum=0, friendly_name="Min FID"),
            "maxFid": ArgSpec(type=ArgType.NUMBER, minimum=0, friendly_name="Max FID"),
        },
    ),
    "userProfileContainsText": RuleDefinition(
        name="userProfileContainsText",
        friendly_name="Profile Contains Text",
        description="Check if the user's bio contains a phrase.",
        category=RuleCategory.USER,
        check_type=RuleCategory.USER,
        invertable=True,
        allow_multiple=True,
        args={"searchText": _SEARCH_TEXT, "caseSensitive": _CASE_SENSITIVE},
    ),
    "userDisplayNameContainsText": RuleDefinition(
        name="userDisplayNameContainsText",
        friendly_name="Display Name Contains Text",
        description="Check if the user's display name contains a phrase.",
        category=RuleCategory.USER,
        check_type=RuleCategory.USER,
        invertable=True,
        allow_multiple=True,
        args={"searchText": _SEARCH_TEXT, "caseSensitive": _CASE_SENSITIVE},
    ),
    "userHasPowerBadge": RuleDefinition(
        name="userHasPowerBadge",
        friendly_name="Power Badge",
        description="Check if the user has a power badge.",
        category=RuleCategory.USER,
        check_type=RuleCategory.USER,
        invertable=True,
    ),
}

CHECKS: dict[str, CheckFunction] = {
    "userFollowerCount": user_follower_count,
    "userFidInRange": user_fid_in_range,
    "userProfileContainsText": user_profile_contains_text,
    "userDisplayNameContainsText": user_display_name_contains_text,
    "userHasPowerBadge": user_has_power_badge,
}
