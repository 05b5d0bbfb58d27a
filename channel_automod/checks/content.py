from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlparse

from ..models import ArgSpec, ArgType, Cast, CheckFunctionArgs, CheckResult, RuleCategory, RuleDefinition
from ..utils.text import find_links
from .base import CheckFunction

IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg")
VIDEO_SUFFIXES = (".mp4", ".mov", ".webm", ".m3u8")
IMAGE_HOSTS = ("imagedelivery.net", "i.imgur.com")
VIDEO_HOSTS = ("stream.warpcast.com",)


def _cast(args: CheckFunctionArgs) -> Cast:
    if args.cast is None:
        raise ValueError(f"{args.rule.rule_name} needs a cast")
    return args.cast


def _int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    return int(float(value))


def classify_embed(url: str) -> str:
    parsed = urlparse(url)
    path = parsed.path.lower()
    host = parsed.netloc.lower()
    if path.endswith(IMAGE_SUFFIXES) or host in IMAGE_HOSTS:
        return "images"
    if path.endswith(VIDEO_SUFFIXES) or host in VIDEO_HOSTS:
        return "videos"
    return "links"


async def contains_text(args: CheckFunctionArgs) -> CheckResult:
    cast = _cast(args)
    search = str(args.rule.args["searchText"])
    text = cast.text or ""
    if not args.rule.args.get("caseSensitive", False):
        text, search_cmp = text.lower(), search.lower()
    else:
        search_cmp = search
    if search_cmp in text:
        return CheckResult(result=True, message=f'Text contains "{search}"')
    return CheckResult(result=False, message=f'Text does not contain "{search}"')


async def text_matches_pattern(args: CheckFunctionArgs) -> CheckResult:
    cast = _cast(args)
    pattern = str(args.rule.args["pattern"])
    flags = 0 if args.rule.args.get("caseSensitive", False) else re.IGNORECASE
    match = re.search(pattern, cast.text or "", flags)
    if match:
        return CheckResult(result=True, message=f'Text matches pattern "{pattern}"')
    return CheckResult(result=False, message=f'Text does not match pattern "{pattern}"')


async def contains_links(args: CheckFunctionArgs) -> CheckResult:
    cast = _cast(args)
    max_links = _int(args.rule.args.get("maxLinks")) or 0
    links = find_links(cast.text) + [url for url in cast.embeds if classify_embed(url) == "links"]
    if len(links) > max_links:
        return CheckResult(result=True, message=f"Cast contains {len(links)} links, more than {max_links}")
    return CheckResult(result=False, message=f"Cast contains {len(links)} links")


async def cast_length(args: CheckFunctionArgs) -> CheckResult:
    cast = _cast(args)
    minimum = _int(args.rule.args.get("min"))
    maximum = _int(args.rule.args.get("max"))
    length = len(cast.text or "")
    if minimum is not None and length < minimum:
        return CheckResult(result=True, message=f"Cast is shorter than {minimum} characters")
    if maximum is not None and length > maximum:
        return CheckResult(result=True, message=f"Cast is longer than {maximum} characters")
    return CheckResult(result=False, message=f"Cast length of {length} is within range")


async def contains_embeds(args: CheckFunctionArgs) -> CheckResult:
    cast = _cast(args)
    wanted = set(args.rule.args.get("embedTypes") or ["images", "videos", "links"])
    found = sorted({kind for kind in map(classify_embed, cast.embeds) if kind in wanted})
    if found:
        return CheckResult(result=True, message=f"Cast contains {', '.join(found)}")
    return CheckResult(result=False, message="Cast does not contain matching embeds")


async def always_include(args: CheckFunctionArgs) -> CheckResult:
    return CheckResult(result=True, message="Always included")


_CASE_SENSITIVE = ArgSpec(type=ArgType.BOOLEAN, default=False, friendly_name="Case Sensitive")

DEFINITIONS: dict[str, RuleDefinition] = {
    "containsText": RuleDefinition(
        name="containsText",
        friendly_name="Contains Text",
        description="Check if the cast text contains a phrase.",
        category=RuleCategory.CAST,
        check_type=RuleCategory.CAST,
        invertable=True,
        allow_multiple=True,
        args={
            "searchText": ArgSpec(type=ArgType.STRING, required=True, friendly_name="Search Text"),
            "caseSensitive": _CASE_SENSITIVE,
        },
    ),
    "textMatchesPattern": RuleDefinition(
        name="textMatchesPattern",
        friendly_name="Matches Pattern",
        description="Check if the cast text matches a regular expression.",
        category=RuleCategory.CAST,
        check_type=RuleCategory.CAST,
        invertable=True,
        allow_multiple=True,
        args={
            "pattern": ArgSpec(type=ArgType.STRING, required=True, friendly_name="Pattern"),
            "caseSensitive": _CASE_SENSITIVE,
        },
    ),
    "containsLinks": RuleDefinition(
        name="containsLinks",
        friendly_name="Contains Links",
        description="Check if the cast has more links than allowed.",
        category=RuleCategory.CAST,
        check_type=RuleCategory.CAST,
        invertable=True,
        args={"maxLinks": ArgSpec(type=ArgType.NUMBER, default=0, minimum=0, friendly_name="Max Links")},
    ),
    "castLength": RuleDefinition(
        name="castLength",
        friendly_name="Cast Length",
        description="Check if the cast is shorter or longer than a number of characters.",
        category=RuleCategory.CAST,
        check_type=RuleCategory.CAST,
        args={
            "min": ArgSpec(type=ArgType.NUMBER, minimum=0, friendly_name="Less than"),
            "max": ArgSpec(type=ArgType.NUMBER, minimum=0, friendly_name="More than"),
        },
    ),
    "containsEmbeds": RuleDefinition(
        name="containsEmbeds",
        friendly_name="Contains Embeds",
        description="Check if the cast has images, videos or links embedded.",
        category=RuleCategory.CAST,
        check_type=RuleCategory.CAST,
        invertable=True,
        args={
            "embedTypes": ArgSpec(
                type=ArgType.MULTISELECT,
                required=True,
                default=["images", "videos", "links"],
                options=(("images", "Images"), ("videos", "Videos"), ("links", "Links")),
                friendly_name="Types",
            ),
        },
    ),
    "alwaysInclude": RuleDefinition(
        name="alwaysInclude",
        friendly_name="Always Include",
        description="Always triggers. Useful as a catch-all.",
        category=RuleCategory.ALL,
        check_type=RuleCategory.ALL,
    ),
}

CHECKS: dict[str, CheckFunction] = {
    "containsText": contains_text,
    "textMatchesPattern": text_matches_pattern,
    "containsLinks": contains_links,
    "castLength": cast_length,
    "containsEmbeds": contains_embeds,
    "alwaysInclude": always_include,
}
