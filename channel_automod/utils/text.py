from __future__ import annotations

import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

ISO_TIMESTAMP = re.compile(
    r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2})?"
)
URL_PATTERN = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)


def truncate(value: str, limit: int) -> str:
    if limit <= 0:
        return ""
    return value if len(value) <= limit else value[:limit]


def find_links(text: str) -> list[str]:
    return URL_PATTERN.findall(text or "")


def localize_timestamps(reason: str, tz: str | ZoneInfo, *, fmt: str = "%Y-%m-%d %H:%M %Z") -> str:
    """Rewrite ISO-8601 timestamps embedded in a log reason into ``tz``.

    Naive timestamps are read as UTC. Text that does not parse is left alone.
    """
    zone = ZoneInfo(tz) if isinstance(tz, str) else tz

    def _replace(match: re.Match[str]) -> str:
        raw = match.group(0)
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return raw
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(zone).strftime(fmt)

    return ISO_TIMESTAMP.sub(_replace, reason)
