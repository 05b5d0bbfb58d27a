from __future__ import annotations

from typing import Optional

from channel_automod.errors import CastActionError


class FakeCastActions:
    def __init__(self, *, fail_with: Optional[Exception] = None) -> None:
        self.hidden: list[str] = []
        self.unhidden: list[str] = []
        self.invited: list[tuple[str, int]] = []
        self.fail_with = fail_with

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def hide_cast(self, cast_hash: str) -> None:
        self._maybe_fail()
        self.hidden.append(cast_hash)

    async def unhide_cast(self, cast_hash: str) -> None:
        self._maybe_fail()
        self.unhidden.append(cast_hash)

    async def invite_member(self, channel_id: str, fid: int, *, role: str = "member") -> None:
        self._maybe_fail()
        self.invited.append((channel_id, fid))

    async def close(self) -> None:
        return None


class FakeWarnings:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    async def send_warning(self, *, parent_hash: str, channel_id: str, text: str) -> str:
        self.sent.append((parent_hash, channel_id, text))
        return "0xwarning"

    async def close(self) -> None:
        return None


def failing_cast_actions() -> FakeCastActions:
    return FakeCastActions(fail_with=CastActionError("/fc/moderate-cast returned 500"))
