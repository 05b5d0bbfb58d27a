from __future__ import annotations

from typing import Any, Literal, Optional

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import CastActionError

logger = structlog.get_logger(__name__)

ModerateAction = Literal["hide", "unhide"]
TRANSIENT_ERRORS = (httpx.TimeoutException, httpx.ReadError, httpx.RemoteProtocolError)


class FarcasterAdapter:
    """Bearer-authenticated JSON client with retries on transient transport errors."""

    service = "farcaster"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str,
        timeout: float = 10.0,
        headers: Optional[dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = 3,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            headers=headers or {"Authorization": f"Bearer {api_key}"},
        )
        self._owns_client = client is None
        self._max_attempts = max_attempts

    async def post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        retry = AsyncRetrying(
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5.0),
            stop=stop_after_attempt(self._max_attempts),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        )
        try:
            async for attempt in retry:
                with attempt:
                    logger.debug(
                        f"{self.service}_request",
                        path=path,
                        attempt=attempt.retry_state.attempt_number,
                    )
                    response = await self._client.post(path, json=payload)
                    if response.status_code >= 400:
                        logger.error(
                            f"{self.service}_request_failed",
                            path=path,
                            status=response.status_code,
                            body=response.text[:500],
                        )
                        raise CastActionError(f"{path} returned {response.status_code}: {response.text[:200]}")
                    logger.debug(f"{self.service}_response", path=path, status=response.status_code)
                    if not response.content:
                        return {}
                    try:
                        return response.json()
                    except ValueError:
                        return {}
        except httpx.HTTPError as exc:
            logger.error(f"{self.service}_request_error", path=path, error=str(exc))
            raise CastActionError(f"{path} failed: {exc}") from exc
        raise CastActionError("Retry exhausted")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class CastActionsClient(FarcasterAdapter):
    """Warpcast channel moderation endpoints."""

    service = "warpcast"

    def __init__(self, api_key: str, *, base_url: str = "https://api.warpcast.com", **kwargs: Any) -> None:
        super().__init__(api_key, base_url=base_url, **kwargs)

    async def moderate_cast(self, cast_hash: str, action: ModerateAction) -> None:
        await self.post("/fc/moderate-cast", {"castHash": cast_hash, "action": action})
        logger.info("cast_moderated", cast_hash=cast_hash, action=action)

    async def hide_cast(self, cast_hash: str) -> None:
        await self.moderate_cast(cast_hash, "hide")

    async def unhide_cast(self, cast_hash: str) -> None:
        await self.moderate_cast(cast_hash, "unhide")

    async def invite_member(self, channel_id: str, fid: int, *, role: str = "member") -> None:
        await self.post("/fc/channel-invites", {"channelKey": channel_id, "inviteFid": fid, "role": role})
        logger.info("member_invited", channel_id=channel_id, fid=fid, role=role)


class NeynarClient(FarcasterAdapter):
    """Posts warning replies as the automod account."""

    service = "neynar"

    def __init__(
        self,
        api_key: str,
        signer_uuid: str,
        *,
        base_url: str = "https://api.neynar.com",
        **kwargs: Any,
    ) -> None:
        super().__init__(
            api_key,
            base_url=base_url,
            headers={"api_key": api_key, "accept": "application/json"},
            **kwargs,
        )
        self._signer_uuid = signer_uuid

    async def send_warning(self, *, parent_hash: str, channel_id: str, text: str) -> str | None:
        data = await self.post(
            "/v2/farcaster/cast",
            {
                "signer_uuid": self._signer_uuid,
                "text": text,
                "parent": parent_hash,
                "channel_id": channel_id,
            },
        )
        warning_hash = (data.get("cast") or {}).get("hash")
        logger.info("warning_sent", parent_hash=parent_hash, channel_id=channel_id, cast_hash=warning_hash)
        return warning_hash
