from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

import structlog

from ..models import ActionType, ModeratedChannel
from ..storage.base import ChannelRepository

logger = structlog.get_logger(__name__)


def permission_for(action: Union[ActionType, str]) -> str:
    value = action.value if isinstance(action, ActionType) else str(action)
    return f"action:{value}"


@dataclass(slots=True)
class AuthorizationResult:
    result: bool
    channel: Optional[ModeratedChannel] = None


class Authorizer:
    """Decides whether a user may moderate a channel or run a specific action in it.

    Leads and comods moderate. Delegates act only through the permissions of their roles.
    """

    def __init__(self, channels: ChannelRepository) -> None:
        self._channels = channels

    async def can_user_moderate_channel(self, user_id: Union[str, int], channel_id: str) -> AuthorizationResult:
        channel = await self._channels.get_channel(channel_id)
        if channel is None or not is_moderator(channel, str(user_id)):
            return AuthorizationResult(result=False)
        return AuthorizationResult(result=True, channel=channel)

    async def can_user_execute_action(
        self,
        user_id: Union[str, int],
        channel_id: str,
        action: Union[ActionType, str],
    ) -> bool:
        channel = await self._channels.get_channel(channel_id)
        if channel is None:
            return False
        fid = str(user_id)
        if is_moderator(channel, fid):
            return True
        permission = permission_for(action)
        for role in channel.roles:
            if permission not in role.permissions:
                continue
            if any(delegate.fid == fid for delegate in role.delegates):
                logger.debug("delegate_authorized", fid=fid, channel_id=channel_id, role=role.name, permission=permission)
                return True
        return False


def is_moderator(channel: ModeratedChannel, user_id: str) -> bool:
    if channel.user_id == user_id:
        return True
    return any(comod.fid == user_id for comod in channel.comods)
