"""
Channel automod core package.

Evaluates per-channel rule groups against join requests and casts, applies the
resulting moderation transitions and keeps an append-only audit log of them.
"""

from .services.moderation_service import CastDecision, MemberDecision, ModerationCoordinator
from .services.worker import InboundEvent

__all__ = ["CastDecision", "InboundEvent", "MemberDecision", "ModerationCoordinator"]
