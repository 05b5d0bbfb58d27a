from .authorization import AuthorizationResult, Authorizer
from .moderation_service import CastDecision, MemberDecision, ModerationCoordinator, ModerationDecision
from .worker import EventWorker, InboundEvent

__all__ = [
    "AuthorizationResult",
    "Authorizer",
    "CastDecision",
    "EventWorker",
    "InboundEvent",
    "MemberDecision",
    "ModerationCoordinator",
    "ModerationDecision",
]
