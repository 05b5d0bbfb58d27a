from .cooldowns import ActiveCooldown, CooldownGate
from .state_machine import ModerationActions

__all__ = ["ActiveCooldown", "CooldownGate", "ModerationActions"]
