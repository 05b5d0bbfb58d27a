from __future__ import annotations


class AutomodError(Exception):
    pass


class RuleConfigurationError(AutomodError):
    """Raised for malformed rule configuration; never reaches a check."""


class RuleNotFoundError(RuleConfigurationError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown rule: {name}")
        self.name = name


class RuleArgumentError(RuleConfigurationError):
    def __init__(self, rule_name: str, arg_name: str, message: str) -> None:
        super().__init__(f"{rule_name}.{arg_name}: {message}")
        self.rule_name = rule_name
        self.arg_name = arg_name


class CheckExecutionError(AutomodError):
    """External failure inside a check; the engine converts it to a result."""


class ChainReadError(CheckExecutionError):
    pass


class PreconditionError(AutomodError):
    pass


class AuthorizationError(AutomodError):
    def __init__(self, user_id: str, channel_id: str, action: str) -> None:
        super().__init__(f"User {user_id} may not {action} in {channel_id}")
        self.user_id = user_id
        self.channel_id = channel_id
        self.action = action


class CastActionError(AutomodError):
    pass


class ChannelNotFoundError(AutomodError):
    def __init__(self, channel_id: str) -> None:
        super().__init__(f"Channel not found: {channel_id}")
        self.channel_id = channel_id


__all__ = [
    "AuthorizationError",
    "AutomodError",
    "CastActionError",
    "ChainReadError",
    "ChannelNotFoundError",
    "CheckExecutionError",
    "PreconditionError",
    "RuleArgumentError",
    "RuleConfigurationError",
    "RuleNotFoundError",
]
