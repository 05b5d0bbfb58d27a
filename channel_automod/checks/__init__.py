"""Built-in check functions, one module per family of rules."""

from . import content, profile, token_gating, webhook
from .base import CheckFunction, CheckServices, FailurePolicy, default_failure_result

MODULES = (webhook, token_gating, profile, content)

__all__ = [
    "CheckFunction",
    "CheckServices",
    "FailurePolicy",
    "MODULES",
    "default_failure_result",
]
