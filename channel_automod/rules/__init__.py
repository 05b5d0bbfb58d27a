from .engine import RuleEngine
from .registry import RegisteredRule, RuleRegistry, default_registry

__all__ = ["RegisteredRule", "RuleEngine", "RuleRegistry", "default_registry"]
