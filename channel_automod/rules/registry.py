from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

import structlog

from ..checks import MODULES
from ..checks.base import CheckFunction, FailurePolicy, default_failure_result
from ..errors import RuleConfigurationError, RuleNotFoundError
from ..models import RuleCategory, RuleDefinition

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RegisteredRule:
    definition: RuleDefinition
    check: CheckFunction
    failure_policy: FailurePolicy


class RuleRegistry:
    """Static table of rule definitions and the check function behind each name."""

    def __init__(self) -> None:
        self._rules: dict[str, RegisteredRule] = {}

    def register(
        self,
        definition: RuleDefinition,
        check: CheckFunction,
        failure_policy: Optional[FailurePolicy] = None,
    ) -> None:
        if definition.name in self._rules:
            raise RuleConfigurationError(f"Rule already registered: {definition.name}")
        self._rules[definition.name] = RegisteredRule(
            definition=definition,
            check=check,
            failure_policy=failure_policy or default_failure_result,
        )

    def get(self, name: str) -> RegisteredRule:
        try:
            return self._rules[name]
        except KeyError:
            raise RuleNotFoundError(name) from None

    def get_definition(self, name: str) -> RuleDefinition:
        return self.get(name).definition

    def get_check(self, name: str) -> CheckFunction:
        return self.get(name).check

    def get_failure_policy(self, name: str) -> FailurePolicy:
        return self.get(name).failure_policy

    def __contains__(self, name: object) -> bool:
        return name in self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def definitions(
        self,
        category: Optional[RuleCategory] = None,
        *,
        include_hidden: bool = False,
    ) -> list[RuleDefinition]:
        selected: Iterable[RuleDefinition] = (entry.definition for entry in self._rules.values())
        if not include_hidden:
            selected = (definition for definition in selected if not definition.hidden)
        if category is not None and category is not RuleCategory.ALL:
            selected = (
                definition
                for definition in selected
                if definition.category in (category, RuleCategory.ALL)
            )
        return sorted(selected, key=lambda definition: definition.name)


def default_registry() -> RuleRegistry:
    registry = RuleRegistry()
    for module in MODULES:
        policies = getattr(module, "FAILURE_POLICIES", {})
        for name, definition in module.DEFINITIONS.items():
            registry.register(definition, module.CHECKS[name], policies.get(name))
    logger.info("rule_registry_loaded", rules=len(registry))
    return registry
