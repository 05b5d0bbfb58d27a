from __future__ import annotations

import pytest

from channel_automod.checks.base import default_failure_result
from channel_automod.checks.webhook import webhook_failure_result
from channel_automod.errors import RuleConfigurationError, RuleNotFoundError
from channel_automod.models import CheckResult, RuleCategory, RuleDefinition
from channel_automod.rules.registry import RuleRegistry, default_registry


async def _noop(args):
    return CheckResult(result=True)


def _definition(name: str, *, category: RuleCategory = RuleCategory.USER, hidden: bool = False) -> RuleDefinition:
    return RuleDefinition(
        name=name,
        friendly_name=name.title(),
        description="",
        category=category,
        check_type=category,
        hidden=hidden,
    )


def test_default_registry_contains_builtin_rules() -> None:
    registry = default_registry()

    for name in (
        "webhook",
        "requiresErc20",
        "requiresErc721",
        "requiresErc1155",
        "userFollowerCount",
        "containsText",
        "alwaysInclude",
    ):
        assert name in registry

    assert registry.get_failure_policy("webhook") is webhook_failure_result
    assert registry.get_failure_policy("containsText") is default_failure_result


def test_get_definition_unknown_name_raises() -> None:
    registry = default_registry()

    with pytest.raises(RuleNotFoundError) as excinfo:
        registry.get_definition("doesNotExist")

    assert excinfo.value.name == "doesNotExist"
    assert isinstance(excinfo.value, RuleConfigurationError)


def test_register_rejects_duplicates() -> None:
    registry = RuleRegistry()
    registry.register(_definition("one"), _noop)

    with pytest.raises(RuleConfigurationError):
        registry.register(_definition("one"), _noop)


def test_definitions_filter_by_category_and_hidden() -> None:
    registry = RuleRegistry()
    registry.register(_definition("zeta"), _noop)
    registry.register(_definition("alpha", category=RuleCategory.CAST), _noop)
    registry.register(_definition("both", category=RuleCategory.ALL), _noop)
    registry.register(_definition("secret", hidden=True), _noop)

    assert [d.name for d in registry.definitions()] == ["alpha", "both", "zeta"]
    assert [d.name for d in registry.definitions(RuleCategory.USER)] == ["both", "zeta"]
    assert [d.name for d in registry.definitions(RuleCategory.CAST)] == ["alpha", "both"]
    assert "secret" in [d.name for d in registry.definitions(include_hidden=True)]
