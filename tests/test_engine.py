from __future__ import annotations

import asyncio

import pytest

from channel_automod.checks.base import FAILURE_MODE_ARG
from channel_automod.errors import RuleConfigurationError, RuleNotFoundError
from channel_automod.models import CheckResult, GroupOperator, RuleCategory, RuleDefinition
from channel_automod.rules.engine import RuleEngine
from channel_automod.rules.registry import RuleRegistry
from tests.factories import make_cast, make_group, make_input, make_rule


class RecordingChecks:
    """Registers named checks with fixed answers and records dispatch order."""

    def __init__(self) -> None:
        self.registry = RuleRegistry()
        self.calls: list[str] = []

    def add(self, name: str, result, *, check_type: RuleCategory = RuleCategory.USER, timeout=None, invertable=True):
        async def check(args):
            self.calls.append(name)
            if isinstance(result, BaseException):
                raise result
            if result == "hang":
                await asyncio.sleep(10)
            return result

        definition = RuleDefinition(
            name=name,
            friendly_name=name.title(),
            description="",
            category=check_type,
            check_type=check_type,
            invertable=invertable,
            timeout_seconds=timeout,
            args={"failureMode": FAILURE_MODE_ARG},
        )
        self.registry.register(definition, check)
        return self


@pytest.mark.asyncio
async def test_and_short_circuits_on_first_false() -> None:
    checks = (
        RecordingChecks()
        .add("first", CheckResult(True, "first passed"))
        .add("second", CheckResult(False, "second failed"))
        .add("third", CheckResult(True, "third passed"))
    )
    engine = RuleEngine(checks.registry)
    group = make_group(make_rule("first"), make_rule("second"), make_rule("third"))

    result = await engine.evaluate(group, make_input())

    assert result.result is False
    assert result.reason == "second failed"
    assert result.triggered_rule_name == "second"
    assert checks.calls == ["first", "second"]


@pytest.mark.asyncio
async def test_and_all_pass_uses_last_message() -> None:
    checks = RecordingChecks().add("first", CheckResult(True, "one")).add("second", CheckResult(True, "two"))
    engine = RuleEngine(checks.registry)

    result = await engine.evaluate(make_group(make_rule("first"), make_rule("second")), make_input())

    assert result.result is True
    assert result.reason == "two"
    assert result.triggered_rule_name == "second"


@pytest.mark.asyncio
async def test_or_short_circuits_on_first_true() -> None:
    checks = (
        RecordingChecks()
        .add("first", CheckResult(False, "nope"))
        .add("second", CheckResult(True, "second passed"))
        .add("third", CheckResult(True, "never"))
    )
    engine = RuleEngine(checks.registry)
    group = make_group(make_rule("first"), make_rule("second"), make_rule("third"), operator=GroupOperator.OR)

    result = await engine.evaluate(group, make_input())

    assert result.result is True
    assert result.reason == "second passed"
    assert checks.calls == ["first", "second"]


@pytest.mark.asyncio
async def test_or_all_fail_joins_distinct_reasons() -> None:
    checks = (
        RecordingChecks()
        .add("first", CheckResult(False, "too new"))
        .add("second", CheckResult(False, "no badge"))
        .add("third", CheckResult(False, "too new"))
    )
    engine = RuleEngine(checks.registry)
    group = make_group(make_rule("first"), make_rule("second"), make_rule("third"), operator=GroupOperator.OR)

    result = await engine.evaluate(group, make_input())

    assert result.result is False
    assert result.reason == "too new, no badge"
    assert result.triggered_rule_name is None
    assert len(result.outcomes) == 3


@pytest.mark.asyncio
async def test_inversion_flips_result_and_keeps_raw() -> None:
    checks = RecordingChecks().add("badge", CheckResult(True, "User has a power badge"))
    engine = RuleEngine(checks.registry)
    rule = make_rule("badge", inverted=True)

    result = await engine.evaluate(make_group(rule), make_input())

    assert result.result is False
    assert result.reason == "User has a power badge"
    outcome = result.outcomes[0]
    assert outcome.raw_result is True and outcome.result is False and outcome.inverted is True


@pytest.mark.asyncio
async def test_double_inversion_restores_original() -> None:
    checks = RecordingChecks().add("badge", CheckResult(False, "no badge"))
    engine = RuleEngine(checks.registry)
    rule = make_rule("badge")

    plain = await engine.evaluate(make_group(rule), make_input())
    twice = await engine.evaluate(make_group(rule.invert().invert()), make_input())

    assert plain.result == twice.result is False
    assert rule.invert().inverted is True


@pytest.mark.asyncio
async def test_nested_groups_are_evaluated_in_order() -> None:
    checks = (
        RecordingChecks()
        .add("a", CheckResult(False, "a failed"))
        .add("b", CheckResult(True, "b passed"))
        .add("c", CheckResult(True, "c passed"))
    )
    engine = RuleEngine(checks.registry)
    group = make_group(
        make_group(make_rule("a"), make_rule("b"), operator=GroupOperator.OR),
        make_rule("c"),
    )

    result = await engine.evaluate(group, make_input())

    assert result.result is True
    assert checks.calls == ["a", "b", "c"]
    assert result.reason == "c passed"


@pytest.mark.asyncio
async def test_empty_group_does_not_trigger() -> None:
    engine = RuleEngine(RecordingChecks().registry)

    result = await engine.evaluate(make_group(), make_input())

    assert result.result is False
    assert result.reason == "No rules configured"


@pytest.mark.asyncio
async def test_timeout_uses_failure_policy() -> None:
    checks = RecordingChecks().add("slow", "hang", timeout=0.05)
    engine = RuleEngine(checks.registry)
    group = make_group(make_rule("slow", {"failureMode": "trigger"}))

    result = await engine.evaluate(group, make_input())

    assert result.result is True
    assert result.reason == "Slow timed out after 0.05s, set to trigger"
    assert result.outcomes[0].error == "timeout"


@pytest.mark.asyncio
async def test_exception_uses_failure_policy_and_continues_group() -> None:
    checks = (
        RecordingChecks()
        .add("broken", RuntimeError("boom"))
        .add("after", CheckResult(True, "after passed"))
    )
    engine = RuleEngine(checks.registry)
    group = make_group(make_rule("broken"), make_rule("after"), operator=GroupOperator.OR)

    result = await engine.evaluate(group, make_input())

    assert result.result is True
    assert result.outcomes[0].error == "error"
    assert result.outcomes[0].message == "Broken failed, set to not trigger"
    assert checks.calls == ["broken", "after"]


@pytest.mark.asyncio
async def test_engine_default_timeout_applies() -> None:
    checks = RecordingChecks().add("slow", "hang")
    engine = RuleEngine(checks.registry, default_timeout=0.05)

    result = await engine.evaluate(make_group(make_rule("slow")), make_input())

    assert result.result is False
    assert result.outcomes[0].error == "timeout"


@pytest.mark.asyncio
async def test_bool_results_get_default_messages() -> None:
    checks = RecordingChecks().add("plain", True)
    engine = RuleEngine(checks.registry)

    result = await engine.evaluate(make_group(make_rule("plain")), make_input())

    assert result.result is True
    assert result.reason == "Plain rule triggered"


@pytest.mark.asyncio
async def test_long_messages_are_truncated() -> None:
    checks = RecordingChecks().add("chatty", CheckResult(True, "x" * 200))
    engine = RuleEngine(checks.registry)

    result = await engine.evaluate(make_group(make_rule("chatty")), make_input())

    assert len(result.reason) == 75


@pytest.mark.asyncio
async def test_rule_outside_check_type_is_not_dispatched() -> None:
    checks = RecordingChecks().add("castOnly", CheckResult(True), check_type=RuleCategory.CAST)
    engine = RuleEngine(checks.registry)

    with pytest.raises(RuleConfigurationError):
        await engine.evaluate(make_group(make_rule("castOnly")), make_input())
    assert checks.calls == []

    result = await engine.evaluate(make_group(make_rule("castOnly")), make_input(cast=make_cast()))
    assert result.result is True


@pytest.mark.asyncio
async def test_unknown_rule_raises() -> None:
    engine = RuleEngine(RecordingChecks().registry)

    with pytest.raises(RuleNotFoundError):
        await engine.evaluate(make_group(make_rule("missing")), make_input())


@pytest.mark.asyncio
async def test_cycle_raises() -> None:
    checks = RecordingChecks().add("first", CheckResult(True))
    engine = RuleEngine(checks.registry)
    group = make_group(make_rule("first"))
    group.children.append(group)

    with pytest.raises(RuleConfigurationError):
        await engine.evaluate(group, make_input())


@pytest.mark.asyncio
async def test_malformed_check_result_raises() -> None:
    checks = RecordingChecks().add("broken", 42)
    engine = RuleEngine(checks.registry)

    with pytest.raises(TypeError):
        await engine.evaluate(make_group(make_rule("broken")), make_input())
