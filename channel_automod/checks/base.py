from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Protocol

import httpx

from ..models import ArgSpec, ArgType, CheckFunctionArgs, CheckResult, FailureMode, RuleDefinition, RuleInstance

if TYPE_CHECKING:
    from ..adapters.chain import ChainReader

CheckFunction = Callable[[CheckFunctionArgs], Awaitable[CheckResult]]


class FailurePolicy(Protocol):
    def __call__(
        self,
        rule: RuleInstance,
        definition: RuleDefinition,
        *,
        timed_out: bool,
        timeout_seconds: float,
    ) -> CheckResult:
        ...


@dataclass(slots=True)
class CheckServices:
    """Shared clients handed to every check through ``CheckFunctionArgs.services``."""

    http: httpx.AsyncClient
    chain: Optional["ChainReader"] = None
    webhook_secret: str = ""


FAILURE_MODE_ARG = ArgSpec(
    type=ArgType.SELECT,
    required=True,
    default=FailureMode.DO_NOT_TRIGGER.value,
    options=(
        (FailureMode.TRIGGER.value, "Trigger this rule"),
        (FailureMode.DO_NOT_TRIGGER.value, "Do not trigger this rule"),
    ),
    friendly_name="If the check fails or times out...",
)


def failure_mode(rule: RuleInstance) -> FailureMode:
    try:
        return FailureMode(rule.args.get("failureMode", FailureMode.DO_NOT_TRIGGER.value))
    except ValueError:
        return FailureMode.DO_NOT_TRIGGER


def default_failure_result(
    rule: RuleInstance,
    definition: RuleDefinition,
    *,
    timed_out: bool,
    timeout_seconds: float,
) -> CheckResult:
    trigger = failure_mode(rule) is FailureMode.TRIGGER
    name = definition.friendly_name
    if timed_out:
        message = (
            f"{name} timed out after {timeout_seconds:g}s, set to trigger"
            if trigger
            else f"{name} timed out after {timeout_seconds:g}s, set to not trigger"
        )
    else:
        message = f"{name} failed, set to trigger" if trigger else f"{name} failed, set to not trigger"
    return CheckResult(result=trigger, message=message)


def require_services(args: CheckFunctionArgs) -> CheckServices:
    if args.services is None:
        raise RuntimeError(f"{args.rule.rule_name} needs CheckServices")
    return args.services
