from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog

from ..errors import RuleConfigurationError
from ..models import (
    CheckResult,
    EvaluationInput,
    EvaluationResult,
    EventType,
    GroupOperator,
    RuleDefinition,
    RuleGroup,
    RuleInstance,
    RuleNode,
    RuleOutcome,
)
from .registry import RuleRegistry

logger = structlog.get_logger(__name__)

EMPTY_GROUP_REASON = "No rules configured"


@dataclass(slots=True)
class _Decision:
    result: bool
    reason: str
    rule_name: Optional[str]


class RuleEngine:
    """Evaluates rule groups in sequence order with AND/OR short-circuiting.

    Check failures (timeouts, exceptions) are converted into results with the
    rule's failure policy, so an evaluation always ends in a definite boolean.
    Configuration errors (unknown rule, wrong check type, cycles) raise.
    """

    def __init__(self, registry: RuleRegistry, *, default_timeout: float = 5.0) -> None:
        self._registry = registry
        self._default_timeout = default_timeout

    async def evaluate(
        self,
        group: RuleGroup,
        event: EvaluationInput,
        *,
        event_type: Optional[EventType] = None,
    ) -> EvaluationResult:
        resolved_type = event_type or event.event_type
        outcomes: list[RuleOutcome] = []
        decision = await self._evaluate_group(group, event, resolved_type, outcomes, ancestors=())
        logger.info(
            "evaluation_complete",
            channel_id=event.channel.id,
            fid=event.user.fid,
            event_type=resolved_type,
            result=decision.result,
            rule=decision.rule_name,
            dispatched=len(outcomes),
        )
        return EvaluationResult(
            result=decision.result,
            reason=decision.reason,
            triggered_rule_name=decision.rule_name,
            outcomes=outcomes,
        )

    async def _evaluate_node(
        self,
        node: RuleNode,
        event: EvaluationInput,
        event_type: EventType,
        outcomes: list[RuleOutcome],
        ancestors: tuple[int, ...],
    ) -> _Decision:
        if isinstance(node, RuleGroup):
            return await self._evaluate_group(node, event, event_type, outcomes, ancestors)
        return await self._dispatch(node, event, event_type, outcomes)

    async def _evaluate_group(
        self,
        group: RuleGroup,
        event: EvaluationInput,
        event_type: EventType,
        outcomes: list[RuleOutcome],
        ancestors: tuple[int, ...],
    ) -> _Decision:
        if id(group) in ancestors:
            raise RuleConfigurationError(f"Rule group {group.id} contains itself")
        if not group.children:
            return _Decision(result=False, reason=EMPTY_GROUP_REASON, rule_name=None)

        path = (*ancestors, id(group))
        if group.operator is GroupOperator.AND:
            last: Optional[_Decision] = None
            for child in group.children:
                last = await self._evaluate_node(child, event, event_type, outcomes, path)
                if not last.result:
                    return last
            assert last is not None
            return last

        failures: list[_Decision] = []
        for child in group.children:
            decision = await self._evaluate_node(child, event, event_type, outcomes, path)
            if decision.result:
                return decision
            failures.append(decision)
        reasons = dict.fromkeys(failure.reason for failure in failures if failure.reason)
        return _Decision(result=False, reason=", ".join(reasons), rule_name=None)

    async def _dispatch(
        self,
        rule: RuleInstance,
        event: EvaluationInput,
        event_type: EventType,
        outcomes: list[RuleOutcome],
    ) -> _Decision:
        entry = self._registry.get(rule.rule_name)
        definition = entry.definition
        if not definition.applies_to(event_type):
            raise RuleConfigurationError(
                f"{definition.name} checks {definition.check_type.value}s, not {event_type} events"
            )

        timeout = definition.timeout_seconds or self._default_timeout
        error = None
        try:
            raw = await asyncio.wait_for(entry.check(event.for_rule(rule)), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "check_timeout",
                rule=rule.rule_name,
                rule_id=rule.id,
                channel_id=event.channel.id,
                timeout=timeout,
            )
            check_result = entry.failure_policy(rule, definition, timed_out=True, timeout_seconds=timeout)
            error = "timeout"
        except Exception as exc:  # pylint: disable=broad-except
            logger.error(
                "check_failed",
                rule=rule.rule_name,
                rule_id=rule.id,
                channel_id=event.channel.id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            check_result = entry.failure_policy(rule, definition, timed_out=False, timeout_seconds=timeout)
            error = "error"
        else:
            # malformed results raise, outside the failure policy
            check_result = self._coerce(raw, definition)

        result = check_result.result != rule.inverted
        outcomes.append(
            RuleOutcome(
                rule_id=rule.id,
                rule_name=rule.rule_name,
                raw_result=check_result.result,
                result=result,
                inverted=rule.inverted,
                message=check_result.message,
                error=error,
            )
        )
        logger.debug(
            "rule_evaluated",
            rule=rule.rule_name,
            rule_id=rule.id,
            raw_result=check_result.result,
            inverted=rule.inverted,
            result=result,
            message=check_result.message,
        )
        return _Decision(result=result, reason=check_result.message, rule_name=rule.rule_name)

    def _coerce(self, raw: object, definition: RuleDefinition) -> CheckResult:
        if isinstance(raw, CheckResult):
            return raw
        if isinstance(raw, bool):
            verb = "triggered" if raw else "did not trigger"
            return CheckResult(result=raw, message=f"{definition.friendly_name} rule {verb}")
        raise TypeError(f"{definition.name} returned {type(raw).__name__}, expected CheckResult")
