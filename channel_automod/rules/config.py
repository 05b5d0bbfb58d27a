"""Parsing and validation of channel rule configuration.

Configuration errors (unknown rules, malformed arguments, rules used outside
their check type, cycles) are rejected here, before anything is evaluated.
"""
from __future__ import annotations

import re
from collections import Counter
from typing import Any, Iterator, Optional
from uuid import uuid4

import structlog

from ..adapters.chain import ChainReader
from ..checks.token_gating import CONTRACT_VALIDATORS
from ..errors import RuleArgumentError, RuleConfigurationError
from ..models import (
    ActionType,
    ArgSpec,
    ArgType,
    CastRuleSet,
    EventType,
    GroupOperator,
    RuleAction,
    RuleDefinition,
    RuleGroup,
    RuleInstance,
    RuleNode,
)
from .registry import RuleRegistry

logger = structlog.get_logger(__name__)


def parse_rule_group(data: dict[str, Any], parent_group_id: Optional[str] = None) -> RuleGroup:
    try:
        operator = GroupOperator(str(data.get("operator", "AND")).upper())
    except ValueError as exc:
        raise RuleConfigurationError(f"Unknown operator: {data.get('operator')}") from exc
    group = RuleGroup(id=str(data.get("id") or uuid4()), operator=operator, parent_group_id=parent_group_id)
    for child in data.get("children", []):
        if "operator" in child:
            group.children.append(parse_rule_group(child, group.id))
            continue
        if not child.get("name"):
            raise RuleConfigurationError(f"Rule without a name in group {group.id}")
        group.children.append(
            RuleInstance(
                id=str(child.get("id") or uuid4()),
                rule_name=str(child["name"]),
                args=dict(child.get("args") or {}),
                inverted=bool(child.get("invert", False)),
                parent_group_id=group.id,
            )
        )
    return group


def rule_group_to_dict(group: RuleGroup) -> dict[str, Any]:
    children: list[dict[str, Any]] = []
    for child in group.children:
        if isinstance(child, RuleGroup):
            children.append(rule_group_to_dict(child))
        else:
            children.append(
                {"id": child.id, "name": child.rule_name, "args": dict(child.args), "invert": child.inverted}
            )
    return {"id": group.id, "operator": group.operator.value, "children": children}


def parse_cast_rule_sets(data: list[dict[str, Any]]) -> list[CastRuleSet]:
    rule_sets = []
    for item in data:
        try:
            actions = [
                RuleAction(type=ActionType(action["type"]), args=dict(action.get("args") or {}))
                for action in item.get("actions", [])
            ]
        except ValueError as exc:
            raise RuleConfigurationError(str(exc)) from exc
        rule_sets.append(
            CastRuleSet(id=str(item.get("id") or uuid4()), rule=parse_rule_group(item["rule"]), actions=actions)
        )
    return rule_sets


def cast_rule_sets_to_list(rule_sets: list[CastRuleSet]) -> list[dict[str, Any]]:
    return [
        {
            "id": rule_set.id,
            "rule": rule_group_to_dict(rule_set.rule),
            "actions": [{"type": action.type.value, "args": dict(action.args)} for action in rule_set.actions],
        }
        for rule_set in rule_sets
    ]


def iter_rules(group: RuleGroup) -> Iterator[RuleInstance]:
    for child in group.children:
        if isinstance(child, RuleGroup):
            yield from iter_rules(child)
        else:
            yield child


def normalize_args(definition: RuleDefinition, args: dict[str, Any]) -> dict[str, Any]:
    unknown = set(args) - set(definition.args)
    if unknown:
        name = sorted(unknown)[0]
        raise RuleArgumentError(definition.name, name, "unknown argument")

    normalized: dict[str, Any] = {}
    for name, spec in definition.args.items():
        value = args.get(name)
        if value in (None, "", []):
            if spec.default is not None:
                normalized[name] = spec.default
            elif spec.required:
                raise RuleArgumentError(definition.name, name, "is required")
            continue
        normalized[name] = _coerce(definition.name, name, spec, value)
    return normalized


def _coerce(rule_name: str, name: str, spec: ArgSpec, value: Any) -> Any:
    if spec.type is ArgType.STRING:
        value = str(value)
        if spec.pattern and not re.search(spec.pattern, value):
            raise RuleArgumentError(rule_name, name, f"does not match {spec.pattern}")
        return value
    if spec.type is ArgType.NUMBER:
        if isinstance(value, bool):
            raise RuleArgumentError(rule_name, name, "must be a number")
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise RuleArgumentError(rule_name, name, "must be a number") from None
        if spec.minimum is not None and number < spec.minimum:
            raise RuleArgumentError(rule_name, name, f"must be at least {spec.minimum:g}")
        if spec.maximum is not None and number > spec.maximum:
            raise RuleArgumentError(rule_name, name, f"must be at most {spec.maximum:g}")
        return int(number) if number.is_integer() else number
    if spec.type is ArgType.BOOLEAN:
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "on", "yes"}
        return bool(value)
    if spec.type is ArgType.SELECT:
        value = str(value)
        if value not in spec.option_values():
            raise RuleArgumentError(rule_name, name, f"must be one of {sorted(spec.option_values())}")
        return value
    values = [str(item) for item in (value if isinstance(value, (list, tuple)) else [value])]
    invalid = [item for item in values if item not in spec.option_values()]
    if invalid:
        raise RuleArgumentError(rule_name, name, f"invalid options {invalid}")
    return values


def validate_rule_group(group: RuleGroup, registry: RuleRegistry, *, event_type: EventType) -> RuleGroup:
    """Check a rule group and return a copy with normalized arguments."""
    counts: Counter[str] = Counter()
    validated = _validate_node(group, registry, event_type, counts, ancestors=())
    for name, count in counts.items():
        if count > 1 and not registry.get_definition(name).allow_multiple:
            raise RuleConfigurationError(f"{name} can only be used once")
    return validated  # type: ignore[return-value]


def _validate_node(
    node: RuleNode,
    registry: RuleRegistry,
    event_type: EventType,
    counts: Counter[str],
    *,
    ancestors: tuple[int, ...],
) -> RuleNode:
    if isinstance(node, RuleGroup):
        if id(node) in ancestors:
            raise RuleConfigurationError(f"Rule group {node.id} contains itself")
        copy = RuleGroup(id=node.id, operator=node.operator, parent_group_id=node.parent_group_id)
        for child in node.children:
            copy.children.append(
                _validate_node(child, registry, event_type, counts, ancestors=(*ancestors, id(node)))
            )
        return copy

    definition = registry.get_definition(node.rule_name)
    if not definition.applies_to(event_type):
        raise RuleConfigurationError(
            f"{definition.name} checks {definition.check_type.value}s and cannot run on {event_type} events"
        )
    if node.inverted and not definition.invertable:
        raise RuleConfigurationError(f"{definition.name} cannot be inverted")
    counts[definition.name] += 1
    return RuleInstance(
        id=node.id,
        rule_name=node.rule_name,
        args=normalize_args(definition, node.args),
        inverted=node.inverted,
        parent_group_id=node.parent_group_id,
    )


async def validate_token_contracts(group: RuleGroup, chain: ChainReader) -> None:
    """Reject token-gating rules whose contract does not look like the declared standard."""
    for rule in iter_rules(group):
        validator = CONTRACT_VALIDATORS.get(rule.rule_name)
        if validator is None:
            continue
        chain_id = str(rule.args.get("chainId"))
        contract = str(rule.args.get("contractAddress"))
        if not await validator(chain, chain_id, contract):
            logger.warning("token_contract_rejected", rule=rule.rule_name, chain_id=chain_id, contract=contract)
            raise RuleArgumentError(rule.rule_name, "contractAddress", f"{contract} is not a valid token on {chain_id}")
