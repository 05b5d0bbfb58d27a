from __future__ import annotations

import pytest

from channel_automod.errors import RuleArgumentError, RuleConfigurationError, RuleNotFoundError
from channel_automod.models import ActionType, GroupOperator, RuleGroup, RuleInstance
from channel_automod.rules.config import (
    cast_rule_sets_to_list,
    parse_cast_rule_sets,
    parse_rule_group,
    rule_group_to_dict,
    validate_rule_group,
    validate_token_contracts,
)
from channel_automod.rules.registry import default_registry
from tests.factories import TOKEN, make_group, make_rule


@pytest.fixture(scope="module")
def registry():
    return default_registry()


def test_parse_rule_group_builds_nested_tree() -> None:
    data = {
        "id": "root",
        "operator": "or",
        "children": [
            {"id": "a", "name": "userHasPowerBadge", "invert": True},
            {
                "id": "inner",
                "operator": "AND",
                "children": [{"id": "b", "name": "userFollowerCount", "args": {"min": 10}}],
            },
        ],
    }

    group = parse_rule_group(data)

    assert group.operator is GroupOperator.OR
    first, inner = group.children
    assert isinstance(first, RuleInstance) and first.inverted and first.parent_group_id == "root"
    assert isinstance(inner, RuleGroup) and inner.children[0].args == {"min": 10}
    assert rule_group_to_dict(group)["children"][1]["children"][0]["name"] == "userFollowerCount"


def test_parse_rule_group_rejects_unknown_operator() -> None:
    with pytest.raises(RuleConfigurationError):
        parse_rule_group({"operator": "XOR", "children": []})


def test_parse_rule_group_rejects_unnamed_rule() -> None:
    data = {"operator": "AND", "children": [{"operator": "OR", "children": [{"args": {"minFollowers": 10}}]}]}

    with pytest.raises(RuleConfigurationError):
        parse_rule_group(data)


def test_cast_rule_sets_keep_actions() -> None:
    data = [
        {
            "id": "spam",
            "rule": {"operator": "AND", "children": [{"id": "r", "name": "containsLinks"}]},
            "actions": [{"type": "cooldown", "args": {"duration_hours": 2}}, {"type": "hideQuietly"}],
        }
    ]

    rule_sets = parse_cast_rule_sets(data)

    assert [action.type for action in rule_sets[0].actions] == [ActionType.COOLDOWN, ActionType.HIDE_QUIETLY]
    assert cast_rule_sets_to_list(rule_sets)[0]["actions"][0] == {"type": "cooldown", "args": {"duration_hours": 2}}


def test_cast_rule_sets_reject_unknown_action() -> None:
    with pytest.raises(RuleConfigurationError):
        parse_cast_rule_sets([{"rule": {"operator": "AND", "children": []}, "actions": [{"type": "ban"}]}])


def test_validate_fills_defaults_and_coerces(registry) -> None:
    group = make_group(
        make_rule("requiresErc20", {"contractAddress": TOKEN, "minBalance": "2.5"}),
        make_rule("userProfileContainsText", {"searchText": "gm", "caseSensitive": "true"}),
    )

    validated = validate_rule_group(group, registry, event_type="user")

    erc20, profile = validated.children
    assert erc20.args == {"chainId": "1", "contractAddress": TOKEN, "minBalance": 2.5, "failureMode": "doNotTrigger"}
    assert profile.args == {"searchText": "gm", "caseSensitive": True}
    # input tree untouched
    assert group.children[0].args["minBalance"] == "2.5"


def test_validate_rejects_missing_required_argument(registry) -> None:
    group = make_group(make_rule("webhook", {}))

    with pytest.raises(RuleArgumentError) as excinfo:
        validate_rule_group(group, registry, event_type="user")

    assert excinfo.value.arg_name == "url"


@pytest.mark.parametrize(
    ("name", "args"),
    [
        ("webhook", {"url": "ftp://example.com"}),
        ("userFollowerCount", {"min": -1}),
        ("userFollowerCount", {"min": "many"}),
        ("requiresErc20", {"contractAddress": TOKEN, "chainId": "999"}),
        ("containsEmbeds", {"embedTypes": ["gifs"]}),
        ("userHasPowerBadge", {"extra": 1}),
    ],
)
def test_validate_rejects_bad_arguments(registry, name, args) -> None:
    event_type = "cast" if name == "containsEmbeds" else "user"

    with pytest.raises(RuleArgumentError):
        validate_rule_group(make_group(make_rule(name, args)), registry, event_type=event_type)


def test_validate_rejects_rule_outside_check_type(registry) -> None:
    group = make_group(make_rule("containsText", {"searchText": "x"}))

    with pytest.raises(RuleConfigurationError):
        validate_rule_group(group, registry, event_type="user")


def test_validate_rejects_inverting_non_invertable_rule(registry) -> None:
    group = make_group(make_rule("webhook", {"url": "https://example.com"}, inverted=True))

    with pytest.raises(RuleConfigurationError):
        validate_rule_group(group, registry, event_type="user")


def test_validate_enforces_allow_multiple(registry) -> None:
    allowed = make_group(
        make_rule("userProfileContainsText", {"searchText": "a"}),
        make_group(make_rule("userProfileContainsText", {"searchText": "b"})),
    )
    validate_rule_group(allowed, registry, event_type="user")

    repeated = make_group(make_rule("userHasPowerBadge"), make_group(make_rule("userHasPowerBadge")))
    with pytest.raises(RuleConfigurationError):
        validate_rule_group(repeated, registry, event_type="user")


def test_validate_rejects_unknown_rule(registry) -> None:
    with pytest.raises(RuleNotFoundError):
        validate_rule_group(make_group(make_rule("nope")), registry, event_type="user")


def test_validate_rejects_cycles(registry) -> None:
    group = make_group(make_rule("userHasPowerBadge"))
    group.children.append(group)

    with pytest.raises(RuleConfigurationError):
        validate_rule_group(group, registry, event_type="user")


class StubChain:
    def __init__(self, *, supports: bool) -> None:
        self.supports = supports

    async def supports_interface(self, chain_id, contract, interface_id):
        return self.supports


@pytest.mark.asyncio
async def test_validate_token_contracts_rejects_wrong_standard() -> None:
    group = make_group(make_rule("requiresErc721", {"chainId": "8453", "contractAddress": TOKEN}))

    await validate_token_contracts(group, StubChain(supports=True))
    with pytest.raises(RuleArgumentError):
        await validate_token_contracts(group, StubChain(supports=False))
