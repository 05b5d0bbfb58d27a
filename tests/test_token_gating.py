from __future__ import annotations

import httpx
import pytest
from web3 import AsyncWeb3
from web3.providers.async_base import AsyncBaseProvider

from channel_automod.adapters.chain import INTERFACE_ERC721, ChainReader
from channel_automod.checks.base import CheckServices
from channel_automod.checks.token_gating import (
    requires_erc20,
    requires_erc721,
    validate_erc20,
    validate_erc721,
)
from channel_automod.errors import ChainReadError
from channel_automod.rules.engine import RuleEngine
from channel_automod.rules.registry import default_registry
from tests.factories import ADDRESS, TOKEN, make_group, make_input, make_profile, make_rule

SELECTOR_SUPPORTS_INTERFACE = "01ffc9a7"
SELECTOR_BALANCE_OF = "70a08231"
SELECTOR_OWNER_OF = "6352211e"
SELECTOR_ALLOWANCE = "dd62ed3e"
SELECTOR_DECIMALS = "313ce567"


def word(value: int) -> str:
    return "0x" + format(value, "x").rjust(64, "0")


class FakeNode(AsyncBaseProvider):
    """Answers eth_call by selector; anything unknown reverts."""

    def __init__(self, answers: dict[str, str]) -> None:
        super().__init__()
        self.answers = answers
        self.calls: list[str] = []

    async def make_request(self, method, params):
        if method == "eth_chainId":
            return {"jsonrpc": "2.0", "id": 1, "result": "0x1"}
        if method != "eth_call":
            return {"jsonrpc": "2.0", "id": 1, "result": None}
        data = params[0]["data"]
        if isinstance(data, bytes):
            data = data.hex()
        data = data.removeprefix("0x").lower()
        self.calls.append(data)
        for prefix, result in self.answers.items():
            if data.startswith(prefix):
                return {"jsonrpc": "2.0", "id": 1, "result": result}
        return {"jsonrpc": "2.0", "id": 1, "error": {"code": 3, "message": "execution reverted", "data": "0x"}}

    async def is_connected(self, show_traceback: bool = False) -> bool:
        return True


def reader(node: FakeNode) -> ChainReader:
    return ChainReader({}, clients={"1": AsyncWeb3(node)})


def args_for(rule_name: str, chain: ChainReader, **rule_args):
    services = CheckServices(http=httpx.AsyncClient(), chain=chain)
    rule = make_rule(rule_name, {"chainId": "1", "contractAddress": TOKEN, **rule_args})
    return make_input(make_profile(verifications=[ADDRESS]), services=services).for_rule(rule)


@pytest.mark.asyncio
async def test_erc20_balance_scaled_by_decimals() -> None:
    node = FakeNode({SELECTOR_DECIMALS: word(18), SELECTOR_BALANCE_OF: word(2 * 10**18)})

    holds_two = await requires_erc20(args_for("requiresErc20", reader(node), minBalance=2))
    holds_three = await requires_erc20(args_for("requiresErc20", reader(node), minBalance=3))

    assert holds_two.result is True
    assert holds_three.result is False
    assert "0xcdcd...cdcd" in holds_three.message


@pytest.mark.asyncio
async def test_erc721_specific_token_checks_owner() -> None:
    node = FakeNode({SELECTOR_OWNER_OF: "0x" + ADDRESS[2:].rjust(64, "0")})

    result = await requires_erc721(args_for("requiresErc721", reader(node), tokenId="7"))

    assert result.result is True
    assert node.calls[0] == SELECTOR_OWNER_OF + format(7, "x").rjust(64, "0")


@pytest.mark.asyncio
async def test_erc721_collection_requires_positive_balance() -> None:
    node = FakeNode({SELECTOR_BALANCE_OF: word(0)})

    result = await requires_erc721(args_for("requiresErc721", reader(node)))

    assert result.result is False


@pytest.mark.asyncio
async def test_chain_revert_raises_chain_read_error() -> None:
    node = FakeNode({})

    with pytest.raises(ChainReadError):
        await requires_erc721(args_for("requiresErc721", reader(node)))


@pytest.mark.asyncio
async def test_chain_failure_follows_failure_mode_in_engine() -> None:
    chain = reader(FakeNode({}))
    services = CheckServices(http=httpx.AsyncClient(), chain=chain)
    engine = RuleEngine(default_registry())
    group = make_group(
        make_rule("requiresErc721", {"chainId": "1", "contractAddress": TOKEN, "failureMode": "trigger"})
    )

    result = await engine.evaluate(group, make_input(services=services))

    assert result.result is True
    assert result.outcomes[0].error == "error"
    assert result.reason == "Holds ERC-721 failed, set to trigger"


@pytest.mark.asyncio
async def test_unconfigured_chain_raises() -> None:
    chain = reader(FakeNode({}))

    with pytest.raises(ChainReadError):
        await chain.balance_of("8453", TOKEN, ADDRESS)


@pytest.mark.asyncio
async def test_contract_validators() -> None:
    erc20 = reader(FakeNode({SELECTOR_ALLOWANCE: word(0)}))
    not_erc20 = reader(FakeNode({}))
    erc721 = reader(FakeNode({SELECTOR_SUPPORTS_INTERFACE + INTERFACE_ERC721: word(1)}))

    assert await validate_erc20(erc20, "1", TOKEN) is True
    assert await validate_erc20(not_erc20, "1", TOKEN) is False
    assert await validate_erc721(erc721, "1", TOKEN) is True
    assert await validate_erc721(not_erc20, "1", TOKEN) is False
    # allow-listed deployments skip the allowance read
    assert await validate_erc721(not_erc20, "1", "0x8ce608ce2b5004397faef1556bfe33bdfbe4696d") is True


@pytest.mark.asyncio
async def test_invalid_contract_address_raises() -> None:
    chain = reader(FakeNode({}))

    with pytest.raises(ChainReadError):
        await chain.balance_of("1", "not-an-address", ADDRESS)
    assert await chain.supports_interface("1", "not-an-address", INTERFACE_ERC721) is False
