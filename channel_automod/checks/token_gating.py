from __future__ import annotations

from dataclasses import replace
from decimal import Decimal, InvalidOperation

import structlog

from ..adapters.chain import INTERFACE_ERC721, INTERFACE_ERC1155, ChainReader
from ..errors import ChainReadError
from ..models import ArgSpec, ArgType, CheckFunctionArgs, CheckResult, RuleCategory, RuleDefinition
from .base import FAILURE_MODE_ARG, CheckFunction, require_services

logger = structlog.get_logger(__name__)

CHAIN_OPTIONS = (
    ("1", "Ethereum"),
    ("10", "Optimism"),
    ("8453", "Base"),
    ("42161", "Arbitrum"),
    ("7777777", "Zora"),
)
CHAIN_NAMES = dict(CHAIN_OPTIONS)

# tokens that revert on allowance() but are ERC-20s
ALWAYS_ALLOW_ERC20 = {"0xa8a30e0dafca4156f28d96cca5671a0eeca5e407"}
# ERC-721A deployment that does not report the 721 interface
ALWAYS_ALLOW_ERC721 = {"0x8ce608ce2b5004397faef1556bfe33bdfbe4696d"}
SENTINEL_ADDRESS = "0x704CF202792341d79A9Fd6DD97046aa7eF3F4319"


def short_address(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}"


def _chain(args: CheckFunctionArgs) -> ChainReader:
    services = require_services(args)
    if services.chain is None:
        raise ChainReadError("No chain reader configured")
    return services.chain


def _token_id(value: object) -> int | None:
    if value in (None, ""):
        return None
    return int(str(value))


async def requires_erc20(args: CheckFunctionArgs) -> CheckResult:
    chain = _chain(args)
    chain_id = str(args.rule.args["chainId"])
    contract = args.rule.args["contractAddress"]
    try:
        min_balance = Decimal(str(args.rule.args.get("minBalance") or 0))
    except InvalidOperation:
        min_balance = Decimal(0)

    decimals = await chain.decimals(chain_id, contract)
    threshold = max(int(min_balance * (Decimal(10) ** decimals)), 1)
    label = f"{min_balance.normalize():f} of {short_address(contract)} on {CHAIN_NAMES.get(chain_id, chain_id)}"

    total = 0
    for address in args.user.addresses():
        total += await chain.balance_of(chain_id, contract, address)
        if total >= threshold:
            return CheckResult(result=True, message=f"User holds at least {label}")
    return CheckResult(result=False, message=f"User does not hold {label}")


async def requires_erc721(args: CheckFunctionArgs) -> CheckResult:
    chain = _chain(args)
    chain_id = str(args.rule.args["chainId"])
    contract = args.rule.args["contractAddress"]
    token_id = _token_id(args.rule.args.get("tokenId"))
    addresses = args.user.addresses()
    label = short_address(contract) if token_id is None else f"#{token_id} of {short_address(contract)}"

    if token_id is not None:
        owner = (await chain.owner_of(chain_id, contract, token_id)).lower()
        held = owner in addresses
    else:
        held = False
        for address in addresses:
            if await chain.balance_of(chain_id, contract, address) > 0:
                held = True
                break

    if held:
        return CheckResult(result=True, message=f"User holds {label}")
    return CheckResult(result=False, message=f"User does not hold {label}")


async def requires_erc1155(args: CheckFunctionArgs) -> CheckResult:
    chain = _chain(args)
    chain_id = str(args.rule.args["chainId"])
    contract = args.rule.args["contractAddress"]
    token_id = _token_id(args.rule.args.get("tokenId")) or 0
    label = f"#{token_id} of {short_address(contract)}"

    for address in args.user.addresses():
        if await chain.balance_of_1155(chain_id, contract, address, token_id) > 0:
            return CheckResult(result=True, message=f"User holds {label}")
    return CheckResult(result=False, message=f"User does not hold {label}")


async def validate_erc20(chain: ChainReader, chain_id: str, contract: str) -> bool:
    if contract.lower() in ALWAYS_ALLOW_ERC20:
        return True
    try:
        await chain.allowance(chain_id, contract, SENTINEL_ADDRESS, SENTINEL_ADDRESS)
    except ChainReadError:
        return False
    return True


async def validate_erc721(chain: ChainReader, chain_id: str, contract: str) -> bool:
    if contract.lower() in ALWAYS_ALLOW_ERC721:
        return True
    return await chain.supports_interface(chain_id, contract, INTERFACE_ERC721)


async def validate_erc1155(chain: ChainReader, chain_id: str, contract: str) -> bool:
    return await chain.supports_interface(chain_id, contract, INTERFACE_ERC1155)


CONTRACT_VALIDATORS = {
    "requiresErc20": validate_erc20,
    "requiresErc721": validate_erc721,
    "requiresErc1155": validate_erc1155,
}

_CHAIN_ARG = ArgSpec(
    type=ArgType.SELECT,
    required=True,
    default="1",
    options=CHAIN_OPTIONS,
    friendly_name="Chain",
)
_CONTRACT_ARG = ArgSpec(
    type=ArgType.STRING,
    required=True,
    pattern=r"^0x[0-9a-fA-F]{40}$",
    friendly_name="Contract Address",
)
_OPTIONAL_FAILURE_MODE = replace(FAILURE_MODE_ARG, required=False)

DEFINITIONS: dict[str, RuleDefinition] = {
    "requiresErc20": RuleDefinition(
        name="requiresErc20",
        friendly_name="Holds ERC-20",
        description="Require the user to hold a minimum balance of an ERC-20 token.",
        category=RuleCategory.USER,
        check_type=RuleCategory.USER,
        invertable=True,
        allow_multiple=True,
        args={
            "chainId": _CHAIN_ARG,
            "contractAddress": _CONTRACT_ARG,
            "minBalance": ArgSpec(type=ArgType.NUMBER, default=1, minimum=0, friendly_name="Minimum Balance"),
            "failureMode": _OPTIONAL_FAILURE_MODE,
        },
    ),
    "requiresErc721": RuleDefinition(
        name="requiresErc721",
        friendly_name="Holds ERC-721",
        description="Require the user to hold an NFT from a collection, or a specific token.",
        category=RuleCategory.USER,
        check_type=RuleCategory.USER,
        invertable=True,
        allow_multiple=True,
        args={
            "chainId": _CHAIN_ARG,
            "contractAddress": _CONTRACT_ARG,
            "tokenId": ArgSpec(type=ArgType.STRING, pattern=r"^\d+$", friendly_name="Token ID (optional)"),
            "failureMode": _OPTIONAL_FAILURE_MODE,
        },
    ),
    "requiresErc1155": RuleDefinition(
        name="requiresErc1155",
        friendly_name="Holds ERC-1155",
        description="Require the user to hold a specific ERC-1155 token.",
        category=RuleCategory.USER,
        check_type=RuleCategory.USER,
        invertable=True,
        allow_multiple=True,
        args={
            "chainId": _CHAIN_ARG,
            "contractAddress": _CONTRACT_ARG,
            "tokenId": ArgSpec(type=ArgType.STRING, required=True, pattern=r"^\d+$", friendly_name="Token ID"),
            "failureMode": _OPTIONAL_FAILURE_MODE,
        },
    ),
}

CHECKS: dict[str, CheckFunction] = {
    "requiresErc20": requires_erc20,
    "requiresErc721": requires_erc721,
    "requiresErc1155": requires_erc1155,
}
