from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

import structlog
from web3 import AsyncWeb3
from web3.contract.async_contract import AsyncContract

from ..errors import ChainReadError

logger = structlog.get_logger(__name__)

INTERFACE_ERC721 = "80ac58cd"
INTERFACE_ERC1155 = "d9b67a26"


def _view(name: str, inputs: list[tuple[str, str]], output: str) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "view",
        "inputs": [{"name": arg, "type": kind} for arg, kind in inputs],
        "outputs": [{"name": "", "type": output}],
    }


# read-only surface used for token gating and contract validation
TOKEN_ABI = [
    _view("supportsInterface", [("interfaceId", "bytes4")], "bool"),
    _view("balanceOf", [("owner", "address")], "uint256"),
    _view("balanceOf", [("account", "address"), ("id", "uint256")], "uint256"),
    _view("ownerOf", [("tokenId", "uint256")], "address"),
    _view("allowance", [("owner", "address"), ("spender", "address")], "uint256"),
    _view("decimals", [], "uint8"),
]


class ChainReader:
    """Read-only contract calls through web3, one provider per chain id."""

    def __init__(
        self,
        rpc_urls: dict[str, str],
        *,
        timeout: float = 5.0,
        clients: Optional[dict[str, AsyncWeb3]] = None,
    ) -> None:
        self._rpc_urls = dict(rpc_urls)
        self._timeout = timeout
        self._clients: dict[str, AsyncWeb3] = dict(clients or {})
        self._owned: set[str] = set()

    def supports_chain(self, chain_id: str) -> bool:
        chain_id = str(chain_id)
        return chain_id in self._clients or chain_id in self._rpc_urls

    def _client(self, chain_id: str) -> AsyncWeb3:
        chain_id = str(chain_id)
        client = self._clients.get(chain_id)
        if client is not None:
            return client
        url = self._rpc_urls.get(chain_id)
        if not url:
            raise ChainReadError(f"No RPC endpoint configured for chain {chain_id}")
        client = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(url, request_kwargs={"timeout": self._timeout}))
        self._clients[chain_id] = client
        self._owned.add(chain_id)
        return client

    def _contract(self, chain_id: str, contract: str) -> AsyncContract:
        if not AsyncWeb3.is_address(contract or ""):
            raise ChainReadError(f"Invalid contract address: {contract}")
        client = self._client(chain_id)
        return client.eth.contract(address=AsyncWeb3.to_checksum_address(contract), abi=TOKEN_ABI)

    async def _read(self, chain_id: str, contract: str, build: Callable[[Any], Awaitable[Any]]) -> Any:
        functions = self._contract(chain_id, contract).functions
        try:
            return await build(functions)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("chain_call_failed", chain_id=chain_id, to=contract, error=str(exc))
            raise ChainReadError(str(exc)) from exc

    async def close(self) -> None:
        for chain_id in self._owned:
            await self._clients[chain_id].provider.disconnect()
        self._owned.clear()

    async def supports_interface(self, chain_id: str, contract: str, interface_id: str) -> bool:
        interface = bytes.fromhex(interface_id.removeprefix("0x"))
        try:
            supported = await self._read(chain_id, contract, lambda f: f.supportsInterface(interface).call())
        except ChainReadError:
            return False
        return bool(supported)

    async def allowance(self, chain_id: str, contract: str, owner: str, spender: str) -> int:
        def build(functions: Any) -> Awaitable[Any]:
            return functions.allowance(
                AsyncWeb3.to_checksum_address(owner), AsyncWeb3.to_checksum_address(spender)
            ).call()

        return int(await self._read(chain_id, contract, build))

    async def balance_of(self, chain_id: str, contract: str, owner: str) -> int:
        def build(functions: Any) -> Awaitable[Any]:
            return functions.balanceOf(AsyncWeb3.to_checksum_address(owner)).call()

        return int(await self._read(chain_id, contract, build))

    async def balance_of_1155(self, chain_id: str, contract: str, owner: str, token_id: int) -> int:
        def build(functions: Any) -> Awaitable[Any]:
            return functions.balanceOf(AsyncWeb3.to_checksum_address(owner), token_id).call()

        return int(await self._read(chain_id, contract, build))

    async def owner_of(self, chain_id: str, contract: str, token_id: int) -> str:
        return str(await self._read(chain_id, contract, lambda f: f.ownerOf(token_id).call()))

    async def decimals(self, chain_id: str, contract: str) -> int:
        return int(await self._read(chain_id, contract, lambda f: f.decimals().call()))
