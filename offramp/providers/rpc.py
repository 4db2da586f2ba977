"""
Chain JSON-RPC access.

``ChainRpcClient`` works over any ``RpcTransport``: a plain HTTP node
endpoint for read-only lookups, or the connected wallet's provider handle
when the call has to be signed.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from .base import JsonRpcError, JsonRpcProvider
from ..core.execution.tx_builder import (
    decode_uint,
    erc20_balance_of_data,
    erc20_decimals_data,
)
from ..core.wallet import RpcTransport


class RpcError(JsonRpcError):
    """Chain node or wallet rejected an RPC call."""
    pass


class HttpRpcTransport(JsonRpcProvider):
    """JSON-RPC over HTTP to a public or keyed node."""

    name = "rpc"
    timeout_s = 20
    error_class = RpcError

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout_s: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(rpc_url, transport=transport)
        if timeout_s is not None:
            self.timeout_s = timeout_s

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        return await self._rpc_call(method, params or [])


def _parse_quantity(value: Any, method: str) -> int:
    if isinstance(value, int):
        return value
    if not isinstance(value, str) or not value:
        raise RpcError(f"{method} returned no quantity")
    try:
        return int(value, 16) if value.startswith("0x") else int(value)
    except ValueError as exc:
        raise RpcError(f"{method} returned an invalid quantity: {value}") from exc


class ChainRpcClient:
    """Typed helpers over a raw ``request(method, params)`` transport."""

    def __init__(self, transport: RpcTransport) -> None:
        self.transport = transport

    async def _call(self, method: str, params: List[Any]) -> Any:
        try:
            return await self.transport.request(method, params)
        except RpcError:
            raise
        except Exception as exc:
            raise RpcError(f"{method} failed: {exc}") from exc

    async def chain_id(self) -> int:
        return _parse_quantity(await self._call("eth_chainId", []), "eth_chainId")

    async def eth_call(self, to: str, data: str, block: str = "latest") -> str:
        result = await self._call("eth_call", [{"to": to, "data": data}, block])
        return result or "0x"

    async def get_native_balance(self, address: str) -> int:
        return _parse_quantity(await self._call("eth_getBalance", [address, "latest"]), "eth_getBalance")

    async def get_gas_price(self) -> int:
        return _parse_quantity(await self._call("eth_gasPrice", []), "eth_gasPrice")

    async def estimate_gas(self, call: Dict[str, Any]) -> int:
        return _parse_quantity(await self._call("eth_estimateGas", [call]), "eth_estimateGas")

    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        result = await self._call("eth_sendTransaction", [tx])
        if not isinstance(result, str) or not result.startswith("0x"):
            raise RpcError("eth_sendTransaction returned no transaction hash")
        return result

    async def token_balance(self, token_address: str, owner: str) -> int:
        return decode_uint(await self.eth_call(token_address, erc20_balance_of_data(owner)))

    async def token_decimals(self, token_address: str) -> Optional[int]:
        """``decimals()`` of the token; ``None`` when the contract returns nothing."""
        result = await self.eth_call(token_address, erc20_decimals_data())
        if not result or result == "0x":
            return None
        return decode_uint(result)
