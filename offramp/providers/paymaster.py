"""
ERC-4337 Paymaster Provider.

Sponsors user operations whose fee is settled in the token being sent
rather than the chain's native currency.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from .base import JsonRpcError, JsonRpcProvider
from ..config import Settings, settings as default_settings
from ..core.execution.userop import UserOperation


class PaymasterError(JsonRpcError):
    """Paymaster provider error."""
    pass


class PaymasterProvider(JsonRpcProvider):
    name = "paymaster"
    timeout_s = 20
    error_class = PaymasterError

    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        rpc_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        config = config or default_settings
        super().__init__(rpc_url if rpc_url is not None else config.erc4337_paymaster_url, transport=transport)
        self.rpc_method = config.erc4337_paymaster_rpc_method

    async def sponsor_user_operation(
        self,
        user_op: UserOperation,
        entry_point: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> str:
        if not await self.ready():
            raise PaymasterError("Paymaster provider is not configured")

        params: list[Any] = [user_op.to_rpc_dict(), entry_point]
        if context:
            params.append(context)
        result = await self._rpc_call(self.rpc_method, params)
        if isinstance(result, dict):
            paymaster_and_data = result.get("paymasterAndData") or result.get("paymaster_and_data")
            if paymaster_and_data:
                return paymaster_and_data
        if isinstance(result, str) and result.startswith("0x"):
            return result
        raise PaymasterError("Invalid paymaster response")

    @staticmethod
    def token_fee_context(token_address: str) -> Dict[str, Any]:
        """Sponsorship context asking the paymaster to charge the fee in ``token_address``."""
        return {"mode": "ERC20", "token": token_address}
