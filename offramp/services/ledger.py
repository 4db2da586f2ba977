"""Token balance reads for the active wallet."""

from __future__ import annotations

import logging

from ..core.chains import Chain, Token, token_address
from ..core.errors import ErrorContext, OffRampError
from ..core.models import TokenBalance
from ..core.wallet import RpcTransport
from ..providers.rpc import ChainRpcClient, RpcError

logger = logging.getLogger(__name__)


class BalanceUnavailableError(OffRampError):
    """Balance could not be read from the chain."""


class TokenLedgerReader:
    """Reads ERC-20 and native balances through a chain RPC transport."""

    def __init__(self, transport: RpcTransport) -> None:
        self.rpc = ChainRpcClient(transport)

    async def balance_of(self, owner: str, chain: Chain, token: Token) -> TokenBalance:
        """Token balance of ``owner``.

        An unsupported token/chain pairing raises ConfigurationError before
        any RPC call is made.
        """
        contract = token_address(token, chain)
        try:
            decimals = await self.rpc.token_decimals(contract)
            raw = await self.rpc.token_balance(contract, owner)
        except RpcError as exc:
            logger.error("Failed to fetch %s balance on %s: %s", token.symbol, chain.name, exc)
            raise BalanceUnavailableError(
                "Failed to load balance",
                ErrorContext(chain_id=chain.id, token=token.symbol),
            ) from exc
        if decimals is None:
            decimals = token.decimals_on(chain.id)
        return TokenBalance(symbol=token.symbol, raw=raw, decimals=decimals)

    async def native_balance(self, owner: str, chain: Chain) -> TokenBalance:
        try:
            raw = await self.rpc.get_native_balance(owner)
        except RpcError as exc:
            raise BalanceUnavailableError(
                f"Failed to load {chain.native_symbol} balance",
                ErrorContext(chain_id=chain.id),
            ) from exc
        return TokenBalance(symbol=chain.native_symbol, raw=raw, decimals=chain.native_decimals)
