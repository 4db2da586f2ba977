"""
Transaction executor for the off-ramp transfer.

Moves the quoted token amount from the user's wallet to the settlement
provider's receive address:

1. Embedded wallet with abstraction active -> embedded gasless routine.
2. External wallet with abstraction active -> external gasless routine.
3. Either routine raising -> standard path, never an error by itself.
4. Standard path: gas price + estimated gas limit with a safety margin; if
   estimation fails the wallet/node chooses gas parameters instead.

The result records which path moved the funds. Balance checks belong to
the caller because the required fee buffer differs by path.
"""

import logging
from typing import Optional

from eth_utils import is_address

from ...config import Settings, settings as default_settings
from ...providers.rpc import ChainRpcClient, RpcError
from ..chains import Chain, Token, token_address
from ..errors import AbstractionError, ErrorContext, ExecutionError, GasEstimationError
from ..wallet import WalletHandle, WalletKind
from .models import ExecutionPath, ExecutionResult, GasEstimate, GaslessTransfer, PreparedTransaction
from .tx_builder import TransactionBuilder


logger = logging.getLogger(__name__)


class TransactionExecutor:
    """
    Executes the off-ramp token transfer for one wallet on one chain.

    The coordinator is consulted at call time, so a session that became
    active (or failed) after construction is honoured.
    """

    def __init__(
        self,
        wallet: WalletHandle,
        chain: Chain,
        token: Token,
        coordinator,
        config: Optional[Settings] = None,
        rpc: Optional[ChainRpcClient] = None,
    ):
        self.wallet = wallet
        self.chain = chain
        self.token = token
        self.coordinator = coordinator
        self.config = config or default_settings
        self.rpc = rpc or ChainRpcClient(wallet)

    async def execute(self, receive_address: str, amount: int) -> ExecutionResult:
        """
        Transfer ``amount`` (smallest units) to ``receive_address``.

        Raises:
            ConfigurationError: token is not deployed on the chain (before any RPC)
            ExecutionError: the standard-path submission was rejected
        """
        contract = token_address(self.token, self.chain)
        if not receive_address:
            raise ExecutionError("Settlement order has no receive address")
        if not is_address(receive_address):
            raise ExecutionError(f"Invalid receive address: {receive_address}")
        if amount <= 0:
            raise ExecutionError("Transfer amount must be greater than 0")

        abstraction_error: Optional[str] = None
        if self.coordinator.abstraction_active(self.wallet, self.chain):
            try:
                transfer = await self._execute_abstracted(contract, receive_address, amount)
            except Exception as exc:
                abstraction_error = str(exc) or exc.__class__.__name__
                logger.warning(
                    "Gas abstracted transfer failed, falling back to standard transaction: %s",
                    abstraction_error,
                )
            else:
                return ExecutionResult(
                    executed_via=ExecutionPath.ABSTRACTED,
                    transaction_hash=transfer.transaction_hash,
                    chain_id=self.chain.id,
                    amount=amount,
                    receive_address=receive_address,
                    user_op_hash=transfer.user_op_hash,
                    bundle_id=transfer.bundle_id,
                )

        result = await self.execute_standard(contract, receive_address, amount)
        result.abstraction_error = abstraction_error
        return result

    async def _execute_abstracted(self, contract: str, receive_address: str, amount: int) -> GaslessTransfer:
        client = self.coordinator.client_for(self.wallet, self.chain)
        if client is None:
            raise AbstractionError("No gasless client for the active session")

        kind = self.wallet.kind
        if kind == WalletKind.EMBEDDED:
            logger.info("Executing embedded gasless transfer on %s", self.chain.name)
            return await client.transfer(contract, receive_address, amount)
        elif kind == WalletKind.EXTERNAL:
            logger.info("Executing external gasless transfer on %s", self.chain.name)
            return await client.transfer(contract, receive_address, amount)
        elif kind == WalletKind.FEE_SUBSIDIZED:
            raise AbstractionError("Fee-subsidized wallets always use the standard path")
        raise AbstractionError(f"Unhandled wallet kind: {kind!r}")

    async def estimate_gas(self, tx: PreparedTransaction) -> GasEstimate:
        """Network gas price plus estimated limit scaled by the safety margin."""
        try:
            gas_price = await self.rpc.get_gas_price()
            gas_limit = await self.rpc.estimate_gas(tx.to_call())
        except RpcError as exc:
            raise GasEstimationError(
                f"Failed to estimate gas: {exc}",
                ErrorContext(chain_id=self.chain.id),
            ) from exc

        safe_limit = gas_limit * self.config.gas_limit_margin_percent // 100
        return GasEstimate(gas_limit=safe_limit, gas_price_wei=gas_price)

    async def execute_standard(self, contract: str, receive_address: str, amount: int) -> ExecutionResult:
        tx = TransactionBuilder.build_erc20_transfer(
            chain_id=self.chain.id,
            from_address=self.wallet.address,
            token_address=contract,
            to_address=receive_address,
            amount=amount,
        )

        try:
            tx.gas_estimate = await self.estimate_gas(tx)
        except GasEstimationError as exc:
            logger.warning("Gas estimation failed, trying without gas parameters: %s", exc)
            tx.gas_estimate = None

        try:
            tx_hash = await self.rpc.send_transaction(tx.to_dict())
        except RpcError as exc:
            raise ExecutionError(
                f"Transaction rejected: {exc}",
                ErrorContext(chain_id=self.chain.id, token=self.token.symbol),
            ) from exc

        logger.info("Standard transfer submitted on %s: %s", self.chain.name, tx_hash)
        return ExecutionResult(
            executed_via=ExecutionPath.STANDARD,
            transaction_hash=tx_hash,
            chain_id=self.chain.id,
            amount=amount,
            receive_address=receive_address,
            gas_estimate=tx.gas_estimate,
        )
