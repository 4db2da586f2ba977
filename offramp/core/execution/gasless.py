"""
Fee-abstracted ("gasless") token transfers.

Two clients, one per wallet kind that can use abstraction:

- Embedded wallets: the service builds an ERC-4337 UserOperation for the
  wallet's delegated account, has a paymaster sponsor it against the token
  being sent, asks the wallet to sign the op hash and hands it to a bundler.
- External wallets: the wallet builds and submits the batch itself through
  EIP-5792 ``wallet_sendCalls`` with a paymaster service capability.

Every failure before the provider accepts the transfer raises
``AbstractionError`` so the executor can fall back to the standard path.
Once a transfer has been accepted it is never reported as failed unless
the chain says it reverted, otherwise a fallback could pay twice.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ...config import Settings
from ...providers.bundler import BundlerProvider
from ...providers.paymaster import PaymasterProvider
from ...providers.rpc import ChainRpcClient
from ..errors import AbstractionError, ErrorContext
from ..wallet import WalletHandle
from .models import GaslessTransfer
from .tx_builder import decode_uint, erc20_transfer_data
from .userop import (
    DUMMY_SIGNATURE,
    UserOperation,
    build_entrypoint_get_nonce_call,
    build_execute_call_data,
)


logger = logging.getLogger(__name__)

# EIP-5792 v2 numeric status codes
CALLS_PENDING = 100
CALLS_CONFIRMED = 200
CALLS_OFFCHAIN_FAILURE = 400
CALLS_REVERTED = 500


class GaslessClient(ABC):
    """A wallet+chain pairing that can move tokens without native gas."""

    def __init__(self, wallet: WalletHandle, chain_id: int) -> None:
        self.wallet = wallet
        self.chain_id = chain_id

    @abstractmethod
    async def transfer(self, token_address: str, to_address: str, amount: int) -> GaslessTransfer:
        ...

    def _error(self, message: str, **details: Any) -> AbstractionError:
        return AbstractionError(message, ErrorContext(chain_id=self.chain_id, details=details))


class EmbeddedGaslessClient(GaslessClient):

    def __init__(
        self,
        wallet: WalletHandle,
        chain_id: int,
        *,
        bundler: BundlerProvider,
        paymaster: PaymasterProvider,
        rpc: ChainRpcClient,
        config: Settings,
    ) -> None:
        super().__init__(wallet, chain_id)
        self.bundler = bundler
        self.paymaster = paymaster
        self.rpc = rpc
        self.entry_point = config.erc4337_entrypoint_address
        self.execute_signature = config.erc4337_account_execute_signature
        self.execute_selector = config.erc4337_account_execute_selector or None
        self.receipt_attempts = config.userop_receipt_attempts
        self.receipt_interval = config.userop_receipt_interval_seconds

    @property
    def sender(self) -> str:
        return self.wallet.address

    async def _build_user_operation(self, token_address: str, to_address: str, amount: int) -> UserOperation:
        call_data = build_execute_call_data(
            token_address,
            0,
            erc20_transfer_data(to_address, amount),
            signature=self.execute_signature,
            selector_override=self.execute_selector,
        )
        nonce = decode_uint(
            await self.rpc.eth_call(self.entry_point, build_entrypoint_get_nonce_call(self.sender))
        )
        gas_price = await self.rpc.get_gas_price()
        draft = UserOperation(
            sender=self.sender,
            nonce=nonce,
            init_code="0x",
            call_data=call_data,
            call_gas_limit=0,
            verification_gas_limit=0,
            pre_verification_gas=0,
            max_fee_per_gas=gas_price,
            max_priority_fee_per_gas=gas_price,
            signature=DUMMY_SIGNATURE,
        )
        estimate = await self.bundler.estimate_user_operation_gas(draft, self.entry_point)
        return draft.with_gas(estimate)

    async def transfer(self, token_address: str, to_address: str, amount: int) -> GaslessTransfer:
        try:
            user_op = await self._build_user_operation(token_address, to_address, amount)
            user_op.paymaster_and_data = await self.paymaster.sponsor_user_operation(
                user_op,
                self.entry_point,
                PaymasterProvider.token_fee_context(token_address),
            )
            op_hash = user_op.user_op_hash(self.entry_point, self.chain_id)
            user_op.signature = await self.wallet.request("personal_sign", [op_hash, self.sender])
            user_op_hash = await self.bundler.send_user_operation(user_op, self.entry_point)
        except AbstractionError:
            raise
        except Exception as exc:
            raise self._error(f"Embedded gasless transfer failed: {exc}") from exc

        logger.info("User operation %s accepted by bundler", user_op_hash)
        return await self._await_receipt(user_op_hash)

    async def _await_receipt(self, user_op_hash: str) -> GaslessTransfer:
        for attempt in range(self.receipt_attempts):
            try:
                receipt = await self.bundler.get_user_operation_receipt(user_op_hash)
            except Exception as exc:
                logger.warning("User operation receipt lookup %d failed: %s", attempt + 1, exc)
                receipt = None
            if receipt is not None:
                if not receipt.success:
                    raise self._error(
                        f"User operation reverted: {receipt.reason or 'no reason given'}",
                        user_op_hash=user_op_hash,
                    )
                return GaslessTransfer(
                    transaction_hash=receipt.transaction_hash,
                    user_op_hash=user_op_hash,
                )
            await asyncio.sleep(self.receipt_interval)

        logger.warning("No receipt yet for user operation %s; treating as submitted", user_op_hash)
        return GaslessTransfer(user_op_hash=user_op_hash)


class ExternalGaslessClient(GaslessClient):

    def __init__(
        self,
        wallet: WalletHandle,
        chain_id: int,
        *,
        paymaster_url: str,
        config: Settings,
    ) -> None:
        super().__init__(wallet, chain_id)
        self.paymaster_url = paymaster_url
        self.status_attempts = config.userop_receipt_attempts
        self.status_interval = config.userop_receipt_interval_seconds

    async def transfer(self, token_address: str, to_address: str, amount: int) -> GaslessTransfer:
        request = {
            "version": "1.0",
            "chainId": hex(self.chain_id),
            "from": self.wallet.address,
            "calls": [
                {"to": token_address, "data": erc20_transfer_data(to_address, amount), "value": "0x0"},
            ],
            "capabilities": {"paymasterService": {"url": self.paymaster_url}},
        }
        try:
            result = await self.wallet.request("wallet_sendCalls", [request])
        except Exception as exc:
            raise self._error(f"External gasless transfer failed: {exc}") from exc

        bundle_id = result.get("id") if isinstance(result, dict) else result
        if not bundle_id:
            raise self._error("wallet_sendCalls returned no bundle id")
        logger.info("Call bundle %s accepted by wallet", bundle_id)
        return await self._await_status(str(bundle_id))

    async def _await_status(self, bundle_id: str) -> GaslessTransfer:
        for attempt in range(self.status_attempts):
            try:
                status = await self.wallet.request("wallet_getCallsStatus", [bundle_id])
            except Exception as exc:
                logger.warning("Call bundle status lookup %d failed: %s", attempt + 1, exc)
                status = None

            if isinstance(status, dict):
                code = _status_code(status.get("status"))
                if code in (CALLS_OFFCHAIN_FAILURE, CALLS_REVERTED):
                    raise self._error(f"Call bundle {bundle_id} failed with status {code}", bundle_id=bundle_id)
                if code == CALLS_CONFIRMED:
                    receipts = status.get("receipts") or [{}]
                    return GaslessTransfer(
                        transaction_hash=receipts[0].get("transactionHash"),
                        bundle_id=bundle_id,
                    )
            await asyncio.sleep(self.status_interval)

        logger.warning("No confirmation yet for call bundle %s; treating as submitted", bundle_id)
        return GaslessTransfer(bundle_id=bundle_id)


def _status_code(value: Any) -> int:
    """Map v1 string and v2 numeric EIP-5792 statuses onto the numeric codes."""
    if isinstance(value, int):
        return value
    text = str(value or "").upper()
    if text == "CONFIRMED":
        return CALLS_CONFIRMED
    if text == "PENDING":
        return CALLS_PENDING
    try:
        return int(text)
    except ValueError:
        return CALLS_PENDING


async def initialize_embedded_client(
    wallet: WalletHandle,
    chain_id: int,
    *,
    bundler: BundlerProvider,
    paymaster: PaymasterProvider,
    rpc: ChainRpcClient,
    config: Settings,
) -> EmbeddedGaslessClient:
    """Check the bundler and paymaster can serve this chain, then build the client."""
    if not (await bundler.ready() and await paymaster.ready()):
        raise AbstractionError("Bundler or paymaster is not configured", ErrorContext(chain_id=chain_id))

    bundler_chain = await bundler.chain_id()
    if bundler_chain != chain_id:
        raise AbstractionError(
            f"Bundler serves chain {bundler_chain}, not {chain_id}",
            ErrorContext(chain_id=chain_id),
        )

    entry_points = {address.lower() for address in await bundler.supported_entry_points()}
    if config.erc4337_entrypoint_address.lower() not in entry_points:
        raise AbstractionError(
            f"Bundler does not support EntryPoint {config.erc4337_entrypoint_address}",
            ErrorContext(chain_id=chain_id),
        )

    return EmbeddedGaslessClient(
        wallet,
        chain_id,
        bundler=bundler,
        paymaster=paymaster,
        rpc=rpc,
        config=config,
    )


async def initialize_external_client(
    wallet: WalletHandle,
    chain_id: int,
    *,
    config: Settings,
) -> ExternalGaslessClient:
    """Ask the wallet whether it can route calls through a paymaster service on this chain."""
    if not config.erc4337_paymaster_url:
        raise AbstractionError("Paymaster is not configured", ErrorContext(chain_id=chain_id))

    capabilities = await wallet.request("wallet_getCapabilities", [wallet.address])
    chain_caps: Dict[str, Any] = {}
    if isinstance(capabilities, dict):
        chain_caps = capabilities.get(hex(chain_id)) or capabilities.get(str(chain_id)) or {}
    paymaster_cap: Optional[Dict[str, Any]] = chain_caps.get("paymasterService")
    if not paymaster_cap or not paymaster_cap.get("supported"):
        raise AbstractionError(
            "Wallet does not support paymaster services on this chain",
            ErrorContext(chain_id=chain_id),
        )

    return ExternalGaslessClient(
        wallet,
        chain_id,
        paymaster_url=config.erc4337_paymaster_url,
        config=config,
    )
