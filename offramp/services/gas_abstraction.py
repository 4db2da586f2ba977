"""
Gas Abstraction Coordinator.

Decides, per wallet and chain, whether the outgoing transfer can be
fee-abstracted. Each wallet holds at most one session, bound to the chain
it was opened for:

    uninitialized -> initializing -> active | failed

``failed`` is terminal for the pairing until the wallet switches chain or
``reset`` is called; there is no retry loop. A session that is already
``initializing`` is never started a second time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Optional

from ..config import Settings, settings as default_settings
from ..core.chains import Chain, Token, abstracted_fee_estimate, native_fee_estimate
from ..core.errors import AbstractionError, ConfigurationError
from ..core.execution.gasless import (
    GaslessClient,
    initialize_embedded_client,
    initialize_external_client,
)
from ..core.models import AbstractionSession, AbstractionState, utcnow
from ..core.wallet import WalletHandle, WalletKind, wallet_key
from ..providers.bundler import BundlerProvider
from ..providers.paymaster import PaymasterProvider
from ..providers.rpc import ChainRpcClient

logger = logging.getLogger(__name__)

ClientInitializer = Callable[[WalletHandle, Chain], Awaitable[GaslessClient]]


@dataclass
class FeeInfo:
    """Fee panel shown next to the amount field."""
    chain_name: str
    token: str
    abstraction_active: bool
    abstraction_initializing: bool
    abstraction_failed: bool
    fee_subsidized_wallet: bool
    fee_currency: str
    estimated_fee: Decimal


class GasAbstractionCoordinator:
    """
    Owns the abstraction sessions for every wallet this process drives.

    Usage:
        coordinator = GasAbstractionCoordinator(settings, bundler=..., paymaster=...)
        await coordinator.ensure_session(wallet, chain)
        if coordinator.abstraction_active(wallet, chain):
            client = coordinator.client_for(wallet, chain)
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        bundler: Optional[BundlerProvider] = None,
        paymaster: Optional[PaymasterProvider] = None,
        embedded_initializer: Optional[ClientInitializer] = None,
        external_initializer: Optional[ClientInitializer] = None,
    ) -> None:
        self.config = config or default_settings
        self.bundler = bundler or BundlerProvider(self.config)
        self.paymaster = paymaster or PaymasterProvider(self.config)
        self._embedded_initializer = embedded_initializer or self._default_embedded_initializer
        self._external_initializer = external_initializer or self._default_external_initializer
        self._sessions: Dict[str, AbstractionSession] = {}

    async def _default_embedded_initializer(self, wallet: WalletHandle, chain: Chain) -> GaslessClient:
        return await initialize_embedded_client(
            wallet,
            chain.id,
            bundler=self.bundler,
            paymaster=self.paymaster,
            rpc=ChainRpcClient(wallet),
            config=self.config,
        )

    async def _default_external_initializer(self, wallet: WalletHandle, chain: Chain) -> GaslessClient:
        return await initialize_external_client(wallet, chain.id, config=self.config)

    def is_eligible(self, wallet: Optional[WalletHandle], chain: Chain) -> bool:
        """Known address, a kind that may abstract, and an allow-listed chain."""
        if wallet is None or not wallet.address:
            return False
        if wallet.kind == WalletKind.FEE_SUBSIDIZED:
            return False
        return chain.id in self.config.gas_abstraction_chain_ids

    def session_for(self, wallet: Optional[WalletHandle], chain: Chain) -> Optional[AbstractionSession]:
        if wallet is None:
            return None
        session = self._sessions.get(wallet_key(wallet))
        if session is None or not session.belongs_to(wallet.address, chain.id):
            return None
        return session

    def state(self, wallet: Optional[WalletHandle], chain: Chain) -> AbstractionState:
        session = self.session_for(wallet, chain)
        return session.state if session else AbstractionState.UNINITIALIZED

    async def ensure_session(self, wallet: Optional[WalletHandle], chain: Chain) -> Optional[AbstractionSession]:
        """Open the wallet's session for ``chain`` unless one already exists for it."""
        if wallet is None or not wallet.address:
            return None

        key = wallet_key(wallet)
        existing = self._sessions.get(key)
        if existing is not None:
            if existing.belongs_to(wallet.address, chain.id) and existing.wallet_kind == wallet.kind:
                return existing
            logger.info(
                "Tearing down abstraction session for %s on chain %s",
                key,
                existing.chain_id,
            )
            del self._sessions[key]

        session = AbstractionSession(
            wallet_address=wallet.address,
            wallet_kind=wallet.kind,
            chain_id=chain.id,
        )
        self._sessions[key] = session
        if not self.is_eligible(wallet, chain):
            return session

        session.state = AbstractionState.INITIALIZING
        session.started_at = utcnow()
        try:
            await wallet.switch_chain(chain.id)
            client = await self._initialize_client(wallet, chain)
        except Exception as exc:
            if self._sessions.get(key) is session:
                session.state = AbstractionState.FAILED
                session.error = str(exc)
            logger.warning("Gas abstraction initialization failed for %s on %s: %s", key, chain.name, exc)
            return session

        if self._sessions.get(key) is session:
            session.state = AbstractionState.ACTIVE
            session.client = client
            logger.info("Gas abstraction active for %s on %s", key, chain.name)
        return session

    async def _initialize_client(self, wallet: WalletHandle, chain: Chain) -> GaslessClient:
        kind = wallet.kind
        if kind == WalletKind.EMBEDDED:
            return await self._embedded_initializer(wallet, chain)
        elif kind == WalletKind.EXTERNAL:
            return await self._external_initializer(wallet, chain)
        elif kind == WalletKind.FEE_SUBSIDIZED:
            raise AbstractionError("Fee-subsidized wallets always use the standard path")
        raise ConfigurationError(f"Unhandled wallet kind: {kind!r}")

    def reset(self, wallet: Optional[WalletHandle] = None) -> None:
        """Drop one wallet's session, or all of them."""
        if wallet is None:
            self._sessions.clear()
        else:
            self._sessions.pop(wallet_key(wallet), None)

    def abstraction_active(self, wallet: Optional[WalletHandle], chain: Chain) -> bool:
        session = self.session_for(wallet, chain)
        if session is None or wallet is None:
            return False
        return session.state == AbstractionState.ACTIVE and wallet.kind != WalletKind.FEE_SUBSIDIZED

    def client_for(self, wallet: Optional[WalletHandle], chain: Chain) -> Optional[GaslessClient]:
        if not self.abstraction_active(wallet, chain):
            return None
        session = self.session_for(wallet, chain)
        return session.client if session else None

    def fee_currency(self, wallet: Optional[WalletHandle], chain: Chain, token: Token) -> str:
        return token.symbol if self.abstraction_active(wallet, chain) else chain.native_symbol

    def estimated_fee(self, wallet: Optional[WalletHandle], chain: Chain, token: Token) -> Decimal:
        if self.abstraction_active(wallet, chain):
            return abstracted_fee_estimate(token)
        return native_fee_estimate(chain)

    def fee_info(self, wallet: Optional[WalletHandle], chain: Chain, token: Token) -> FeeInfo:
        state = self.state(wallet, chain)
        return FeeInfo(
            chain_name=chain.name,
            token=token.symbol,
            abstraction_active=self.abstraction_active(wallet, chain),
            abstraction_initializing=state == AbstractionState.INITIALIZING,
            abstraction_failed=state == AbstractionState.FAILED,
            fee_subsidized_wallet=wallet is not None and wallet.kind == WalletKind.FEE_SUBSIDIZED,
            fee_currency=self.fee_currency(wallet, chain, token),
            estimated_fee=self.estimated_fee(wallet, chain, token),
        )
