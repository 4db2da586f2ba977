"""
Service container.

Builds the provider clients and services once per process (or once per
test) and closes them together. Nothing in the package reaches for a
module-level client; everything is handed the instances built here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import httpx

from .config import Settings, settings as default_settings
from .core.chains import DEFAULT_CHAIN, USDC, Chain, Token
from .core.offramp.orchestrator import OffRampOrchestrator, SigningLocks
from .core.wallet import WalletHandle
from .providers.bundler import BundlerProvider
from .providers.paycrest import PaycrestProvider
from .providers.paymaster import PaymasterProvider
from .providers.rpc import HttpRpcTransport
from .services.gas_abstraction import GasAbstractionCoordinator
from .services.institutions import InstitutionDirectory
from .services.ledger import TokenLedgerReader
from .services.quotes import RateQuoteService
from .services.settlement import SettlementOrderManager
from .services.verification import AccountVerifier


@dataclass
class OffRampServices:
    config: Settings
    provider: PaycrestProvider
    bundler: BundlerProvider
    paymaster: PaymasterProvider
    quotes: RateQuoteService
    institutions: InstitutionDirectory
    verifier: AccountVerifier
    settlement: SettlementOrderManager
    coordinator: GasAbstractionCoordinator
    signing_locks: SigningLocks = field(default_factory=SigningLocks)
    _rpc_transports: dict = field(default_factory=dict)
    _http_transport: Optional[httpx.AsyncBaseTransport] = None

    @classmethod
    def build(
        cls,
        config: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "OffRampServices":
        """Wire every service. ``transport`` is shared by all HTTP clients (tests pass a MockTransport)."""
        config = config or default_settings
        provider = PaycrestProvider(config, transport=transport)
        bundler = BundlerProvider(config, transport=transport)
        paymaster = PaymasterProvider(config, transport=transport)
        return cls(
            config=config,
            provider=provider,
            bundler=bundler,
            paymaster=paymaster,
            quotes=RateQuoteService(provider, config),
            institutions=InstitutionDirectory(provider),
            verifier=AccountVerifier(provider),
            settlement=SettlementOrderManager(provider, config),
            coordinator=GasAbstractionCoordinator(config, bundler=bundler, paymaster=paymaster),
            _http_transport=transport,
        )

    def rpc_transport(self, chain: Chain) -> HttpRpcTransport:
        """Read-only node transport for ``chain``; configured overrides win over the public RPC."""
        if chain.id not in self._rpc_transports:
            url = self.config.rpc_urls.get(chain.id) or chain.rpc_url
            self._rpc_transports[chain.id] = HttpRpcTransport(url, transport=self._http_transport)
        return self._rpc_transports[chain.id]

    def ledger(self, chain: Chain) -> TokenLedgerReader:
        return TokenLedgerReader(self.rpc_transport(chain))

    def orchestrator(
        self,
        wallet: WalletHandle,
        chain: Chain = DEFAULT_CHAIN,
        token: Token = USDC,
    ) -> OffRampOrchestrator:
        return OffRampOrchestrator(
            wallet,
            chain,
            token,
            quotes=self.quotes,
            verifier=self.verifier,
            institutions=self.institutions,
            settlement=self.settlement,
            coordinator=self.coordinator,
            signing_locks=self.signing_locks,
            config=self.config,
        )

    async def aclose(self) -> None:
        await self.settlement.aclose()
        await self.provider.aclose()
        await self.bundler.aclose()
        await self.paymaster.aclose()
        for transport in self._rpc_transports.values():
            await transport.aclose()
        self._rpc_transports.clear()
