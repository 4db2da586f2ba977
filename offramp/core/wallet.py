"""
Wallet kinds and the wallet handle the off-ramp drives.

The wallet itself (identity provider, browser extension, ...) lives outside
this service. It is reached through an EIP-1193 style ``request`` method.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional, Protocol, runtime_checkable


class WalletKind(str, Enum):
    """Closed set of wallet kinds the executor and coordinator branch on."""

    EMBEDDED = "embedded"              # Custodial wallet held by the identity provider
    EXTERNAL = "external"              # User-controlled signer (extension, mobile app)
    FEE_SUBSIDIZED = "fee_subsidized"  # Wallet infrastructure already sponsors fees


# Wallet client types reported by the identity provider
EMBEDDED_CLIENT_TYPES = frozenset({"privy"})
FEE_SUBSIDIZED_CLIENT_TYPES = frozenset({"coinbase_wallet"})


def wallet_kind_from_client_type(client_type: Optional[str]) -> WalletKind:
    normalized = (client_type or "").strip().lower()
    if normalized in EMBEDDED_CLIENT_TYPES:
        return WalletKind.EMBEDDED
    if normalized in FEE_SUBSIDIZED_CLIENT_TYPES:
        return WalletKind.FEE_SUBSIDIZED
    return WalletKind.EXTERNAL


@runtime_checkable
class RpcTransport(Protocol):
    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        ...


@runtime_checkable
class WalletHandle(RpcTransport, Protocol):
    """What the off-ramp needs from a connected wallet."""

    address: str
    kind: WalletKind

    async def switch_chain(self, chain_id: int) -> None:
        ...


def wallet_key(wallet: WalletHandle) -> str:
    return wallet.address.lower()
