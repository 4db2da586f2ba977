"""Static chain and token configuration for the off-ramp."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from .errors import ConfigurationError, ErrorContext


@dataclass(frozen=True)
class Chain:
    id: int
    name: str
    native_symbol: str
    rpc_url: str
    explorer_url: str
    supported: bool = True
    native_decimals: int = 18

    @property
    def network(self) -> str:
        """Network slug the settlement provider expects (``bnb-smart-chain``)."""
        return network_slug(self.name)

    @property
    def chain_id_hex(self) -> str:
        return hex(self.id)


@dataclass(frozen=True)
class Token:
    symbol: str
    name: str
    addresses: Mapping[int, str]
    decimals: Mapping[int, int] = field(default_factory=dict)
    default_decimals: int = 6

    def address_on(self, chain_id: int) -> Optional[str]:
        return self.addresses.get(chain_id)

    def decimals_on(self, chain_id: int) -> int:
        return self.decimals.get(chain_id, self.default_decimals)


BASE = Chain(
    id=8453,
    name="Base",
    native_symbol="ETH",
    rpc_url="https://mainnet.base.org",
    explorer_url="https://basescan.org",
)
ARBITRUM = Chain(
    id=42161,
    name="Arbitrum One",
    native_symbol="ETH",
    rpc_url="https://arb1.arbitrum.io/rpc",
    explorer_url="https://arbiscan.io",
)
POLYGON = Chain(
    id=137,
    name="Polygon",
    native_symbol="POL",
    rpc_url="https://polygon-rpc.com",
    explorer_url="https://polygonscan.com",
)
BNB_SMART_CHAIN = Chain(
    id=56,
    name="BNB Smart Chain",
    native_symbol="BNB",
    rpc_url="https://bsc-dataseed1.bnbchain.org",
    explorer_url="https://bscscan.com",
)
CELO = Chain(
    id=42220,
    name="Celo",
    native_symbol="CELO",
    rpc_url="https://forno.celo.org",
    explorer_url="https://celoscan.io",
    supported=False,
)
SCROLL = Chain(
    id=534352,
    name="Scroll",
    native_symbol="ETH",
    rpc_url="https://rpc.scroll.io",
    explorer_url="https://scrollscan.com",
    supported=False,
)

CHAINS: Dict[int, Chain] = {
    chain.id: chain
    for chain in (BASE, ARBITRUM, POLYGON, BNB_SMART_CHAIN, CELO, SCROLL)
}
DEFAULT_CHAIN = BASE

USDC = Token(
    symbol="USDC",
    name="USD Coin",
    addresses={
        8453: "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        42161: "0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
        137: "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",
        56: "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d",
    },
    decimals={56: 18},
)
USDT = Token(
    symbol="USDT",
    name="Tether USD",
    addresses={
        42161: "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9",
        137: "0xc2132D05D31c914a87C6611C10748AEb04B58e8F",
        56: "0x55d398326f99059fF775485246999027B3197955",
    },
    decimals={56: 18},
)

TOKENS: Dict[str, Token] = {token.symbol: token for token in (USDC, USDT)}

# Standard-path fee estimates, paid in the chain's native currency
NATIVE_FEE_ESTIMATES: Dict[int, Decimal] = {
    8453: Decimal("0.0001"),
    42161: Decimal("0.0001"),
    137: Decimal("0.01"),
    56: Decimal("0.001"),
}

# Flat abstracted-path fee, paid in the token being sent
ABSTRACTED_FEE_ESTIMATES: Dict[str, Decimal] = {
    "USDC": Decimal("0.1"),
    "USDT": Decimal("0.1"),
}

_WHITESPACE_RE = re.compile(r"\s+")


def network_slug(name: str) -> str:
    return _WHITESPACE_RE.sub("-", name.strip().lower())


def supported_chains() -> List[Chain]:
    return [chain for chain in CHAINS.values() if chain.supported]


def get_chain(chain_id: int) -> Chain:
    chain = CHAINS.get(chain_id)
    if chain is None:
        raise ConfigurationError(
            f"Chain {chain_id} is not configured",
            ErrorContext(chain_id=chain_id),
        )
    return chain


def get_token(symbol: str) -> Token:
    token = TOKENS.get(symbol.upper())
    if token is None:
        raise ConfigurationError(f"Invalid token: {symbol}", ErrorContext(token=symbol))
    return token


def token_address(token: Token, chain: Chain) -> str:
    """Contract address of ``token`` on ``chain``.

    A missing entry means the pairing is unsupported; there is no default.
    """
    address = token.address_on(chain.id)
    if not address:
        raise ConfigurationError(
            f"Token {token.symbol} not supported on {chain.name}",
            ErrorContext(chain_id=chain.id, token=token.symbol),
        )
    return address


def is_token_supported(token: Token, chain: Chain) -> bool:
    return bool(token.address_on(chain.id))


def tokens_for_chain(chain: Chain) -> List[Token]:
    return [token for token in TOKENS.values() if token.address_on(chain.id)]


def native_fee_estimate(chain: Chain) -> Decimal:
    return NATIVE_FEE_ESTIMATES.get(chain.id, Decimal("0"))


def abstracted_fee_estimate(token: Token) -> Decimal:
    return ABSTRACTED_FEE_ESTIMATES.get(token.symbol, Decimal("0"))


__all__ = [
    "Chain",
    "Token",
    "CHAINS",
    "TOKENS",
    "DEFAULT_CHAIN",
    "BASE",
    "ARBITRUM",
    "POLYGON",
    "BNB_SMART_CHAIN",
    "CELO",
    "SCROLL",
    "USDC",
    "USDT",
    "network_slug",
    "supported_chains",
    "get_chain",
    "get_token",
    "token_address",
    "is_token_supported",
    "tokens_for_chain",
    "native_fee_estimate",
    "abstracted_fee_estimate",
]
