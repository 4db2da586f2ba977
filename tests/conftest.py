"""Shared fakes for the off-ramp tests."""

from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from offramp.config import Settings
from offramp.core.wallet import WalletKind


WALLET_ADDRESS = "0x1234567890123456789012345678901234567890"
RECEIVE_ADDRESS = "0xabababababababababababababababababababab"


class FakeWallet:
    """EIP-1193 style wallet answering from a method -> response table.

    A response may be a value, an exception instance (raised) or a callable
    taking the params list.
    """

    def __init__(
        self,
        kind: WalletKind = WalletKind.EXTERNAL,
        address: str = WALLET_ADDRESS,
        responses: Optional[Dict[str, Any]] = None,
    ):
        self.address = address
        self.kind = kind
        self.responses: Dict[str, Any] = dict(responses or {})
        self.calls: List[Tuple[str, Any]] = []
        self.switched_to: List[int] = []
        self.switch_error: Optional[Exception] = None

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        self.calls.append((method, params))
        if method not in self.responses:
            raise RuntimeError(f"Unexpected wallet request: {method}")
        response = self.responses[method]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(params)
        return response

    async def switch_chain(self, chain_id: int) -> None:
        if self.switch_error is not None:
            raise self.switch_error
        self.switched_to.append(chain_id)

    def methods(self) -> List[str]:
        return [method for method, _ in self.calls]


@pytest.fixture
def settings() -> Settings:
    """Isolated settings: no .env, no waiting between polls."""
    return Settings(
        _env_file=None,
        paycrest_api_key="test-key",
        paycrest_api_secret="test-secret",
        order_poll_interval_seconds=0,
        userop_receipt_interval_seconds=0,
        userop_receipt_attempts=3,
        erc4337_bundler_url="https://bundler.test",
        erc4337_paymaster_url="https://paymaster.test",
    )


@pytest.fixture
def make_wallet() -> Callable[..., FakeWallet]:
    return FakeWallet

