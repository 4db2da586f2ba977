import os

from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Pick up the legacy public-prefixed credential variables."""

        super().model_post_init(__context)

        if not self.paycrest_api_key:
            fallback = os.getenv("NEXT_PUBLIC_PAYCREST_CLIENT_ID")
            if fallback:
                object.__setattr__(self, "paycrest_api_key", fallback)
        if not self.paycrest_api_secret:
            fallback = os.getenv("NEXT_PUBLIC_PAYCREST_CLIENT_SECRET")
            if fallback:
                object.__setattr__(self, "paycrest_api_secret", fallback)

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Settlement provider
    paycrest_api_url: str = Field(
        default="https://api.paycrest.io",
        description="Settlement provider base URL",
    )
    paycrest_api_key: str = Field(
        default="",
        description="Settlement provider API key",
        validation_alias=AliasChoices("paycrest_api_key", "PAYCREST_CLIENT_ID"),
    )
    paycrest_api_secret: str = Field(
        default="",
        description="Settlement provider API secret",
        validation_alias=AliasChoices("paycrest_api_secret", "PAYCREST_CLIENT_SECRET"),
    )
    request_timeout_seconds: int = Field(default=30, description="Provider HTTP timeout")

    # Quotes and fees
    default_currency: str = Field(default="NGN", description="Fiat currency preselected in the wizard")
    sender_fee_rate: Decimal = Field(
        default=Decimal("0.005"),
        description="Sender fee deducted from the input amount for receive estimates",
    )
    quote_ttl_seconds: int = Field(
        default=300,
        ge=1,
        description="Seconds after which a fetched quote can no longer back an order",
    )
    order_reference_prefix: str = Field(default="offramp", description="Prefix for generated order references")

    # Settlement order polling
    order_poll_interval_seconds: float = Field(default=30.0, ge=0, description="Seconds between order status polls")
    order_poll_max_attempts: int = Field(default=20, ge=1, description="Maximum order status polls per order")

    # Standard execution path
    gas_limit_margin_percent: int = Field(
        default=120,
        ge=100,
        description="Estimated gas limit is scaled by this percentage before submission",
    )
    rpc_urls: Dict[int, str] = Field(
        default_factory=dict,
        description="Per-chain JSON-RPC URL overrides for read-only calls",
    )

    # Gas abstraction (ERC-4337)
    gas_abstraction_chain_ids: List[int] = Field(
        default_factory=lambda: [8453],
        description="Chains where fee-abstracted execution may be attempted",
    )
    erc4337_bundler_url: str = Field(default="", description="ERC-4337 bundler RPC URL")
    erc4337_paymaster_url: str = Field(default="", description="ERC-4337 paymaster RPC URL")
    erc4337_paymaster_rpc_method: str = Field(
        default="pm_sponsorUserOperation",
        description="Paymaster JSON-RPC method used for sponsorship",
    )
    erc4337_entrypoint_address: str = Field(
        default="0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789",
        description="EntryPoint contract the bundler accepts",
    )
    erc4337_account_execute_signature: str = Field(
        default="execute(address,uint256,bytes)",
        description="Smart account execute function signature",
    )
    erc4337_account_execute_selector: str = Field(
        default="",
        description="Optional 4-byte selector overriding the execute signature",
    )
    userop_receipt_attempts: int = Field(default=10, ge=0, description="Receipt lookups after sending a user operation")
    userop_receipt_interval_seconds: float = Field(default=2.0, ge=0, description="Seconds between receipt lookups")

    @property
    def has_paycrest_credentials(self) -> bool:
        return bool(self.paycrest_api_key)

    @property
    def gas_abstraction_configured(self) -> bool:
        return bool(self.erc4337_bundler_url and self.erc4337_paymaster_url)


# Global settings instance
settings = Settings()
