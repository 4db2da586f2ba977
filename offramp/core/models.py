"""
Off-ramp data model.

Amounts and rates are ``Decimal``; rates keep the provider's string so no
precision is lost before the fee math runs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional

from .chains import Chain, Token
from .wallet import WalletKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse provider timestamps (ISO-8601, ``Z`` suffix, nanosecond fractions)."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).strip().replace("Z", "+00:00")
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1), text)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def to_decimal(value: Any, default: Optional[Decimal] = None) -> Optional[Decimal]:
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


@dataclass(frozen=True)
class Currency:
    code: str
    name: str
    symbol: str = ""


@dataclass(frozen=True)
class Institution:
    code: str
    name: str
    type: str = "bank"


@dataclass(frozen=True)
class TokenBalance:
    symbol: str
    raw: int
    decimals: int

    @property
    def amount(self) -> Decimal:
        return Decimal(self.raw).scaleb(-self.decimals)

    def covers(self, required_raw: int) -> bool:
        return self.raw >= required_raw


@dataclass(frozen=True)
class Quote:
    """Point-in-time rate for a token/amount/currency triple."""
    token: str
    amount: Decimal
    currency: str
    rate: str                       # Raw provider string, never a float
    network: str
    fetched_at: datetime = field(default_factory=utcnow)

    @property
    def rate_decimal(self) -> Decimal:
        return Decimal(self.rate)

    def is_expired(self, ttl_seconds: int, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return now - self.fetched_at > timedelta(seconds=ttl_seconds)

    def matches(self, amount: Decimal, currency: str) -> bool:
        return self.amount == amount and self.currency == currency


_IDENTITY_FIELDS = frozenset({"institution_code", "account_identifier"})


@dataclass
class RecipientAccount:
    """Destination bank or mobile-money account.

    Changing ``institution_code`` or ``account_identifier`` always clears
    ``verified``; only a successful verification sets it again.
    """
    institution_code: str = ""
    account_identifier: str = ""
    account_name: str = ""
    currency: str = ""
    memo: str = ""
    verified: bool = False

    def __setattr__(self, name: str, value: Any) -> None:
        if (
            name in _IDENTITY_FIELDS
            and "verified" in self.__dict__
            and self.__dict__.get(name) != value
        ):
            object.__setattr__(self, "verified", False)
        object.__setattr__(self, name, value)

    def mark_verified(self) -> None:
        object.__setattr__(self, "verified", True)

    def to_provider_payload(self) -> Dict[str, Any]:
        payload = {
            "institution": self.institution_code,
            "accountIdentifier": self.account_identifier,
            "accountName": self.account_name,
            "currency": self.currency,
        }
        if self.memo:
            payload["memo"] = self.memo
        return payload


class AbstractionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    FAILED = "failed"


@dataclass
class AbstractionSession:
    wallet_address: str
    wallet_kind: WalletKind
    chain_id: int
    state: AbstractionState = AbstractionState.UNINITIALIZED
    error: Optional[str] = None
    client: Any = None              # GaslessClient once ACTIVE
    started_at: Optional[datetime] = None

    def belongs_to(self, wallet_address: str, chain_id: int) -> bool:
        return self.wallet_address.lower() == wallet_address.lower() and self.chain_id == chain_id


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

    @classmethod
    def parse(cls, value: Any) -> "OrderStatus":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.PENDING

    @property
    def stops_polling(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.FAILED)


@dataclass
class SettlementOrder:
    """Provider-side order; only ``status`` changes after creation."""
    id: str
    reference: str
    amount: Decimal
    token: str
    network: str
    receive_address: str
    sender_fee: Decimal
    transaction_fee: Decimal
    valid_until: Optional[datetime]
    status: OrderStatus = OrderStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_provider(cls, data: Dict[str, Any], *, reference: str) -> "SettlementOrder":
        return cls(
            id=str(data.get("id") or ""),
            reference=str(data.get("reference") or reference),
            amount=to_decimal(data.get("amount"), Decimal("0")),
            token=str(data.get("token") or ""),
            network=str(data.get("network") or ""),
            receive_address=str(data.get("receiveAddress") or ""),
            sender_fee=to_decimal(data.get("senderFee"), Decimal("0")),
            transaction_fee=to_decimal(data.get("transactionFee"), Decimal("0")),
            valid_until=parse_timestamp(data.get("validUntil")),
            status=OrderStatus.parse(data.get("status") or "pending"),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.valid_until is None:
            return False
        return (now or utcnow()) >= self.valid_until

    def success_message(self, chain_name: str) -> str:
        valid_until = self.valid_until.isoformat() if self.valid_until else "n/a"
        return (
            "Payment order initiated! "
            f"Reference: {self.reference} "
            f"Amount: {self.amount} {self.token} "
            f"Network: {chain_name} "
            f"Fee: {self.sender_fee} "
            f"Transaction Fee: {self.transaction_fee} "
            f"Valid Until: {valid_until}"
        )


@dataclass
class OrderStatusSnapshot:
    order_id: str
    status: OrderStatus
    attempts: int = 0
    polling: bool = False
    transaction_hash: Optional[str] = None
    last_error: Optional[str] = None
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_final(self) -> bool:
        return self.status in (OrderStatus.COMPLETED, OrderStatus.FAILED, OrderStatus.EXPIRED)


@dataclass
class OffRampRequest:
    """Everything one submission needs to create a settlement order."""
    quote: Quote
    recipient: RecipientAccount
    chain: Chain
    token: Token
    return_address: str
    reference: str
