"""Fee math and amount conversion. Pure functions, no I/O."""

from __future__ import annotations

import secrets
import string
import time
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from .errors import ValidationError
from .models import SettlementOrder

DEFAULT_SENDER_FEE_RATE = Decimal("0.005")
CENTS = Decimal("0.01")

_BASE36 = string.digits + string.ascii_lowercase


def parse_amount(value: Union[str, int, Decimal, None]) -> Decimal:
    """Parse a user-entered amount; raises ValidationError unless it is a positive number."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Amount is required")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount: {value}")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be greater than 0")
    return amount


def estimate_receive_amount(
    amount: Decimal,
    rate: Union[str, Decimal],
    sender_fee_rate: Decimal = DEFAULT_SENDER_FEE_RATE,
) -> Decimal:
    """Display-only estimate: ``(amount - amount * sender_fee_rate) * rate``, to cents."""
    rate_value = Decimal(str(rate))
    net = amount - amount * sender_fee_rate
    return (net * rate_value).quantize(CENTS, rounding=ROUND_HALF_UP)


def estimate_sender_fee(amount: Decimal, sender_fee_rate: Decimal = DEFAULT_SENDER_FEE_RATE) -> Decimal:
    return amount * sender_fee_rate


def settled_receive_amount(order: SettlementOrder, rate: Union[str, Decimal]) -> Decimal:
    """Receive amount implied by the provider's authoritative fee figures."""
    net = order.amount - order.sender_fee - order.transaction_fee
    return (net * Decimal(str(rate))).quantize(CENTS, rounding=ROUND_HALF_UP)


def within_fee_tolerance(
    estimate: Decimal,
    authoritative: Decimal,
    rate: Union[str, Decimal],
    tolerance: Optional[Decimal] = None,
) -> bool:
    """True when two fiat figures differ by no more than ``tolerance``.

    The default tolerance is one token cent converted at ``rate``, which is
    the rounding the provider applies to its fee figures.
    """
    if tolerance is None:
        tolerance = CENTS * Decimal(str(rate))
    return abs(estimate - authoritative) <= tolerance


def to_smallest_unit(amount: Decimal, decimals: int) -> int:
    scaled = (amount.scaleb(decimals)).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def from_smallest_unit(raw: int, decimals: int) -> Decimal:
    return Decimal(raw).scaleb(-decimals)


def generate_reference(prefix: str = "offramp", now_ms: Optional[int] = None) -> str:
    """Unique per-attempt reference: ``<prefix>-<millis>-<6 base36 chars>``."""
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{prefix}-{timestamp}-{suffix}"
