"""
Tests for the off-ramp data model.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from offramp.core.models import (
    OrderStatus,
    Quote,
    RecipientAccount,
    SettlementOrder,
    TokenBalance,
    parse_timestamp,
)


@pytest.fixture
def verified_recipient() -> RecipientAccount:
    recipient = RecipientAccount(
        institution_code="GTBINGLA",
        account_identifier="0123456789",
        account_name="Ada Obi",
        currency="NGN",
    )
    recipient.mark_verified()
    return recipient


class TestRecipientAccount:

    def test_starts_unverified(self):
        assert RecipientAccount().verified is False

    @pytest.mark.parametrize(
        "field_name,value",
        [("institution_code", "ACCESSNG"), ("account_identifier", "9999999999")],
    )
    def test_identity_edit_resets_verified(self, verified_recipient, field_name, value):
        setattr(verified_recipient, field_name, value)
        assert verified_recipient.verified is False

    def test_same_value_keeps_verified(self, verified_recipient):
        verified_recipient.account_identifier = "0123456789"
        assert verified_recipient.verified is True

    def test_other_fields_keep_verified(self, verified_recipient):
        verified_recipient.memo = "rent"
        verified_recipient.account_name = "Ada O."
        assert verified_recipient.verified is True

    def test_provider_payload(self, verified_recipient):
        assert verified_recipient.to_provider_payload() == {
            "institution": "GTBINGLA",
            "accountIdentifier": "0123456789",
            "accountName": "Ada Obi",
            "currency": "NGN",
        }
        verified_recipient.memo = "School fees"
        assert verified_recipient.to_provider_payload()["memo"] == "School fees"


class TestQuote:

    def test_expiry(self):
        fetched = datetime(2024, 1, 1, tzinfo=timezone.utc)
        quote = Quote(token="USDC", amount=Decimal("100"), currency="NGN", rate="1250.00",
                      network="base", fetched_at=fetched)

        assert not quote.is_expired(300, now=fetched + timedelta(seconds=300))
        assert quote.is_expired(300, now=fetched + timedelta(seconds=301))

    def test_rate_is_kept_as_string(self):
        quote = Quote(token="USDC", amount=Decimal("1"), currency="KES", rate="129.4500001", network="base")
        assert quote.rate == "129.4500001"
        assert quote.rate_decimal == Decimal("129.4500001")

    def test_matches(self):
        quote = Quote(token="USDC", amount=Decimal("100"), currency="NGN", rate="1", network="base")
        assert quote.matches(Decimal("100.0"), "NGN")
        assert not quote.matches(Decimal("101"), "NGN")
        assert not quote.matches(Decimal("100"), "KES")


class TestSettlementOrder:

    def test_from_provider(self):
        order = SettlementOrder.from_provider(
            {
                "id": "ord_1",
                "amount": "100",
                "token": "USDC",
                "network": "base",
                "receiveAddress": "0xabababababababababababababababababababab",
                "senderFee": "0.5",
                "transactionFee": "0.01",
                "validUntil": "2024-05-01T12:00:00.123456789Z",
            },
            reference="offramp-1-abcdef",
        )

        assert order.reference == "offramp-1-abcdef"
        assert order.amount == Decimal("100")
        assert order.sender_fee == Decimal("0.5")
        assert order.status == OrderStatus.PENDING
        assert order.valid_until == datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)

    def test_expiry(self):
        valid_until = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        order = SettlementOrder.from_provider({"id": "o", "validUntil": valid_until.isoformat()}, reference="r")

        assert not order.is_expired(now=valid_until - timedelta(seconds=1))
        assert order.is_expired(now=valid_until)

    def test_order_without_deadline_never_expires(self):
        order = SettlementOrder.from_provider({"id": "o"}, reference="r")
        assert order.is_expired() is False

    def test_success_message(self):
        order = SettlementOrder.from_provider(
            {"id": "o", "amount": "100", "token": "USDC", "senderFee": "0.5", "transactionFee": "0.01"},
            reference="offramp-1-abcdef",
        )
        message = order.success_message("Base")

        for part in ("offramp-1-abcdef", "100 USDC", "Base", "Fee: 0.5", "Transaction Fee: 0.01", "Valid Until"):
            assert part in message


class TestOrderStatus:

    def test_parse(self):
        assert OrderStatus.parse("Completed") == OrderStatus.COMPLETED
        assert OrderStatus.parse("settling") == OrderStatus.PENDING
        assert OrderStatus.parse(None) == OrderStatus.PENDING

    def test_only_completed_and_failed_stop_polling(self):
        assert OrderStatus.COMPLETED.stops_polling
        assert OrderStatus.FAILED.stops_polling
        assert not OrderStatus.EXPIRED.stops_polling
        assert not OrderStatus.PROCESSING.stops_polling


def test_parse_timestamp_variants():
    assert parse_timestamp(None) is None
    assert parse_timestamp("not a date") is None
    parsed = parse_timestamp("2024-05-01T12:00:00")
    assert parsed.tzinfo is not None


def test_token_balance():
    balance = TokenBalance(symbol="USDC", raw=150_000_000, decimals=6)
    assert balance.amount == Decimal("150")
    assert balance.covers(150_000_000)
    assert not balance.covers(150_000_001)
