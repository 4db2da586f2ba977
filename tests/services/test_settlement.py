"""
Tests for SettlementOrderManager: order creation and bounded polling.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from offramp.core.chains import BASE, USDC
from offramp.core.errors import OrderCreationError, OrderPollingError, ValidationError
from offramp.core.models import OffRampRequest, OrderStatus, Quote, RecipientAccount, utcnow
from offramp.providers.paycrest import SettlementProviderError
from offramp.services.settlement import SettlementOrderManager, validate_order_payload

RECEIVE_ADDRESS = "0xabababababababababababababababababababab"
WALLET_ADDRESS = "0x1234567890123456789012345678901234567890"


ORDER_RESPONSE = {
    "id": "order-1",
    "amount": "100",
    "token": "USDC",
    "network": "base",
    "receiveAddress": RECEIVE_ADDRESS,
    "senderFee": "0.5",
    "transactionFee": "0.2",
    "validUntil": "2030-01-01T00:00:00Z",
    "status": "pending",
}


def make_provider(order_response=None, statuses=None):
    provider = MagicMock()
    provider.name = "paycrest"
    provider.create_order = AsyncMock(return_value=order_response or dict(ORDER_RESPONSE))
    provider.get_order = AsyncMock(side_effect=statuses or [{"status": "pending"}])
    return provider


def make_request(*, verified=True, fetched_at=None, reference="offramp-1-abc"):
    recipient = RecipientAccount(
        institution_code="GTBINGLA",
        account_identifier="0123456789",
        account_name="Ada Obi",
        currency="NGN",
    )
    if verified:
        recipient.mark_verified()
    quote = Quote(
        token="USDC",
        amount=Decimal("100"),
        currency="NGN",
        rate="1250.5",
        network="base",
        fetched_at=fetched_at or utcnow(),
    )
    return OffRampRequest(
        quote=quote,
        recipient=recipient,
        chain=BASE,
        token=USDC,
        return_address=WALLET_ADDRESS,
        reference=reference,
    )


def status_responses(*statuses):
    return [{"status": status} for status in statuses]


class TestValidateOrderPayload:

    def test_complete_payload(self):
        manager = SettlementOrderManager(make_provider())
        payload = manager.build_order_payload(make_request())

        assert validate_order_payload(payload) == []
        assert payload["rate"] == "1250.5"
        assert payload["network"] == "base"
        assert payload["returnAddress"] == WALLET_ADDRESS

    def test_reports_every_problem(self):
        errors = validate_order_payload({
            "amount": "0",
            "rate": "",
            "recipient": {"institution": "GTBINGLA"},
        })

        assert "Amount must be greater than 0" in errors
        assert "Token is required" in errors
        assert "Network is required" in errors
        assert "Valid exchange rate is required" in errors
        assert "Recipient account identifier is required" in errors
        assert "Recipient account name is required" in errors
        assert "Recipient currency is required" in errors
        assert "Payment reference is required" in errors
        assert "Return address is required" in errors
        assert "Recipient institution is required" not in errors

    def test_missing_recipient(self):
        errors = validate_order_payload({"amount": "5"})
        assert "Recipient information is required" in errors


class TestCreateOrder:

    @pytest.mark.asyncio
    async def test_creates_and_stores_order(self, settings):
        provider = make_provider()
        manager = SettlementOrderManager(provider, settings)

        order = await manager.create_order(make_request())

        assert order.id == "order-1"
        assert order.receive_address == RECEIVE_ADDRESS
        assert order.reference == "offramp-1-abc"
        assert order.sender_fee == Decimal("0.5")
        assert manager.get_order("order-1") is order
        assert manager.snapshot("order-1").status == OrderStatus.PENDING

        payload = provider.create_order.await_args.args[0]
        assert payload["reference"] == "offramp-1-abc"
        assert payload["recipient"]["accountName"] == "Ada Obi"

    @pytest.mark.asyncio
    async def test_fills_fields_the_provider_omits(self, settings):
        response = {"id": "order-2", "receiveAddress": RECEIVE_ADDRESS}
        manager = SettlementOrderManager(make_provider(order_response=response), settings)

        order = await manager.create_order(make_request())

        assert order.amount == Decimal("100")
        assert order.token == "USDC"
        assert order.network == "base"

    @pytest.mark.asyncio
    async def test_requires_verified_recipient(self, settings):
        provider = make_provider()
        manager = SettlementOrderManager(provider, settings)

        with pytest.raises(OrderCreationError, match="verify account"):
            await manager.create_order(make_request(verified=False))
        provider.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejects_expired_quote(self, settings):
        provider = make_provider()
        manager = SettlementOrderManager(provider, settings)
        stale = utcnow() - timedelta(seconds=settings.quote_ttl_seconds + 5)

        with pytest.raises(OrderCreationError, match="expired"):
            await manager.create_order(make_request(fetched_at=stale))
        provider.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_incomplete_payload_lists_errors(self, settings):
        provider = make_provider()
        manager = SettlementOrderManager(provider, settings)

        with pytest.raises(ValidationError) as exc_info:
            await manager.create_order(make_request(reference=""))
        assert exc_info.value.errors == ["Payment reference is required"]
        provider.create_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_provider_failure(self, settings):
        provider = make_provider()
        provider.create_order.side_effect = SettlementProviderError("boom", status_code=500)
        manager = SettlementOrderManager(provider, settings)

        with pytest.raises(OrderCreationError) as exc_info:
            await manager.create_order(make_request())
        assert exc_info.value.message == "Failed to create payment order"

    @pytest.mark.asyncio
    async def test_response_without_receive_address(self, settings):
        manager = SettlementOrderManager(make_provider(order_response={"id": "order-3"}), settings)

        with pytest.raises(OrderCreationError, match="receive address"):
            await manager.create_order(make_request())


class TestPolling:

    @pytest.mark.asyncio
    async def test_stops_after_attempt_budget(self, settings):
        provider = make_provider(statuses=status_responses(*["pending"] * 25))
        sleep = AsyncMock()
        manager = SettlementOrderManager(provider, settings, sleep=sleep)

        snapshot = await manager.poll_status("order-1")

        assert provider.get_order.await_count == 20
        assert sleep.await_count == 20
        sleep.assert_awaited_with(settings.order_poll_interval_seconds)
        assert snapshot.attempts == 20
        assert snapshot.status == OrderStatus.PENDING
        assert snapshot.polling is False
        assert manager.snapshot("order-1") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("final", ["completed", "failed"])
    async def test_stops_on_final_status(self, settings, final):
        provider = make_provider(statuses=status_responses("pending", "processing", final, "pending"))
        manager = SettlementOrderManager(provider, settings, sleep=AsyncMock())

        snapshot = await manager.poll_status("order-1")

        assert provider.get_order.await_count == 3
        assert snapshot.status == OrderStatus(final)

    @pytest.mark.asyncio
    async def test_keeps_polling_through_lookup_errors(self, settings):
        provider = make_provider(statuses=[
            SettlementProviderError("timeout"),
            {"status": "processing"},
            SettlementProviderError("502"),
            {"status": "completed", "transactionHash": "0xsettled"},
        ])
        manager = SettlementOrderManager(provider, settings, sleep=AsyncMock())

        snapshot = await manager.poll_status("order-1")

        assert provider.get_order.await_count == 4
        assert snapshot.status == OrderStatus.COMPLETED
        assert snapshot.transaction_hash == "0xsettled"
        assert snapshot.last_error is None

    @pytest.mark.asyncio
    async def test_budget_exhausted_keeps_last_error(self, settings):
        settings.order_poll_max_attempts = 2
        provider = make_provider(statuses=[SettlementProviderError("down"), SettlementProviderError("down")])
        manager = SettlementOrderManager(provider, settings, sleep=AsyncMock())

        snapshot = await manager.poll_status("order-1")

        assert snapshot.attempts == 2
        assert snapshot.status == OrderStatus.PENDING
        assert snapshot.last_error == "Failed to fetch order status"

    @pytest.mark.asyncio
    async def test_on_update_fires_on_status_change(self, settings):
        provider = make_provider(statuses=status_responses("pending", "processing", "processing", "completed"))
        manager = SettlementOrderManager(provider, settings, sleep=AsyncMock())
        seen = []

        await manager.poll_status("order-1", on_update=lambda s: seen.append(s.status))

        assert seen == [OrderStatus.PROCESSING, OrderStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_async_callback_failure_does_not_stop_polling(self, settings):
        provider = make_provider(statuses=status_responses("processing", "completed"))
        manager = SettlementOrderManager(provider, settings, sleep=AsyncMock())
        callback = AsyncMock(side_effect=RuntimeError("ui gone"))

        snapshot = await manager.poll_status("order-1", on_update=callback)

        assert snapshot.status == OrderStatus.COMPLETED
        assert callback.await_count == 2

    @pytest.mark.asyncio
    async def test_fetch_status_maps_provider_error(self, settings):
        provider = make_provider(statuses=[SettlementProviderError("nope", status_code=404)])
        manager = SettlementOrderManager(provider, settings)

        with pytest.raises(OrderPollingError):
            await manager.fetch_status("order-1")

    @pytest.mark.asyncio
    async def test_fetch_status_updates_stored_order(self, settings):
        provider = make_provider(statuses=status_responses("processing"))
        manager = SettlementOrderManager(provider, settings)
        order = await manager.create_order(make_request())

        await manager.fetch_status(order.id)

        assert order.status == OrderStatus.PROCESSING


class TestBackgroundPolling:

    @pytest.mark.asyncio
    async def test_start_polling_runs_in_background(self, settings):
        provider = make_provider(statuses=status_responses("processing", "completed"))
        manager = SettlementOrderManager(provider, settings, sleep=AsyncMock())

        task = manager.start_polling("order-1")
        assert manager.start_polling("order-1") is task
        snapshot = await task

        assert snapshot.status == OrderStatus.COMPLETED
        await asyncio.sleep(0)
        assert manager.is_polling("order-1") is False

    @pytest.mark.asyncio
    async def test_completed_order_is_forgotten(self, settings):
        provider = make_provider(statuses=status_responses("processing", "completed"))
        manager = SettlementOrderManager(provider, settings, sleep=AsyncMock())
        order = await manager.create_order(make_request())
        assert manager.get_order(order.id) is order

        snapshot = await manager.start_polling(order.id)
        await asyncio.sleep(0)

        assert snapshot.status == OrderStatus.COMPLETED
        assert manager.get_order(order.id) is None
        assert manager.snapshot(order.id) is None
        assert manager._orders == {}
        assert manager._snapshots == {}
        assert manager._pollers == {}

    @pytest.mark.asyncio
    async def test_untracked_status_lookup_is_not_stored(self, settings):
        provider = make_provider(statuses=status_responses("processing"))
        manager = SettlementOrderManager(provider, settings)

        snapshot = await manager.fetch_status("order-9")

        assert snapshot.status == OrderStatus.PROCESSING
        assert manager.snapshot("order-9") is None

    @pytest.mark.asyncio
    async def test_stop_polling_forgets_unpolled_order(self, settings):
        manager = SettlementOrderManager(make_provider(), settings)
        order = await manager.create_order(make_request())

        await manager.stop_polling(order.id)

        assert manager.get_order(order.id) is None

    @pytest.mark.asyncio
    async def test_stop_polling_cancels_task(self, settings):
        gate = asyncio.Event()

        async def blocked_sleep(_):
            await gate.wait()

        manager = SettlementOrderManager(make_provider(), settings, sleep=blocked_sleep)
        task = manager.start_polling("order-1")
        await asyncio.sleep(0)
        assert manager.is_polling("order-1") is True

        await manager.stop_polling("order-1")

        assert task.cancelled()
        assert manager.is_polling("order-1") is False
        assert manager.snapshot("order-1") is None

    @pytest.mark.asyncio
    async def test_aclose_stops_all_pollers(self, settings):
        gate = asyncio.Event()

        async def blocked_sleep(_):
            await gate.wait()

        manager = SettlementOrderManager(make_provider(), settings, sleep=blocked_sleep)
        first = manager.start_polling("order-1")
        second = manager.start_polling("order-2")
        await asyncio.sleep(0)

        await manager.aclose()

        assert first.cancelled() and second.cancelled()
