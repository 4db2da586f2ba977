"""
Settlement Order Manager.

Creates settlement orders (reserving the quoted rate and a receive address)
and tracks them to completion with a bounded background poller owned by
this instance.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..config import Settings, settings as default_settings
from ..core.errors import (
    ErrorContext,
    OrderCreationError,
    OrderPollingError,
    ValidationError,
)
from ..core.models import (
    OffRampRequest,
    OrderStatus,
    OrderStatusSnapshot,
    SettlementOrder,
    to_decimal,
    utcnow,
)
from ..providers.paycrest import PaycrestProvider, SettlementProviderError

logger = logging.getLogger(__name__)

StatusCallback = Callable[[OrderStatusSnapshot], Union[None, Awaitable[None]]]
Sleep = Callable[[float], Awaitable[None]]


def validate_order_payload(payload: Dict[str, Any]) -> List[str]:
    """Every problem with an order payload, so they can be reported together."""
    errors: List[str] = []

    amount = to_decimal(payload.get("amount"))
    if amount is None or amount <= 0:
        errors.append("Amount must be greater than 0")
    if not payload.get("token"):
        errors.append("Token is required")
    if not payload.get("network"):
        errors.append("Network is required")
    rate = to_decimal(payload.get("rate"))
    if rate is None or rate <= 0:
        errors.append("Valid exchange rate is required")

    recipient = payload.get("recipient")
    if not recipient:
        errors.append("Recipient information is required")
    else:
        if not recipient.get("institution"):
            errors.append("Recipient institution is required")
        if not recipient.get("accountIdentifier"):
            errors.append("Recipient account identifier is required")
        if not recipient.get("accountName"):
            errors.append("Recipient account name is required")
        if not recipient.get("currency"):
            errors.append("Recipient currency is required")

    if not payload.get("reference"):
        errors.append("Payment reference is required")
    if not payload.get("returnAddress"):
        errors.append("Return address is required")
    return errors


class SettlementOrderManager:
    """
    Order creation and status tracking against the settlement provider.

    Polling contract: one lookup every ``order_poll_interval_seconds``, at
    most ``order_poll_max_attempts`` lookups, stopping as soon as the order
    is completed or failed. A failed lookup is retried on the next tick.
    When the budget runs out the last known status stays queryable through
    ``snapshot``.
    """

    def __init__(
        self,
        provider: PaycrestProvider,
        config: Optional[Settings] = None,
        *,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.provider = provider
        self.config = config or default_settings
        self.poll_interval = self.config.order_poll_interval_seconds
        self.max_attempts = self.config.order_poll_max_attempts
        self._sleep = sleep or asyncio.sleep
        self._orders: Dict[str, SettlementOrder] = {}
        self._snapshots: Dict[str, OrderStatusSnapshot] = {}
        self._pollers: Dict[str, asyncio.Task] = {}

    # ---------------------------
    # Creation
    # ---------------------------
    def build_order_payload(self, request: OffRampRequest) -> Dict[str, Any]:
        return {
            "amount": str(request.quote.amount),
            "rate": request.quote.rate,
            "network": request.chain.network,
            "token": request.token.symbol,
            "recipient": request.recipient.to_provider_payload(),
            "returnAddress": request.return_address,
            "reference": request.reference,
        }

    async def create_order(self, request: OffRampRequest) -> SettlementOrder:
        """
        Create the order for one submission attempt.

        The reference must be fresh for every attempt; it is what makes a
        retried creation safe on the provider side.

        Raises:
            OrderCreationError: recipient unverified, quote expired, or provider failure
            ValidationError: payload incomplete
        """
        if not request.recipient.verified:
            raise OrderCreationError("Please verify account first")
        if request.quote.is_expired(self.config.quote_ttl_seconds):
            raise OrderCreationError("Exchange rate has expired, please fetch a new rate")

        payload = self.build_order_payload(request)
        errors = validate_order_payload(payload)
        if errors:
            raise ValidationError("; ".join(errors), errors)

        context = ErrorContext(chain_id=request.chain.id, token=request.token.symbol, provider=self.provider.name)
        try:
            data = await self.provider.create_order(payload)
        except SettlementProviderError as exc:
            logger.error("Order creation failed for %s: %s", request.reference, exc)
            raise OrderCreationError("Failed to create payment order", context) from exc

        order = SettlementOrder.from_provider(data, reference=request.reference)
        if not order.id or not order.receive_address:
            raise OrderCreationError("Payment order response is missing the receive address", context)
        if not order.amount:
            order.amount = Decimal(payload["amount"])
        if not order.token:
            order.token = request.token.symbol
        if not order.network:
            order.network = request.chain.network

        self._orders[order.id] = order
        self._snapshots[order.id] = OrderStatusSnapshot(order_id=order.id, status=order.status)
        logger.info(
            "Created settlement order %s (reference=%s, valid_until=%s)",
            order.id,
            order.reference,
            order.valid_until,
        )
        return order

    def get_order(self, order_id: str) -> Optional[SettlementOrder]:
        return self._orders.get(order_id)

    def forget(self, order_id: str) -> None:
        """Drop the stored order and snapshot. Polling ending (any way) forgets the order."""
        self._orders.pop(order_id, None)
        self._snapshots.pop(order_id, None)

    # ---------------------------
    # Status
    # ---------------------------
    def snapshot(self, order_id: str) -> Optional[OrderStatusSnapshot]:
        return self._snapshots.get(order_id)

    async def fetch_status(self, order_id: str) -> OrderStatusSnapshot:
        """One status lookup; updates the stored order and snapshot."""
        try:
            data = await self.provider.get_order(order_id)
        except SettlementProviderError as exc:
            raise OrderPollingError(
                "Failed to fetch order status",
                ErrorContext(order_id=order_id, provider=self.provider.name),
            ) from exc

        status = OrderStatus.parse(data.get("status"))
        # Lookups for orders this manager is not tracking (the status proxy) are not stored
        snapshot = self._snapshots.get(order_id) or OrderStatusSnapshot(order_id=order_id, status=status)
        snapshot.status = status
        snapshot.transaction_hash = data.get("transactionHash") or data.get("txHash") or snapshot.transaction_hash
        snapshot.last_error = None
        snapshot.updated_at = utcnow()

        order = self._orders.get(order_id)
        if order is not None:
            order.status = status
        return snapshot

    async def poll_status(self, order_id: str, on_update: Optional[StatusCallback] = None) -> OrderStatusSnapshot:
        """Bounded polling loop; returns the last known snapshot."""
        snapshot = self._snapshots.setdefault(
            order_id,
            OrderStatusSnapshot(order_id=order_id, status=OrderStatus.PENDING),
        )
        snapshot.polling = True
        snapshot.attempts = 0
        try:
            for attempt in range(1, self.max_attempts + 1):
                await self._sleep(self.poll_interval)
                snapshot.attempts = attempt
                previous = snapshot.status
                try:
                    snapshot = await self.fetch_status(order_id)
                except Exception as exc:
                    snapshot.last_error = str(exc)
                    logger.warning("Order %s status poll %d failed: %s", order_id, attempt, exc)
                    continue

                if snapshot.status != previous and on_update is not None:
                    await self._notify(on_update, snapshot)
                if snapshot.status.stops_polling:
                    logger.info("Order %s reached %s after %d polls", order_id, snapshot.status.value, attempt)
                    break
            else:
                logger.info(
                    "Order %s still %s after %d polls; polling stopped",
                    order_id,
                    snapshot.status.value,
                    self.max_attempts,
                )
        finally:
            snapshot.polling = False
            self.forget(order_id)
        return snapshot

    async def _notify(self, callback: StatusCallback, snapshot: OrderStatusSnapshot) -> None:
        try:
            result = callback(snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.warning("Order status callback failed for %s: %s", snapshot.order_id, exc)

    def start_polling(self, order_id: str, on_update: Optional[StatusCallback] = None) -> asyncio.Task:
        """Run ``poll_status`` in the background; returns the existing task if one is running."""
        existing = self._pollers.get(order_id)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.create_task(self.poll_status(order_id, on_update), name=f"order-poll-{order_id}")
        self._pollers[order_id] = task
        task.add_done_callback(lambda done: self._forget_poller(order_id, done))
        return task

    def _forget_poller(self, order_id: str, task: asyncio.Task) -> None:
        if self._pollers.get(order_id) is task:
            del self._pollers[order_id]

    def is_polling(self, order_id: str) -> bool:
        task = self._pollers.get(order_id)
        return task is not None and not task.done()

    async def stop_polling(self, order_id: str) -> None:
        task = self._pollers.pop(order_id, None)
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.forget(order_id)

    async def aclose(self) -> None:
        for order_id in list(self._pollers):
            await self.stop_polling(order_id)
