"""
Off-ramp Orchestrator

Sequences balance, quote, institution lookup, account verification, order
creation, token transfer and order tracking into one user-facing operation.

Flow:
    amount -> destination -> institution -> account -> review
        -> processing -> success | error

Every failure reaching this layer is an ``OffRampError``; it is turned into
the single ``error`` string shown on the current step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set, Union

from ...config import Settings, settings as default_settings
from ..chains import Chain, Token
from ..errors import (
    ErrorContext,
    InsufficientBalanceError,
    OffRampError,
    OrderExpiredError,
    StepBlockedError,
    ValidationError,
)
from ..execution.executor import TransactionExecutor
from ..execution.models import ExecutionResult
from ..fees import (
    estimate_receive_amount,
    generate_reference,
    parse_amount,
    settled_receive_amount,
    to_smallest_unit,
)
from ..models import (
    Currency,
    Institution,
    OffRampRequest,
    OrderStatusSnapshot,
    Quote,
    RecipientAccount,
    SettlementOrder,
    TokenBalance,
)
from ..wallet import WalletHandle, wallet_key
from .state_machine import OffRampStep, OffRampWizard

if TYPE_CHECKING:
    from ...services.gas_abstraction import FeeInfo, GasAbstractionCoordinator
    from ...services.institutions import InstitutionDirectory
    from ...services.ledger import TokenLedgerReader
    from ...services.quotes import RateQuoteService
    from ...services.settlement import SettlementOrderManager
    from ...services.verification import AccountVerifier


logger = logging.getLogger(__name__)


class SigningLocks:
    """Wallets with a submission in flight. One instance is shared per process."""

    def __init__(self) -> None:
        self._held: Set[str] = set()

    def try_acquire(self, wallet: WalletHandle) -> bool:
        key = wallet_key(wallet)
        if key in self._held:
            return False
        self._held.add(key)
        return True

    def release(self, wallet: WalletHandle) -> None:
        self._held.discard(wallet_key(wallet))

    def is_held(self, wallet: WalletHandle) -> bool:
        return wallet_key(wallet) in self._held


@dataclass
class SubmissionOutcome:
    step: OffRampStep
    order: Optional[SettlementOrder] = None
    execution: Optional[ExecutionResult] = None
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.step == OffRampStep.SUCCESS


class OffRampOrchestrator:
    """
    One off-ramp for one wallet.

    Services are injected; nothing here constructs provider clients. State
    that invalidates other state is only changed through the setters
    (a new amount or currency discards the quote, a new account discards
    the verification).
    """

    def __init__(
        self,
        wallet: WalletHandle,
        chain: Chain,
        token: Token,
        *,
        quotes: "RateQuoteService",
        verifier: "AccountVerifier",
        institutions: "InstitutionDirectory",
        settlement: "SettlementOrderManager",
        coordinator: "GasAbstractionCoordinator",
        ledger: Optional["TokenLedgerReader"] = None,
        executor: Optional[TransactionExecutor] = None,
        signing_locks: Optional[SigningLocks] = None,
        config: Optional[Settings] = None,
    ):
        self.wallet = wallet
        self.chain = chain
        self.token = token
        self.quotes = quotes
        self.verifier = verifier
        self.institution_directory = institutions
        self.settlement = settlement
        self.coordinator = coordinator
        self.config = config or default_settings
        self.signing_locks = signing_locks or SigningLocks()
        self._ledger = ledger
        self._executor = executor

        self.wizard = OffRampWizard(logger)
        self.amount: Optional[Decimal] = None
        self.currency: Optional[str] = None
        self.recipient = RecipientAccount()
        self.institutions: List[Institution] = []
        self.quote: Optional[Quote] = None
        self.display_rate: Optional[Decimal] = None
        self.balance: Optional[TokenBalance] = None
        self.native_balance: Optional[TokenBalance] = None
        self.order: Optional[SettlementOrder] = None
        self.order_status: Optional[OrderStatusSnapshot] = None
        self.execution: Optional[ExecutionResult] = None
        self.reference: Optional[str] = None
        self.error: Optional[str] = None
        self.success_message: Optional[str] = None

    # ---------------------------
    # Collaborators
    # ---------------------------
    @property
    def ledger(self) -> "TokenLedgerReader":
        if self._ledger is None:
            from ...services.ledger import TokenLedgerReader

            self._ledger = TokenLedgerReader(self.wallet)
        return self._ledger

    @property
    def executor(self) -> TransactionExecutor:
        return self._executor_for(self.chain)

    def _executor_for(self, chain: Chain) -> TransactionExecutor:
        if self._executor is None or self._executor.chain.id != chain.id:
            self._executor = TransactionExecutor(
                self.wallet,
                chain,
                self.token,
                self.coordinator,
                self.config,
            )
        return self._executor

    @property
    def step(self) -> OffRampStep:
        return self.wizard.step

    @property
    def is_processing(self) -> bool:
        return self.wizard.is_processing

    # ---------------------------
    # Setters
    # ---------------------------
    def _ensure_editable(self) -> None:
        # The in-flight submission owns its OffRampRequest until success or error
        if self.is_processing:
            raise StepBlockedError("Cannot change the off-ramp while a transaction is processing")

    def set_amount(self, value: Union[str, Decimal, None]) -> Optional[Decimal]:
        """Store the entered amount; anything that is not a positive number is stored as ``None``."""
        self._ensure_editable()
        try:
            amount = parse_amount(value)
        except ValidationError:
            amount = None
        if amount != self.amount:
            self.amount = amount
            self.quote = None
        return amount

    def set_currency(self, code: Optional[str]) -> None:
        self._ensure_editable()
        normalized = (code or "").upper() or None
        if normalized == self.currency:
            return
        self.currency = normalized
        self.quote = None
        self.display_rate = None
        self.institutions = []
        self.recipient.currency = normalized or ""
        self.recipient.institution_code = ""

    def select_institution(self, code: str) -> None:
        self._ensure_editable()
        self.recipient.institution_code = code

    def set_account(
        self,
        account_identifier: str,
        account_name: Optional[str] = None,
        memo: Optional[str] = None,
    ) -> None:
        self._ensure_editable()
        self.recipient.account_identifier = account_identifier.strip()
        if account_name is not None:
            self.recipient.account_name = account_name.strip()
        if memo is not None:
            self.recipient.memo = memo

    async def set_chain(self, chain: Chain) -> None:
        """Switch chain: quote, balances and the abstraction session are rebuilt."""
        self._ensure_editable()
        if chain.id == self.chain.id:
            return
        self.chain = chain
        self.quote = None
        self.display_rate = None
        self.balance = None
        self.native_balance = None
        self.coordinator.reset(self.wallet)
        await self.prepare_abstraction()

    # ---------------------------
    # Loaders
    # ---------------------------
    async def initialize(self) -> None:
        """Populate the amount step: abstraction session, balances and currencies."""
        self._ensure_editable()
        await self.prepare_abstraction()
        await self.load_balance()
        await self.load_native_balance()
        await self.load_currencies()

    async def prepare_abstraction(self) -> None:
        await self.coordinator.ensure_session(self.wallet, self.chain)

    async def load_balance(self) -> Optional[TokenBalance]:
        try:
            self.balance = await self.ledger.balance_of(self.wallet.address, self.chain, self.token)
        except OffRampError as exc:
            self.balance = None
            self.error = exc.message
            return None
        return self.balance

    async def load_native_balance(self) -> Optional[TokenBalance]:
        try:
            self.native_balance = await self.ledger.native_balance(self.wallet.address, self.chain)
        except OffRampError as exc:
            logger.warning("Native balance unavailable on %s: %s", self.chain.name, exc)
            self.native_balance = None
        return self.native_balance

    async def load_currencies(self) -> List[Currency]:
        currencies = await self.quotes.load_currencies()
        if self.currency is None and self.quotes.is_supported_currency(self.config.default_currency):
            self.set_currency(self.config.default_currency)
        return currencies

    async def fetch_quote(self) -> Optional[Quote]:
        """Quote the current amount and currency. On failure the pair stays unquoted."""
        self._ensure_editable()
        if self.amount is None or not self.currency:
            self.quote = None
            return None

        amount, currency = self.amount, self.currency
        try:
            quote = await self.quotes.quote(self.token, amount, currency, self.chain)
        except OffRampError as exc:
            self.quote = None
            self.error = exc.message
            return None

        # Inputs changed while the request was in flight
        if not quote.matches(self.amount, self.currency):
            return None
        self.quote = quote
        self.error = None
        return quote

    async def refresh_display_rate(self) -> Optional[Decimal]:
        if not self.currency:
            self.display_rate = None
            return None
        self.display_rate = await self.quotes.display_rate(self.token, self.currency, self.chain)
        return self.display_rate

    async def load_institutions(self) -> List[Institution]:
        self._ensure_editable()
        self.institutions = await self.institution_directory.institutions(self.currency or "")
        return self.institutions

    async def verify_account(self) -> bool:
        self._ensure_editable()
        try:
            account_name = await self.verifier.verify_recipient(self.recipient)
        except OffRampError as exc:
            self.error = exc.message
            return False
        if account_name and not self.recipient.account_name:
            self.recipient.account_name = account_name
        self.error = None
        return True

    # ---------------------------
    # Derived values
    # ---------------------------
    def quote_is_fresh(self) -> bool:
        return self.quote is not None and not self.quote.is_expired(self.config.quote_ttl_seconds)

    def required_balance(self) -> Optional[Decimal]:
        """Amount plus the flat token fee when the transfer will be fee-abstracted."""
        if self.amount is None:
            return None
        return self._required_for(self.amount, self.chain)

    def _required_for(self, amount: Decimal, chain: Chain) -> Decimal:
        if self.coordinator.abstraction_active(self.wallet, chain):
            return amount + self.coordinator.estimated_fee(self.wallet, chain, self.token)
        return amount

    @property
    def receive_amount(self) -> Optional[Decimal]:
        """Authoritative once an order exists, otherwise the display estimate."""
        if self.quote is None:
            return None
        if self.order is not None:
            return settled_receive_amount(self.order, self.quote.rate)
        return estimate_receive_amount(self.quote.amount, self.quote.rate, self.config.sender_fee_rate)

    def fee_info(self) -> "FeeInfo":
        return self.coordinator.fee_info(self.wallet, self.chain, self.token)

    def summary(self) -> Dict[str, Any]:
        fees = self.fee_info()
        return {
            "step": self.step.value,
            "chain": self.chain.name,
            "token": self.token.symbol,
            "amount": str(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "rate": self.quote.rate if self.quote else None,
            "display_rate": str(self.display_rate) if self.display_rate is not None else None,
            "receive_amount": str(self.receive_amount) if self.receive_amount is not None else None,
            "balance": str(self.balance.amount) if self.balance else None,
            "fee_currency": fees.fee_currency,
            "estimated_fee": str(fees.estimated_fee),
            "abstraction_active": fees.abstraction_active,
            "recipient_verified": self.recipient.verified,
            "order_id": self.order.id if self.order else None,
            "error": self.error,
        }

    # ---------------------------
    # Navigation
    # ---------------------------
    def blocking_reason(self) -> Optional[str]:
        """Why the current step cannot advance, or ``None`` when it can."""
        step = self.step
        if step == OffRampStep.AMOUNT:
            if self.amount is None:
                return "Enter an amount greater than 0"
            if self.balance is None:
                return "Balance not loaded"
            if self.amount > self.balance.amount:
                return "Insufficient balance"
            return None
        elif step == OffRampStep.DESTINATION:
            return None if self.currency else "Select a currency"
        elif step == OffRampStep.INSTITUTION:
            return None if self.recipient.institution_code else "Select an institution"
        elif step == OffRampStep.ACCOUNT:
            if not self.recipient.account_identifier:
                return "Enter an account number"
            if not self.recipient.account_name:
                return "Enter the account name"
            return None
        elif step == OffRampStep.REVIEW:
            if not self.recipient.verified:
                return "Please verify account first"
            if not self.quote_is_fresh():
                return "Fetch a current exchange rate first"
            if self.signing_locks.is_held(self.wallet):
                return "A transaction is already in progress for this wallet"
            return None
        return f"Cannot continue from {step.value}"

    def can_proceed(self) -> bool:
        return self.blocking_reason() is None

    def _block(self, message: str) -> StepBlockedError:
        self.error = message
        return StepBlockedError(message)

    async def next(self) -> OffRampStep:
        """
        Advance one step, running that transition's side effect.

        Raises:
            StepBlockedError: requirements unmet or the side effect failed; ``error`` is set
        """
        reason = self.blocking_reason()
        if reason is not None:
            raise self._block(reason)

        self.error = None
        step = self.step
        if step == OffRampStep.AMOUNT:
            self.wizard.transition_to(OffRampStep.DESTINATION)
        elif step == OffRampStep.DESTINATION:
            try:
                await self.load_institutions()
            except OffRampError as exc:
                raise self._block(exc.message) from exc
            self.wizard.transition_to(OffRampStep.INSTITUTION)
        elif step == OffRampStep.INSTITUTION:
            self.wizard.transition_to(OffRampStep.ACCOUNT)
        elif step == OffRampStep.ACCOUNT:
            if not self.recipient.verified and not await self.verify_account():
                raise self._block(self.error or "Account verification failed")
            self.wizard.transition_to(OffRampStep.REVIEW)
            if not self.quote_is_fresh():
                await self.fetch_quote()
        elif step == OffRampStep.REVIEW:
            await self.submit()
        return self.step

    def back(self) -> OffRampStep:
        """Go to the previous step. Refused while a submission is processing; from success it starts over."""
        if self.step == OffRampStep.SUCCESS:
            self.reset()
            return self.step
        self.wizard.back()
        return self.step

    def go_to(self, step: OffRampStep) -> OffRampStep:
        """Jump back to an earlier step (e.g. edit the amount from review)."""
        self.wizard.transition_to(step, reason="navigate")
        if step == OffRampStep.REVIEW:
            self.error = None
        return self.step

    # ---------------------------
    # Submission
    # ---------------------------
    async def submit(self) -> SubmissionOutcome:
        """
        Create the settlement order and move the funds.

        Refuses (StepBlockedError, nothing sent) unless at review with a
        verified recipient, a fresh quote and no other submission in flight
        for this wallet. Every failure after that lands on the ``error`` step.
        """
        if self.step != OffRampStep.REVIEW:
            raise self._block("Return to review before submitting")
        reason = self.blocking_reason()
        if reason is not None:
            raise self._block(reason)
        if not self.signing_locks.try_acquire(self.wallet):
            raise self._block("A transaction is already in progress for this wallet")

        request = self._build_request()
        self.wizard.transition_to(OffRampStep.PROCESSING)
        self.error = None
        self.success_message = None
        self.order = None
        self.order_status = None
        self.execution = None
        try:
            balance = await self._check_balance(request)
            order = await self._create_order(request)
            self.execution = await self._execute(request, order, balance.decimals)
        except OffRampError as exc:
            logger.warning("Off-ramp %s failed: %s", self.reference, exc.message)
            return self._fail(exc.message)
        except Exception as exc:
            logger.exception("Off-ramp %s failed unexpectedly", self.reference)
            return self._fail(str(exc) or "Failed to process payment")
        finally:
            self.signing_locks.release(self.wallet)

        self.success_message = order.success_message(request.chain.name)
        self.wizard.transition_to(OffRampStep.SUCCESS)
        logger.info(
            "Off-ramp %s submitted via %s: %s",
            order.reference,
            self.execution.executed_via.value,
            self.execution.reference_hash,
        )
        return SubmissionOutcome(
            step=self.step,
            order=order,
            execution=self.execution,
            message=self.success_message,
        )

    def _build_request(self) -> OffRampRequest:
        """Freeze the reviewed form; the submission never reads the live fields again."""
        self.reference = generate_reference(self.config.order_reference_prefix)
        return OffRampRequest(
            quote=self.quote,
            recipient=replace(self.recipient),
            chain=self.chain,
            token=self.token,
            return_address=self.wallet.address,
            reference=self.reference,
        )

    async def _check_balance(self, request: OffRampRequest) -> TokenBalance:
        balance = await self.ledger.balance_of(self.wallet.address, request.chain, request.token)
        self.balance = balance
        required = self._required_for(request.quote.amount, request.chain)
        if balance.amount < required:
            raise InsufficientBalanceError(
                f"Insufficient {request.token.symbol} balance: need {required}, have {balance.amount}",
                ErrorContext(chain_id=request.chain.id, token=request.token.symbol),
            )
        return balance

    async def _create_order(self, request: OffRampRequest) -> SettlementOrder:
        order = await self.settlement.create_order(request)
        self.order = order
        if order.is_expired():
            self.settlement.forget(order.id)
            raise OrderExpiredError(
                "Payment order expired before the transfer was sent, please submit again",
                ErrorContext(order_id=order.id),
            )
        return order

    async def _execute(self, request: OffRampRequest, order: SettlementOrder, decimals: int) -> ExecutionResult:
        executor = self._executor_for(request.chain)
        result = await executor.execute(order.receive_address, to_smallest_unit(request.quote.amount, decimals))
        if result.fell_back:
            logger.info("Off-ramp %s used the standard path: %s", order.reference, result.abstraction_error)

        # Funds are on their way either way; watch the order so a refund is visible
        self._start_tracking(order)
        if order.is_expired():
            raise OrderExpiredError(
                "Payment order expired while the transfer was confirming, please create a new order",
                ErrorContext(order_id=order.id),
            )
        return result

    def _fail(self, message: str) -> SubmissionOutcome:
        self.error = message
        self.wizard.transition_to(OffRampStep.ERROR, reason=message)
        return SubmissionOutcome(step=self.step, order=self.order, execution=self.execution, error=message)

    def _start_tracking(self, order: SettlementOrder) -> None:
        self.order_status = self.settlement.snapshot(order.id)
        self.settlement.start_polling(order.id, on_update=self._on_order_update)

    def _on_order_update(self, snapshot: OrderStatusSnapshot) -> None:
        self.order_status = snapshot
        logger.info("Order %s is now %s", snapshot.order_id, snapshot.status.value)

    def reset(self) -> None:
        """Start a new off-ramp after success or error. Wallet, chain and currency are kept."""
        if self.step != OffRampStep.AMOUNT:
            self.wizard.transition_to(OffRampStep.AMOUNT, reason="reset")
        self.amount = None
        self.quote = None
        self.recipient = RecipientAccount(currency=self.currency or "")
        self.order = None
        self.order_status = None
        self.execution = None
        self.reference = None
        self.error = None
        self.success_message = None

    async def aclose(self) -> None:
        """Stop tracking this off-ramp's order. The order itself is unaffected."""
        if self.order is not None:
            await self.settlement.stop_polling(self.order.id)
