"""
Rate quotes and the supported-currency list.

One request per quote: no retries and no caching. A failed quote leaves the
amount/currency pair unquoted; it never becomes a zero rate.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional, Union

from ..config import Settings, settings as default_settings
from ..core.chains import Chain, Token
from ..core.errors import ErrorContext, RateUnavailableError, ValidationError
from ..core.fees import estimate_receive_amount, parse_amount
from ..core.models import Currency, Quote, utcnow
from ..providers.paycrest import PaycrestProvider, SettlementProviderError

logger = logging.getLogger(__name__)

# Shown when the currencies lookup fails so the form is never empty
FALLBACK_CURRENCIES: List[Currency] = [
    Currency(code="NGN", name="Nigerian Naira", symbol="₦"),
    Currency(code="KES", name="Kenyan Shilling", symbol="KSh"),
    Currency(code="UGX", name="Ugandan Shilling", symbol="USh"),
    Currency(code="GHS", name="Ghanaian Cedi", symbol="₵"),
    Currency(code="TZS", name="Tanzanian Shilling", symbol="TSh"),
    Currency(code="ZAR", name="South African Rand", symbol="R"),
    Currency(code="EGP", name="Egyptian Pound", symbol="E£"),
    Currency(code="MAD", name="Moroccan Dirham", symbol="DH"),
]


class RateQuoteService:
    def __init__(self, provider: PaycrestProvider, config: Optional[Settings] = None) -> None:
        self.provider = provider
        self.config = config or default_settings
        self._currencies: Optional[List[Currency]] = None
        self.currencies_from_fallback = False

    async def load_currencies(self) -> List[Currency]:
        """Fetch the provider's fiat currencies once; later calls reuse the result."""
        if self._currencies is not None:
            return self._currencies

        try:
            raw = await self.provider.get_currencies()
            currencies = [
                Currency(
                    code=str(item.get("code", "")).upper(),
                    name=str(item.get("name") or item.get("code", "")),
                    symbol=str(item.get("symbol") or ""),
                )
                for item in raw
                if isinstance(item, dict) and item.get("code")
            ]
        except SettlementProviderError as exc:
            logger.warning("Currencies lookup failed, using fallback list: %s", exc)
            currencies = []

        if not currencies:
            currencies = list(FALLBACK_CURRENCIES)
            self.currencies_from_fallback = True
        self._currencies = currencies
        return currencies

    @property
    def currencies(self) -> List[Currency]:
        return list(self._currencies or FALLBACK_CURRENCIES)

    def is_supported_currency(self, code: str) -> bool:
        return any(currency.code == code.upper() for currency in self.currencies)

    async def quote(
        self,
        token: Token,
        amount: Union[str, Decimal],
        currency: str,
        chain: Chain,
    ) -> Quote:
        """Quote ``amount`` of ``token`` into ``currency`` on ``chain``'s network.

        Raises:
            ValidationError: amount not a positive decimal or currency unsupported
            RateUnavailableError: transport or provider failure
        """
        value = parse_amount(amount)
        code = (currency or "").upper()
        if not code or not self.is_supported_currency(code):
            raise ValidationError(f"Unsupported currency: {currency}")

        try:
            rate = await self.provider.get_rate(token.symbol, str(value), code, chain.network)
            rate_value = Decimal(rate)
            if not rate_value.is_finite() or rate_value <= 0:
                raise ValueError(f"Unusable rate {rate!r}")
        except (SettlementProviderError, ArithmeticError, ValueError) as exc:
            logger.warning("Rate fetch failed for %s %s->%s: %s", value, token.symbol, code, exc)
            raise RateUnavailableError(
                "Failed to fetch rate",
                ErrorContext(chain_id=chain.id, token=token.symbol, provider=self.provider.name),
            ) from exc

        return Quote(
            token=token.symbol,
            amount=value,
            currency=code,
            rate=rate,
            network=chain.network,
            fetched_at=utcnow(),
        )

    async def display_rate(self, token: Token, currency: str, chain: Chain) -> Optional[Decimal]:
        """Rate for one token unit, for the rate ticker. ``None`` when unavailable."""
        try:
            quote = await self.quote(token, "1", currency, chain)
        except (RateUnavailableError, ValidationError):
            return None
        return quote.rate_decimal

    def estimate_receive(self, quote: Quote) -> Decimal:
        return estimate_receive_amount(quote.amount, quote.rate, self.config.sender_fee_rate)
