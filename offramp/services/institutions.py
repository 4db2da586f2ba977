"""Payout institutions (banks, mobile-money operators) per fiat currency."""

from __future__ import annotations

import logging
from typing import List

from ..core.errors import OffRampError
from ..core.models import Institution
from ..providers.paycrest import PaycrestProvider, SettlementProviderError

logger = logging.getLogger(__name__)


class InstitutionsUnavailableError(OffRampError):
    pass


class InstitutionDirectory:
    def __init__(self, provider: PaycrestProvider) -> None:
        self.provider = provider

    async def institutions(self, currency: str) -> List[Institution]:
        if not currency:
            raise InstitutionsUnavailableError("Currency is required to load institutions")
        try:
            raw = await self.provider.get_institutions(currency.upper())
        except SettlementProviderError as exc:
            logger.warning("Institutions lookup failed for %s: %s", currency, exc)
            raise InstitutionsUnavailableError("Failed to fetch institutions") from exc

        return [
            Institution(
                code=str(item["code"]),
                name=str(item.get("name") or item["code"]),
                type=str(item.get("type") or "bank"),
            )
            for item in raw
            if isinstance(item, dict) and item.get("code")
        ]
