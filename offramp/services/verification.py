"""Destination account verification."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..core.errors import ErrorContext, VerificationFailedError
from ..core.models import RecipientAccount
from ..providers.paycrest import PaycrestProvider, SettlementProviderError

logger = logging.getLogger(__name__)


class AccountVerifier:
    """
    Checks a bank/mobile-money account with the settlement provider.

    Verification is idempotent and never retried automatically; the user
    retries by asking again.
    """

    def __init__(self, provider: PaycrestProvider) -> None:
        self.provider = provider

    async def verify(self, institution_code: str, account_identifier: str) -> Dict[str, Any]:
        """Return the provider's account details, or raise VerificationFailedError.

        Missing fields fail locally without a network call.
        """
        if not institution_code or not account_identifier:
            raise VerificationFailedError("Institution and account number are required")

        try:
            details = await self.provider.verify_account(institution_code, account_identifier)
        except SettlementProviderError as exc:
            logger.info("Account verification failed for institution %s: %s", institution_code, exc)
            raise VerificationFailedError(
                "Account verification failed",
                ErrorContext(provider=self.provider.name, details={"institution": institution_code}),
            ) from exc
        return details

    async def verify_recipient(self, recipient: RecipientAccount) -> Optional[str]:
        """Verify ``recipient`` in place; returns the account name the provider reports, if any."""
        details = await self.verify(recipient.institution_code, recipient.account_identifier)
        recipient.mark_verified()
        name = details.get("accountName") or details.get("account_name")
        return str(name) if name else None
