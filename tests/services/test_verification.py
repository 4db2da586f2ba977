"""
Tests for AccountVerifier and InstitutionDirectory.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from offramp.core.errors import VerificationFailedError
from offramp.core.models import RecipientAccount
from offramp.providers.paycrest import SettlementProviderError
from offramp.services.institutions import InstitutionDirectory, InstitutionsUnavailableError
from offramp.services.verification import AccountVerifier


@pytest.fixture
def provider():
    provider = MagicMock()
    provider.name = "paycrest"
    provider.verify_account = AsyncMock(return_value={"accountName": "ADA OBI"})
    provider.get_institutions = AsyncMock(return_value=[
        {"code": "GTBINGLA", "name": "Guaranty Trust Bank", "type": "bank"},
        {"code": "OPAYNGPC", "name": "OPay", "type": "mobile_money"},
        {"name": "missing code"},
    ])
    return provider


class TestAccountVerifier:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("institution,account", [("", "0123456789"), ("GTBINGLA", "")])
    async def test_missing_fields_fail_locally(self, provider, institution, account):
        with pytest.raises(VerificationFailedError):
            await AccountVerifier(provider).verify(institution, account)

        provider.verify_account.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_verify_recipient_marks_verified(self, provider):
        recipient = RecipientAccount(institution_code="GTBINGLA", account_identifier="0123456789")

        name = await AccountVerifier(provider).verify_recipient(recipient)

        assert name == "ADA OBI"
        assert recipient.verified is True

    @pytest.mark.asyncio
    async def test_failure_leaves_recipient_unverified(self, provider):
        provider.verify_account.side_effect = SettlementProviderError("400 invalid account", status_code=400)
        recipient = RecipientAccount(institution_code="GTBINGLA", account_identifier="0000000000")

        with pytest.raises(VerificationFailedError) as exc_info:
            await AccountVerifier(provider).verify_recipient(recipient)

        assert exc_info.value.message == "Account verification failed"
        assert recipient.verified is False

    @pytest.mark.asyncio
    async def test_reverification_after_edit(self, provider):
        recipient = RecipientAccount(institution_code="GTBINGLA", account_identifier="0123456789")
        verifier = AccountVerifier(provider)
        await verifier.verify_recipient(recipient)

        recipient.account_identifier = "9876543210"
        assert recipient.verified is False

        await verifier.verify_recipient(recipient)
        assert recipient.verified is True
        assert provider.verify_account.await_count == 2


class TestInstitutionDirectory:

    @pytest.mark.asyncio
    async def test_institutions(self, provider):
        institutions = await InstitutionDirectory(provider).institutions("ngn")

        assert [i.code for i in institutions] == ["GTBINGLA", "OPAYNGPC"]
        assert institutions[1].type == "mobile_money"
        provider.get_institutions.assert_awaited_once_with("NGN")

    @pytest.mark.asyncio
    async def test_lookup_failure(self, provider):
        provider.get_institutions.side_effect = SettlementProviderError("502")

        with pytest.raises(InstitutionsUnavailableError):
            await InstitutionDirectory(provider).institutions("KES")
