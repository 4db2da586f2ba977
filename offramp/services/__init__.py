"""Service layer: each service converts provider errors into OffRampError subclasses."""

from .gas_abstraction import FeeInfo, GasAbstractionCoordinator
from .institutions import InstitutionDirectory, InstitutionsUnavailableError
from .ledger import BalanceUnavailableError, TokenLedgerReader
from .quotes import FALLBACK_CURRENCIES, RateQuoteService
from .settlement import SettlementOrderManager, validate_order_payload
from .verification import AccountVerifier

__all__ = [
    "AccountVerifier",
    "BalanceUnavailableError",
    "FALLBACK_CURRENCIES",
    "FeeInfo",
    "GasAbstractionCoordinator",
    "InstitutionDirectory",
    "InstitutionsUnavailableError",
    "RateQuoteService",
    "SettlementOrderManager",
    "TokenLedgerReader",
    "validate_order_payload",
]
