"""
Error Classification

Every failure an off-ramp can hit is mapped onto one category. Provider
adapters raise their own transport errors; services convert them into the
classes below at their boundary, and the orchestrator only ever sees these.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    """Categories of off-ramp errors."""

    CONFIGURATION = "configuration"   # Unsupported token/chain pairing
    QUOTE = "quote"                   # Rate unavailable
    VERIFICATION = "verification"     # Destination account rejected
    ABSTRACTION = "abstraction"       # Gas abstraction session or transfer failed
    BALANCE = "balance"               # Not enough tokens for amount + fee buffer
    ORDER = "order"                   # Settlement order could not be created
    EXECUTION = "execution"           # On-chain submission rejected
    POLLING = "polling"               # Order status lookup failed
    VALIDATION = "validation"         # Local input validation
    WORKFLOW = "workflow"             # Wizard step gating


@dataclass
class ErrorContext:
    """Additional context about an error."""

    chain_id: Optional[int] = None
    token: Optional[str] = None
    order_id: Optional[str] = None
    provider: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class OffRampError(Exception):
    """Base class for every error that may reach the orchestrator."""

    category: ErrorCategory = ErrorCategory.VALIDATION
    recoverable: bool = True

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "message": self.message,
            "recoverable": self.recoverable,
        }


class ConfigurationError(OffRampError):
    """Token/chain pairing is not configured. Raised before any network call."""

    category = ErrorCategory.CONFIGURATION
    recoverable = False


class RateUnavailableError(OffRampError):
    """The provider could not quote the token/amount/currency triple."""

    category = ErrorCategory.QUOTE


class VerificationFailedError(OffRampError):
    category = ErrorCategory.VERIFICATION


class AbstractionError(OffRampError):
    """Gas abstraction failed. Never surfaced to the user; triggers fallback."""

    category = ErrorCategory.ABSTRACTION


class InsufficientBalanceError(OffRampError):
    category = ErrorCategory.BALANCE
    recoverable = False


class OrderCreationError(OffRampError):
    category = ErrorCategory.ORDER


class OrderExpiredError(OrderCreationError):
    """The settlement order's validUntil passed before funds could settle."""


class ExecutionError(OffRampError):
    category = ErrorCategory.EXECUTION
    recoverable = False


class GasEstimationError(ExecutionError):
    """Gas price or gas limit could not be estimated."""


class OrderPollingError(OffRampError):
    category = ErrorCategory.POLLING


class ValidationError(OffRampError):
    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class InvalidTransitionError(OffRampError):
    """Attempted wizard transition is not in the transition map."""

    category = ErrorCategory.WORKFLOW

    def __init__(self, from_step: str, to_step: str):
        super().__init__(f"Cannot move from {from_step} to {to_step}")
        self.from_step = from_step
        self.to_step = to_step


class StepBlockedError(OffRampError):
    """The current step's requirements are not met yet."""

    category = ErrorCategory.WORKFLOW
