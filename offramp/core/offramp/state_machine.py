"""
Off-ramp Wizard State Machine

Step order and the transitions allowed between steps. The orchestrator
decides *whether* a step's requirements are met; this module only decides
*which* moves are legal.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from ..errors import InvalidTransitionError
from ..models import utcnow


class OffRampStep(str, Enum):
    AMOUNT = "amount"
    DESTINATION = "destination"
    INSTITUTION = "institution"
    ACCOUNT = "account"
    REVIEW = "review"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


# Form steps in display order
FORM_STEPS: List[OffRampStep] = [
    OffRampStep.AMOUNT,
    OffRampStep.DESTINATION,
    OffRampStep.INSTITUTION,
    OffRampStep.ACCOUNT,
    OffRampStep.REVIEW,
]


@dataclass
class StepTransition:
    from_step: OffRampStep
    to_step: OffRampStep
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


class OffRampWizard:
    """
    Tracks the current step and validates every move against ``TRANSITIONS``.

    Back-navigation to any earlier form step is allowed everywhere except
    while ``PROCESSING``; the in-flight submission must not be interrupted.
    """

    TRANSITIONS: Dict[OffRampStep, Set[OffRampStep]] = {
        OffRampStep.AMOUNT: {
            OffRampStep.DESTINATION,
        },
        OffRampStep.DESTINATION: {
            OffRampStep.INSTITUTION,
            OffRampStep.AMOUNT,
        },
        OffRampStep.INSTITUTION: {
            OffRampStep.ACCOUNT,
            OffRampStep.DESTINATION,
            OffRampStep.AMOUNT,
        },
        OffRampStep.ACCOUNT: {
            OffRampStep.REVIEW,
            OffRampStep.INSTITUTION,
            OffRampStep.DESTINATION,
            OffRampStep.AMOUNT,
        },
        OffRampStep.REVIEW: {
            OffRampStep.PROCESSING,
            OffRampStep.ACCOUNT,
            OffRampStep.INSTITUTION,
            OffRampStep.DESTINATION,
            OffRampStep.AMOUNT,
        },
        OffRampStep.PROCESSING: {
            OffRampStep.SUCCESS,
            OffRampStep.ERROR,
        },
        OffRampStep.SUCCESS: {
            OffRampStep.AMOUNT,       # Start a new off-ramp
        },
        OffRampStep.ERROR: {
            OffRampStep.REVIEW,       # Resubmit with a fresh reference
            OffRampStep.ACCOUNT,
            OffRampStep.INSTITUTION,
            OffRampStep.DESTINATION,
            OffRampStep.AMOUNT,
        },
    }

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.step = OffRampStep.AMOUNT
        self.history: List[StepTransition] = []
        self.logger = logger or logging.getLogger(__name__)

    @property
    def is_processing(self) -> bool:
        return self.step == OffRampStep.PROCESSING

    @property
    def is_submitted(self) -> bool:
        return self.step in (OffRampStep.PROCESSING, OffRampStep.SUCCESS, OffRampStep.ERROR)

    def can_transition_to(self, to_step: OffRampStep) -> bool:
        return to_step in self.TRANSITIONS.get(self.step, set())

    def transition_to(self, to_step: OffRampStep, reason: Optional[str] = None) -> StepTransition:
        """Move to ``to_step``; raises InvalidTransitionError if the move is not allowed."""
        if not self.can_transition_to(to_step):
            raise InvalidTransitionError(self.step.value, to_step.value)

        transition = StepTransition(from_step=self.step, to_step=to_step, reason=reason)
        self.history.append(transition)
        self.logger.debug(
            "Off-ramp step %s -> %s%s",
            transition.from_step.value,
            to_step.value,
            f" ({reason})" if reason else "",
        )
        self.step = to_step
        return transition

    def next_form_step(self) -> Optional[OffRampStep]:
        """The step after the current one in the forward flow."""
        if self.step == OffRampStep.REVIEW:
            return OffRampStep.PROCESSING
        if self.step in FORM_STEPS:
            return FORM_STEPS[FORM_STEPS.index(self.step) + 1]
        return None

    def previous_form_step(self) -> Optional[OffRampStep]:
        if self.step == OffRampStep.ERROR:
            return OffRampStep.REVIEW
        if self.step == OffRampStep.SUCCESS:
            return OffRampStep.AMOUNT
        if self.step in FORM_STEPS and self.step != OffRampStep.AMOUNT:
            return FORM_STEPS[FORM_STEPS.index(self.step) - 1]
        return None

    def back(self) -> StepTransition:
        target = self.previous_form_step()
        if target is None:
            raise InvalidTransitionError(self.step.value, "previous step")
        return self.transition_to(target, reason="back")
