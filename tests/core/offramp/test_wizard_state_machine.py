"""
Tests for the off-ramp wizard transition map.
"""

import pytest

from offramp.core.errors import InvalidTransitionError
from offramp.core.offramp.state_machine import OffRampStep, OffRampWizard


@pytest.fixture
def wizard() -> OffRampWizard:
    return OffRampWizard()


def advance_to_review(wizard: OffRampWizard) -> None:
    for step in (OffRampStep.DESTINATION, OffRampStep.INSTITUTION, OffRampStep.ACCOUNT, OffRampStep.REVIEW):
        wizard.transition_to(step)


class TestOffRampWizard:

    def test_initial_step_is_amount(self, wizard):
        assert wizard.step == OffRampStep.AMOUNT
        assert wizard.is_submitted is False

    def test_forward_flow(self, wizard):
        advance_to_review(wizard)
        wizard.transition_to(OffRampStep.PROCESSING)
        wizard.transition_to(OffRampStep.SUCCESS)

        assert wizard.step == OffRampStep.SUCCESS
        assert [t.to_step for t in wizard.history][-2:] == [OffRampStep.PROCESSING, OffRampStep.SUCCESS]

    def test_cannot_skip_steps(self, wizard):
        with pytest.raises(InvalidTransitionError):
            wizard.transition_to(OffRampStep.REVIEW)

    def test_back_navigation_from_form_steps(self, wizard):
        advance_to_review(wizard)
        wizard.back()
        assert wizard.step == OffRampStep.ACCOUNT
        wizard.transition_to(OffRampStep.AMOUNT)
        assert wizard.step == OffRampStep.AMOUNT

    def test_no_back_navigation_while_processing(self, wizard):
        advance_to_review(wizard)
        wizard.transition_to(OffRampStep.PROCESSING)

        with pytest.raises(InvalidTransitionError):
            wizard.back()
        with pytest.raises(InvalidTransitionError):
            wizard.transition_to(OffRampStep.REVIEW)
        assert wizard.is_processing

    def test_error_returns_to_review(self, wizard):
        advance_to_review(wizard)
        wizard.transition_to(OffRampStep.PROCESSING)
        wizard.transition_to(OffRampStep.ERROR)

        wizard.back()
        assert wizard.step == OffRampStep.REVIEW

    def test_back_from_success_starts_over(self, wizard):
        advance_to_review(wizard)
        wizard.transition_to(OffRampStep.PROCESSING)
        wizard.transition_to(OffRampStep.SUCCESS)

        wizard.back()
        assert wizard.step == OffRampStep.AMOUNT
        assert wizard.history[-1].reason == "back"

    def test_back_from_amount_is_invalid(self, wizard):
        with pytest.raises(InvalidTransitionError):
            wizard.back()

    def test_next_form_step(self, wizard):
        assert wizard.next_form_step() == OffRampStep.DESTINATION
        advance_to_review(wizard)
        assert wizard.next_form_step() == OffRampStep.PROCESSING
