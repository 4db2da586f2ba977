"""
Off-ramp wizard.

Usage:
    orchestrator = services.orchestrator(wallet, chain, USDC)
    await orchestrator.initialize()
    orchestrator.set_amount("100")
    await orchestrator.next()
"""

from .orchestrator import OffRampOrchestrator, SigningLocks, SubmissionOutcome
from .state_machine import OffRampStep, OffRampWizard

__all__ = [
    "OffRampOrchestrator",
    "OffRampStep",
    "OffRampWizard",
    "SigningLocks",
    "SubmissionOutcome",
]
