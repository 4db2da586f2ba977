"""
Transaction execution models and types.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class ExecutionPath(str, Enum):
    """Which route actually moved the funds."""
    ABSTRACTED = "abstracted"
    STANDARD = "standard"


@dataclass
class GasEstimate:
    """Gas parameters for a standard-path submission."""
    gas_limit: int
    gas_price_wei: int
    estimated_cost_wei: int = 0

    def __post_init__(self):
        if self.estimated_cost_wei == 0:
            self.estimated_cost_wei = self.gas_limit * self.gas_price_wei


@dataclass
class PreparedTransaction:
    """A transaction ready to be handed to the wallet for signing."""
    chain_id: int
    from_address: str
    to_address: str
    data: str                                   # Encoded calldata (hex)
    value: int = 0
    gas_estimate: Optional[GasEstimate] = None
    description: str = ""

    def to_call(self) -> Dict[str, Any]:
        """Call object for eth_call / eth_estimateGas."""
        call = {
            "from": self.from_address,
            "to": self.to_address,
            "data": self.data,
        }
        if self.value:
            call["value"] = hex(self.value)
        return call

    def to_dict(self) -> Dict[str, Any]:
        """Transaction object for eth_sendTransaction."""
        tx = self.to_call()
        tx["value"] = hex(self.value)
        tx["chainId"] = hex(self.chain_id)
        if self.gas_estimate:
            tx["gas"] = hex(self.gas_estimate.gas_limit)
            tx["gasPrice"] = hex(self.gas_estimate.gas_price_wei)
        return tx


@dataclass
class GaslessTransfer:
    """Outcome of a fee-abstracted transfer once the provider accepted it."""
    transaction_hash: Optional[str] = None
    user_op_hash: Optional[str] = None
    bundle_id: Optional[str] = None


@dataclass
class ExecutionResult:
    """What TransactionExecutor.execute returns: the receipt plus the path taken."""
    executed_via: ExecutionPath
    transaction_hash: Optional[str]
    chain_id: int
    amount: int
    receive_address: str
    user_op_hash: Optional[str] = None
    bundle_id: Optional[str] = None
    gas_estimate: Optional[GasEstimate] = None
    abstraction_error: Optional[str] = None     # Why the abstracted path was abandoned
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def fell_back(self) -> bool:
        return self.executed_via == ExecutionPath.STANDARD and self.abstraction_error is not None

    @property
    def reference_hash(self) -> Optional[str]:
        return self.transaction_hash or self.user_op_hash or self.bundle_id
