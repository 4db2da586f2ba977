"""
Transaction Execution Layer

- tx_builder: ERC-20 calldata and transaction construction
- userop: ERC-4337 user operations and smart account calldata
- gasless: fee-abstracted transfer clients (embedded and external wallets)
- executor: TransactionExecutor, abstracted path with standard fallback

Import the executor and gasless clients from their modules; this package
stays import-light because the provider adapters depend on its builders.
"""

from .models import ExecutionPath, ExecutionResult, GasEstimate, GaslessTransfer, PreparedTransaction
from .tx_builder import TransactionBuilder

__all__ = [
    "ExecutionPath",
    "ExecutionResult",
    "GasEstimate",
    "GaslessTransfer",
    "PreparedTransaction",
    "TransactionBuilder",
]
