"""
Calldata and transaction builders for ERC-20 token movements.
"""

from typing import Optional

from .models import GasEstimate, PreparedTransaction


ERC20_TRANSFER_SELECTOR = "0xa9059cbb"   # transfer(address,uint256)
ERC20_BALANCE_OF_SELECTOR = "0x70a08231"  # balanceOf(address)
ERC20_DECIMALS_SELECTOR = "0x313ce567"    # decimals()


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith("0x") else value


def encode_uint256(value: int) -> str:
    """Encode a uint256 as a 32-byte hex word (without 0x prefix)."""
    if value < 0:
        raise ValueError("Value must be non-negative")
    if value >= 2**256:
        raise ValueError("Value exceeds uint256")
    return format(value, "064x")


def encode_address(address: str) -> str:
    """Encode an address as a 32-byte hex word (without 0x prefix)."""
    addr = _strip_0x(address).lower()
    if len(addr) != 40:
        raise ValueError(f"Invalid address length: {address}")
    return addr.zfill(64)


def erc20_transfer_data(to_address: str, amount: int) -> str:
    return ERC20_TRANSFER_SELECTOR + encode_address(to_address) + encode_uint256(amount)


def erc20_balance_of_data(owner: str) -> str:
    return ERC20_BALANCE_OF_SELECTOR + encode_address(owner)


def erc20_decimals_data() -> str:
    return ERC20_DECIMALS_SELECTOR


def decode_uint(result: Optional[str]) -> int:
    """Decode a single uint word from an eth_call result."""
    if not result or result == "0x":
        return 0
    return int(_strip_0x(result)[:64] or "0", 16)


class TransactionBuilder:

    @staticmethod
    def build_erc20_transfer(
        chain_id: int,
        from_address: str,
        token_address: str,
        to_address: str,
        amount: int,
        gas_estimate: Optional[GasEstimate] = None,
    ) -> PreparedTransaction:
        """
        Build an ERC20 transfer transaction.

        Args:
            chain_id: The chain ID
            from_address: The sender address
            token_address: The ERC20 token contract
            to_address: The recipient address
            amount: The amount to transfer (in smallest units)
            gas_estimate: Explicit gas price/limit, or None to let the wallet choose

        Returns:
            PreparedTransaction ready to be signed
        """
        return PreparedTransaction(
            chain_id=chain_id,
            from_address=from_address,
            to_address=token_address,
            data=erc20_transfer_data(to_address, amount),
            value=0,
            gas_estimate=gas_estimate,
            description=f"Transfer tokens to {to_address[:10]}...",
        )
