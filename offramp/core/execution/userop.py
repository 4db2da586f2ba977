"""
ERC-4337 (EntryPoint v0.6) UserOperation models, hashing and calldata.
"""

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from eth_utils import keccak

from .tx_builder import encode_address, encode_uint256

# Placeholder signature with a valid shape, used for gas estimation before
# the real signature exists.
DUMMY_SIGNATURE = (
    "0xfffffffffffffffffffffffffffffff0000000000000000000000000000000007"
    "aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa1c"
)


def _to_hex(value: int) -> str:
    return hex(value)


def _hex_bytes(value: str) -> bytes:
    text = value[2:] if value.startswith("0x") else value
    return bytes.fromhex(text)


@dataclass
class UserOperation:
    """
    ERC-4337 UserOperation payload.

    Values are supplied in raw units (wei / gas units) and encoded as hex
    for RPC calls.
    """
    sender: str
    nonce: int
    init_code: str
    call_data: str
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    paymaster_and_data: str = "0x"
    signature: str = "0x"

    def to_rpc_dict(self) -> Dict[str, Any]:
        return {
            "sender": self.sender,
            "nonce": _to_hex(self.nonce),
            "initCode": self.init_code,
            "callData": self.call_data,
            "callGasLimit": _to_hex(self.call_gas_limit),
            "verificationGasLimit": _to_hex(self.verification_gas_limit),
            "preVerificationGas": _to_hex(self.pre_verification_gas),
            "maxFeePerGas": _to_hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": _to_hex(self.max_priority_fee_per_gas),
            "paymasterAndData": self.paymaster_and_data,
            "signature": self.signature,
        }

    def with_gas(self, estimate: "UserOpGasEstimate") -> "UserOperation":
        return replace(
            self,
            call_gas_limit=estimate.call_gas_limit,
            verification_gas_limit=estimate.verification_gas_limit,
            pre_verification_gas=estimate.pre_verification_gas,
        )

    def user_op_hash(self, entry_point: str, chain_id: int) -> str:
        """EntryPoint v0.6 ``getUserOpHash``; signature is not part of the hash."""
        packed = (
            encode_address(self.sender)
            + encode_uint256(self.nonce)
            + keccak(_hex_bytes(self.init_code)).hex()
            + keccak(_hex_bytes(self.call_data)).hex()
            + encode_uint256(self.call_gas_limit)
            + encode_uint256(self.verification_gas_limit)
            + encode_uint256(self.pre_verification_gas)
            + encode_uint256(self.max_fee_per_gas)
            + encode_uint256(self.max_priority_fee_per_gas)
            + keccak(_hex_bytes(self.paymaster_and_data)).hex()
        )
        inner = keccak(bytes.fromhex(packed)).hex()
        outer = inner + encode_address(entry_point) + encode_uint256(chain_id)
        return "0x" + keccak(bytes.fromhex(outer)).hex()


@dataclass
class UserOpGasEstimate:
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "UserOpGasEstimate":
        def parse_hex(value: Any) -> int:
            if value is None:
                return 0
            if isinstance(value, int):
                return value
            return int(str(value), 16)

        return cls(
            call_gas_limit=parse_hex(data.get("callGasLimit")),
            verification_gas_limit=parse_hex(data.get("verificationGasLimit")),
            pre_verification_gas=parse_hex(data.get("preVerificationGas")),
        )


@dataclass
class UserOpReceipt:
    user_op_hash: str
    success: bool
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Smart account and EntryPoint calldata
# ---------------------------------------------------------------------------

def _encode_bytes(data: str) -> str:
    hex_data = data[2:] if data.startswith("0x") else data
    if len(hex_data) % 2 != 0:
        raise ValueError("Byte data must have an even-length hex string")
    data_len = len(hex_data) // 2
    padded_len = ((data_len + 31) // 32) * 32
    return encode_uint256(data_len) + hex_data + "0" * ((padded_len - data_len) * 2)


def selector_from_signature(signature: str) -> str:
    return "0x" + keccak(text=signature)[:4].hex()


def get_execute_selector(signature: str, selector_override: Optional[str] = None) -> str:
    if selector_override:
        if not selector_override.startswith("0x") or len(selector_override) != 10:
            raise ValueError("Execute selector override must be 4 bytes (0x........)")
        return selector_override
    return selector_from_signature(signature)


def build_execute_call_data(
    to_address: str,
    value_wei: int,
    data: str,
    *,
    signature: str = "execute(address,uint256,bytes)",
    selector_override: Optional[str] = None,
) -> str:
    """Calldata wrapping one inner call in the smart account's ``execute``."""
    selector = get_execute_selector(signature, selector_override)
    head = (
        encode_address(to_address)
        + encode_uint256(value_wei)
        + encode_uint256(96)  # offset to bytes data
    )
    return selector + head + _encode_bytes(data)


def build_entrypoint_get_nonce_call(sender: str, key: int = 0) -> str:
    """Calldata for EntryPoint.getNonce(address,uint192)."""
    return selector_from_signature("getNonce(address,uint192)") + encode_address(sender) + encode_uint256(key)
