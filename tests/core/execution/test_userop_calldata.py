"""
Tests for ERC-4337 calldata builders and user operation hashing.
"""

import pytest

from offramp.core.execution.tx_builder import erc20_transfer_data
from offramp.core.execution.userop import (
    UserOperation,
    UserOpGasEstimate,
    build_entrypoint_get_nonce_call,
    build_execute_call_data,
    get_execute_selector,
)

ENTRY_POINT = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
USDC_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"


def make_user_op(**overrides) -> UserOperation:
    fields = dict(
        sender="0x1234567890123456789012345678901234567890",
        nonce=1,
        init_code="0x",
        call_data="0x1234",
        call_gas_limit=100_000,
        verification_gas_limit=150_000,
        pre_verification_gas=50_000,
        max_fee_per_gas=1_000_000_000,
        max_priority_fee_per_gas=1_000_000_000,
    )
    fields.update(overrides)
    return UserOperation(**fields)


def test_execute_wraps_token_transfer() -> None:
    transfer = erc20_transfer_data("0xabababababababababababababababababababab", 1_000_000)
    call_data = build_execute_call_data(USDC_BASE, 0, transfer)
    selector = get_execute_selector("execute(address,uint256,bytes)")

    assert call_data.startswith(selector)
    # selector + (address, value, offset) + length word + 68 bytes padded to 96
    assert len(call_data) == len(selector) + 64 * 3 + 64 + 96 * 2
    assert USDC_BASE[2:].lower() in call_data
    assert transfer[2:] in call_data


def test_selector_override() -> None:
    call_data = build_execute_call_data(USDC_BASE, 0, "0x", selector_override="0xb61d27f6")
    assert call_data.startswith("0xb61d27f6")

    with pytest.raises(ValueError):
        get_execute_selector("execute(address,uint256,bytes)", "0x1234")


def test_get_nonce_call() -> None:
    call = build_entrypoint_get_nonce_call("0x1234567890123456789012345678901234567890")
    assert len(call) == 10 + 64 * 2
    assert call.endswith("0" * 64)


def test_user_op_hash_ignores_signature_but_binds_chain() -> None:
    op = make_user_op()
    signed = make_user_op(signature="0x" + "99" * 65)

    assert op.user_op_hash(ENTRY_POINT, 8453) == signed.user_op_hash(ENTRY_POINT, 8453)
    assert op.user_op_hash(ENTRY_POINT, 8453) != op.user_op_hash(ENTRY_POINT, 137)
    assert op.user_op_hash(ENTRY_POINT, 8453) != make_user_op(paymaster_and_data="0xee").user_op_hash(ENTRY_POINT, 8453)


def test_rpc_dict_and_gas_estimate() -> None:
    estimate = UserOpGasEstimate.from_rpc(
        {"callGasLimit": "0x10", "verificationGasLimit": "0x20", "preVerificationGas": "0x30"}
    )
    op = make_user_op().with_gas(estimate)
    rpc = op.to_rpc_dict()

    assert rpc["callGasLimit"] == "0x10"
    assert rpc["verificationGasLimit"] == "0x20"
    assert rpc["preVerificationGas"] == "0x30"
    assert rpc["paymasterAndData"] == "0x"
