"""
Tests for the JSON-RPC providers: node transport, bundler and paymaster.
"""

import json

import httpx
import pytest

from offramp.core.execution.userop import UserOperation
from offramp.providers.bundler import BundlerError, BundlerProvider
from offramp.providers.paymaster import PaymasterError, PaymasterProvider
from offramp.providers.rpc import ChainRpcClient, HttpRpcTransport, RpcError

TOKEN = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
OWNER = "0x1234567890123456789012345678901234567890"
ENTRY_POINT = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"


def jsonrpc_transport(results, seen=None):
    """MockTransport answering JSON-RPC calls from a method -> result table."""

    def handler(request):
        body = json.loads(request.content)
        if seen is not None:
            seen.append(body)
        result = results[body["method"]]
        if isinstance(result, dict) and "error" in result:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], **result})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    return httpx.MockTransport(handler)


def sample_user_op():
    return UserOperation(
        sender=OWNER,
        nonce=1,
        init_code="0x",
        call_data="0xb61d27f6",
        call_gas_limit=100_000,
        verification_gas_limit=150_000,
        pre_verification_gas=50_000,
        max_fee_per_gas=2_000_000_000,
        max_priority_fee_per_gas=1_000_000_000,
    )


class TestHttpRpcTransport:

    @pytest.mark.asyncio
    async def test_request_envelope(self):
        seen = []
        transport = HttpRpcTransport("https://rpc.test", transport=jsonrpc_transport({"eth_chainId": "0x2105"}, seen))

        assert await ChainRpcClient(transport).chain_id() == 8453
        await transport.aclose()

        assert seen[0]["jsonrpc"] == "2.0"
        assert seen[0]["method"] == "eth_chainId"
        assert seen[0]["params"] == []

    @pytest.mark.asyncio
    async def test_token_balance_over_http(self):
        seen = []
        transport = HttpRpcTransport(
            "https://rpc.test",
            transport=jsonrpc_transport({"eth_call": "0x" + format(42_000_000, "064x")}, seen),
        )

        balance = await ChainRpcClient(transport).token_balance(TOKEN, OWNER)

        assert balance == 42_000_000
        call = seen[0]["params"][0]
        assert call["to"] == TOKEN
        assert call["data"] == "0x70a08231" + OWNER[2:].lower().rjust(64, "0")

    @pytest.mark.asyncio
    async def test_error_object(self):
        transport = HttpRpcTransport(
            "https://rpc.test",
            transport=jsonrpc_transport({"eth_estimateGas": {"error": {"code": -32000, "message": "execution reverted"}}}),
        )

        with pytest.raises(RpcError) as exc_info:
            await ChainRpcClient(transport).estimate_gas({"to": TOKEN})

        assert exc_info.value.code == -32000
        assert "execution reverted" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_http_failure(self):
        transport = HttpRpcTransport("https://rpc.test", transport=httpx.MockTransport(lambda r: httpx.Response(502)))

        with pytest.raises(RpcError):
            await ChainRpcClient(transport).get_gas_price()

    @pytest.mark.asyncio
    async def test_send_transaction_requires_hash(self):
        transport = HttpRpcTransport("https://rpc.test", transport=jsonrpc_transport({"eth_sendTransaction": None}))

        with pytest.raises(RpcError, match="no transaction hash"):
            await ChainRpcClient(transport).send_transaction({"to": TOKEN})


class TestBundlerProvider:

    @pytest.mark.asyncio
    async def test_send_user_operation(self, settings):
        seen = []
        bundler = BundlerProvider(settings, transport=jsonrpc_transport({"eth_sendUserOperation": "0xophash"}, seen))

        assert await bundler.send_user_operation(sample_user_op(), ENTRY_POINT) == "0xophash"

        user_op, entry_point = seen[0]["params"]
        assert entry_point == ENTRY_POINT
        assert user_op["callGasLimit"] == hex(100_000)
        assert user_op["paymasterAndData"] == "0x"

    @pytest.mark.asyncio
    async def test_estimate_gas(self, settings):
        estimate = {"callGasLimit": "0x186a0", "verificationGasLimit": "0x249f0", "preVerificationGas": "0xc350"}
        bundler = BundlerProvider(settings, transport=jsonrpc_transport({"eth_estimateUserOperationGas": estimate}))

        result = await bundler.estimate_user_operation_gas(sample_user_op(), ENTRY_POINT)

        assert result.call_gas_limit == 100_000
        assert result.verification_gas_limit == 150_000
        assert result.pre_verification_gas == 50_000

    @pytest.mark.asyncio
    async def test_receipt(self, settings):
        receipt = {
            "success": True,
            "receipt": {"transactionHash": "0xtx", "blockNumber": "0x10", "status": "0x1"},
        }
        bundler = BundlerProvider(settings, transport=jsonrpc_transport({"eth_getUserOperationReceipt": receipt}))

        result = await bundler.get_user_operation_receipt("0xophash")

        assert result.success is True
        assert result.transaction_hash == "0xtx"
        assert result.block_number == 16

    @pytest.mark.asyncio
    async def test_receipt_not_yet_available(self, settings):
        bundler = BundlerProvider(settings, transport=jsonrpc_transport({"eth_getUserOperationReceipt": None}))

        assert await bundler.get_user_operation_receipt("0xophash") is None

    @pytest.mark.asyncio
    async def test_unconfigured(self, settings):
        bundler = BundlerProvider(settings, rpc_url="")

        with pytest.raises(BundlerError, match="not configured"):
            await bundler.send_user_operation(sample_user_op(), ENTRY_POINT)
        assert (await bundler.health_check())["status"] == "disabled"


class TestPaymasterProvider:

    @pytest.mark.asyncio
    async def test_sponsor_with_token_context(self, settings):
        seen = []
        paymaster = PaymasterProvider(
            settings,
            transport=jsonrpc_transport({"pm_sponsorUserOperation": {"paymasterAndData": "0xpm"}}, seen),
        )

        result = await paymaster.sponsor_user_operation(
            sample_user_op(),
            ENTRY_POINT,
            PaymasterProvider.token_fee_context(TOKEN),
        )

        assert result == "0xpm"
        assert seen[0]["params"][2] == {"mode": "ERC20", "token": TOKEN}

    @pytest.mark.asyncio
    async def test_invalid_sponsorship(self, settings):
        paymaster = PaymasterProvider(settings, transport=jsonrpc_transport({"pm_sponsorUserOperation": {}}))

        with pytest.raises(PaymasterError):
            await paymaster.sponsor_user_operation(sample_user_op(), ENTRY_POINT)
