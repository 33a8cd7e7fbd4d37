import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from gasless_relayer.event_bus_manager.endpoint import NotificationEndpoint
from gasless_relayer.pipeline.gasless_pipeline import GaslessPipeline
from gasless_relayer.user_operation.models import (GaslessRequest,
                                                   UserOperationReceiptInfo)
from gasless_relayer.user_operation.user_operation import UserOperation

ENTRYPOINT = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
CHAIN_ID = 689

# well known hardhat development account 0
SIGNER_PRIVATE_KEY = (
    "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80")
SIGNER_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

SENDER = "0x" + "11" * 20
TARGET = "0x" + "22" * 20
PAYMASTER_AND_DATA = "0x" + "33" * 20 + "44" * 65
USER_OPERATION_HASH = "0x" + "55" * 32
TRANSACTION_HASH = "0x" + "66" * 32


def receipt_json(user_operation_hash=USER_OPERATION_HASH):
    return {
        "userOpHash": user_operation_hash,
        "sender": SENDER,
        "paymaster": "0x" + "33" * 20,
        "nonce": "0x5",
        "success": True,
        "actualGasCost": "0x0",
        "actualGasUsed": "0x5208",
        "receipt": {
            "transactionHash": TRANSACTION_HASH,
            "blockHash": "0x" + "77" * 32,
            "blockNumber": "0x10",
            "gasUsed": "0x5208",
            "status": "0x1",
        },
    }


class FakeChainClient:
    def __init__(self, nonce=5, chain_id=CHAIN_ID, error=None):
        self.ethereum_node_url = "http://chain.local"
        self.nonce = nonce
        self.chain_id = chain_id
        self.error = error
        self.calls = []

    async def get_transaction_count(self, address):
        self.calls.append(("eth_getTransactionCount", address))
        if self.error is not None:
            raise self.error
        return self.nonce

    async def get_chain_id(self):
        self.calls.append(("eth_chainId",))
        if self.error is not None:
            raise self.error
        return self.chain_id


@dataclass
class FakePendingUserOperation:
    user_operation_hash: str
    receipt: Any = None
    error: Exception | None = None

    async def wait(self):
        if self.error is not None:
            raise self.error
        return self.receipt


class FakeBundlerClient:
    def __init__(
        self,
        estimate: Any = None,
        estimate_error: Exception | None = None,
        user_operation_hash: bytes = bytes.fromhex("55" * 32),
        hash_error: Exception | None = None,
        send_error: Exception | None = None,
        wait_error: Exception | None = None,
    ):
        self.entrypoint = ENTRYPOINT
        self.estimate = estimate if estimate is not None else {
            "callGasLimit": "0x9c40",
            "verificationGasLimit": "0x186a0",
            "preVerificationGas": "0xb5e0",
            "maxFeePerGas": "0x3b9aca00",
            "maxPriorityFeePerGas": "0x3b9aca00",
        }
        self.estimate_error = estimate_error
        self.user_operation_hash = user_operation_hash
        self.hash_error = hash_error
        self.send_error = send_error
        self.wait_error = wait_error
        self.estimated: list[UserOperation] = []
        self.hashed: list[UserOperation] = []
        self.sent: list[UserOperation] = []

    async def estimate_user_operation_gas(self, user_operation):
        self.estimated.append(user_operation)
        if self.estimate_error is not None:
            raise self.estimate_error
        return self.estimate

    async def get_user_operation_hash(self, user_operation):
        self.hashed.append(user_operation)
        if self.hash_error is not None:
            raise self.hash_error
        return self.user_operation_hash

    async def send_user_operation(self, user_operation):
        self.sent.append(user_operation)
        if self.send_error is not None:
            raise self.send_error
        return FakePendingUserOperation(
            USER_OPERATION_HASH,
            UserOperationReceiptInfo.from_json(receipt_json()),
            self.wait_error,
        )


class FakePaymasterClient:
    def __init__(self, result: Any = None, error: Exception | None = None):
        self.result = result if result is not None else {
            "paymasterAndData": PAYMASTER_AND_DATA,
        }
        self.error = error
        self.requests = []

    async def sponsor_user_operation(self, user_operation, sponsorship_context):
        self.requests.append((user_operation, sponsorship_context))
        if self.error is not None:
            raise self.error
        return self.result


@dataclass
class PipelineHarness:
    pipeline: GaslessPipeline
    chain_client: FakeChainClient
    bundler_client: FakeBundlerClient
    paymaster_client: FakePaymasterClient
    notification_endpoint: NotificationEndpoint


def build_harness(
    chain_client=None, bundler_client=None, paymaster_client=None
) -> PipelineHarness:
    chain_client = chain_client or FakeChainClient()
    bundler_client = bundler_client or FakeBundlerClient()
    paymaster_client = paymaster_client or FakePaymasterClient()
    notification_endpoint = NotificationEndpoint("test_notifications")
    pipeline = GaslessPipeline(
        chain_client,
        bundler_client,
        paymaster_client,
        CHAIN_ID,
        "test-api-key",
        notification_endpoint,
    )
    return PipelineHarness(
        pipeline,
        chain_client,
        bundler_client,
        paymaster_client,
        notification_endpoint,
    )


@pytest.fixture
def harness() -> PipelineHarness:
    return build_harness()


@pytest.fixture
def gasless_request() -> GaslessRequest:
    return GaslessRequest(
        sender=SENDER,
        target=TARGET,
        value="0x0",
        data="0x",
        private_key=SIGNER_PRIVATE_KEY,
    )


@dataclass
class JsonRpcNode:
    """Local JSON-RPC endpoint answering with canned responses per method."""
    responses: dict[str, Any] = field(default_factory=dict)
    requests: list[dict] = field(default_factory=list)
    delay: float = 0
    url: str = ""

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(body)
        if self.delay > 0:
            await asyncio.sleep(self.delay)
        response = self.responses.get(body["method"])
        if callable(response):
            response = response(body)
        if isinstance(response, str):
            return web.Response(text=response)
        if response is None:
            response = {
                "jsonrpc": "2.0",
                "id": body["id"],
                "error": {"code": -32601, "message": "Method not found"},
            }
        return web.json_response(response)


def rpc_result(result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": 1, "result": result}


@pytest_asyncio.fixture
async def json_rpc_node():
    node = JsonRpcNode()
    app = web.Application()
    app.router.add_post("/", node.handle)
    server = TestServer(app)
    await server.start_server()
    node.url = str(server.make_url("/"))
    yield node
    await server.close()
