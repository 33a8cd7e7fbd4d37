import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from gasless_relayer.pipeline.exceptions import (ReceiptTimeoutError,
                                                 RpcClientError)
from gasless_relayer.typing import Address, UserOperationHash
from gasless_relayer.user_operation.models import UserOperationReceiptInfo
from gasless_relayer.user_operation.user_operation import (
    UserOperation, is_user_operation_hash)
from gasless_relayer.utils.encode import encode_get_user_op_hash_call_data
from gasless_relayer.utils.eth_client_utils import (
    DEFAULT_RPC_TIMEOUT_SECONDS, send_rpc_request)

from .chain_client import ChainClient

DEFAULT_RECEIPT_TIMEOUT_SECONDS = 120
DEFAULT_RECEIPT_POLL_INTERVAL_SECONDS = 2


@dataclass
class BundlerClient:
    """
    JSON-RPC handle on the bundler. The EntryPoint contract is reached
    through the chain node for getUserOpHash.
    """
    bundler_url: str
    entrypoint: Address
    chain_client: ChainClient
    timeout: float = DEFAULT_RPC_TIMEOUT_SECONDS
    receipt_timeout: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS
    receipt_poll_interval: float = DEFAULT_RECEIPT_POLL_INTERVAL_SECONDS

    async def estimate_user_operation_gas(
        self, user_operation: UserOperation
    ) -> Any:
        return await send_rpc_request(
            self.bundler_url,
            "eth_estimateUserOperationGas",
            [user_operation.get_user_operation_json(), self.entrypoint],
            self.timeout,
        )

    async def get_user_operation_hash(
        self, user_operation: UserOperation
    ) -> bytes:
        call_data = encode_get_user_op_hash_call_data(user_operation)
        result = await self.chain_client.call(self.entrypoint, call_data)
        if not is_user_operation_hash(result):
            raise RpcClientError(f"Invalid getUserOpHash result : {result}")
        return bytes.fromhex(result[2:])

    async def send_user_operation(
        self, user_operation: UserOperation
    ) -> "PendingUserOperation":
        result = await send_rpc_request(
            self.bundler_url,
            "eth_sendUserOperation",
            [user_operation.get_user_operation_json(), self.entrypoint],
            self.timeout,
        )
        if not is_user_operation_hash(result):
            raise RpcClientError(
                f"Invalid eth_sendUserOperation result : {result}")
        return PendingUserOperation(UserOperationHash(result), self)

    async def get_user_operation_receipt(
        self, user_operation_hash: UserOperationHash
    ) -> UserOperationReceiptInfo | None:
        result = await send_rpc_request(
            self.bundler_url,
            "eth_getUserOperationReceipt",
            [user_operation_hash],
            self.timeout,
        )
        if result is None:
            return None
        try:
            return UserOperationReceiptInfo.from_json(result)
        except (KeyError, TypeError):
            raise RpcClientError(
                f"Invalid eth_getUserOperationReceipt result : {result}")


@dataclass
class PendingUserOperation:
    user_operation_hash: UserOperationHash
    bundler_client: BundlerClient

    async def wait(self) -> UserOperationReceiptInfo:
        """
        Polls the bundler until the operation receipt is available.
        Raises ReceiptTimeoutError once the receipt timeout elapses.
        """
        try:
            async with asyncio.timeout(self.bundler_client.receipt_timeout):
                while True:
                    try:
                        receipt = await self.bundler_client.get_user_operation_receipt(
                            self.user_operation_hash)
                    except RpcClientError as excp:
                        logging.debug(
                            f"Receipt poll for {self.user_operation_hash} failed: {excp}")
                        receipt = None
                    if receipt is not None:
                        return receipt
                    await asyncio.sleep(self.bundler_client.receipt_poll_interval)
        except TimeoutError:
            raise ReceiptTimeoutError(
                f"No receipt for {self.user_operation_hash} after "
                f"{self.bundler_client.receipt_timeout} seconds"
            )
