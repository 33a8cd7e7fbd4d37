import logging

from gasless_relayer.clients.bundler_client import BundlerClient
from gasless_relayer.pipeline.exceptions import RpcClientError
from gasless_relayer.user_operation.models import (Hashed, HashedLocally,
                                                   UserOperationHashResult)
from gasless_relayer.user_operation.user_operation import UserOperation
from gasless_relayer.utils.encode import get_user_operation_hash


class OperationHasher:
    def __init__(self, bundler_client: BundlerClient, chain_id: int):
        self.bundler_client = bundler_client
        self.chain_id = chain_id

    async def hash(self, user_operation: UserOperation) -> UserOperationHashResult:
        try:
            user_operation_hash = await self.bundler_client.get_user_operation_hash(
                user_operation)
        except RpcClientError as excp:
            logging.warning(
                "EntryPoint getUserOpHash failed, signing a locally computed "
                f"hash for {user_operation.sender}: {excp}"
            )
            return HashedLocally(self.hash_locally(user_operation), str(excp))
        return Hashed(user_operation_hash)

    def hash_locally(self, user_operation: UserOperation) -> bytes:
        # only matches the on-chain hash for EntryPoint v0.6 packing
        return get_user_operation_hash(
            user_operation, self.bundler_client.entrypoint, self.chain_id)
