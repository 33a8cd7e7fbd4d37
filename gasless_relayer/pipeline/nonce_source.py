from gasless_relayer.clients.chain_client import ChainClient
from gasless_relayer.pipeline.exceptions import NonceFetchError, RpcClientError
from gasless_relayer.typing import Address


async def get_nonce(chain_client: ChainClient, sender: Address) -> int:
    try:
        return await chain_client.get_transaction_count(sender)
    except RpcClientError as excp:
        raise NonceFetchError(f"Error getting nonce for {sender}: {excp}")
