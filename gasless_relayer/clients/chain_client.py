from dataclasses import dataclass

from gasless_relayer.pipeline.exceptions import RpcClientError
from gasless_relayer.typing import Address
from gasless_relayer.utils.eth_client_utils import (
    DEFAULT_RPC_TIMEOUT_SECONDS, send_rpc_request)


@dataclass
class ChainClient:
    """JSON-RPC handle on the base chain node."""
    ethereum_node_url: str
    timeout: float = DEFAULT_RPC_TIMEOUT_SECONDS

    async def get_transaction_count(self, address: Address) -> int:
        result = await send_rpc_request(
            self.ethereum_node_url,
            "eth_getTransactionCount",
            [address, "latest"],
            self.timeout,
        )
        return _parse_hex_quantity("eth_getTransactionCount", result)

    async def get_chain_id(self) -> int:
        result = await send_rpc_request(
            self.ethereum_node_url, "eth_chainId", [], self.timeout)
        return _parse_hex_quantity("eth_chainId", result)

    async def call(self, to: Address, data: str) -> str:
        result = await send_rpc_request(
            self.ethereum_node_url,
            "eth_call",
            [{"to": to, "data": data}, "latest"],
            self.timeout,
        )
        if not isinstance(result, str) or result[:2] != "0x":
            raise RpcClientError(f"Invalid eth_call result : {result}")
        return result


def _parse_hex_quantity(method: str, result) -> int:
    if isinstance(result, str) and result[:2] == "0x":
        try:
            return int(result, 16)
        except ValueError:
            pass
    raise RpcClientError(f"Invalid {method} result : {result}")
