import asyncio
import logging

from gasless_relayer.clients.chain_client import ChainClient
from gasless_relayer.pipeline.exceptions import RpcClientError


async def periodic_health_check_cron_job(
    chain_client: ChainClient,
    target_chain_id: int,
    interval: int
):
    while True:
        await check_node_health(chain_client, target_chain_id)
        await asyncio.sleep(interval)


async def check_node_health(
    chain_client: ChainClient,
    target_chain_id: int,
) -> tuple[bool, dict]:
    node_url = chain_client.ethereum_node_url
    success, message = await check_live_ethereum_rpc(
        chain_client, target_chain_id)
    if success:
        return True, {node_url: {"status": "OK", "message": message}}
    else:
        logging.critical(message)
        return False, {node_url: {"status": "ERROR", "message": message}}


async def check_live_ethereum_rpc(
    chain_client: ChainClient, target_chain_id: int
) -> tuple[bool, str]:
    node_url = chain_client.ethereum_node_url
    try:
        chain_id = await chain_client.get_chain_id()
    except RpcClientError as excp:
        return False, f"Error when connecting to Eth node {node_url}: {excp}"

    if chain_id == target_chain_id:
        return True, "eth_chainId successful"
    else:
        return False, (
            f"Invalid chain id {hex(chain_id)} returned by {node_url}, "
            f"expected {hex(target_chain_id)}"
        )
