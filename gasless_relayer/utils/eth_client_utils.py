import json
import logging
from typing import Any

from aiohttp import ClientError, ClientSession, ClientTimeout

from gasless_relayer.pipeline.exceptions import RpcClientError

DEFAULT_RPC_TIMEOUT_SECONDS = 30


async def send_rpc_request(
    node_url: str,
    method: str,
    params: list | None = None,
    timeout: float = DEFAULT_RPC_TIMEOUT_SECONDS,
) -> Any:
    """
    Sends one JSON-RPC 2.0 request and returns its "result".
    There is no retry: any transport failure, invalid json or rpc error
    raises RpcClientError.
    """
    json_request = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": method,
        "params": params if params is not None else [],
    }
    headers = {
        "content-type": "application/json",
    }
    try:
        async with ClientSession(timeout=ClientTimeout(total=timeout)) as session:
            async with session.post(
                node_url,
                json=json_request,
                headers=headers
            ) as response:
                resp = await response.read()
    except TimeoutError:
        raise RpcClientError(f"{method} to {node_url} timed out")
    except ClientError as excp:
        raise RpcClientError(f"{method} to {node_url} failed: {excp}")

    try:
        json_result = json.loads(resp)
    except json.decoder.JSONDecodeError:
        logging.error(f"Invalid json response from {node_url} for {method}")
        raise RpcClientError(f"Invalid json response for {method}")

    if not isinstance(json_result, dict):
        raise RpcClientError(f"Invalid json-rpc response for {method}")

    if "error" in json_result:
        error = json_result["error"]
        if isinstance(error, dict) and "message" in error:
            err_message = error["message"]
        else:
            err_message = str(error)
        raise RpcClientError(
            f"{method} failed: {err_message}",
            error if isinstance(error, dict) else None
        )
    if "result" not in json_result:
        raise RpcClientError(f"{method} returned no result")
    return json_result["result"]
