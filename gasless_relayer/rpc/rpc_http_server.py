import asyncio
import json
import logging
import traceback
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from importlib.metadata import version
from typing import Any, Callable

import aiohttp_cors
from aiohttp import WSMsgType, web
from aiohttp.abc import AbstractAccessLogger
from prometheus_client import Summary

from gasless_relayer.clients.chain_client import ChainClient
from gasless_relayer.event_bus_manager.endpoint import NotificationEndpoint
from gasless_relayer.pipeline.exceptions import (GaslessException,
                                                 GaslessExceptionCode)
from gasless_relayer.pipeline.gasless_pipeline import GaslessPipeline
from gasless_relayer.rpc.health import check_node_health
from gasless_relayer.rpc.jsonrpc import (RPCFault, RPCInvalidMethodParams,
                                         validate_and_load_json_rpc_request)
from gasless_relayer.user_operation.models import Defaulted, GaslessRequest
from gasless_relayer.user_operation.user_operation import (
    GASLESS_TRANSACTION_TYPE, is_gasless_transaction)

RESPONSE_LOG = ContextVar('RESPONSE_LOG', default=dict())


class AccessLogger(AbstractAccessLogger):
    def log(self, request, response, time):
        if time >= 1:
            time_str = f"{round(time, 3)}s"
        elif time >= 0.001:
            time_str = f"{round(time*1000, 3)}ms"
        else:
            time_str = f"{round(time*1000_000, 3)}μs"

        log_obj = RESPONSE_LOG.get()

        referer = request.headers.get('Referer')
        agent = request.headers.get('User-Agent')
        base_log = (
            f'{request.remote} '
            f'"{request.method} {request.path}" '
            f'done in {time_str}: {response.status} '
            f'"{referer}" "{agent}" '
        )
        if "is_error" in log_obj:
            method = log_obj["method"]
            id = log_obj["id"]
            if log_obj["is_error"]:
                error_code = log_obj["error_code"]
                error_message = log_obj["error_message"]
                self.logger.warning(
                    base_log +
                    f"{method} RPC served - reqId:{id} - "
                    f"error code:{error_code} - error message:{error_message}"
                )
            else:
                self.logger.info(
                    base_log +
                    f"{method} RPC served - reqId:{id}"
                )
        else:
            self.logger.info(base_log)


@dataclass
class Success:
    payload: Any


@dataclass
class Error:
    error_code: int
    error_message: str
    error_data: dict | None = None


REQUEST_TIME_gasless_executeTransaction = Summary(
    "request_processing_seconds_gasless_executeTransaction",
    "Time spent processing request gasless_executeTransaction",
)
REQUEST_TIME_gasless_sponsorUserOperation = Summary(
    "request_processing_seconds_gasless_sponsorUserOperation",
    "Time spent processing request gasless_sponsorUserOperation",
)
REQUEST_TIME_gasless_estimateGas = Summary(
    "request_processing_seconds_gasless_estimateGas",
    "Time spent processing request gasless_estimateGas",
)


def _failure_data(message: str) -> dict:
    return {
        "success": False,
        "type": GASLESS_TRANSACTION_TYPE,
        "gasSponsored": False,
        "error": message,
    }


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@REQUEST_TIME_gasless_executeTransaction.time()
async def gasless_executeTransaction(
    pipeline: GaslessPipeline, request_json: dict
):
    request = GaslessRequest.from_json(request_json)
    logging.info(
        f"Processing type 0 gasless transaction request for: {request.sender}")
    result = await pipeline.run(request)
    result_json = result.get_result_json()
    if result.success:
        return Success(result_json)
    else:
        return Error(
            result.error.exception_code.value,
            result.error.message,
            result_json,
        )


@REQUEST_TIME_gasless_sponsorUserOperation.time()
async def gasless_sponsorUserOperation(
    pipeline: GaslessPipeline, user_operation_json: dict
):
    sponsorship = await pipeline.sponsor_only(user_operation_json)
    return Success({
        "success": True,
        "type": GASLESS_TRANSACTION_TYPE,
        "sponsorData": sponsorship.get_sponsorship_result_json(),
        "message": "UserOp sponsored successfully with type 0",
        "timestamp": _timestamp(),
    })


@REQUEST_TIME_gasless_estimateGas.time()
async def gasless_estimateGas(pipeline: GaslessPipeline, request_json: dict):
    request = GaslessRequest.from_json(request_json)
    user_operation, estimation = await pipeline.estimate_only(request)
    return Success({
        "success": True,
        "type": GASLESS_TRANSACTION_TYPE,
        "gasEstimate": estimation.gas_estimate.get_gas_estimate_json(),
        "gasEstimateDefaulted": isinstance(estimation, Defaulted),
        "gasSponsored": is_gasless_transaction(user_operation),
        "timestamp": _timestamp(),
    })


async def gasless_getTransactionStatus(
    pipeline: GaslessPipeline, user_operation_hash: str
):
    status = pipeline.get_transaction_status(user_operation_hash)
    return Success({"success": True} | status)


async def gasless_info(service_info: dict, *args):
    if len(args) > 0:
        raise RPCInvalidMethodParams()
    return Success(service_info)


async def web3_clientVersion(*args):
    if len(args) > 0:
        raise RPCInvalidMethodParams()
    return Success("gasless-relayer/" + version("gasless_relayer"))


def build_methods(
    pipeline: GaslessPipeline, service_info: dict
) -> dict[str, Callable]:
    return {
        "gasless_executeTransaction": partial(
            gasless_executeTransaction, pipeline),
        "gasless_sponsorUserOperation": partial(
            gasless_sponsorUserOperation, pipeline),
        "gasless_estimateGas": partial(gasless_estimateGas, pipeline),
        "gasless_getTransactionStatus": partial(
            gasless_getTransactionStatus, pipeline),
        "gasless_info": partial(gasless_info, service_info),
        "web3_clientVersion": web3_clientVersion,
    }


async def exception_handler_decorator(
    method: Callable, params: list
) -> Success | Error:
    try:
        return await method(*params)
    except GaslessException as excp:
        return Error(
            excp.exception_code.value, excp.message, _failure_data(excp.message))
    except RPCFault:
        raise
    except TypeError as err:
        raise RPCInvalidMethodParams(str(err))
    except Exception as excp:
        logging.error(traceback.format_exc())
        logging.error(str(excp))
        return Error(
            GaslessExceptionCode.InternalError.value,
            "Unexpected Error",
            _failure_data("Unexpected Error"),
        )


async def process_rpc_request(
    methods: dict[str, Callable], req_str: str
) -> dict | None:
    """
    Runs one JSON-RPC request and returns the json response, or None for
    a notification.
    """
    method = None
    try:
        method, params, id = validate_and_load_json_rpc_request(
            req_str, methods)
        logging.debug(f"request: {method} {id}")
        response = await exception_handler_decorator(methods[method], params)
        if id is None or id == "null":  # no or "null" id is assumed to be a notification
            return None
    except RPCFault as err:
        response = Error(err.error_code, err.error_message)
        id = None

    json_response = {
        "jsonrpc": "2.0",
        "id": id
    }

    if isinstance(response, Success):
        RESPONSE_LOG.set(
            {
                "is_error": False,
                "id": id,
                "method": method
            }
        )
        json_response["result"] = response.payload
    elif isinstance(response, Error):
        RESPONSE_LOG.set(
            {
                "is_error": True,
                "id": id,
                "method": method,
                "error_code": response.error_code,
                "error_message": response.error_message,
            }
        )
        json_response["error"] = {
            "code": response.error_code,
            "message": response.error_message
        }
        if response.error_data is not None:
            json_response["error"]["data"] = response.error_data
    else:
        logging.critical("unexpected response type returned.")

    return json_response


async def handle(methods: dict[str, Callable], request: web.Request) -> web.Response:
    req_str = await request.text()
    json_response = await process_rpc_request(methods, req_str)
    if json_response is None:
        return web.Response()  # return an empty response
    return web.Response(
        text=json.dumps(json_response),
        content_type="application/json",
    )


async def forward_notifications(
    ws: web.WebSocketResponse, queue: asyncio.Queue
) -> None:
    while not ws.closed:
        event = await queue.get()
        try:
            await ws.send_json(event)
        except ConnectionResetError:
            logging.debug("websocket closed while forwarding a notification")
            return


async def handle_websocket(
    methods: dict[str, Callable],
    notification_endpoint: NotificationEndpoint,
    request: web.Request
) -> web.WebSocketResponse:
    """
    JSON-RPC over websocket. Every connected client also receives the
    transaction broadcasts published on the notification endpoint.
    """
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    queue = notification_endpoint.subscribe()
    logging.info(f"Client connected: {request.remote}")

    async def answer(data: str):
        json_response = await process_rpc_request(methods, data)
        if json_response is not None and not ws.closed:
            await ws.send_json(json_response)

    forwarder = asyncio.create_task(forward_notifications(ws, queue))
    requests: set[asyncio.Task] = set()
    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                task = asyncio.create_task(answer(msg.data))
                requests.add(task)
                task.add_done_callback(requests.discard)
            elif msg.type == WSMsgType.ERROR:
                logging.warning(
                    f"websocket connection closed with exception {ws.exception()}")
    finally:
        notification_endpoint.unsubscribe(queue)
        tasks = [forwarder, *requests]
        for task in tasks:
            task.cancel()
        for result in await asyncio.gather(*tasks, return_exceptions=True):
            if isinstance(result, Exception):
                logging.warning(f"websocket task failed: {result!r}")
        logging.info(f"Client disconnected: {request.remote}")
    return ws


async def check_health(
    chain_client: ChainClient,
    target_chain_id: int,
    _: web.Request
) -> web.Response:
    nodes_success, nodes_results = await check_node_health(
        chain_client, target_chain_id)

    results = {
        "status": "OK" if nodes_success else "ERROR",
        "service": "gasless-relayer",
        "gaslessTransactionType": GASLESS_TRANSACTION_TYPE,
        "nodes_status": nodes_results,
        "timestamp": _timestamp(),
    }
    results_str = json.dumps(results)

    if nodes_success:
        return web.Response(text=results_str, content_type="application/json")
    else:
        return web.Response(
            text=results_str, status=503, content_type="application/json")


async def service_description(service_info: dict, _: web.Request) -> web.Response:
    return web.json_response(service_info | {"timestamp": _timestamp()})


def create_app(
    pipeline: GaslessPipeline,
    notification_endpoint: NotificationEndpoint,
    target_chain_id: int,
    service_info: dict,
    rpc_cors_domain: str = "*",
) -> web.Application:
    methods = build_methods(pipeline, service_info)

    app = web.Application()
    app.router.add_post("/rpc", partial(handle, methods))
    app.router.add_get(
        "/ws", partial(handle_websocket, methods, notification_endpoint))
    app.router.add_get(
        "/health",
        partial(check_health, pipeline.chain_client, target_chain_id)
    )
    app.router.add_get("/", partial(service_description, service_info))

    cors = aiohttp_cors.setup(
        app,
        defaults={
            rpc_cors_domain: aiohttp_cors.ResourceOptions(
                allow_credentials=True, expose_headers="*", allow_headers="*"
            )
        },
    )
    for route in list(app.router.routes()):
        cors.add(route)
    return app


async def run_rpc_http_server(
    pipeline: GaslessPipeline,
    notification_endpoint: NotificationEndpoint,
    target_chain_id: int,
    service_info: dict,
    host: str = "localhost",
    rpc_cors_domain: str = "*",
    port: int = 3000,
) -> None:
    logging.info(f"Starting HTTP RPC Server at: {host}:{port}/rpc")
    app = create_app(
        pipeline,
        notification_endpoint,
        target_chain_id,
        service_info,
        rpc_cors_domain,
    )
    runner = web.AppRunner(
        app,
        access_log_class=AccessLogger
    )
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
