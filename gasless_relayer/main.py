import asyncio
import logging
import sys
from functools import partial
from signal import SIGINT, SIGTERM

import uvloop

from gasless_relayer.clients.bundler_client import BundlerClient
from gasless_relayer.clients.chain_client import ChainClient
from gasless_relayer.clients.paymaster_client import PaymasterClient
from gasless_relayer.event_bus_manager.endpoint import NotificationEndpoint
from gasless_relayer.metrics.metrics import run_metrics_server
from gasless_relayer.pipeline.gasless_pipeline import GaslessPipeline
from gasless_relayer.rpc.health import (check_live_ethereum_rpc,
                                        periodic_health_check_cron_job)
from gasless_relayer.utils.SignalHaltError import immediate_exit

from .cli_manager import InitData, parse_args
from .rpc.rpc_http_server import run_rpc_http_server


def build_pipeline(
    init_data: InitData,
    notification_endpoint: NotificationEndpoint | None = None,
) -> GaslessPipeline:
    chain_client = ChainClient(
        init_data.ethereum_node_url, init_data.rpc_timeout)
    bundler_client = BundlerClient(
        init_data.bundler_url,
        init_data.entrypoint,
        chain_client,
        init_data.rpc_timeout,
        init_data.receipt_timeout,
        init_data.receipt_poll_interval,
    )
    paymaster_client = PaymasterClient(
        init_data.paymaster_url,
        init_data.entrypoint,
        init_data.rpc_timeout,
    )
    return GaslessPipeline(
        chain_client,
        bundler_client,
        paymaster_client,
        init_data.chain_id,
        init_data.paymaster_api_key,
        notification_endpoint,
    )


async def main(cmd_args=sys.argv[1:], loop=None) -> None:
    init_data = parse_args(cmd_args)
    if loop is None:
        loop = asyncio.get_running_loop()

    for signal_enum in [SIGINT, SIGTERM]:
        exit_func = partial(immediate_exit, signal_enum=signal_enum, loop=loop)
        loop.add_signal_handler(signal_enum, exit_func)

    notification_endpoint = NotificationEndpoint("gasless_notifications")
    pipeline = build_pipeline(init_data, notification_endpoint)

    success, message = await check_live_ethereum_rpc(
        pipeline.chain_client, init_data.chain_id)
    if not success:
        logging.warning(message)

    async with asyncio.TaskGroup() as task_group:
        task_group.create_task(
            run_rpc_http_server(
                pipeline=pipeline,
                notification_endpoint=notification_endpoint,
                target_chain_id=init_data.chain_id,
                service_info=init_data.get_service_info_json(),
                host=init_data.rpc_url,
                rpc_cors_domain=init_data.rpc_cors_domain,
                port=init_data.rpc_port,
            )
        )
        if init_data.is_metrics:
            run_metrics_server(
                host=init_data.rpc_url,
            )
        if init_data.health_check_interval > 0:
            task_group.create_task(
                periodic_health_check_cron_job(
                    chain_client=pipeline.chain_client,
                    target_chain_id=init_data.chain_id,
                    interval=init_data.health_check_interval,
                )
            )
        else:
            # keep serving once the site is started
            task_group.create_task(asyncio.Event().wait())


def run() -> None:
    uvloop.run(main())


if __name__ == "__main__":
    run()
