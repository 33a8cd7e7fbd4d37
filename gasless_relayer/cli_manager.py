import logging
import os
import re
import socket
import sys
from argparse import ArgumentParser, ArgumentTypeError, Namespace
from dataclasses import dataclass
from enum import Enum
from importlib.metadata import version

from .typing import Address

GASLESS_HEADER = "\n".join(
    (
        r"   ______           __",
        r"  / ____/___ ______/ /__  __________",
        r" / / __/ __ `/ ___/ / _ \/ ___/ ___/",
        r"/ /_/ / /_/ (__  ) /  __(__  |__  ) ",
        r"\____/\__,_/____/_/\___/____/____/  ",
    )
)
__version__ = version("gasless_relayer")

DEFAULT_ENTRYPOINT = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
NERO_TESTNET_CHAIN_ID = 689


class Environment(Enum):
    development = "development"
    production = "production"

    def __str__(self):
        return self.value


@dataclass()
class InitData:
    rpc_url: str
    rpc_port: int
    rpc_cors_domain: str
    ethereum_node_url: str
    bundler_url: str
    paymaster_url: str
    paymaster_api_key: str | None
    entrypoint: Address
    chain_id: int
    rpc_timeout: float
    receipt_timeout: float
    receipt_poll_interval: float
    health_check_interval: int
    environment: Environment
    is_metrics: bool
    client_version: str

    def get_service_info_json(self) -> dict:
        return {
            "service": "gasless-relayer",
            "version": self.client_version,
            "gaslessTransactionType": 0,
            "network": "NERO Chain Testnet"
            if self.chain_id == NERO_TESTNET_CHAIN_ID else "custom",
            "chainId": self.chain_id,
            "entrypoint": self.entrypoint,
            "bundlerUrl": self.bundler_url,
            "paymasterUrl": self.paymaster_url,
            "environment": self.environment.value,
            "endpoints": {
                "rpc": "/rpc",
                "websocket": "/ws",
                "health": "/health",
            },
        }


def address(ep: str):
    address_pattern = "^0x[0-9,a-f,A-F]{40}$"
    if not isinstance(ep, str) or re.match(address_pattern, ep) is None:
        raise ArgumentTypeError(f"Wrong address format : {ep}")
    return Address(ep)


def unsigned_int(value):
    ivalue = int(value)
    if ivalue < 0:
        raise ArgumentTypeError(
                "%s is an invalid unsigned int value" % value)
    return ivalue


def positive_float(value):
    fvalue = float(value)
    if fvalue <= 0:
        raise ArgumentTypeError(
                "%s is an invalid positive value" % value)
    return fvalue


def url(ep: str):
    url_pattern = "^(https|http)://[^\\s/$.?#].[^\\s]*$"
    if not isinstance(ep, str) or re.match(url_pattern, ep) is None:
        raise ArgumentTypeError(f"Wrong url format : {ep}")
    return ep


def url_no_port(ep: str):
    address_pattern = "^(((https|http)://)?((?:[a-zA-Z0-9-]+\\.)+[a-zA-Z]{2,}|(?:\\d{1,3}\\.){3}\\d{1,3}|localhost))$"
    if not isinstance(ep, str) or re.match(address_pattern, ep) is None:
        raise ArgumentTypeError(f"Wrong url format : {ep}")
    return ep


def _get_env_or_default(env_var, default, value_type):
    """
    Helper function to get the value from an environment variable or return the default value.
    """
    value = os.getenv(env_var, None)
    if value is not None:
        return value_type(value)
    return default


def _str_to_bool(value: str) -> bool:
    return value.lower() == "true"


def initialize_argument_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="gasless-relayer",
        description="Type 0 gasless transaction relayer for ERC-4337 v0.6",
    )

    parser.add_argument(
        "--rpc_url",
        type=url_no_port,
        help="RPC serve url - defaults to localhost",
        nargs="?",
        const="127.0.0.1",
        default=_get_env_or_default("GASLESS_RPC_URL", "127.0.0.1", str),
    )

    parser.add_argument(
        "--rpc_cors_domain",
        type=str,
        help="rpc cors allowed domain - defaults to *",
        nargs="?",
        const="*",
        default=_get_env_or_default("GASLESS_RPC_CORS_DOMAIN", "*", str),
    )

    parser.add_argument(
        "--rpc_port",
        type=unsigned_int,
        help="RPC serve port - defaults to 3000",
        nargs="?",
        const=3000,
        default=_get_env_or_default("GASLESS_RPC_PORT", 3000, unsigned_int),
    )

    parser.add_argument(
        "--ethereum_node_url",
        type=url,
        help=(
            "Eth Client JSON-RPC Url - "
            "defaults to https://rpc-testnet.nerochain.io"
        ),
        nargs="?",
        const="https://rpc-testnet.nerochain.io",
        default=_get_env_or_default(
            "GASLESS_ETHEREUM_NODE_URL",
            "https://rpc-testnet.nerochain.io",
            str
        ),
    )

    parser.add_argument(
        "--bundler_url",
        type=url,
        help=(
            "Bundler JSON-RPC Url - "
            "defaults to https://bundler-testnet.nerochain.io/"
        ),
        nargs="?",
        const="https://bundler-testnet.nerochain.io/",
        default=_get_env_or_default(
            "GASLESS_BUNDLER_URL",
            "https://bundler-testnet.nerochain.io/",
            str
        ),
    )

    parser.add_argument(
        "--paymaster_url",
        type=url,
        help=(
            "Paymaster JSON-RPC Url - "
            "defaults to https://paymaster-testnet.nerochain.io"
        ),
        nargs="?",
        const="https://paymaster-testnet.nerochain.io",
        default=_get_env_or_default(
            "GASLESS_PAYMASTER_URL",
            "https://paymaster-testnet.nerochain.io",
            str
        ),
    )

    parser.add_argument(
        "--paymaster_api_key",
        type=str,
        help="Paymaster api key sent with every sponsorship request",
        nargs="?",
        default=_get_env_or_default("GASLESS_PAYMASTER_API_KEY", None, str),
    )

    parser.add_argument(
        "--entrypoint",
        type=address,
        help="EntryPoint v0.6 address",
        nargs="?",
        const=DEFAULT_ENTRYPOINT,
        default=_get_env_or_default(
            "GASLESS_ENTRYPOINT", DEFAULT_ENTRYPOINT, address),
    )

    parser.add_argument(
        "--chain_id",
        type=unsigned_int,
        help="chain id - defaults to 689 (NERO testnet)",
        nargs="?",
        default=_get_env_or_default(
            "GASLESS_CHAIN_ID", NERO_TESTNET_CHAIN_ID, unsigned_int),
    )

    parser.add_argument(
        "--rpc_timeout",
        type=positive_float,
        help="Timeout in seconds of every outgoing JSON-RPC request.",
        nargs="?",
        const=30,
        default=_get_env_or_default("GASLESS_RPC_TIMEOUT", 30, positive_float),
    )

    parser.add_argument(
        "--receipt_timeout",
        type=positive_float,
        help="Seconds to wait for a user operation receipt.",
        nargs="?",
        const=120,
        default=_get_env_or_default(
            "GASLESS_RECEIPT_TIMEOUT", 120, positive_float),
    )

    parser.add_argument(
        "--receipt_poll_interval",
        type=positive_float,
        help="Seconds between user operation receipt polls.",
        nargs="?",
        const=2,
        default=_get_env_or_default(
            "GASLESS_RECEIPT_POLL_INTERVAL", 2, positive_float),
    )

    parser.add_argument(
        "--health_check_interval",
        type=unsigned_int,
        help=(
            "Interval in seconds between node health checks - "
            "0 disables the periodic check"
        ),
        nargs="?",
        const=600,
        default=_get_env_or_default(
            "GASLESS_HEALTH_CHECK_INTERVAL", 600, unsigned_int),
    )

    parser.add_argument(
        "--environment",
        type=Environment,
        choices=list(Environment),
        help="Deployment environment",
        nargs="?",
        const=Environment.development,
        default=_get_env_or_default(
            "GASLESS_ENVIRONMENT", Environment.development, Environment),
    )

    parser.add_argument(
        "--verbose",
        help="show debug log",
        nargs="?",
        const=True,
        default=_get_env_or_default("GASLESS_VERBOSE", False, _str_to_bool),
    )

    parser.add_argument(
        "--metrics",
        help="enable metrics collection",
        nargs="?",
        const=True,
        default=_get_env_or_default("GASLESS_METRICS", False, _str_to_bool),
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s version " + __version__,
    )

    return parser


def parse_args(cmd_args: list[str]) -> InitData:
    argument_parser: ArgumentParser = initialize_argument_parser()
    args = argument_parser.parse_args(cmd_args)
    init_data = get_init_data(args)
    return init_data


def init_logging(args: Namespace):
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(message)s",
        datefmt="%b %d %H:%M:%S",
    )

    logging.getLogger("GaslessRelayer")


def check_if_valid_rpc_url_and_port(rpc_url, rpc_port) -> None:
    try:
        socket.getaddrinfo(rpc_url, rpc_port)
    except socket.gaierror:
        logging.critical(f"Invalid RPC url {rpc_url} and port {rpc_port}")
        sys.exit(1)


def get_init_data(args: Namespace) -> InitData:
    init_logging(args)

    check_if_valid_rpc_url_and_port(args.rpc_url, args.rpc_port)

    if args.paymaster_api_key is None:
        logging.warning(
            "No paymaster api key configured, "
            "sponsorship requests will be sent without one"
        )

    ret = InitData(
        args.rpc_url,
        args.rpc_port,
        args.rpc_cors_domain,
        args.ethereum_node_url,
        args.bundler_url,
        args.paymaster_url,
        args.paymaster_api_key,
        args.entrypoint,
        args.chain_id,
        args.rpc_timeout,
        args.receipt_timeout,
        args.receipt_poll_interval,
        args.health_check_interval,
        args.environment,
        args.metrics,
        __version__,
    )

    if args.verbose:
        print(GASLESS_HEADER)
        print("version : " + __version__)

    logging.info(
        "Starting *** Gasless Relayer *** - type 0 sponsored user operations")

    return ret
