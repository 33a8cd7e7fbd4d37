import logging
from prometheus_client import Counter, start_http_server

SPONSORED_TRANSACTIONS = Counter(
    "gasless_sponsored_transactions",
    "Gasless transactions confirmed with paymaster sponsorship",
)
FAILED_TRANSACTIONS = Counter(
    "gasless_failed_transactions",
    "Gasless transactions that reached the failed state",
    ["stage"],
)
GAS_ESTIMATION_DEFAULTED = Counter(
    "gasless_gas_estimation_defaulted",
    "Runs that used the fallback gas estimate",
)
HASH_FALLBACK_USED = Counter(
    "gasless_hash_fallback_used",
    "Runs that signed a locally computed user operation hash",
)


def run_metrics_server(host="localhost", port=8000):
    """
    run prometheus metrics server
    """
    logging.info(f"Starting Metrics Http Server at: {host}:{port}")
    start_http_server(port, addr=host)
