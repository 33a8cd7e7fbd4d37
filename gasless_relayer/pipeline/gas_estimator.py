import logging
from typing import Any

from gasless_relayer.clients.bundler_client import BundlerClient
from gasless_relayer.pipeline.exceptions import (EncodingError,
                                                 RpcClientError)
from gasless_relayer.user_operation.models import (FALLBACK_GAS_ESTIMATE,
                                                   Defaulted, Estimated,
                                                   GasEstimate,
                                                   GasEstimationResult)
from gasless_relayer.user_operation.user_operation import (
    UserOperation, verify_and_get_uint)

REQUIRED_GAS_FIELDS = [
    "callGasLimit",
    "verificationGasLimit",
    "preVerificationGas",
]


class GasEstimator:
    """
    Asks the bundler for gas limits. Estimation failures are never fatal:
    the fixed fallback estimate is returned as a Defaulted result instead.
    """

    def __init__(self, bundler_client: BundlerClient):
        self.bundler_client = bundler_client

    async def estimate(self, draft: UserOperation) -> GasEstimationResult:
        try:
            result = await self.bundler_client.estimate_user_operation_gas(
                draft)
            gas_estimate = parse_gas_estimate(result)
        except (RpcClientError, EncodingError) as excp:
            logging.info(
                f"Gas estimation for {draft.sender} degraded to the fallback "
                f"estimate: {excp}"
            )
            return Defaulted(FALLBACK_GAS_ESTIMATE, str(excp))
        return Estimated(gas_estimate)


def parse_gas_estimate(result: Any) -> GasEstimate:
    if not isinstance(result, dict):
        raise EncodingError(f"Invalid gas estimate response : {result}")
    for field_name in REQUIRED_GAS_FIELDS:
        if result.get(field_name) is None:
            raise EncodingError(f"Gas estimate missing {field_name} field")

    # fee caps are optional, the paymaster sets the authoritative values
    return GasEstimate(
        call_gas_limit=verify_and_get_uint(
            "callGasLimit", result["callGasLimit"]),
        verification_gas_limit=verify_and_get_uint(
            "verificationGasLimit", result["verificationGasLimit"]),
        pre_verification_gas=verify_and_get_uint(
            "preVerificationGas", result["preVerificationGas"]),
        max_fee_per_gas=verify_and_get_uint(
            "maxFeePerGas", result.get("maxFeePerGas") or "0x0"),
        max_priority_fee_per_gas=verify_and_get_uint(
            "maxPriorityFeePerGas",
            result.get("maxPriorityFeePerGas") or "0x0"),
    )
