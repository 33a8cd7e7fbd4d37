import logging
from typing import Any

from gasless_relayer.clients.paymaster_client import PaymasterClient
from gasless_relayer.pipeline.exceptions import (EncodingError,
                                                 RpcClientError,
                                                 SponsorshipDeniedError)
from gasless_relayer.user_operation.models import (SponsorshipContext,
                                                   SponsorshipResult)
from gasless_relayer.user_operation.user_operation import (
    UserOperation, verify_and_get_bytes, verify_and_get_uint)


class SponsorshipRequester:
    """
    Requests type 0 sponsorship from the paymaster. Any failure is fatal,
    an operation without paymasterAndData is never returned.
    """

    def __init__(self, paymaster_client: PaymasterClient, api_key: str | None):
        self.paymaster_client = paymaster_client
        self.api_key = api_key

    async def sponsor(self, draft: UserOperation) -> SponsorshipResult:
        sponsorship_context = SponsorshipContext(api_key=self.api_key)
        try:
            result = await self.paymaster_client.sponsor_user_operation(
                draft, sponsorship_context)
            return parse_sponsorship_result(result)
        except (RpcClientError, EncodingError) as excp:
            logging.error(
                f"Error sponsoring user operation for {draft.sender}: {excp}")
            raise SponsorshipDeniedError(
                f"Paymaster sponsorship failed: {excp}")


def parse_sponsorship_result(result: Any) -> SponsorshipResult:
    if not isinstance(result, dict):
        raise EncodingError(f"Invalid paymaster response : {result}")
    paymaster_and_data = verify_and_get_bytes(
        "paymasterAndData", result.get("paymasterAndData"))
    if len(paymaster_and_data) == 0:
        raise EncodingError("Paymaster returned empty paymasterAndData")

    max_fee_per_gas = None
    if result.get("maxFeePerGas") is not None:
        max_fee_per_gas = verify_and_get_uint(
            "maxFeePerGas", result["maxFeePerGas"])
    max_priority_fee_per_gas = None
    if result.get("maxPriorityFeePerGas") is not None:
        max_priority_fee_per_gas = verify_and_get_uint(
            "maxPriorityFeePerGas", result["maxPriorityFeePerGas"])

    return SponsorshipResult(
        paymaster_and_data=paymaster_and_data,
        max_fee_per_gas=max_fee_per_gas,
        max_priority_fee_per_gas=max_priority_fee_per_gas,
    )
