from dataclasses import dataclass
from typing import Any

from gasless_relayer.typing import Address
from gasless_relayer.user_operation.models import SponsorshipContext
from gasless_relayer.user_operation.user_operation import UserOperation
from gasless_relayer.utils.eth_client_utils import (
    DEFAULT_RPC_TIMEOUT_SECONDS, send_rpc_request)

SPONSOR_USER_OPERATION_METHOD = "pm_sponsor_userop"


@dataclass
class PaymasterClient:
    """JSON-RPC handle on the paymaster service."""
    paymaster_url: str
    entrypoint: Address
    timeout: float = DEFAULT_RPC_TIMEOUT_SECONDS

    async def sponsor_user_operation(
        self,
        user_operation: UserOperation,
        sponsorship_context: SponsorshipContext,
    ) -> Any:
        """Returns the raw result, checked by the SponsorshipRequester."""
        return await send_rpc_request(
            self.paymaster_url,
            SPONSOR_USER_OPERATION_METHOD,
            [
                user_operation.get_user_operation_json(),
                self.entrypoint,
                sponsorship_context.get_sponsorship_context_json(),
            ],
            self.timeout,
        )
