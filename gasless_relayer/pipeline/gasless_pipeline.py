import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from gasless_relayer.clients.bundler_client import (BundlerClient,
                                                    PendingUserOperation)
from gasless_relayer.clients.chain_client import ChainClient
from gasless_relayer.clients.paymaster_client import PaymasterClient
from gasless_relayer.event_bus_manager.endpoint import NotificationEndpoint
from gasless_relayer.metrics.metrics import (FAILED_TRANSACTIONS,
                                             GAS_ESTIMATION_DEFAULTED,
                                             HASH_FALLBACK_USED,
                                             SPONSORED_TRANSACTIONS)
from gasless_relayer.pipeline.exceptions import (EncodingError,
                                                 GaslessException,
                                                 GaslessExceptionCode,
                                                 RpcClientError,
                                                 SponsorshipDeniedError,
                                                 SubmissionError)
from gasless_relayer.user_operation.models import (Defaulted, GasEstimate,
                                                   GasEstimationResult,
                                                   GaslessRequest,
                                                   HashedLocally,
                                                   SponsorshipResult,
                                                   UserOperationReceiptInfo)
from gasless_relayer.user_operation.user_operation import (
    GASLESS_TRANSACTION_TYPE, UserOperation, is_gasless_transaction,
    is_user_operation_hash, verify_and_get_address, verify_private_key)
from gasless_relayer.utils.encode import encode_execute_call_data

from .gas_estimator import GasEstimator
from .nonce_source import get_nonce
from .operation_hasher import OperationHasher
from .operation_signer import sign_user_operation_hash
from .sponsorship_requester import SponsorshipRequester


class PipelineState(Enum):
    DRAFTED = "Drafted"
    NONCE_SET = "NonceSet"
    GAS_ESTIMATED = "GasEstimated"
    SPONSORED = "Sponsored"
    HASHED = "Hashed"
    SIGNED = "Signed"
    SUBMITTED = "Submitted"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"


@dataclass
class PipelineResult:
    state: PipelineState
    user_operation_hash: str | None = None
    receipt: UserOperationReceiptInfo | None = None
    gas_estimate_defaulted: bool = False
    hash_fallback_used: bool = False
    error: GaslessException | None = None
    failed_stage: PipelineState | None = None
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc))

    @property
    def success(self) -> bool:
        return self.state == PipelineState.CONFIRMED

    @property
    def type(self) -> int:
        return GASLESS_TRANSACTION_TYPE

    @property
    def gas_sponsored(self) -> bool:
        return self.success

    @property
    def transaction_hash(self) -> str | None:
        if self.receipt is None:
            return None
        return self.receipt.receipt.transactionHash

    def get_result_json(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "type": self.type,
            "gasSponsored": self.gas_sponsored,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.user_operation_hash is not None:
            result["userOpHash"] = self.user_operation_hash
        if self.success:
            result["transactionHash"] = self.transaction_hash
            result["receipt"] = self.receipt.raw
            result["gasEstimateDefaulted"] = self.gas_estimate_defaulted
            result["hashFallbackUsed"] = self.hash_fallback_used
            result["message"] = "Gasless transaction (type 0) executed successfully"
        else:
            result["error"] = self.error.message
            result["errorCode"] = self.error.exception_code.value
            result["stage"] = self.failed_stage.value
            result["message"] = "Gasless transaction (type 0) failed"
        return result


class GaslessPipeline:
    """
    Builds, sponsors, signs and submits type 0 user operations.

    The three remote clients are injected; the pipeline keeps no state
    between runs, so concurrent runs are independent.
    """
    chain_client: ChainClient
    bundler_client: BundlerClient
    paymaster_client: PaymasterClient
    notification_endpoint: NotificationEndpoint | None

    def __init__(
        self,
        chain_client: ChainClient,
        bundler_client: BundlerClient,
        paymaster_client: PaymasterClient,
        chain_id: int,
        paymaster_api_key: str | None,
        notification_endpoint: NotificationEndpoint | None = None,
    ):
        self.chain_client = chain_client
        self.bundler_client = bundler_client
        self.paymaster_client = paymaster_client
        self.gas_estimator = GasEstimator(bundler_client)
        self.sponsorship_requester = SponsorshipRequester(
            paymaster_client, paymaster_api_key)
        self.operation_hasher = OperationHasher(bundler_client, chain_id)
        self.notification_endpoint = notification_endpoint

    async def run(self, request: GaslessRequest) -> PipelineResult:
        """
        Executes the whole flow for one request. Errors, expected or not, are
        returned as a failed result, never raised.
        """
        stage = PipelineState.DRAFTED
        estimation: GasEstimationResult | None = None
        hash_fallback_used = False
        pending: PendingUserOperation | None = None
        try:
            private_key = verify_private_key(request.private_key)
            draft = self.build_draft(
                request.sender, request.target, request.value, request.data)
            logging.debug(
                f"Creating type 0 gasless transaction for: {draft.sender}")

            stage = PipelineState.NONCE_SET
            nonce = await get_nonce(self.chain_client, draft.sender)
            draft = replace(draft, nonce=nonce)

            stage = PipelineState.GAS_ESTIMATED
            estimation = await self.gas_estimator.estimate(draft)
            if isinstance(estimation, Defaulted):
                GAS_ESTIMATION_DEFAULTED.inc()
            user_operation = apply_gas_estimate(
                draft, estimation.gas_estimate)

            stage = PipelineState.SPONSORED
            sponsorship = await self.sponsorship_requester.sponsor(
                user_operation)
            user_operation = apply_sponsorship(user_operation, sponsorship)

            stage = PipelineState.HASHED
            hash_result = await self.operation_hasher.hash(user_operation)
            if isinstance(hash_result, HashedLocally):
                hash_fallback_used = True
                HASH_FALLBACK_USED.inc()

            stage = PipelineState.SIGNED
            signature = sign_user_operation_hash(
                hash_result.user_operation_hash, private_key)
            user_operation = replace(user_operation, signature=signature)
            del private_key

            stage = PipelineState.SUBMITTED
            pending = await self.submit(user_operation)
            logging.info(
                f"Gasless transaction sent for {user_operation.sender}: "
                f"{pending.user_operation_hash}"
            )

            stage = PipelineState.CONFIRMED
            try:
                receipt = await pending.wait()
            except asyncio.CancelledError:
                logging.warning(
                    f"Receipt wait for {pending.user_operation_hash} "
                    "cancelled, the operation stays submitted"
                )
                raise
        except Exception as excp:
            if not isinstance(excp, GaslessException):
                logging.exception(
                    f"Unexpected error at {stage.value} for {request.sender}")
                # report the type only, the message may echo caller input
                excp = GaslessException(
                    GaslessExceptionCode.InternalError,
                    f"Unexpected error: {type(excp).__name__}",
                )
            logging.error(
                f"Gasless transaction failed at {stage.value}: {excp.message}")
            FAILED_TRANSACTIONS.labels(stage=stage.value).inc()
            result = PipelineResult(
                state=PipelineState.FAILED,
                user_operation_hash=(
                    pending.user_operation_hash if pending is not None else None),
                gas_estimate_defaulted=isinstance(estimation, Defaulted),
                hash_fallback_used=hash_fallback_used,
                error=excp,
                failed_stage=stage,
            )
            self._broadcast(request.sender, result)
            return result

        SPONSORED_TRANSACTIONS.inc()
        result = PipelineResult(
            state=PipelineState.CONFIRMED,
            user_operation_hash=pending.user_operation_hash,
            receipt=receipt,
            gas_estimate_defaulted=isinstance(estimation, Defaulted),
            hash_fallback_used=hash_fallback_used,
        )
        logging.info(
            f"Type 0 gasless transaction successful: {result.transaction_hash}")
        self._broadcast(request.sender, result)
        return result

    def build_draft(
        self, sender: str, target: str, value: str | int, data: str
    ) -> UserOperation:
        sender_address = verify_and_get_address("sender", sender)
        call_data = encode_execute_call_data(target, value, data)
        return UserOperation(
            sender=sender_address,
            nonce=0,
            call_data=call_data,
        )

    async def submit(
        self, user_operation: UserOperation
    ) -> PendingUserOperation:
        if not is_gasless_transaction(user_operation):
            raise SponsorshipDeniedError(
                "Refusing to submit a user operation without paymasterAndData")
        try:
            return await self.bundler_client.send_user_operation(
                user_operation)
        except RpcClientError as excp:
            raise SubmissionError(f"Bundler rejected user operation: {excp}")

    async def estimate_only(
        self, request: GaslessRequest
    ) -> tuple[UserOperation, GasEstimationResult]:
        """
        Drafts the operation and estimates its gas. Nothing is sponsored,
        signed or submitted. Raises EncodingError or NonceFetchError.
        """
        draft = self.build_draft(
            request.sender, request.target, request.value, request.data)
        nonce = await get_nonce(self.chain_client, draft.sender)
        draft = replace(draft, nonce=nonce)
        estimation = await self.gas_estimator.estimate(draft)
        return apply_gas_estimate(draft, estimation.gas_estimate), estimation

    async def sponsor_only(
        self, user_operation_json: dict
    ) -> SponsorshipResult:
        """
        Requests sponsorship for a caller supplied operation, forced to
        type 0. Raises EncodingError or SponsorshipDeniedError.
        """
        if not isinstance(user_operation_json, dict):
            raise EncodingError("Missing userOp in request")
        user_operation = UserOperation.from_json(
            user_operation_json | {"type": GASLESS_TRANSACTION_TYPE})
        return await self.sponsorship_requester.sponsor(user_operation)

    def get_transaction_status(self, user_operation_hash: str) -> dict:
        # informational only, receipts are delivered by the execute flow
        if not is_user_operation_hash(user_operation_hash):
            raise EncodingError("Missing/invalid userOpHash")
        return {
            "type": GASLESS_TRANSACTION_TYPE,
            "status": "pending",
            "userOpHash": user_operation_hash,
            "gasless": True,
        }

    def _broadcast(self, sender: str, result: PipelineResult) -> None:
        if self.notification_endpoint is None:
            return
        payload = {
            "type": GASLESS_TRANSACTION_TYPE,
            "transactionType": "gasless-transaction",
            "sender": sender,
            "success": result.success,
            "gasSponsored": result.gas_sponsored,
        }
        if result.transaction_hash is not None:
            payload["transactionHash"] = result.transaction_hash
        self.notification_endpoint.broadcast_only(
            "transaction-broadcast", payload)


def apply_gas_estimate(
    draft: UserOperation, gas_estimate: GasEstimate
) -> UserOperation:
    return replace(
        draft,
        call_gas_limit=gas_estimate.call_gas_limit,
        verification_gas_limit=gas_estimate.verification_gas_limit,
        pre_verification_gas=gas_estimate.pre_verification_gas,
        max_fee_per_gas=gas_estimate.max_fee_per_gas,
        max_priority_fee_per_gas=gas_estimate.max_priority_fee_per_gas,
    )


def apply_sponsorship(
    user_operation: UserOperation, sponsorship: SponsorshipResult
) -> UserOperation:
    """The paymaster's fee caps replace the estimated ones when present."""
    max_fee_per_gas = user_operation.max_fee_per_gas
    if sponsorship.max_fee_per_gas is not None:
        max_fee_per_gas = sponsorship.max_fee_per_gas
    max_priority_fee_per_gas = user_operation.max_priority_fee_per_gas
    if sponsorship.max_priority_fee_per_gas is not None:
        max_priority_fee_per_gas = sponsorship.max_priority_fee_per_gas

    return replace(
        user_operation,
        paymaster_and_data=sponsorship.paymaster_and_data,
        max_fee_per_gas=max_fee_per_gas,
        max_priority_fee_per_gas=max_priority_fee_per_gas,
    )
