from dataclasses import dataclass, field
from typing import Any

from gasless_relayer.typing import TransactionHash, UserOperationHash
from gasless_relayer.pipeline.exceptions import EncodingError
from .user_operation import GASLESS_TRANSACTION_TYPE


@dataclass(frozen=True)
class GasEstimate:
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    def get_gas_estimate_json(self) -> dict[str, str]:
        return {
            "callGasLimit": hex(self.call_gas_limit),
            "verificationGasLimit": hex(self.verification_gas_limit),
            "preVerificationGas": hex(self.pre_verification_gas),
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
        }


# used whenever the bundler cannot produce an estimate. The paymaster covers
# the fees, so both fee caps stay at zero.
FALLBACK_GAS_ESTIMATE = GasEstimate(
    call_gas_limit=21_000,
    verification_gas_limit=100_000,
    pre_verification_gas=21_000,
    max_fee_per_gas=0,
    max_priority_fee_per_gas=0,
)


@dataclass(frozen=True)
class Estimated:
    gas_estimate: GasEstimate


@dataclass(frozen=True)
class Defaulted:
    gas_estimate: GasEstimate
    reason: str


GasEstimationResult = Estimated | Defaulted


@dataclass(frozen=True)
class Hashed:
    user_operation_hash: bytes


@dataclass(frozen=True)
class HashedLocally:
    user_operation_hash: bytes
    reason: str


UserOperationHashResult = Hashed | HashedLocally


@dataclass(frozen=True)
class SponsorshipContext:
    api_key: str | None
    sponsorship_class: int = GASLESS_TRANSACTION_TYPE

    def get_sponsorship_context_json(self) -> dict[str, Any]:
        return {
            "type": self.sponsorship_class,
            "apikey": self.api_key,
        }


@dataclass(frozen=True)
class SponsorshipResult:
    paymaster_and_data: bytes
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None

    def get_sponsorship_result_json(self) -> dict[str, str]:
        result = {"paymasterAndData": "0x" + self.paymaster_and_data.hex()}
        if self.max_fee_per_gas is not None:
            result["maxFeePerGas"] = hex(self.max_fee_per_gas)
        if self.max_priority_fee_per_gas is not None:
            result["maxPriorityFeePerGas"] = hex(
                self.max_priority_fee_per_gas)
        return result


@dataclass(frozen=True)
class ReceiptInfo:
    transactionHash: TransactionHash
    blockHash: str | None
    blockNumber: str | None
    gasUsed: str | None
    status: str | None


@dataclass(frozen=True)
class UserOperationReceiptInfo:
    userOpHash: UserOperationHash
    sender: str | None
    paymaster: str | None
    nonce: str | None
    success: bool
    actualGasCost: str | None
    actualGasUsed: str | None
    receipt: ReceiptInfo
    raw: dict = field(repr=False, compare=False, default_factory=dict)

    @classmethod
    def from_json(cls, json_dict: dict) -> "UserOperationReceiptInfo":
        """
        Parses an eth_getUserOperationReceipt result.
        Raises KeyError/TypeError if the receipt has no transaction hash.
        """
        receipt = json_dict["receipt"]
        return cls(
            userOpHash=json_dict["userOpHash"],
            sender=json_dict.get("sender"),
            paymaster=json_dict.get("paymaster"),
            nonce=json_dict.get("nonce"),
            success=bool(json_dict.get("success", False)),
            actualGasCost=json_dict.get("actualGasCost"),
            actualGasUsed=json_dict.get("actualGasUsed"),
            receipt=ReceiptInfo(
                transactionHash=receipt["transactionHash"],
                blockHash=receipt.get("blockHash"),
                blockNumber=receipt.get("blockNumber"),
                gasUsed=receipt.get("gasUsed"),
                status=receipt.get("status"),
            ),
            raw=json_dict,
        )


@dataclass(frozen=True)
class GaslessRequest:
    sender: str
    target: str
    value: str | int = "0x0"
    data: str = "0x"
    private_key: str | None = field(default=None, repr=False)

    @classmethod
    def from_json(cls, json_dict: dict) -> "GaslessRequest":
        """
        Builds a request from the caller's JSON object. Field formats are
        checked later by the pipeline, before any network call.
        """
        if not isinstance(json_dict, dict):
            raise EncodingError("Invalid request, must be an object")
        return cls(
            sender=json_dict.get("sender"),
            target=json_dict.get("target"),
            value=json_dict.get("value") or "0x0",
            data=json_dict.get("data") or "0x",
            private_key=json_dict.get("privateKey"),
        )
