import re
from dataclasses import dataclass, field

from eth_utils import is_checksum_address

from gasless_relayer.pipeline.exceptions import EncodingError
from gasless_relayer.typing import Address

# Sponsored operations are always of this type. No other value is accepted.
GASLESS_TRANSACTION_TYPE = 0

ADDRESS_PATTERN = "0x[0-9a-fA-F]{40}"
HASH_PATTERN = "0x[0-9a-fA-F]{64}"
PRIVATE_KEY_PATTERN = "0x[0-9a-fA-F]{64}"
UINT_HEX_PATTERN = "0x[0-9a-fA-F]*"
BYTES_HEX_PATTERN = "0x(?:[0-9a-fA-F]{2})*"

MAX_UINT256 = 2**256 - 1

USER_OPERATION_FIELDS = [
    "sender",
    "nonce",
    "initCode",
    "callData",
    "callGasLimit",
    "verificationGasLimit",
    "preVerificationGas",
    "maxFeePerGas",
    "maxPriorityFeePerGas",
    "paymasterAndData",
    "signature",
]


@dataclass(frozen=True)
class UserOperation:
    """
    EntryPoint v0.6 UserOperation restricted to sponsored (type 0) operations.

    Instances are immutable; every pipeline stage produces a new copy with
    `dataclasses.replace`, so each field is completed exactly once.
    """
    sender: Address
    nonce: int
    call_data: bytes
    init_code: bytes = b""
    call_gas_limit: int = 0
    verification_gas_limit: int = 0
    pre_verification_gas: int = 0
    max_fee_per_gas: int = 0
    max_priority_fee_per_gas: int = 0
    paymaster_and_data: bytes = b""
    signature: bytes = b""
    type: int = field(default=GASLESS_TRANSACTION_TYPE)

    def __post_init__(self) -> None:
        if self.type != GASLESS_TRANSACTION_TYPE:
            raise EncodingError(
                "Invalid transaction type. "
                "Must be type 0 for gasless transactions"
            )

    @classmethod
    def from_json(cls, json_dict: dict) -> "UserOperation":
        if not isinstance(json_dict, dict):
            raise EncodingError("Invalid UserOperation")
        for field_name in USER_OPERATION_FIELDS:
            if field_name not in json_dict:
                raise EncodingError(
                    f"UserOperation missing {field_name} field")

        operation_type = json_dict.get("type", GASLESS_TRANSACTION_TYPE)
        if operation_type != GASLESS_TRANSACTION_TYPE:
            raise EncodingError(
                "Invalid transaction type. "
                "Must be type 0 for gasless transactions"
            )

        return cls(
            sender=verify_and_get_address("sender", json_dict["sender"]),
            nonce=verify_and_get_uint("nonce", json_dict["nonce"]),
            init_code=verify_and_get_bytes(
                "initCode", json_dict["initCode"]),
            call_data=verify_and_get_bytes(
                "callData", json_dict["callData"]),
            call_gas_limit=verify_and_get_uint(
                "callGasLimit", json_dict["callGasLimit"]),
            verification_gas_limit=verify_and_get_uint(
                "verificationGasLimit", json_dict["verificationGasLimit"]),
            pre_verification_gas=verify_and_get_uint(
                "preVerificationGas", json_dict["preVerificationGas"]),
            max_fee_per_gas=verify_and_get_uint(
                "maxFeePerGas", json_dict["maxFeePerGas"]),
            max_priority_fee_per_gas=verify_and_get_uint(
                "maxPriorityFeePerGas", json_dict["maxPriorityFeePerGas"]),
            paymaster_and_data=verify_and_get_bytes(
                "paymasterAndData", json_dict["paymasterAndData"]),
            signature=verify_and_get_bytes(
                "signature", json_dict["signature"]),
        )

    def get_user_operation_json(self) -> dict[str, str]:
        """Wire form sent to the bundler and the paymaster."""
        return {
            "sender": self.sender,
            "nonce": hex(self.nonce),
            "initCode": "0x" + self.init_code.hex(),
            "callData": "0x" + self.call_data.hex(),
            "callGasLimit": hex(self.call_gas_limit),
            "verificationGasLimit": hex(self.verification_gas_limit),
            "preVerificationGas": hex(self.pre_verification_gas),
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
            "paymasterAndData": "0x" + self.paymaster_and_data.hex(),
            "signature": "0x" + self.signature.hex(),
        }

    def to_list(self) -> list[Address | int | bytes]:
        return [
            self.sender,
            self.nonce,
            self.init_code,
            self.call_data,
            self.call_gas_limit,
            self.verification_gas_limit,
            self.pre_verification_gas,
            self.max_fee_per_gas,
            self.max_priority_fee_per_gas,
            self.paymaster_and_data,
            self.signature,
        ]


def is_gasless_transaction(user_operation: UserOperation) -> bool:
    return (
        user_operation.type == GASLESS_TRANSACTION_TYPE and
        len(user_operation.paymaster_and_data) > 0
    )


def verify_and_get_address(field_name: str, value: str | None) -> Address:
    if not isinstance(value, str) or re.fullmatch(ADDRESS_PATTERN, value) is None:
        raise EncodingError(
            f"Invalid address value : {value} in field {field_name}")
    body = value[2:]
    is_mixed_case = not (body.islower() or body.isupper() or body.isdigit())
    if is_mixed_case and not is_checksum_address(value):
        raise EncodingError(
            f"Invalid address checksum : {value} in field {field_name}")
    return Address(value)


def verify_and_get_uint(field_name: str, value: str | int | None) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        uint_value = value
    elif isinstance(value, str) and re.fullmatch(UINT_HEX_PATTERN, value):
        uint_value = int(value[2:] or "0", 16)
    else:
        raise EncodingError(
            f"Invalid uint hex value : {value} in field {field_name}")

    if not 0 <= uint_value <= MAX_UINT256:
        raise EncodingError(
            f"Uint value out of uint256 range : {value} in field {field_name}")
    return uint_value


def verify_and_get_bytes(field_name: str, value: str | None) -> bytes:
    if isinstance(value, str) and re.fullmatch(BYTES_HEX_PATTERN, value):
        return bytes.fromhex(value[2:])
    raise EncodingError(
        f"Invalid bytes hex value : {value} in field {field_name}")


def verify_private_key(value: str | None) -> str:
    if not isinstance(value, str) or re.fullmatch(PRIVATE_KEY_PATTERN, value) is None:
        # the value itself is never echoed back
        raise EncodingError("Invalid private key format")
    return value


def is_user_operation_hash(user_operation_hash: str) -> bool:
    return (
        isinstance(user_operation_hash, str)
        and re.fullmatch(HASH_PATTERN, user_operation_hash) is not None
    )
