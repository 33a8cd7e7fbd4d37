from eth_abi import encode
from eth_abi.exceptions import EncodingError as AbiEncodingError
from eth_utils import function_signature_to_4byte_selector, keccak

from gasless_relayer.pipeline.exceptions import EncodingError
from gasless_relayer.user_operation.user_operation import (
    UserOperation, verify_and_get_address, verify_and_get_bytes,
    verify_and_get_uint)

EXECUTE_SELECTOR = function_signature_to_4byte_selector(
    "execute(address,uint256,bytes)")

# EntryPoint v0.6
GET_USER_OP_HASH_SELECTOR = function_signature_to_4byte_selector(
    "getUserOpHash("
    "(address,uint256,bytes,bytes,uint256,uint256,uint256,uint256,uint256,bytes,bytes))"
)


def encode_execute_call_data(
    target: str, value: str | int, payload: str
) -> bytes:
    """
    ABI encodes a call to the account's execute(address,uint256,bytes).
    Raises EncodingError for a malformed address, value or payload.
    """
    target_address = verify_and_get_address("target", target)
    value_int = verify_and_get_uint("value", value)
    payload_bytes = verify_and_get_bytes("data", payload)

    params = _abi_encode(
        ["address", "uint256", "bytes"],
        [target_address.lower(), value_int, payload_bytes],
    )
    return EXECUTE_SELECTOR + params


def encode_get_user_op_hash_call_data(user_operation: UserOperation) -> str:
    params = _abi_encode(
        [
            "(address,uint256,bytes,bytes,uint256,uint256,uint256,uint256,uint256,bytes,bytes)",
        ],
        [_to_abi_list(user_operation)],
    )
    return "0x" + (GET_USER_OP_HASH_SELECTOR + params).hex()


def pack_user_operation(user_operation: UserOperation) -> bytes:
    """
    Packs the operation without its signature, with the dynamic fields
    replaced by their keccak hashes.
    """
    user_operation_list = _to_abi_list(user_operation)
    user_operation_list[2] = keccak(user_operation_list[2])
    user_operation_list[3] = keccak(user_operation_list[3])
    user_operation_list[9] = keccak(user_operation_list[9])
    user_operation_list_without_signature = user_operation_list[:-1]

    return _abi_encode(
        [
            "address",
            "uint256",
            "bytes32",
            "bytes32",
            "uint256",
            "uint256",
            "uint256",
            "uint256",
            "uint256",
            "bytes32",
        ],
        user_operation_list_without_signature,
    )


def get_user_operation_hash(
    user_operation: UserOperation, entrypoint_addr: str, chain_id: int
) -> bytes:
    packed_user_operation = keccak(pack_user_operation(user_operation))

    encoded_user_operation_hash = _abi_encode(
        ["(bytes32,address,uint256)"],
        [[packed_user_operation, entrypoint_addr.lower(), chain_id]],
    )
    return keccak(encoded_user_operation_hash)


def _abi_encode(types: list[str], args: list) -> bytes:
    try:
        return encode(types, args)
    except AbiEncodingError as excp:
        raise EncodingError(f"ABI encoding failed: {excp}")


def _to_abi_list(user_operation: UserOperation) -> list:
    user_operation_list = user_operation.to_list()
    # eth_abi rejects mixed case addresses with a bad checksum
    user_operation_list[0] = user_operation_list[0].lower()
    return user_operation_list
