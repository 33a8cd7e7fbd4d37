import pytest

from gasless_relayer.pipeline.exceptions import EncodingError
from gasless_relayer.user_operation.models import GaslessRequest
from gasless_relayer.user_operation.user_operation import (
    GASLESS_TRANSACTION_TYPE, UserOperation, is_gasless_transaction,
    is_user_operation_hash, verify_and_get_address, verify_and_get_bytes,
    verify_and_get_uint, verify_private_key)

from conftest import PAYMASTER_AND_DATA, SENDER


def user_operation_json(**overrides):
    user_operation = {
        "sender": SENDER,
        "nonce": "0x1",
        "initCode": "0x",
        "callData": "0xb61d27f6",
        "callGasLimit": "0x5208",
        "verificationGasLimit": "0x186a0",
        "preVerificationGas": "0x5208",
        "maxFeePerGas": "0x0",
        "maxPriorityFeePerGas": "0x0",
        "paymasterAndData": "0x",
        "signature": "0x",
    }
    return user_operation | overrides


def test_user_operation_is_always_type_0():
    user_operation = UserOperation(sender=SENDER, nonce=0, call_data=b"")
    assert user_operation.type == GASLESS_TRANSACTION_TYPE == 0

    with pytest.raises(EncodingError):
        UserOperation(sender=SENDER, nonce=0, call_data=b"", type=1)


def test_from_json_rejects_other_types():
    with pytest.raises(EncodingError, match="type 0"):
        UserOperation.from_json(user_operation_json(type=2))

    user_operation = UserOperation.from_json(user_operation_json(type=0))
    assert user_operation.type == 0


def test_from_json_requires_every_field():
    user_operation = user_operation_json()
    del user_operation["signature"]
    with pytest.raises(EncodingError, match="signature"):
        UserOperation.from_json(user_operation)


def test_wire_json_has_no_type_field():
    user_operation = UserOperation.from_json(user_operation_json())
    wire_json = user_operation.get_user_operation_json()

    assert "type" not in wire_json
    assert wire_json["nonce"] == "0x1"
    assert wire_json["callGasLimit"] == "0x5208"
    assert wire_json["paymasterAndData"] == "0x"


def test_is_gasless_transaction_needs_paymaster_and_data():
    unsponsored = UserOperation.from_json(user_operation_json())
    sponsored = UserOperation.from_json(
        user_operation_json(paymasterAndData=PAYMASTER_AND_DATA))

    assert is_gasless_transaction(unsponsored) is False
    assert is_gasless_transaction(sponsored) is True


@pytest.mark.parametrize(
    "address",
    [
        None,
        "0x1234",
        "1111111111111111111111111111111111111111",
        "0x" + "zz" * 20,
        # valid length, broken EIP-55 checksum
        "0x5ff137D4b0FDCD49DcA30c7CF57E578a026d2789",
    ],
)
def test_verify_and_get_address_rejects_malformed(address):
    with pytest.raises(EncodingError):
        verify_and_get_address("sender", address)


def test_verify_and_get_address_accepts_checksum_and_lowercase():
    checksummed = "0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789"
    assert verify_and_get_address("entrypoint", checksummed) == checksummed
    assert verify_and_get_address(
        "entrypoint", checksummed.lower()) == checksummed.lower()


def test_verify_and_get_uint():
    assert verify_and_get_uint("value", "0x") == 0
    assert verify_and_get_uint("value", "0x10") == 16
    assert verify_and_get_uint("value", 7) == 7
    assert verify_and_get_uint("value", hex(2**256 - 1)) == 2**256 - 1
    for value in ["10", "0xzz", "0x1_0", " 0x10", "0x10\n", -1, True, None,
                  2**256, hex(2**256)]:
        with pytest.raises(EncodingError):
            verify_and_get_uint("value", value)


def test_invalid_private_key_is_not_echoed():
    with pytest.raises(EncodingError) as excinfo:
        verify_private_key("0xnot-a-key")
    assert "not-a-key" not in str(excinfo.value)


def test_is_user_operation_hash():
    assert is_user_operation_hash("0x" + "ab" * 32)
    assert not is_user_operation_hash("0x" + "ab" * 31)
    assert not is_user_operation_hash(None)


def test_gasless_request_from_json_defaults():
    request = GaslessRequest.from_json(
        {"sender": SENDER, "target": SENDER, "privateKey": "0x01"})
    assert request.value == "0x0"
    assert request.data == "0x"
    assert "0x01" not in repr(request)

    with pytest.raises(EncodingError):
        GaslessRequest.from_json(["not", "an", "object"])


@pytest.mark.parametrize("value", ["0x12 34", "0x123", "0x12\n", "0x_12"])
def test_verify_and_get_bytes_rejects_malformed_hex(value):
    with pytest.raises(EncodingError):
        verify_and_get_bytes("data", value)
