import pytest
from eth_abi import decode

from gasless_relayer.pipeline.exceptions import EncodingError
from gasless_relayer.user_operation.user_operation import UserOperation
from gasless_relayer.utils.encode import (EXECUTE_SELECTOR,
                                          GET_USER_OP_HASH_SELECTOR,
                                          encode_execute_call_data,
                                          encode_get_user_op_hash_call_data,
                                          get_user_operation_hash,
                                          pack_user_operation)

from conftest import CHAIN_ID, ENTRYPOINT, PAYMASTER_AND_DATA, SENDER, TARGET


def sponsored_user_operation(**overrides) -> UserOperation:
    fields = dict(
        sender=SENDER,
        nonce=3,
        call_data=encode_execute_call_data(TARGET, 0, "0x"),
        call_gas_limit=21_000,
        verification_gas_limit=100_000,
        pre_verification_gas=21_000,
        paymaster_and_data=bytes.fromhex(PAYMASTER_AND_DATA[2:]),
    )
    return UserOperation(**(fields | overrides))


def test_execute_selector():
    assert EXECUTE_SELECTOR.hex() == "b61d27f6"


def test_encode_execute_call_data_layout():
    call_data = encode_execute_call_data(TARGET, "0x2a", "0x1234")

    assert call_data[:4] == EXECUTE_SELECTOR
    # selector, 3 head words, payload length word, one padded payload word
    assert len(call_data) == 4 + 32 * 3 + 32 + 32
    target, value, payload = decode(
        ["address", "uint256", "bytes"], call_data[4:])
    assert target == TARGET
    assert value == 42
    assert payload == bytes.fromhex("1234")


def test_encode_execute_call_data_is_deterministic():
    first = encode_execute_call_data(TARGET, 1, "0xdeadbeef")
    second = encode_execute_call_data(TARGET, 1, "0xdeadbeef")
    assert first == second


@pytest.mark.parametrize(
    "target, value, payload",
    [
        ("0x1234", 0, "0x"),
        (TARGET, "12", "0x"),
        (TARGET, -1, "0x"),
        (TARGET, 2**256, "0x"),
        (TARGET, 0, "0xzz"),
        (TARGET, 0, "1234"),
        (TARGET, "0x1_0", "0x"),
        (TARGET, hex(2**256), "0x"),
        (TARGET, 0, "0x12 34"),
        (TARGET, 0, "0x123"),
    ],
)
def test_encode_execute_call_data_rejects_malformed(target, value, payload):
    with pytest.raises(EncodingError):
        encode_execute_call_data(target, value, payload)


def test_pack_ignores_signature_and_does_not_mutate():
    user_operation = sponsored_user_operation()
    signed = sponsored_user_operation(signature=b"\x01" * 65)

    assert pack_user_operation(user_operation) == pack_user_operation(signed)
    assert user_operation.init_code == b""
    assert user_operation.paymaster_and_data == bytes.fromhex(
        PAYMASTER_AND_DATA[2:])


def test_local_hash_is_deterministic():
    user_operation = sponsored_user_operation()

    first = get_user_operation_hash(user_operation, ENTRYPOINT, CHAIN_ID)
    second = get_user_operation_hash(user_operation, ENTRYPOINT, CHAIN_ID)

    assert first == second
    assert len(first) == 32


def test_local_hash_depends_on_chain_entrypoint_and_fields():
    user_operation = sponsored_user_operation()
    user_operation_hash = get_user_operation_hash(
        user_operation, ENTRYPOINT, CHAIN_ID)

    assert user_operation_hash != get_user_operation_hash(
        user_operation, ENTRYPOINT, 1)
    assert user_operation_hash != get_user_operation_hash(
        user_operation, "0x" + "00" * 20, CHAIN_ID)
    assert user_operation_hash != get_user_operation_hash(
        sponsored_user_operation(nonce=4), ENTRYPOINT, CHAIN_ID)


def test_get_user_op_hash_call_data():
    call_data = encode_get_user_op_hash_call_data(sponsored_user_operation())

    assert call_data.startswith("0x" + GET_USER_OP_HASH_SELECTOR.hex())
    assert GET_USER_OP_HASH_SELECTOR.hex() == "a6193531"


def test_out_of_range_fields_raise_encoding_error():
    oversized = sponsored_user_operation(max_fee_per_gas=2**256)

    with pytest.raises(EncodingError):
        encode_get_user_op_hash_call_data(oversized)
    with pytest.raises(EncodingError):
        get_user_operation_hash(oversized, ENTRYPOINT, CHAIN_ID)
