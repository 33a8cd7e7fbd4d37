from eth_account import Account, messages

from gasless_relayer.pipeline.exceptions import SigningError


def sign_user_operation_hash(user_operation_hash: bytes, private_key: str) -> bytes:
    """
    Signs the hash as an EIP-191 personal message. The account only lives
    for the duration of this call.
    """
    try:
        account = Account.from_key(private_key)
        message = messages.encode_defunct(primitive=user_operation_hash)
        signed_message = account.sign_message(message)
    except Exception as excp:
        # the exception may carry the key, only its type is reported
        raise SigningError(
            f"Error signing user operation: {type(excp).__name__}") from None
    return bytes(signed_message.signature)
