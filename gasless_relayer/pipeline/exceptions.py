from dataclasses import dataclass
from enum import Enum


class GaslessExceptionCode(Enum):
    InvalidFields = -32602
    NonceFetch = -32010
    SponsorshipDenied = -32011
    Signing = -32012
    Submission = -32013
    ReceiptTimeout = -32014
    InternalError = -32603


@dataclass
class GaslessException(Exception):
    exception_code: GaslessExceptionCode
    message: str

    def __str__(self) -> str:
        return self.message


class EncodingError(GaslessException):
    """Malformed caller input. Raised before any network call."""

    def __init__(self, message: str):
        super().__init__(GaslessExceptionCode.InvalidFields, message)


class NonceFetchError(GaslessException):
    def __init__(self, message: str):
        super().__init__(GaslessExceptionCode.NonceFetch, message)


class SponsorshipDeniedError(GaslessException):
    """The paymaster refused the operation or could not be reached."""

    def __init__(self, message: str):
        super().__init__(GaslessExceptionCode.SponsorshipDenied, message)


class SigningError(GaslessException):
    def __init__(self, message: str):
        super().__init__(GaslessExceptionCode.Signing, message)


class SubmissionError(GaslessException):
    def __init__(self, message: str):
        super().__init__(GaslessExceptionCode.Submission, message)


class ReceiptTimeoutError(GaslessException):
    """
    The operation was accepted by the bundler but no receipt was observed
    within the wait budget. It may still be included later.
    """

    def __init__(self, message: str):
        super().__init__(GaslessExceptionCode.ReceiptTimeout, message)


class RpcClientError(GaslessException):
    """Transport or JSON-RPC level failure of a remote call."""

    def __init__(self, message: str, rpc_error: dict | None = None):
        super().__init__(GaslessExceptionCode.InternalError, message)
        self.rpc_error = rpc_error
