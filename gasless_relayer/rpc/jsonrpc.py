import json
from typing import Any

# JSON-RPC 2.0 error-codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_METHOD_PARAMS = -32602  # invalid number/type of parameters

REQUEST_KEYS = {"jsonrpc", "method", "params", "id"}


class RPCFault(Exception):
    """A request that is rejected before its method runs."""
    error_code: int = INVALID_REQUEST
    error_message: str = "Invalid Request."

    def __init__(self, error_data: str | None = None):
        super().__init__(error_data)
        self.error_data = error_data

    def __repr__(self):
        return (
            f"<{type(self).__name__} {self.error_code}:"
            f"{self.error_message!r} {self.error_data!r}>"
        )

    __str__ = __repr__


class RPCParseError(RPCFault):
    error_code = PARSE_ERROR
    error_message = "Parse error."


class RPCInvalidRPC(RPCFault):
    pass


class RPCMethodNotFound(RPCFault):
    error_code = METHOD_NOT_FOUND
    error_message = "Method not found."


class RPCInvalidMethodParams(RPCFault):
    error_code = INVALID_METHOD_PARAMS
    error_message = "Invalid parameters."


def validate_and_load_json_rpc_request(
    string: str, methods: dict[str, Any]
) -> tuple[str, list, Any]:
    try:
        data = json.loads(string)
    except ValueError as err:
        raise RPCParseError(f"No valid JSON. ({err})")
    return validate_json_rpc_request(data, methods)


def validate_json_rpc_request(
    data: Any, methods: dict[str, Any]
) -> tuple[str, list, Any]:
    """
    Returns (method, params, id). id is None for a notification and
    by-name params are passed on as a single object argument.
    """
    if not isinstance(data, dict):
        raise RPCInvalidRPC("No valid RPC-package.")
    if data.keys() - REQUEST_KEYS:
        raise RPCInvalidRPC("Invalid Request, additional fields found.")
    if data.get("jsonrpc") != "2.0":
        raise RPCInvalidRPC("Invalid Request, 'jsonrpc' must be \"2.0\".")

    method = data.get("method")
    if not isinstance(method, str):
        raise RPCInvalidRPC("Invalid Request, 'method' must be a string.")
    if method not in methods:
        raise RPCMethodNotFound(f"RPC method {method} not found.")

    params = data.get("params", [])
    if isinstance(params, dict):
        params = [params]
    elif isinstance(params, (list, tuple)):
        params = list(params)
    else:
        raise RPCInvalidRPC(
            "Invalid Request, 'params' must be an array or object.")

    return method, params, data.get("id")
