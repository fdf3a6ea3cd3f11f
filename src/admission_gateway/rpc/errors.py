"""JSON-RPC error types."""

from typing import Any, Dict, Optional

# JSON-RPC 2.0 reserved codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Implementation-defined server errors (-32000 to -32099)
RESOURCE_EXHAUSTED = -32029
SERVICE_UNAVAILABLE = -32030


class RpcError(Exception):
    """
    Error surfaced to the RPC caller as a JSON-RPC error object.

    Procedures and middleware raise it; the router turns it into
    {"code", "message", "data"} instead of letting it escape.
    """

    def __init__(self, code: int, message: str, data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error
