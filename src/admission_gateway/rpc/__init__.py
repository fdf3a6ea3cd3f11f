"""JSON-RPC procedure layer."""

from .context import RpcContext
from .errors import RpcError, RESOURCE_EXHAUSTED, SERVICE_UNAVAILABLE
from .router import RpcRouter, RpcMiddleware

__all__ = [
    "RpcContext",
    "RpcError",
    "RESOURCE_EXHAUSTED",
    "SERVICE_UNAVAILABLE",
    "RpcRouter",
    "RpcMiddleware",
]
