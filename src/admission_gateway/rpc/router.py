"""
Minimal JSON-RPC 2.0 procedure router.

Procedures are async callables taking an RpcContext. Middleware has the
shape `async (ctx, call_next) -> result` and can be installed globally with
`use()` or per procedure via `procedure(name, middleware=[...])`.

Example:
    router = RpcRouter()

    @router.procedure("messages.send", middleware=[make_rpc_guard(limiter)])
    async def send_message(ctx):
        return {"queued": True}

    response = await router.dispatch({"jsonrpc": "2.0", "method": "messages.send", "id": 1}, ctx)
"""

from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..core.logging import get_logger
from .context import RpcContext
from .errors import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND, RpcError

logger = get_logger(__name__)

Procedure = Callable[[RpcContext], Awaitable[Any]]
CallNext = Callable[[RpcContext], Awaitable[Any]]
RpcMiddleware = Callable[[RpcContext, CallNext], Awaitable[Any]]


class RpcRouter:
    """Registry of named procedures plus their middleware chains."""

    def __init__(self):
        self._procedures: Dict[str, Procedure] = {}
        self._procedure_middleware: Dict[str, List[RpcMiddleware]] = {}
        self._global_middleware: List[RpcMiddleware] = []

    def use(self, middleware: RpcMiddleware) -> None:
        """Install middleware that runs before every procedure."""
        self._global_middleware.append(middleware)

    def procedure(self, name: str, middleware: Sequence[RpcMiddleware] = ()):
        """Decorator registering `name`, optionally with its own middleware."""
        def decorator(func: Procedure) -> Procedure:
            if name in self._procedures:
                raise ValueError(f"Procedure '{name}' already registered")
            self._procedures[name] = func
            self._procedure_middleware[name] = list(middleware)
            return func
        return decorator

    @property
    def procedures(self) -> List[str]:
        return sorted(self._procedures)

    async def call(self, ctx: RpcContext) -> Any:
        """Run the middleware chain and procedure for `ctx.method`."""
        handler = self._procedures.get(ctx.method)
        if handler is None:
            raise RpcError(METHOD_NOT_FOUND, f"Method not found: {ctx.method}")

        chain = self._global_middleware + self._procedure_middleware[ctx.method]

        async def run(index: int, current: RpcContext) -> Any:
            if index == len(chain):
                return await handler(current)
            return await chain[index](current, lambda next_ctx: run(index + 1, next_ctx))

        return await run(0, ctx)

    async def dispatch(self, payload: Any, ctx: Optional[RpcContext] = None) -> Dict[str, Any]:
        """
        Handle one JSON-RPC request object and build the response object.

        RpcError raised anywhere in the chain becomes the response's `error`;
        anything else is logged and reported as an internal error.
        """
        request_id = payload.get("id") if isinstance(payload, dict) else None

        if not isinstance(payload, dict) or not isinstance(payload.get("method"), str):
            return _error_response(request_id, RpcError(INVALID_REQUEST, "Invalid JSON-RPC request"))

        params = payload.get("params") or {}
        if not isinstance(params, dict):
            # Procedures take named parameters only
            return _error_response(request_id, RpcError(INVALID_PARAMS, "params must be an object"))

        if ctx is None:
            ctx = RpcContext(method=payload["method"], params=params)
        else:
            ctx.method = payload["method"]
            ctx.params = params

        try:
            result = await self.call(ctx)
        except RpcError as e:
            return _error_response(request_id, e)
        except Exception as e:
            logger.error(
                "Unhandled error in RPC procedure",
                method=ctx.method,
                error=str(e),
                exc_info=True
            )
            return _error_response(request_id, RpcError(INTERNAL_ERROR, "Internal error"))

        return {"jsonrpc": "2.0", "id": request_id, "result": result}


def _error_response(request_id: Any, error: RpcError) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": error.to_dict()}
