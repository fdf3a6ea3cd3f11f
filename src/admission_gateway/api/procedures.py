"""RPC procedures exposed on the JSON-RPC endpoint."""

from typing import Optional

from admission_gateway.rl.keys import authenticated_user_id
from admission_gateway.rl.registry import LOGIN, MESSAGE_SEND, RateLimitRegistry
from admission_gateway.rpc import RpcContext, RpcError, RpcRouter
from admission_gateway.rpc.errors import INVALID_PARAMS


def _require(ctx: RpcContext, name: str) -> str:
    value = ctx.params.get(name)
    if not isinstance(value, str) or not value:
        raise RpcError(INVALID_PARAMS, f"Missing required parameter: {name}")
    return value


def build_rpc_router(registry: Optional[RateLimitRegistry] = None) -> RpcRouter:
    """
    Register the gateway's procedures.

    Procedures that send messages or authenticate carry their policy's guard;
    without a registry they run unguarded.
    """
    router = RpcRouter()

    def guards(policy_name: str):
        return [registry.rpc_guard(policy_name)] if registry is not None else []

    @router.procedure("system.ping")
    async def ping(ctx: RpcContext):
        return {"pong": True}

    @router.procedure("messages.send", middleware=guards(MESSAGE_SEND))
    async def send_message(ctx: RpcContext):
        to = _require(ctx, "to")
        _require(ctx, "text")
        return {"status": "queued", "to": to, "sender": authenticated_user_id(ctx)}

    @router.procedure("auth.login", middleware=guards(LOGIN))
    async def login(ctx: RpcContext):
        email = _require(ctx, "email")
        _require(ctx, "password")
        return {"status": "accepted", "email": email}

    return router
