"""Rate limiting middleware for RPC procedures."""

import logging
from typing import Any

from ..rpc.context import RpcContext
from ..rpc.errors import RESOURCE_EXHAUSTED, SERVICE_UNAVAILABLE, RpcError
from ..rpc.router import CallNext, RpcMiddleware
from .exceptions import RateLimitBackendError
from .keys import hash_key
from .limiter import RateLimiter
from .middleware import UNAVAILABLE_MESSAGE, rate_limit_headers

logger = logging.getLogger(__name__)


def make_rpc_guard(
    limiter: RateLimiter,
    *,
    fail_open: bool = True,
    include_headers: bool = True
) -> RpcMiddleware:
    """
    Build RPC middleware enforcing `limiter`'s policy.

    Same contract as the HTTP guard, but a rejection is raised as an RpcError
    with code RESOURCE_EXHAUSTED and data {"error", "retryAfter"}. Admitted
    calls get the X-RateLimit-* entries in `ctx.response_headers`.
    """
    policy = limiter.policy

    async def guard(ctx: RpcContext, call_next: CallNext) -> Any:
        if limiter.is_bypassed(ctx):
            return await call_next(ctx)

        key = limiter.key_for(ctx)
        try:
            verdict = limiter.check(key)
        except RateLimitBackendError as e:
            logger.error(
                "Rate limit store failure",
                extra={
                    "policy": policy.name,
                    "rpc_method": ctx.method,
                    "error": e.message,
                    "fail_open": fail_open
                }
            )
            if fail_open:
                return await call_next(ctx)
            raise RpcError(SERVICE_UNAVAILABLE, UNAVAILABLE_MESSAGE)

        if not verdict.allowed:
            retry_after = policy.retry_after_for(verdict.reset_in_ms)
            logger.warning(
                "Rate limit exceeded",
                extra={
                    "policy": policy.name,
                    "key_hash": hash_key(key),
                    "rpc_method": ctx.method,
                    "retry_after": retry_after
                }
            )
            ctx.response_headers["Retry-After"] = str(retry_after)
            raise RpcError(
                RESOURCE_EXHAUSTED,
                policy.message,
                data={"error": policy.message, "retryAfter": retry_after}
            )

        if include_headers:
            ctx.response_headers.update(rate_limit_headers(policy, verdict))
        return await call_next(ctx)

    return guard
