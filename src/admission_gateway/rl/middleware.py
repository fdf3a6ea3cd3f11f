"""Rate limiting middleware for FastAPI."""

import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import RateLimitBackendError, RateLimitExceededError
from .keys import hash_key
from .limiter import RateLimiter, Verdict
from .policy import RatePolicy

logger = logging.getLogger(__name__)

CallNext = Callable[[Request], Awaitable[Response]]
HttpGuard = Callable[[Request, CallNext], Awaitable[Response]]

UNAVAILABLE_MESSAGE = "Rate limiting is temporarily unavailable. Please try again later."


def rate_limit_headers(policy: RatePolicy, verdict: Verdict) -> Dict[str, str]:
    """X-RateLimit-* headers describing `verdict`."""
    return {
        "X-RateLimit-Limit": str(verdict.limit),
        "X-RateLimit-Remaining": str(max(0, verdict.remaining)),
        "X-RateLimit-Reset": str(verdict.reset_at_seconds),
        "X-RateLimit-Policy": policy.header_value,
    }


def rejection_headers(policy: RatePolicy, verdict: Verdict, include_headers: bool = True) -> Dict[str, str]:
    headers = {"Retry-After": str(policy.retry_after_for(verdict.reset_in_ms))}
    if include_headers:
        headers.update(rate_limit_headers(policy, verdict))
    return headers


def _log_rejection(policy: RatePolicy, key: str, verdict: Verdict, request: Request) -> None:
    logger.warning(
        "Rate limit exceeded",
        extra={
            "policy": policy.name,
            "key_hash": hash_key(key),
            "limit": verdict.limit,
            "retry_after": policy.retry_after_for(verdict.reset_in_ms),
            "path": request.url.path,
            "method": request.method
        }
    )


def _log_backend_failure(policy: RatePolicy, error: RateLimitBackendError, fail_open: bool) -> None:
    logger.error(
        "Rate limit store failure",
        extra={
            "policy": policy.name,
            "error": error.message,
            "fail_open": fail_open
        }
    )


def _unavailable_response() -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": UNAVAILABLE_MESSAGE}
    )


def _admit(limiter: RateLimiter, request: Request, fail_open: bool) -> Tuple[Optional[str], Optional[Verdict]]:
    """
    Run the limiter for `request`.

    Returns (key, verdict); verdict is None when the store failed and the
    policy fails open.
    """
    key = limiter.key_for(request)
    try:
        return key, limiter.check(key)
    except RateLimitBackendError as e:
        _log_backend_failure(limiter.policy, e, fail_open)
        if fail_open:
            return key, None
        raise


def make_http_guard(
    limiter: RateLimiter,
    *,
    fail_open: bool = True,
    include_headers: bool = True
) -> HttpGuard:
    """
    Build a request pipeline stage for `limiter`.

    The returned coroutine has the `(request, call_next)` shape used by
    `app.middleware("http")`. Rejected calls are answered with 429 and never
    reach `call_next`; admitted calls are forwarded and the response gets
    the X-RateLimit-* headers.
    """
    policy = limiter.policy

    async def guard(request: Request, call_next: CallNext) -> Response:
        if limiter.is_bypassed(request):
            return await call_next(request)

        try:
            key, verdict = _admit(limiter, request, fail_open)
        except RateLimitBackendError:
            return _unavailable_response()

        if verdict is None:
            return await call_next(request)

        if not verdict.allowed:
            _log_rejection(policy, key, verdict, request)
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": policy.message, "retryAfter": policy.retry_after_for(verdict.reset_in_ms)},
                headers=rejection_headers(policy, verdict, include_headers)
            )

        response = await call_next(request)
        if include_headers:
            # Inner stages and route guards apply narrower policies; keep their values
            for name, value in rate_limit_headers(policy, verdict).items():
                response.headers.setdefault(name, value)
        return response

    return guard


def rate_limit_dependency(
    limiter: RateLimiter,
    *,
    fail_open: bool = True,
    include_headers: bool = True
) -> Callable[[Request, Response], Awaitable[None]]:
    """
    Build a per-route FastAPI dependency for `limiter`.

    Use with `Depends(...)` on routes that need their own policy (login,
    message sending, webhooks). Rejection is raised as
    RateLimitExceededError and a fail-closed store failure as
    RateLimitBackendError; both are rendered by the application's handlers.
    """
    policy = limiter.policy

    async def enforce_rate_limit(request: Request, response: Response) -> None:
        if limiter.is_bypassed(request):
            return

        # A fail-closed store failure propagates as RateLimitBackendError
        key, verdict = _admit(limiter, request, fail_open)

        if verdict is None:
            return

        if not verdict.allowed:
            _log_rejection(policy, key, verdict, request)
            raise RateLimitExceededError(
                policy.message,
                retry_after=policy.retry_after_for(verdict.reset_in_ms),
                policy=policy.name,
                headers=rejection_headers(policy, verdict, include_headers)
            )

        if include_headers:
            response.headers.update(rate_limit_headers(policy, verdict))

    return enforce_rate_limit


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """Render RateLimitExceededError as the 429 rejection payload."""
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=exc.to_payload(),
        headers=exc.headers or {"Retry-After": str(exc.retry_after)}
    )


async def rate_limit_unavailable_handler(request: Request, exc: RateLimitBackendError) -> JSONResponse:
    """Render a fail-closed store failure as the 503 payload used by the guard."""
    return _unavailable_response()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce one policy across the whole app or a set of path prefixes."""

    def __init__(
        self,
        app,
        limiter: Optional[RateLimiter] = None,
        apply_to_paths: Optional[Tuple[str, ...]] = None,
        fail_open: bool = True,
        include_headers: bool = True
    ):
        """Initialize rate limiting middleware."""
        super().__init__(app)
        self.limiter = limiter
        self.apply_to_paths = apply_to_paths
        self._guard: Optional[HttpGuard] = None

        # If no limiter provided, rate limiting is effectively disabled
        if self.limiter is None:
            logger.info("Rate limiting middleware initialized but disabled (no limiter provided)")
        else:
            self._guard = make_http_guard(
                self.limiter,
                fail_open=fail_open,
                include_headers=include_headers
            )
            logger.info(
                "Rate limiting middleware initialized",
                extra={
                    "policy": self.limiter.policy.name,
                    "apply_to_paths": self.apply_to_paths,
                    "policy_limit": self.limiter.policy.limit,
                    "policy_window_ms": self.limiter.policy.window_ms
                }
            )

    async def dispatch(self, request: Request, call_next):
        """Apply rate limiting to matching requests."""
        if self._guard is None:
            return await call_next(request)

        if self.apply_to_paths is not None:
            request_path = request.url.path
            if not any(request_path.startswith(path) for path in self.apply_to_paths):
                return await call_next(request)

        return await self._guard(request, call_next)
