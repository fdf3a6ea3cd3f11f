"""Rate limiting module."""

from .keys import (
    FALLBACK_KEY,
    api_key_key,
    client_ip,
    fixed_key,
    header_absent,
    ip_key,
    path_in,
    user_or_ip_key,
)
from .store import WindowRecord, WindowStore
from .policy import RatePolicy
from .limiter import RateLimiter, Verdict, check, make_default_limiter, now_ms
from .sweeper import Sweeper
from .middleware import (
    RateLimitMiddleware,
    make_http_guard,
    rate_limit_dependency,
    rate_limit_exceeded_handler,
    rate_limit_unavailable_handler,
)
from .rpc import make_rpc_guard
from .registry import (
    RateLimitConfig,
    RateLimitRegistry,
    PolicyOverride,
    build_named_policies,
    create_rate_limit_registry,
    get_rate_limit_config,
    load_policy_overrides,
)
from .exceptions import (
    RateLimitError,
    RateLimitExceededError,
    RateLimitConfigurationError,
    RateLimitBackendError
)

__all__ = [
    "FALLBACK_KEY",
    "api_key_key",
    "client_ip",
    "fixed_key",
    "header_absent",
    "ip_key",
    "path_in",
    "user_or_ip_key",
    "WindowRecord",
    "WindowStore",
    "RatePolicy",
    "RateLimiter",
    "Verdict",
    "check",
    "make_default_limiter",
    "now_ms",
    "Sweeper",
    "RateLimitMiddleware",
    "make_http_guard",
    "rate_limit_dependency",
    "rate_limit_exceeded_handler",
    "rate_limit_unavailable_handler",
    "make_rpc_guard",
    "RateLimitConfig",
    "RateLimitRegistry",
    "PolicyOverride",
    "build_named_policies",
    "create_rate_limit_registry",
    "get_rate_limit_config",
    "load_policy_overrides",
    "RateLimitError",
    "RateLimitExceededError",
    "RateLimitConfigurationError",
    "RateLimitBackendError"
]
