"""Rate limiting policy definition."""

import math
from dataclasses import dataclass, field
from typing import Any, Optional

from .exceptions import RateLimitConfigurationError
from .keys import FALLBACK_KEY, BypassFunc, KeyFunc, ip_key

DEFAULT_MESSAGE = "Too many requests. Please try again later."


def _is_positive_int(value: Any) -> bool:
    # bool is an int subclass
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


@dataclass(frozen=True)
class RatePolicy:
    """
    Immutable rate limiting policy.

    Attributes:
        name: Registry name, used in logs
        window_ms: Length of the fixed window in milliseconds
        limit: Maximum admitted calls per window per key
        key_func: Derives the identity key from a call; must not raise
        bypass: Optional predicate; matching calls skip accounting entirely
        message: Caller-visible rejection message
        retry_after_seconds: Fixed retry-after advertised on rejection;
            when None it is computed from the time left in the window
    """
    name: str = "default"
    window_ms: int = 60_000
    limit: int = 60
    key_func: KeyFunc = field(default_factory=ip_key, compare=False)
    bypass: Optional[BypassFunc] = field(default=None, compare=False)
    message: str = DEFAULT_MESSAGE
    retry_after_seconds: Optional[int] = None

    def __post_init__(self):
        if not _is_positive_int(self.window_ms):
            raise RateLimitConfigurationError(
                f"Policy '{self.name}': window_ms must be a positive integer",
                config_error=f"window_ms={self.window_ms!r}"
            )
        if not _is_positive_int(self.limit):
            raise RateLimitConfigurationError(
                f"Policy '{self.name}': limit must be a positive integer",
                config_error=f"limit={self.limit!r}"
            )
        if not self.message:
            raise RateLimitConfigurationError(f"Policy '{self.name}': message must not be empty")
        if self.retry_after_seconds is not None and self.retry_after_seconds < 0:
            raise RateLimitConfigurationError(
                f"Policy '{self.name}': retry_after_seconds must be >= 0",
                config_error=f"retry_after_seconds={self.retry_after_seconds!r}"
            )

    @property
    def window_seconds(self) -> int:
        return math.ceil(self.window_ms / 1000)

    def key_for(self, call: Any) -> str:
        """Identity key for `call`, never empty."""
        return self.key_func(call) or FALLBACK_KEY

    def is_bypassed(self, call: Any) -> bool:
        return self.bypass is not None and bool(self.bypass(call))

    def retry_after_for(self, reset_in_ms: int) -> int:
        """Seconds a rejected caller is told to wait."""
        if self.retry_after_seconds is not None:
            return self.retry_after_seconds
        return max(1, math.ceil(reset_in_ms / 1000))

    @property
    def header_value(self) -> str:
        """Value for the X-RateLimit-Policy header, e.g. "1000;w=900"."""
        return f"{self.limit};w={self.window_seconds}"
