"""Rate limiting exceptions."""

from typing import Any, Dict, Optional


class RateLimitError(Exception):
    """Base exception for rate limiting errors."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "rate_limit_error"


class RateLimitExceededError(RateLimitError):
    """
    Raised by route-level guards when a caller has used up its quota.

    Quota exhaustion is an expected outcome, not a fault: the application's
    exception handler turns this into a 429 response carrying the policy's
    rejection message and the retry-after value.
    """

    def __init__(
        self,
        message: str,
        retry_after: int,
        policy: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        super().__init__(message, "rate_limit_exceeded")
        self.retry_after = retry_after
        self.policy = policy
        self.headers = headers or {}

    def to_payload(self) -> Dict[str, Any]:
        """Caller-visible rejection body."""
        return {"error": self.message, "retryAfter": self.retry_after}


class RateLimitConfigurationError(RateLimitError):
    """Exception raised when rate limiting configuration is invalid."""

    def __init__(self, message: str, config_error: Optional[str] = None):
        super().__init__(message, "rate_limit_configuration_error")
        self.config_error = config_error


class RateLimitBackendError(RateLimitError):
    """Exception raised when the window store fails."""

    def __init__(self, message: str, backend_error: Optional[str] = None):
        super().__init__(message, "rate_limit_backend_error")
        self.backend_error = backend_error
