"""Rate limiter implementation.

Fixed-window counting: O(1) memory and time per key. A client can burst up to
2x the limit across a window boundary (the tail of one window plus the head of
the next). That is accepted for abuse mitigation; a sliding-log or
token-bucket algorithm can replace `check` without changing any caller.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .exceptions import RateLimitBackendError
from .policy import RatePolicy
from .store import WindowRecord, WindowStore

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    """Current epoch time in milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Verdict:
    """Outcome of a rate limit check."""
    allowed: bool
    remaining: int
    reset_in_ms: int
    limit: int
    reset_at: int

    @property
    def reset_at_seconds(self) -> int:
        """Window reset as epoch seconds, rounded up (X-RateLimit-Reset)."""
        return -(-self.reset_at // 1000)


def check(policy: RatePolicy, store: WindowStore, key: str, now: int) -> Verdict:
    """
    Consult and update `store` for `key` at time `now` (epoch ms).

    - No live record: start a window with count 1.
    - Live record at the limit: reject without touching the count.
    - Otherwise: increment and admit.

    The whole read-modify-write runs under the store lock with no await in
    between, so two concurrent calls cannot both take the last slot.
    """
    with store.lock:
        record = store.get(key)

        if record is None or record.is_expired(now):
            reset_at = now + policy.window_ms
            store.put(key, WindowRecord(count=1, reset_at=reset_at))
            return Verdict(
                allowed=True,
                remaining=policy.limit - 1,
                reset_in_ms=policy.window_ms,
                limit=policy.limit,
                reset_at=reset_at
            )

        if record.count >= policy.limit:
            return Verdict(
                allowed=False,
                remaining=0,
                reset_in_ms=record.reset_at - now,
                limit=policy.limit,
                reset_at=record.reset_at
            )

        record.count += 1
        store.put(key, record)
        return Verdict(
            allowed=True,
            remaining=policy.limit - record.count,
            reset_in_ms=record.reset_at - now,
            limit=policy.limit,
            reset_at=record.reset_at
        )


class RateLimiter:
    """Binds one policy to its own window store and a clock."""

    def __init__(
        self,
        policy: RatePolicy,
        store: Optional[WindowStore] = None,
        clock: Optional[Clock] = None
    ):
        """Initialize rate limiter with policy, store and clock."""
        self._policy = policy
        self._store = store if store is not None else WindowStore()
        self._clock = clock or now_ms

    @property
    def policy(self) -> RatePolicy:
        return self._policy

    @property
    def store(self) -> WindowStore:
        return self._store

    def now(self) -> int:
        return self._clock()

    def key_for(self, call: Any) -> str:
        return self._policy.key_for(call)

    def is_bypassed(self, call: Any) -> bool:
        return self._policy.is_bypassed(call)

    def check(self, key: str) -> Verdict:
        """
        Run `check` against this limiter's store.

        Raises:
            RateLimitBackendError: If the store fails; adapters decide
                whether that admits or rejects the call.
        """
        try:
            return check(self._policy, self._store, key, self._clock())
        except Exception as e:
            logger.error(
                "Window store error during check",
                extra={"policy": self._policy.name, "error": str(e)},
                exc_info=True
            )
            raise RateLimitBackendError(f"Window store failed: {str(e)}", str(e))


def make_default_limiter(policy: Optional[RatePolicy] = None) -> RateLimiter:
    """Factory function to create a RateLimiter with a fresh store."""
    return RateLimiter(policy or RatePolicy(), WindowStore())
