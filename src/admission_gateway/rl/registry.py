"""Named rate limiting policies, their configuration and lifecycle."""

from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

import yaml
from pydantic import BaseModel, Field, StrictInt, ValidationError

from ..core.config import Settings, get_settings
from ..core.logging import get_logger
from .exceptions import RateLimitConfigurationError
from .keys import api_key_key, fixed_key, header_absent, ip_key, path_in, user_or_ip_key
from .limiter import Clock, RateLimiter
from .middleware import rate_limit_dependency
from .policy import RatePolicy
from .rpc import make_rpc_guard
from .store import WindowStore
from .sweeper import Sweeper

logger = get_logger(__name__)

GLOBAL = "global"
API_KEY = "api-key"
MESSAGE_SEND = "message-send"
LOGIN = "login"
WEBHOOK = "webhook"
STRICT = "strict"

POLICY_NAMES = (GLOBAL, API_KEY, MESSAGE_SEND, LOGIN, WEBHOOK, STRICT)

MINUTE_MS = 60 * 1000


class PolicyOverride(BaseModel):
    """Per-policy values that may be replaced from the policy file."""

    window_ms: Optional[StrictInt] = Field(default=None, ge=1, description="Window length in milliseconds")
    limit: Optional[StrictInt] = Field(default=None, ge=1, description="Calls admitted per window")
    message: Optional[str] = Field(default=None, min_length=1, description="Rejection message")
    retry_after_seconds: Optional[StrictInt] = Field(default=None, ge=0, description="Fixed retry-after")


class RateLimitConfig(BaseModel):
    """Rate limiting configuration model."""

    enabled: bool = Field(default=True, description="Enable rate limiting")
    sweep_interval: float = Field(default=60.0, gt=0, description="Seconds between sweeps")
    fail_open: bool = Field(default=True, description="Admit calls when the store fails")
    include_headers: bool = Field(default=True, description="Emit X-RateLimit-* headers")
    trust_forwarded: bool = Field(default=True, description="Honor X-Forwarded-For")
    health_paths: List[str] = Field(default_factory=lambda: ["/health", "/api/health"])
    api_key_header: str = Field(default="X-API-Key", description="API key header name")
    overrides: Dict[str, PolicyOverride] = Field(default_factory=dict)


def load_policy_overrides(path: Path) -> Dict[str, PolicyOverride]:
    """
    Read per-policy overrides from a YAML file.

    Expected layout:

        policies:
          login:
            window_ms: 900000
            limit: 5

    Raises:
        RateLimitConfigurationError: If the file is missing, malformed or
            names an unknown policy
    """
    if not path.exists():
        raise RateLimitConfigurationError(f"Rate limit policy file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise RateLimitConfigurationError(f"YAML parsing error in {path}", str(e))

    if not config_data:
        logger.warning(f"Empty rate limit policy file: {path}")
        return {}

    policies = config_data.get("policies") if isinstance(config_data, dict) else None
    if not isinstance(policies, dict):
        raise RateLimitConfigurationError(f"{path}: top-level 'policies' mapping is required")

    overrides: Dict[str, PolicyOverride] = {}
    for name, values in policies.items():
        if name not in POLICY_NAMES:
            raise RateLimitConfigurationError(f"{path}: unknown rate limit policy '{name}'")
        try:
            overrides[name] = PolicyOverride(**(values or {}))
        except ValidationError as e:
            raise RateLimitConfigurationError(f"{path}: invalid override for '{name}'", str(e))

    logger.info(f"Loaded rate limit overrides from {path}", policies=sorted(overrides))
    return overrides


def get_rate_limit_config(settings: Optional[Settings] = None) -> RateLimitConfig:
    """Get rate limiting configuration from settings."""
    settings = settings or get_settings()

    overrides: Dict[str, PolicyOverride] = {}
    if settings.RATE_LIMIT_POLICY_FILE:
        overrides = load_policy_overrides(Path(settings.RATE_LIMIT_POLICY_FILE))

    return RateLimitConfig(
        enabled=settings.ENABLE_RATE_LIMITING,
        sweep_interval=settings.RATE_LIMIT_SWEEP_INTERVAL,
        fail_open=settings.RATE_LIMIT_FAIL_OPEN,
        include_headers=settings.RATE_LIMIT_INCLUDE_HEADERS,
        trust_forwarded=settings.RATE_LIMIT_TRUST_FORWARDED,
        health_paths=settings.RATE_LIMIT_HEALTH_PATHS,
        api_key_header=settings.API_KEY_HEADER,
        overrides=overrides
    )


def build_named_policies(config: RateLimitConfig) -> Dict[str, RatePolicy]:
    """Build the service's named policies, applying any overrides."""
    trusted = config.trust_forwarded
    policies = [
        RatePolicy(
            name=GLOBAL,
            window_ms=15 * MINUTE_MS,
            limit=1000,
            key_func=ip_key(trust_forwarded=trusted),
            bypass=path_in(config.health_paths),
            message="Too many requests. Please wait a few minutes and try again."
        ),
        RatePolicy(
            name=API_KEY,
            window_ms=MINUTE_MS,
            limit=60,
            key_func=api_key_key(config.api_key_header),
            bypass=header_absent(config.api_key_header),
            message="API rate limit reached. Please wait a moment."
        ),
        RatePolicy(
            name=MESSAGE_SEND,
            window_ms=MINUTE_MS,
            limit=30,
            key_func=user_or_ip_key(),
            message="Message sending limit reached. Please wait a moment."
        ),
        RatePolicy(
            name=LOGIN,
            window_ms=15 * MINUTE_MS,
            limit=5,
            key_func=ip_key(trust_forwarded=trusted),
            message="Too many login attempts. Please wait 15 minutes."
        ),
        RatePolicy(
            name=WEBHOOK,
            window_ms=MINUTE_MS,
            limit=100,
            key_func=fixed_key("webhook"),
            message="Webhook rate limit reached."
        ),
        RatePolicy(
            name=STRICT,
            window_ms=15 * MINUTE_MS,
            limit=10,
            key_func=ip_key(trust_forwarded=trusted),
            message="Too many attempts. Please wait 15 minutes."
        ),
    ]

    built: Dict[str, RatePolicy] = {}
    for policy in policies:
        override = config.overrides.get(policy.name)
        if override is not None:
            policy = _apply_override(policy, override)
        built[policy.name] = policy
    return built


def _apply_override(policy: RatePolicy, override: PolicyOverride) -> RatePolicy:
    return RatePolicy(
        name=policy.name,
        window_ms=override.window_ms or policy.window_ms,
        limit=override.limit or policy.limit,
        key_func=policy.key_func,
        bypass=policy.bypass,
        message=override.message or policy.message,
        retry_after_seconds=(
            override.retry_after_seconds
            if override.retry_after_seconds is not None
            else policy.retry_after_seconds
        )
    )


class RateLimitRegistry:
    """
    Owns one RateLimiter (and so one WindowStore) per named policy.

    Created at application start and attached to `app.state`; `start()` and
    `stop()` run the sweepers from the application lifespan.
    """

    def __init__(
        self,
        policies: Dict[str, RatePolicy],
        sweep_interval: float = 60.0,
        fail_open: bool = True,
        include_headers: bool = True,
        clock: Optional[Clock] = None
    ):
        self.fail_open = fail_open
        self.include_headers = include_headers
        self._limiters: Dict[str, RateLimiter] = {}
        self._sweepers: Dict[str, Sweeper] = {}
        self._dependencies: Dict[str, Callable] = {}

        for name, policy in policies.items():
            store = WindowStore()
            self._limiters[name] = RateLimiter(policy, store, clock=clock)
            self._sweepers[name] = Sweeper(store, sweep_interval, clock=clock, name=name)

    def get(self, name: str) -> RateLimiter:
        try:
            return self._limiters[name]
        except KeyError:
            raise RateLimitConfigurationError(f"Unknown rate limit policy: {name}")

    def __contains__(self, name: object) -> bool:
        return name in self._limiters

    def __iter__(self) -> Iterator[str]:
        return iter(self._limiters)

    def sweeper(self, name: str) -> Sweeper:
        return self._sweepers[name]

    def dependency(self, name: str):
        """FastAPI dependency enforcing policy `name` (built once per policy)."""
        if name not in self._dependencies:
            self._dependencies[name] = rate_limit_dependency(
                self.get(name), fail_open=self.fail_open, include_headers=self.include_headers
            )
        return self._dependencies[name]

    def rpc_guard(self, name: str):
        """RPC middleware enforcing policy `name`."""
        return make_rpc_guard(
            self.get(name), fail_open=self.fail_open, include_headers=self.include_headers
        )

    async def start(self):
        for sweeper in self._sweepers.values():
            await sweeper.start()
        logger.info("Rate limit sweepers started", policies=list(self._sweepers))

    async def stop(self):
        for sweeper in self._sweepers.values():
            await sweeper.stop()
        logger.info("Rate limit sweepers stopped")

    def sweep_all(self) -> int:
        return sum(sweeper.sweep_once() for sweeper in self._sweepers.values())

    def stats(self) -> Dict[str, Dict[str, int]]:
        """Per-policy store sizes and configuration, for observability."""
        return {
            name: {
                "limit": limiter.policy.limit,
                "window_ms": limiter.policy.window_ms,
                "tracked_keys": len(limiter.store),
                "swept": self._sweepers[name].total_removed,
            }
            for name, limiter in self._limiters.items()
        }


def create_rate_limit_registry(
    config: Optional[RateLimitConfig] = None,
    clock: Optional[Clock] = None
) -> Optional[RateLimitRegistry]:
    """
    Create the registry based on configuration.

    Args:
        config: Rate limiting configuration (defaults to settings)
        clock: Millisecond clock, mainly for tests

    Returns:
        RateLimitRegistry instance or None if disabled
    """
    if config is None:
        config = get_rate_limit_config()

    if not config.enabled:
        return None

    return RateLimitRegistry(
        build_named_policies(config),
        sweep_interval=config.sweep_interval,
        fail_open=config.fail_open,
        include_headers=config.include_headers,
        clock=clock
    )
