"""Shared fixtures for the rate limiting tests."""

from typing import Dict, Optional, Tuple

import pytest
from starlette.requests import Request


class FakeClock:
    """Deterministic millisecond clock."""

    def __init__(self, start: int = 1_000_000):
        self.current = start

    def __call__(self) -> int:
        return self.current

    def advance(self, ms: int) -> None:
        self.current += ms


def build_request(
    path: str = "/",
    headers: Optional[Dict[str, str]] = None,
    client: Optional[Tuple[str, int]] = ("10.0.0.1", 50000),
    method: str = "GET"
) -> Request:
    """Build a real Starlette request from an ASGI scope."""
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "scheme": "http",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
        "server": ("testserver", 80),
    }
    return Request(scope)


@pytest.fixture
def clock():
    """Fake clock starting at a fixed epoch millisecond."""
    return FakeClock()


@pytest.fixture
def make_request():
    """Factory for Starlette requests."""
    return build_request
