"""Per-call RPC context."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from starlette.datastructures import State
from starlette.requests import Request


@dataclass
class RpcContext:
    """
    Everything a procedure (and its middleware) can see about one call.

    `headers`, `client`, `state` and `url` mirror the underlying HTTP request
    so the same key functions work for HTTP and RPC calls. Entries put in
    `response_headers` are copied onto the HTTP response by the transport.
    """
    method: str
    params: Dict[str, Any] = field(default_factory=dict)
    request: Optional[Request] = None
    response_headers: Dict[str, str] = field(default_factory=dict)
    _state: State = field(default_factory=State, repr=False)

    @property
    def headers(self):
        return self.request.headers if self.request is not None else {}

    @property
    def client(self):
        return self.request.client if self.request is not None else None

    @property
    def state(self) -> State:
        return self.request.state if self.request is not None else self._state

    @property
    def url(self):
        return self.request.url if self.request is not None else None
