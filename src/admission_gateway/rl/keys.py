"""Rate limiting key utilities.

Key functions derive an identity key from an inbound call. A call is either a
Starlette `Request` or an `RpcContext`; both expose `headers`, `client` and
`state`, which is all these helpers read. They never raise: missing metadata
resolves to `FALLBACK_KEY`.
"""

import hashlib
from typing import Any, Callable, Iterable, Optional

FALLBACK_KEY = "unknown"

KeyFunc = Callable[[Any], str]
BypassFunc = Callable[[Any], bool]


def _header(call: Any, name: str) -> Optional[str]:
    headers = getattr(call, "headers", None)
    if not headers:
        return None
    value = headers.get(name)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def hash_key(key: str) -> str:
    """Short digest of a key for logs, so API keys and IPs are not written out."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def _normalize(value: str) -> str:
    # '|' is reserved as a delimiter in composite keys
    return value.strip().replace('|', '_')


def client_ip(call: Any, *, trust_forwarded: bool = True) -> str:
    """
    Resolve the caller's IP address.

    With `trust_forwarded` the first hop of X-Forwarded-For wins (the service
    normally runs behind a proxy); otherwise the socket peer address is used.
    """
    if trust_forwarded:
        forwarded = _header(call, "x-forwarded-for")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return _normalize(first_hop)

    client = getattr(call, "client", None)
    host = getattr(client, "host", None) if client is not None else None
    if isinstance(host, str) and host:
        return _normalize(host)
    return FALLBACK_KEY


def authenticated_user_id(call: Any) -> Optional[str]:
    """Return the authenticated user id placed on `state` by the auth layer, if any."""
    state = getattr(call, "state", None)
    if state is None:
        return None

    user = getattr(state, "user", None)
    user_id = getattr(user, "user_id", None) if user is not None else None
    if user_id is None:
        user_id = getattr(state, "user_id", None)

    if user_id is None or user_id == "":
        return None
    return _normalize(str(user_id))


def ip_key(*, trust_forwarded: bool = True) -> KeyFunc:
    """Key calls by client IP (forwarded-for aware)."""
    def key_func(call: Any) -> str:
        return client_ip(call, trust_forwarded=trust_forwarded)
    return key_func


def api_key_key(header_name: str = "X-API-Key", fallback: str = "no-key") -> KeyFunc:
    """Key calls by the raw API-key header value."""
    def key_func(call: Any) -> str:
        api_key = _header(call, header_name)
        return _normalize(api_key) if api_key else fallback
    return key_func


def user_or_ip_key(*, trust_forwarded: bool = False) -> KeyFunc:
    """Key calls by authenticated user (`user-{id}`), falling back to client IP."""
    def key_func(call: Any) -> str:
        user_id = authenticated_user_id(call)
        if user_id:
            return f"user-{user_id}"
        return client_ip(call, trust_forwarded=trust_forwarded)
    return key_func


def fixed_key(value: str) -> KeyFunc:
    """Every call shares one bucket."""
    def key_func(call: Any) -> str:
        return value
    return key_func


def path_in(paths: Iterable[str]) -> BypassFunc:
    """Bypass calls whose URL path is one of `paths`."""
    exempt = frozenset(paths)

    def bypass(call: Any) -> bool:
        url = getattr(call, "url", None)
        path = getattr(url, "path", None)
        return isinstance(path, str) and path in exempt
    return bypass


def header_absent(header_name: str) -> BypassFunc:
    """Bypass calls that do not carry `header_name`."""
    def bypass(call: Any) -> bool:
        return _header(call, header_name) is None
    return bypass
