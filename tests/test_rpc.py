"""Tests for the JSON-RPC router and the RPC rate limit guard."""

import pytest

from admission_gateway.rl import RateLimiter, RatePolicy, WindowStore, fixed_key, make_rpc_guard
from admission_gateway.rpc import RESOURCE_EXHAUSTED, SERVICE_UNAVAILABLE, RpcContext, RpcError, RpcRouter
from admission_gateway.rpc.errors import INTERNAL_ERROR, INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND


def rpc_request(method, params=None, request_id=1):
    return {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}}


class TestRpcRouter:
    """Test procedure registration and dispatch."""

    @pytest.fixture
    def router(self):
        router = RpcRouter()

        @router.procedure("echo")
        async def echo(ctx):
            return {"params": ctx.params}

        @router.procedure("fail")
        async def fail(ctx):
            raise RuntimeError("boom")

        @router.procedure("deny")
        async def deny(ctx):
            raise RpcError(-32003, "Unauthorized")

        return router

    @pytest.mark.asyncio
    async def test_dispatch_result(self, router):
        response = await router.dispatch(rpc_request("echo", {"a": 1}, request_id=7))
        assert response == {"jsonrpc": "2.0", "id": 7, "result": {"params": {"a": 1}}}

    @pytest.mark.asyncio
    async def test_method_not_found(self, router):
        response = await router.dispatch(rpc_request("missing"))
        assert response["error"]["code"] == METHOD_NOT_FOUND

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [[], {"id": 3}, {"method": 12, "id": 3}])
    async def test_invalid_request(self, router, payload):
        response = await router.dispatch(payload)
        assert response["error"]["code"] == INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_positional_params_rejected(self, router):
        """Test list params are answered with INVALID_PARAMS before any procedure runs."""
        response = await router.dispatch(
            {"jsonrpc": "2.0", "id": 4, "method": "echo", "params": ["a", "b"]}
        )
        assert response == {
            "jsonrpc": "2.0",
            "id": 4,
            "error": {"code": INVALID_PARAMS, "message": "params must be an object"},
        }

    @pytest.mark.asyncio
    async def test_rpc_error_is_returned(self, router):
        response = await router.dispatch(rpc_request("deny"))
        assert response["error"] == {"code": -32003, "message": "Unauthorized"}

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self, router):
        """Test unexpected exceptions do not leak their message."""
        response = await router.dispatch(rpc_request("fail"))
        assert response["error"] == {"code": INTERNAL_ERROR, "message": "Internal error"}

    def test_duplicate_procedure(self, router):
        with pytest.raises(ValueError):
            @router.procedure("echo")
            async def again(ctx):
                return None

    def test_procedures_listed(self, router):
        assert router.procedures == ["deny", "echo", "fail"]

    @pytest.mark.asyncio
    async def test_middleware_order(self):
        """Test global middleware runs before procedure middleware."""
        router = RpcRouter()
        seen = []

        def recorder(label):
            async def middleware(ctx, call_next):
                seen.append(label)
                return await call_next(ctx)
            return middleware

        router.use(recorder("global"))

        @router.procedure("work", middleware=[recorder("local")])
        async def work(ctx):
            seen.append("procedure")
            return "done"

        response = await router.dispatch(rpc_request("work"))

        assert response["result"] == "done"
        assert seen == ["global", "local", "procedure"]


class TestRpcGuard:
    """Test the RPC rate limit middleware."""

    @pytest.fixture
    def limiter(self, clock):
        policy = RatePolicy(
            name="messages",
            window_ms=60_000,
            limit=2,
            key_func=fixed_key("shared"),
            message="Message sending limit reached."
        )
        return RateLimiter(policy, clock=clock)

    def build_router(self, guard):
        router = RpcRouter()
        calls = []

        @router.procedure("messages.send", middleware=[guard])
        async def send(ctx):
            calls.append(ctx.params)
            return {"queued": True}

        return router, calls

    @pytest.mark.asyncio
    async def test_rejection_error_shape(self, limiter):
        """Test quota exhaustion maps to RESOURCE_EXHAUSTED with the retry payload."""
        router, calls = self.build_router(make_rpc_guard(limiter))

        for _ in range(2):
            response = await router.dispatch(rpc_request("messages.send"))
            assert response["result"] == {"queued": True}

        ctx = RpcContext(method="")
        response = await router.dispatch(rpc_request("messages.send"), ctx)

        assert len(calls) == 2
        assert response["error"] == {
            "code": RESOURCE_EXHAUSTED,
            "message": "Message sending limit reached.",
            "data": {"error": "Message sending limit reached.", "retryAfter": 60},
        }
        assert ctx.response_headers["Retry-After"] == "60"

    @pytest.mark.asyncio
    async def test_admitted_call_sets_headers(self, limiter):
        router, _ = self.build_router(make_rpc_guard(limiter))
        ctx = RpcContext(method="")

        await router.dispatch(rpc_request("messages.send"), ctx)

        assert ctx.response_headers["X-RateLimit-Limit"] == "2"
        assert ctx.response_headers["X-RateLimit-Remaining"] == "1"

    @pytest.mark.asyncio
    async def test_positional_params_not_charged(self, limiter):
        """Test a malformed call is refused without consuming quota."""
        router, calls = self.build_router(make_rpc_guard(limiter))

        response = await router.dispatch(
            {"jsonrpc": "2.0", "id": 1, "method": "messages.send", "params": ["+1555", "hi"]}
        )

        assert response["error"]["code"] == INVALID_PARAMS
        assert len(limiter.store) == 0
        assert calls == []

    @pytest.mark.asyncio
    async def test_bypass(self, clock):
        """Test bypassed RPC calls are not counted."""
        policy = RatePolicy(limit=1, bypass=lambda ctx: ctx.params.get("internal") is True)
        limiter = RateLimiter(policy, clock=clock)
        router, calls = self.build_router(make_rpc_guard(limiter))

        for _ in range(3):
            response = await router.dispatch(rpc_request("messages.send", {"internal": True}))
            assert "result" in response

        assert len(limiter.store) == 0
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_store_failure(self):
        """Test fail-open admits and fail-closed maps to SERVICE_UNAVAILABLE."""
        class BrokenStore(WindowStore):
            def get(self, key):
                raise ConnectionError("down")

        limiter = RateLimiter(RatePolicy(), BrokenStore())

        router, calls = self.build_router(make_rpc_guard(limiter))
        response = await router.dispatch(rpc_request("messages.send"))
        assert response["result"] == {"queued": True}

        router, calls = self.build_router(make_rpc_guard(limiter, fail_open=False))
        response = await router.dispatch(rpc_request("messages.send"))
        assert response["error"]["code"] == SERVICE_UNAVAILABLE
        assert calls == []

    def test_context_without_request(self):
        """Test a bare context exposes empty call metadata."""
        ctx = RpcContext(method="system.ping")
        assert ctx.headers == {}
        assert ctx.client is None
        assert ctx.url is None
        ctx.state.user_id = "9"
        assert ctx.state.user_id == "9"
