"""End-to-end tests of the gateway application."""

import pytest
from fastapi.testclient import TestClient

from admission_gateway.core.config import Settings
from admission_gateway.main import create_app
from admission_gateway.rl import RateLimitConfig, create_rate_limit_registry
from admission_gateway.rl.registry import GLOBAL, LOGIN, MESSAGE_SEND

LOGIN_BODY = {"email": "user@example.com", "password": "secret"}
MESSAGE_BODY = {"to": "+15550001111", "text": "hello"}


@pytest.fixture
def app_settings():
    return Settings(_env_file=None)


@pytest.fixture
def registry(clock):
    return create_rate_limit_registry(RateLimitConfig(), clock=clock)


@pytest.fixture
def client(app_settings, registry):
    return TestClient(create_app(app_settings, registry=registry))


class TestHealth:
    """Test health endpoints."""

    def test_health_is_not_counted(self, client, registry):
        """Test health checks bypass the global policy."""
        for path in ("/health", "/api/health"):
            response = client.get(path)
            assert response.status_code == 200
            assert response.json()["status"] == "healthy"
            assert "X-RateLimit-Limit" not in response.headers

        assert len(registry.get(GLOBAL).store) == 0


class TestLogin:
    """Test the login policy over HTTP."""

    def test_sixth_attempt_rejected(self, client):
        """Test five login attempts per window are admitted and the sixth is rejected."""
        for attempt in range(5):
            response = client.post("/api/auth/login", json=LOGIN_BODY)
            assert response.status_code == 200, f"Attempt {attempt + 1} should be allowed"
            assert response.headers["X-RateLimit-Limit"] == "5"
            assert response.headers["X-RateLimit-Remaining"] == str(4 - attempt)
            assert response.headers["X-RateLimit-Policy"] == "5;w=900"

        response = client.post("/api/auth/login", json=LOGIN_BODY)

        assert response.status_code == 429
        assert response.json() == {
            "error": "Too many login attempts. Please wait 15 minutes.",
            "retryAfter": 900,
        }
        assert response.headers["Retry-After"] == "900"

    def test_window_rollover(self, client, clock):
        for _ in range(5):
            client.post("/api/auth/login", json=LOGIN_BODY)
        assert client.post("/api/auth/login", json=LOGIN_BODY).status_code == 429

        clock.advance(15 * 60 * 1000)

        response = client.post("/api/auth/login", json=LOGIN_BODY)
        assert response.status_code == 200
        assert response.headers["X-RateLimit-Remaining"] == "4"

    def test_forwarded_ips_are_isolated(self, client):
        """Test callers behind different forwarded IPs have separate quotas."""
        first = {"X-Forwarded-For": "198.51.100.1"}
        for _ in range(5):
            client.post("/api/auth/login", json=LOGIN_BODY, headers=first)
        assert client.post("/api/auth/login", json=LOGIN_BODY, headers=first).status_code == 429

        second = {"X-Forwarded-For": "198.51.100.2"}
        assert client.post("/api/auth/login", json=LOGIN_BODY, headers=second).status_code == 200


class TestMessagesAndWebhooks:
    """Test the message-send and webhook policies."""

    def test_message_send_limit(self, client):
        for _ in range(30):
            assert client.post("/api/messages/send", json=MESSAGE_BODY).status_code == 202

        response = client.post("/api/messages/send", json=MESSAGE_BODY)
        assert response.status_code == 429
        assert response.json()["error"] == "Message sending limit reached. Please wait a moment."
        assert response.json()["retryAfter"] == 60

    def test_webhooks_share_one_bucket(self, client):
        """Test webhook calls from any sender count against one quota."""
        for i in range(100):
            headers = {"X-Forwarded-For": f"203.0.113.{i % 50}"}
            assert client.post("/api/webhooks/whatsapp", json={}, headers=headers).status_code == 200

        response = client.post("/api/webhooks/telegram", json={}, headers={"X-Forwarded-For": "192.0.2.200"})
        assert response.status_code == 429


class TestApiKeyPolicy:
    """Test API-key metering on the versioned API."""

    def test_api_key_headers_override_global(self, client):
        """Test the narrower api-key policy headers are reported."""
        response = client.get("/api/v1/status", headers={"X-API-Key": "key-1"})

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "60"
        assert response.headers["X-RateLimit-Remaining"] == "59"

    def test_without_api_key_only_global_applies(self, client, registry):
        response = client.get("/api/v1/status")

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "1000"
        assert response.headers["X-RateLimit-Policy"] == "1000;w=900"
        assert len(registry.get("api-key").store) == 0

    def test_api_key_limit(self, client):
        headers = {"X-API-Key": "key-2"}
        for _ in range(60):
            assert client.get("/api/v1/status", headers=headers).status_code == 200

        response = client.get("/api/v1/status", headers=headers)
        assert response.status_code == 429
        assert response.json()["error"] == "API rate limit reached. Please wait a moment."

        assert client.get("/api/v1/status", headers={"X-API-Key": "key-3"}).status_code == 200


class TestRpcEndpoint:
    """Test the JSON-RPC transport."""

    def call(self, client, method, params=None, request_id=1):
        return client.post(
            "/api/trpc",
            json={"jsonrpc": "2.0", "id": request_id, "method": method, "params": params or {}}
        )

    def test_ping(self, client):
        response = self.call(client, "system.ping")
        assert response.status_code == 200
        assert response.json() == {"jsonrpc": "2.0", "id": 1, "result": {"pong": True}}

    def test_login_procedure_limit(self, client):
        """Test the login guard rejects the sixth RPC attempt with a retry payload."""
        for _ in range(5):
            response = self.call(client, "auth.login", {"email": "a@b.co", "password": "x"})
            assert "result" in response.json()
            assert response.headers["X-RateLimit-Limit"] == "5"

        response = self.call(client, "auth.login", {"email": "a@b.co", "password": "x"})
        body = response.json()

        assert body["error"]["code"] == -32029
        assert body["error"]["data"] == {
            "error": "Too many login attempts. Please wait 15 minutes.",
            "retryAfter": 900,
        }
        assert response.headers["Retry-After"] == "900"

    def test_invalid_params(self, client):
        response = self.call(client, "messages.send", {"to": "+1555"})
        assert response.json()["error"]["code"] == -32602

    def test_positional_params(self, client, registry):
        """Test list params get INVALID_PARAMS and leave the message quota untouched."""
        response = client.post(
            "/api/trpc",
            json={"jsonrpc": "2.0", "id": 2, "method": "messages.send", "params": ["+1555", "hi"]}
        )

        assert response.status_code == 200
        assert response.json()["error"]["code"] == -32602
        assert len(registry.get(MESSAGE_SEND).store) == 0

    def test_parse_error(self, client):
        response = client.post(
            "/api/trpc", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert response.json()["error"]["code"] == -32700


class TestGlobalPolicyAndStats:
    """Test the global policy and the observability endpoint."""

    def test_global_limit(self, tmp_path):
        """Test the global policy with a small override."""
        policy_file = tmp_path / "policies.yaml"
        policy_file.write_text("policies:\n  global:\n    limit: 3\n")
        app_settings = Settings(_env_file=None, RATE_LIMIT_POLICY_FILE=str(policy_file))
        client = TestClient(create_app(app_settings))

        for _ in range(3):
            assert client.get("/api/v1/status").status_code == 200
        response = client.get("/api/v1/status")

        assert response.status_code == 429
        assert response.json()["error"] == "Too many requests. Please wait a few minutes and try again."
        assert client.get("/health").status_code == 200

    def test_rate_limit_stats(self, client):
        client.post("/api/auth/login", json=LOGIN_BODY)

        response = client.get("/api/rate-limits")

        body = response.json()
        assert body["enabled"] is True
        assert body["policies"][LOGIN]["tracked_keys"] == 1
        assert body["policies"][LOGIN]["limit"] == 5

    def test_disabled_rate_limiting(self):
        """Test the app runs without any limits when disabled."""
        client = TestClient(create_app(Settings(_env_file=None, ENABLE_RATE_LIMITING=False)))

        for _ in range(7):
            response = client.post("/api/auth/login", json=LOGIN_BODY)
            assert response.status_code == 200
            assert "X-RateLimit-Limit" not in response.headers

        assert client.get("/api/rate-limits").json() == {"enabled": False, "policies": {}}

    def test_lifespan_starts_sweepers(self, app_settings, registry):
        with TestClient(create_app(app_settings, registry=registry)) as client:
            assert client.get("/health").status_code == 200
            assert all(registry.sweeper(name).running for name in registry)

        assert not any(registry.sweeper(name).running for name in registry)

    def test_validation_error(self, client):
        response = client.post("/api/messages/send", json={"to": "+1555"})
        assert response.status_code == 422
        assert response.json()["detail"] == "Request validation failed"
