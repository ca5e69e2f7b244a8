from fastapi import FastAPI, Request
from fastapi.testclient import TestClient
from unittest.mock import MagicMock, patch

from toolwatch_core.middleware import (
    SECURITY_HEADERS,
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    get_client_identifier,
)
from toolwatch_core.structured_logger import get_current_context


def make_app(*middleware):
    app = FastAPI()
    for cls, kwargs in middleware:
        app.add_middleware(cls, **kwargs)

    @app.get("/")
    def root():
        return {"message": "test"}

    @app.get("/context")
    def context():
        return get_current_context()

    @app.get("/crash")
    def crash():
        raise RuntimeError("boom")

    return app


class TestSecurityHeadersMiddleware:
    """Test security headers middleware"""

    def test_security_headers_added(self):
        client = TestClient(make_app((SecurityHeadersMiddleware, {})))
        response = client.get("/")

        assert response.status_code == 200
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
        assert "default-src 'self'" in response.headers["Content-Security-Policy"]
        for header, value in SECURITY_HEADERS.items():
            assert response.headers[header] == value


class TestRequestLoggingMiddleware:
    """Test request logging middleware"""

    def test_request_id_generated(self):
        client = TestClient(make_app((RequestLoggingMiddleware, {})))
        response = client.get("/")

        assert len(response.headers["X-Request-ID"]) == 8
        assert response.headers["X-Response-Time"].endswith("s")

    def test_request_id_propagated_to_context(self):
        client = TestClient(make_app((RequestLoggingMiddleware, {})))
        response = client.get("/context", headers={"X-Request-ID": "trace-1"})

        assert response.headers["X-Request-ID"] == "trace-1"
        assert response.json()["request_id"] == "trace-1"

    def test_requests_are_tracked(self):
        client = TestClient(make_app((RequestLoggingMiddleware, {})))

        with patch("toolwatch_core.middleware.track_request") as track:
            client.get("/")

        track.assert_called_once()
        assert track.call_args[0][:3] == ("GET", "/", 200)

    def test_unhandled_error_returns_500_with_request_id(self):
        client = TestClient(make_app((RequestLoggingMiddleware, {})), raise_server_exceptions=False)
        response = client.get("/crash", headers={"X-Request-ID": "trace-2"})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error", "request_id": "trace-2"}


class TestRateLimitMiddleware:
    """Test rate limiting"""

    def test_limit_enforced(self):
        client = TestClient(make_app((RateLimitMiddleware, {"requests_per_minute": 2})))

        first = client.get("/")
        second = client.get("/")
        third = client.get("/")

        assert first.headers["X-RateLimit-Remaining"] == "1"
        assert second.status_code == 200
        assert third.status_code == 429
        assert third.json()["code"] == "RATE_LIMIT_EXCEEDED"
        assert third.headers["Retry-After"] == "60"

    def test_clients_are_limited_separately(self):
        client = TestClient(make_app((RateLimitMiddleware, {"requests_per_minute": 1})))

        assert client.get("/", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 200
        assert client.get("/", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 200
        assert client.get("/", headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429

    def test_cleanup_removes_stale_entries(self):
        limiter = RateLimitMiddleware(MagicMock(), window_seconds=60, max_ips_tracked=2)
        limiter.requests = {
            "stale": [100.0],
            "a": [1000.0],
            "b": [1001.0],
            "c": [1002.0],
        }

        limiter._cleanup_stale_entries(current_time=1010.0)

        assert set(limiter.requests) == {"b", "c"}

    def test_limiter_is_exposed_on_app_state(self):
        app = make_app((RateLimitMiddleware, {"requests_per_minute": 5}))
        TestClient(app).get("/")

        stats = app.state.rate_limiter.get_stats()

        assert stats["tracked_ips"] == 1
        assert stats["total_requests_in_window"] == 1

    def test_get_stats(self):
        limiter = RateLimitMiddleware(MagicMock(), requests_per_minute=10)
        limiter.requests = {"a": [0.0]}

        stats = limiter.get_stats()

        assert stats["tracked_ips"] == 1
        assert stats["active_ips"] == 0
        assert stats["requests_per_minute"] == 10


class TestClientIdentifier:
    """Test client identification"""

    def test_forwarded_for_first_hop(self):
        request = MagicMock(spec=Request)
        request.headers = {"X-Forwarded-For": "203.0.113.5, 10.0.0.1"}
        assert get_client_identifier(request) == "203.0.113.5"

    def test_direct_client(self):
        request = MagicMock(spec=Request)
        request.headers = {}
        request.client.host = "192.0.2.1"
        assert get_client_identifier(request) == "192.0.2.1"

    def test_unknown_client(self):
        request = MagicMock(spec=Request)
        request.headers = {}
        request.client = None
        assert get_client_identifier(request) == "unknown"
