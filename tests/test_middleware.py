"""Tests for client identity and path selection in the rate-limit middleware."""

from starlette.requests import Request

from conftest import make_settings
from middleware.rate_limit import RateLimitMiddleware, client_identity


def build_request(headers=None, client=("192.0.2.10", 5555)) -> Request:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/api/v1/chapters",
                    "headers": raw_headers, "client": client, "query_string": b""})


def test_identity_uses_peer_address(settings):
    request = build_request({"X-Forwarded-For": "203.0.113.9"})
    assert client_identity(request, settings) == "rate_limit:192.0.2.10"


def test_identity_honours_forwarded_for_when_trusted(tmp_path):
    settings = make_settings(tmp_path, rate_limit_trust_proxy=True)
    request = build_request({"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
    assert client_identity(request, settings) == "rate_limit:203.0.113.9"


def test_identity_without_client(settings):
    assert client_identity(build_request(client=None), settings) == "rate_limit:unknown"


def test_limited_paths():
    middleware = RateLimitMiddleware(app=None)
    assert middleware._is_limited_path("/api/v1/chapters")
    assert not middleware._is_limited_path("/api/health")
    assert not middleware._is_limited_path("/health")
    assert not middleware._is_limited_path("/api/v1/admin/cache/invalidate")
    assert not middleware._is_limited_path("/docs")
