"""Unit tests for auth/dependencies.py -- client IP and session token extraction.

Covers:
- proxy headers are ignored unless TRUST_PROXY_HEADERS is on
- with trust on: X-Forwarded-For first hop, then X-Real-IP
- unparseable header values fall back to the direct peer
- no peer at all gives None, which the limiter maps to the shared bucket
- the session cookie wins over a Bearer header
"""

from unittest.mock import MagicMock

import pytest

from auth import dependencies
from auth.dependencies import get_client_context, get_client_ip, get_session_token
from auth.ratelimit import UNKNOWN_CLIENT, client_identity
from core.config import get_settings


def _request(headers: dict, host: str | None = "10.0.0.1", cookies: dict | None = None) -> MagicMock:
    request = MagicMock()
    request.headers = headers
    request.client = MagicMock(host=host) if host else None
    request.cookies = cookies or {}
    return request


@pytest.fixture
def trusted_proxy(monkeypatch) -> None:
    settings = get_settings().model_copy(update={"trust_proxy_headers": True})
    monkeypatch.setattr(dependencies, "get_settings", lambda: settings)


def test_forwarded_for_ignored_by_default():
    request = _request({"X-Forwarded-For": "203.0.113.195", "X-Real-IP": "203.0.113.7"})

    assert get_client_ip(request) == "10.0.0.1"


def test_forwarded_for_first_hop(trusted_proxy):
    request = _request({"X-Forwarded-For": "203.0.113.195, 70.41.3.18, 150.172.238.178"})

    assert get_client_ip(request) == "203.0.113.195"


def test_real_ip(trusted_proxy):
    request = _request({"X-Real-IP": "2001:db8::1"})

    assert get_client_ip(request) == "2001:db8::1"


def test_invalid_forwarded_for_uses_real_ip(trusted_proxy):
    request = _request({"X-Forwarded-For": "not-an-ip", "X-Real-IP": "203.0.113.7"})

    assert get_client_ip(request) == "203.0.113.7"


def test_invalid_headers_fall_back_to_peer(trusted_proxy):
    request = _request({"X-Forwarded-For": "evil, 1.2.3.4", "X-Real-IP": "999.1.1.1"})

    assert get_client_ip(request) == "10.0.0.1"


def test_direct():
    request = _request({}, host="192.168.1.100")

    assert get_client_ip(request) == "192.168.1.100"


def test_no_client():
    request = _request({}, host=None)

    assert get_client_ip(request) is None
    assert client_identity(get_client_ip(request)) == UNKNOWN_CLIENT


def test_client_context():
    request = _request({"User-Agent": "curl/8.0"})

    context = get_client_context(request)
    assert context.ip == "10.0.0.1"
    assert context.user_agent == "curl/8.0"


def test_cookie_wins_over_bearer():
    request = _request({"Authorization": "Bearer header-token"}, cookies={"session": "cookie-token"})

    assert get_session_token(request) == "cookie-token"


def test_bearer_token():
    assert get_session_token(_request({"Authorization": "Bearer header-token"})) == "header-token"
    assert get_session_token(_request({"Authorization": "Basic abc"})) is None
    assert get_session_token(_request({})) is None
