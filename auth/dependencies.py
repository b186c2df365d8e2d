"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session token is read from two places, in priority order:
  1. "session" cookie -- set by the login route (httpOnly, samesite=lax).
  2. Authorization: Bearer <token> header -- API clients that store the token
     returned in the login response body.

These helpers only extract transport data. Deciding whether a token is valid
is AuthService's job, so a missing or bad token surfaces as the service's
NotAuthenticated / InvalidSession rather than as an HTTPException here.

Client IP:
  X-Forwarded-For / X-Real-IP are client-controlled unless a reverse proxy
  overwrites them. They are honoured only with TRUST_PROXY_HEADERS=true, and
  only if the value parses as an IPv4/IPv6 address. Otherwise the direct peer
  address is used, and None when even that is unknown (the rate limiter then
  puts the caller in its shared "unknown" bucket).

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import ipaddress

from fastapi import Request

from auth.models import ClientContext
from auth.service import AuthService
from auth.tokens import SESSION_COOKIE
from core.config import get_settings


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService wired into app.state by the lifespan."""
    return request.app.state.auth_service


def get_session_token(request: Request) -> str | None:
    """Return the caller's session token, or None if the request carries none."""
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def _valid_ip(candidate: str | None) -> str | None:
    if not candidate:
        return None
    candidate = candidate.strip()
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return None
    return candidate


def get_client_ip(request: Request) -> str | None:
    """Extract the client IP, honouring proxy headers only when configured to."""
    if get_settings().trust_proxy_headers:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            # First IP in the chain is the original client
            ip = _valid_ip(forwarded.split(",")[0])
            if ip:
                return ip
        ip = _valid_ip(request.headers.get("X-Real-IP"))
        if ip:
            return ip
    if request.client:
        return request.client.host
    return None


def get_client_context(request: Request) -> ClientContext:
    """Snapshot of who is calling, for rate limiting and the session audit fields."""
    return ClientContext(ip=get_client_ip(request), user_agent=request.headers.get("User-Agent"))
