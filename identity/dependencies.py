"""
identity/dependencies.py -- FastAPI Depends() helpers for session reads.

The session token is looked for in priority order:
  1. "session_token" cookie -- set by the login and OAuth callback routes.
  2. Authorization: Bearer <token> header -- API clients.

try_get_session() is the soft variant (returns None on failure).
get_current_session() wraps it and raises InvalidToken, which the exception
handler in api/main.py turns into a 401 "please sign in again".

The registry and issuer are read from app.state, where the lifespan (or a test
fixture) injected them.

Layer rule: may import fastapi (this module is part of the FastAPI dependency
injection system). No imports from api/.
"""

from __future__ import annotations

from fastapi import Request

from identity.errors import InvalidToken
from identity.models import SessionClaims
from identity.sessions import SESSION_COOKIE, SessionIssuer


def read_session_token(request: Request) -> str | None:
    token: str | None = request.cookies.get(SESSION_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def try_get_session(request: Request) -> SessionClaims | None:
    """Return verified (and, if needed, refreshed) claims, or None. Never raises."""
    issuer: SessionIssuer = request.app.state.issuer
    claims = issuer.validate(read_session_token(request))
    if claims is None:
        return None
    try:
        return issuer.refresh_claims(claims, request.app.state.registry)
    except InvalidToken:
        return None


def get_current_session(request: Request) -> SessionClaims:
    """Require a valid session.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(session: SessionClaims = Depends(get_current_session)): ...
    """
    claims = try_get_session(request)
    if claims is None:
        raise InvalidToken()
    return claims
