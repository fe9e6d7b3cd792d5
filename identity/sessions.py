"""
identity/sessions.py -- Stateless session tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry the
       account id (sub), email, display name (name), iat and exp as epoch
       seconds. Nothing is stored server-side; the signature is the only proof
       a token was issued here.

  Expiry: checked by SessionIssuer against its own clock rather than inside
       jose, so every check uses the same notion of "now" (tests inject a
       fixed clock). A token is valid while now < exp. There is no revocation
       list -- expiry is the only way a session ends.

  validate() never raises. Malformed tokens, bad signatures, unexpected
       algorithms, missing claims and expired tokens all return None. The
       request dependency turns None into InvalidToken (401).

  SECRET_KEY: read once via core.config.get_settings() when the process-wide
       issuer is first built, and never changes afterwards. Rotating it means
       restarting the process, which signs everyone out.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timezone
from functools import lru_cache

from jose import JWTError, jwt

from core.config import get_settings
from identity.errors import InvalidToken
from identity.models import Account, SessionClaims
from identity.registry import AccountRegistry

logger = logging.getLogger("signet.identity")

_ALGORITHM = "HS256"

SESSION_COOKIE = "session_token"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionIssuer:
    """Issues and verifies signed session tokens.

    Args:
        secret_key:  HMAC signing key. Immutable for the issuer's lifetime.
        ttl_seconds: Fixed session lifetime from issuance.
        clock:       Returns the current UTC time. Injected by tests.
    """

    def __init__(self, secret_key: str, ttl_seconds: int, clock: Callable[[], datetime] = _utcnow) -> None:
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock().timestamp())

    def issue(self, account: Account) -> str:
        """Return a signed token for the account, valid for ttl_seconds from now."""
        issued_at = self._now()
        claims = SessionClaims(
            subject=account.id,
            email=account.email,
            display_name=account.display_name,
            issued_at=issued_at,
            expires_at=issued_at + self.ttl_seconds,
        )
        return self.encode(claims)

    def encode(self, claims: SessionClaims) -> str:
        """Sign claims exactly as given. Re-signing refreshed claims keeps the original expiry."""
        payload: dict = {
            "email": claims.email,
            "name": claims.display_name,
            "iat": claims.issued_at,
            "exp": claims.expires_at,
        }
        if claims.subject:
            payload["sub"] = claims.subject
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def validate(self, token: str | None) -> SessionClaims | None:
        """Return the verified claims, or None for any invalid or expired token."""
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "verify_iat": False, "verify_nbf": False},
            )
            claims = SessionClaims(
                subject=payload.get("sub") or None,
                email=str(payload["email"]),
                display_name=str(payload.get("name") or ""),
                issued_at=int(payload["iat"]),
                expires_at=int(payload["exp"]),
            )
        except (JWTError, KeyError, TypeError, ValueError):
            return None

        if self._now() >= claims.expires_at:
            return None
        return claims

    def refresh_claims(self, claims: SessionClaims, registry: AccountRegistry) -> SessionClaims:
        """Attach the account id to claims that were issued without one.

        Covers a first OAuth login whose token was signed before the account
        record existed. No credential check is repeated; the email in the
        signed claims is the identity. Claims that already carry a subject
        come back unchanged.

        Raises InvalidToken if no account is registered under the claims' email.
        """
        if claims.subject:
            return claims
        account = registry.find_by_email(claims.email)
        if account is None:
            raise InvalidToken()
        logger.info("Attached account %s to session claims", account.id)
        return replace(claims, subject=account.id)


@lru_cache
def get_session_issuer() -> SessionIssuer:
    """Return the process-wide issuer, built once from Settings."""
    settings = get_settings()
    return SessionIssuer(settings.secret_key, settings.session_ttl_seconds)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, max_age: int | None = None) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie.
    samesite="lax": sent on same-site requests and top-level cross-site GET
        navigations (needed for the OAuth callback), not on cross-site POST.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: defaults to the session TTL so cookie and token expire together.
    """
    settings = get_settings()
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=max_age if max_age is not None else settings.session_ttl_seconds,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE)
