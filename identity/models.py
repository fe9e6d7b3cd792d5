"""
identity/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the registry, reconciler, and issuer do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass
class Account:
    """A locally registered identity.

    email is always stored normalized (stripped, lowercased) and is unique
    across the registry.

    password_hash is None for accounts created by an external identity
    provider. Such accounts cannot sign in with a password.
    """

    id: str
    display_name: str
    email: str
    password_hash: str | None = None  # None = OAuth-only account
    created_at: str | None = None


@dataclass(frozen=True)
class SessionClaims:
    """Decoded payload of a verified session token. Never stored.

    issued_at / expires_at are UTC epoch seconds. subject is None only for a
    token issued before the account id was known; SessionIssuer.refresh_claims()
    fills it in.
    """

    subject: str | None
    email: str
    display_name: str
    issued_at: int
    expires_at: int


# ---------------------------------------------------------------------------
# Login attempts -- one variant per way of proving identity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CredentialsLogin:
    email: str
    password: str


@dataclass(frozen=True)
class OAuthLogin:
    """An identity asserted by an external provider after its own verification."""

    provider: str  # "github", "google"
    email: str
    display_name: str


LoginAttempt = Union[CredentialsLogin, OAuthLogin]
