"""
identity/passwords.py -- Password hashing and verification.

Security design decisions:
  bcrypt, used directly (no passlib wrapper). passlib's wrap-bug detection
  builds a password longer than 72 bytes, which bcrypt 4.x rejects. Every call
  to hash_password() generates a fresh salt, and the salt and cost factor are
  embedded in the output, so verification needs nothing but the stored hash.

  The cost factor comes from Settings.bcrypt_rounds (default 12). One hash at
  that cost takes a few hundred milliseconds; it is the only CPU-bound step in
  the core, and the HTTP layer runs it on the worker thread pool.

  _DUMMY_HASH enables timing equalization: the credential check always runs
  bcrypt, whether or not the email is registered, so response time does not
  reveal which emails have accounts.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings

_settings = get_settings()


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt ignores everything past 72 bytes. The API layer caps passwords at
    128 characters, and the truncation is applied here explicitly so bcrypt 4.x
    never raises on long multi-byte input.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8")[:72], salt).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Never raises. A missing, truncated, or otherwise malformed hash is simply
    a non-match.
    """
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:72], hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


# Computed once at import so the first login attempt is not measurably slower
# than the ones after it.
_DUMMY_HASH: str = hash_password("signet_timing_dummy")


def burn_verification(plain: str) -> None:
    """Run a full-cost bcrypt check that can never succeed.

    Called when there is no real hash to check against (unknown email,
    OAuth-only account) so those paths cost the same as a wrong password.
    """
    verify_password(plain, _DUMMY_HASH)
