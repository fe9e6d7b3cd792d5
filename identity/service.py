"""
identity/service.py -- Identity resolution pipeline.

Signing in is two pure steps:

    account = resolve_identity(registry, attempt)   # who is this?
    token = issuer.issue(account)                   # hand them a session

resolve_identity() dispatches once on the attempt's type:
  CredentialsLogin -> authenticate_credentials() (bcrypt, timing-equalized)
  OAuthLogin       -> reconcile() (find or create by asserted email)

Every function here is synchronous and the credential paths are CPU-bound
(bcrypt). The HTTP layer runs them with run_in_threadpool and awaits the
result.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from identity.errors import AlreadyExists, InvalidCredentials, NotFound, ValidationError
from identity.models import Account, CredentialsLogin, LoginAttempt, OAuthLogin
from identity.passwords import burn_verification, hash_password, verify_password
from identity.reconciler import reconcile
from identity.registry import AccountRegistry, normalize_email
from identity.sessions import SessionIssuer

logger = logging.getLogger("signet.identity")


def register_account(registry: AccountRegistry, display_name: str, email: str, password: str) -> Account:
    """Create a password account.

    Raises ValidationError for a blank name or password and AlreadyExists when
    the email is taken. The cheap duplicate check runs before hashing so a
    taken email does not cost a bcrypt round; registry.create() still decides
    races.
    """
    errors: list[dict[str, str]] = []
    display_name = (display_name or "").strip()
    if not display_name:
        errors.append({"field": "display_name", "message": "Name is required."})
    if not password:
        errors.append({"field": "password", "message": "Password is required."})
    if errors:
        raise ValidationError(errors)

    email = normalize_email(email)
    if registry.find_by_email(email) is not None:
        raise AlreadyExists()

    account = registry.create(display_name, email, hash_password(password))
    logger.info("Registered account %s", account.id)
    return account


def authenticate_credentials(registry: AccountRegistry, email: str, password: str) -> Account:
    """Check an email/password pair. Raises InvalidCredentials on any failure.

    bcrypt always runs, whether or not the email is registered, so neither the
    error nor the response time tells an unknown email from a wrong password.
    OAuth-only accounts have no hash and fail the same way.
    """
    try:
        key = normalize_email(email)
    except ValidationError:
        burn_verification(password)
        raise InvalidCredentials() from None

    account = registry.find_by_email(key)
    if account is None or account.password_hash is None:
        burn_verification(password)
        raise InvalidCredentials()
    if not verify_password(password, account.password_hash):
        raise InvalidCredentials()
    return account


def change_password(registry: AccountRegistry, account_id: str, current_password: str, new_password: str) -> None:
    """Replace an account's password after re-checking the current one.

    OAuth-only accounts have no current password to prove, so they always
    fail with InvalidCredentials.
    """
    account = registry.find_by_id(account_id)
    if account is None:
        raise NotFound()
    if account.password_hash is None:
        burn_verification(current_password)
        raise InvalidCredentials()
    if not verify_password(current_password, account.password_hash):
        raise InvalidCredentials()
    if not new_password:
        raise ValidationError.for_field("new_password", "Password is required.")

    registry.update_password(account_id, hash_password(new_password))
    logger.info("Password changed for account %s", account_id)


def resolve_identity(registry: AccountRegistry, attempt: LoginAttempt) -> Account:
    """Turn a login attempt into the local account it proves."""
    if isinstance(attempt, CredentialsLogin):
        return authenticate_credentials(registry, attempt.email, attempt.password)
    if isinstance(attempt, OAuthLogin):
        return reconcile(registry, attempt.email, attempt.display_name)
    raise TypeError(f"Unsupported login attempt: {type(attempt).__name__}")


def sign_in(registry: AccountRegistry, issuer: SessionIssuer, attempt: LoginAttempt) -> tuple[Account, str]:
    """Resolve the attempt and issue a session token for the resulting account."""
    account = resolve_identity(registry, attempt)
    return account, issuer.issue(account)
