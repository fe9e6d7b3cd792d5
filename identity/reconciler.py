"""
identity/reconciler.py -- Map an external provider's assertion to a local account.

Every OAuth login runs through reconcile(). An email seen for the first time
gets a new OAuth-only account (no password hash); an email already registered
(by password or by an earlier OAuth login, from any provider) resolves to the
existing account, whose stored display name stays authoritative.

Race handling:
  Two first-time logins for the same email can both miss the lookup. Both then
  call registry.create(); the registry lets exactly one through and the other
  sees AlreadyExists. The loser re-reads and returns the winner's account, so
  both callers end up with the same account id and only one record exists.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from identity.errors import AlreadyExists
from identity.models import Account
from identity.registry import AccountRegistry, normalize_email

logger = logging.getLogger("signet.identity")


def reconcile(registry: AccountRegistry, asserted_email: str, asserted_display_name: str) -> Account:
    """Return the account for an asserted email, creating it on first sight."""
    email = normalize_email(asserted_email)

    existing = registry.find_by_email(email)
    if existing is not None:
        return existing

    display_name = (asserted_display_name or "").strip() or email.split("@", 1)[0]
    try:
        account = registry.create(display_name, email, None)
    except AlreadyExists:
        # Lost the create race to a concurrent login for the same email.
        winner = registry.find_by_email(email)
        if winner is None:
            raise
        return winner

    logger.info("Created OAuth-only account %s", account.id)
    return account
