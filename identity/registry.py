"""
identity/registry.py -- The account registry contract and its in-process backends.

Pattern: Repository behind a structural interface (typing.Protocol). Every
caller (reconciler, service functions, session dependency) is handed an
AccountRegistry and never knows which backend sits behind it:

  InMemoryAccountRegistry -- dict keyed by normalized email, per-email locks.
  JsonFileAccountRegistry -- the in-memory registry, persisted to one JSON
                             array file after every write.
  AccountStore            -- SQLAlchemy Core table (identity/store.py).

Consistency rules every backend enforces:
  - Emails are normalized (stripped, lowercased) on every entry point, so
    callers may pass any case.
  - create() is an atomic insert-if-absent per normalized email. Two racing
    creates for the same email never both succeed; the loser gets AlreadyExists.
  - Creates for different emails never wait on each other's uniqueness
    check. The JSON backend still serializes its file writes.
  - Lookups with a value that cannot be an email return None.
  - The registry is the single writer of Account records. Callers receive
    copies; mutating them has no effect on stored state.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from identity.errors import AlreadyExists, NotFound, ValidationError
from identity.models import Account

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("signet.identity")


def normalize_email(email: str) -> str:
    """Return the canonical form used for uniqueness: stripped and lowercased.

    Raises ValidationError for values that cannot be an address at all. Full
    syntax validation is the HTTP layer's job; this only guards the key space.
    """
    normalized = (email or "").strip().lower()
    if not normalized or "@" not in normalized:
        raise ValidationError.for_field("email", "Invalid email address.")
    return normalized


def lookup_key(email: str) -> str | None:
    """normalize_email() for reads: a value that cannot be an address simply matches nothing."""
    try:
        return normalize_email(email)
    except ValidationError:
        return None


def new_account_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AccountRegistry(Protocol):
    """Storage contract for Account records.

    Lookups never raise for a malformed email; they return None. create()
    raises ValidationError for one, AlreadyExists for a taken email.
    """

    def find_by_email(self, email: str) -> Account | None: ...

    def find_by_id(self, account_id: str) -> Account | None: ...

    def create(self, display_name: str, email: str, password_hash: str | None) -> Account: ...

    def update_password(self, account_id: str, new_password_hash: str) -> bool: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Per-key locking
# ---------------------------------------------------------------------------


class _KeyedLocks:
    """One lock per key, alive only while some thread holds or waits on it.

    The guard lock is held only long enough to fetch, create, or drop the
    per-key entry, so work done under different keys runs in parallel.
    Entries are reference-counted and removed on last release, so the table
    never grows beyond the number of keys currently in use.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # key -> [lock, holders + waiters]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryAccountRegistry:
    """Process-local registry. Suitable for tests and single-process dev servers.

    Usage:
        registry = InMemoryAccountRegistry()
        account = registry.create("Ada", "Ada@Example.com", hash_password("secret"))
        registry.find_by_email("ada@example.com")
    """

    def __init__(self) -> None:
        self._by_email: dict[str, Account] = {}
        self._by_id: dict[str, Account] = {}
        self._locks = _KeyedLocks()

    def find_by_email(self, email: str) -> Account | None:
        account = self._by_email.get(lookup_key(email))
        return replace(account) if account is not None else None

    def find_by_id(self, account_id: str) -> Account | None:
        account = self._by_id.get(account_id)
        return replace(account) if account is not None else None

    def create(self, display_name: str, email: str, password_hash: str | None) -> Account:
        """Insert a new account. Raises AlreadyExists if the email is taken."""
        key = normalize_email(email)
        with self._locks.hold(key):
            if key in self._by_email:
                raise AlreadyExists()
            account = Account(
                id=new_account_id(),
                display_name=display_name,
                email=key,
                password_hash=password_hash,
                created_at=now_iso(),
            )
            self._commit_create(account)
        return replace(account)

    def update_password(self, account_id: str, new_password_hash: str) -> bool:
        """Replace the stored hash. Raises NotFound for an unknown id."""
        account = self._by_id.get(account_id)
        if account is None:
            raise NotFound()
        with self._locks.hold(account.email):
            self._commit_password(account, new_password_hash)
        return True

    def close(self) -> None:
        pass

    def _load(self, accounts: list[Account]) -> None:
        for account in accounts:
            if account.email in self._by_email:
                logger.warning("Skipping duplicate account record for %s", account.email)
                continue
            self._by_email[account.email] = account
            self._by_id[account.id] = account

    def _snapshot(self) -> list[Account]:
        return list(self._by_email.values())

    def _commit_create(self, account: Account) -> None:
        """Make a new account visible. Runs while the per-email lock is held."""
        self._by_email[account.email] = account
        self._by_id[account.id] = account

    def _commit_password(self, account: Account, new_password_hash: str) -> None:
        account.password_hash = new_password_hash


# ---------------------------------------------------------------------------
# JSON file backend
# ---------------------------------------------------------------------------


class JsonFileAccountRegistry(InMemoryAccountRegistry):
    """In-memory registry mirrored to a single JSON array file.

    File layout: a JSON array of account objects with the keys id,
    display_name, email, password_hash, created_at. No schema version.

    A change reaches memory only after the file holding it is in place:
    every write builds the next file content from committed records plus
    the change, writes a temp file, os.replace()s it, and only then updates
    the dicts. The write lock covers that whole sequence, so the file never
    holds an account whose create failed and readers never see an account
    that is not yet on disk. The per-email locks still decide who wins a
    create race.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._write_lock = threading.Lock()
        if self.path.exists():
            records = json.loads(self.path.read_text(encoding="utf-8") or "[]")
            self._load([_record_to_account(r) for r in records])
            logger.info("Loaded %d accounts from %s", len(self._by_email), self.path)

    def _commit_create(self, account: Account) -> None:
        with self._write_lock:
            self._write([*self._snapshot(), account])
            super()._commit_create(account)

    def _commit_password(self, account: Account, new_password_hash: str) -> None:
        with self._write_lock:
            updated = replace(account, password_hash=new_password_hash)
            self._write([updated if a.id == account.id else a for a in self._snapshot()])
            super()._commit_password(account, new_password_hash)

    def _write(self, accounts: list[Account]) -> None:
        """Atomically replace the file. On failure the previous file is untouched."""
        payload = json.dumps([asdict(a) for a in accounts], indent=2)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise


def _record_to_account(record: dict) -> Account:
    return Account(
        id=record["id"],
        display_name=record["display_name"],
        email=normalize_email(record["email"]),
        password_hash=record.get("password_hash"),
        created_at=record.get("created_at"),
    )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_registry(settings: Settings) -> AccountRegistry:
    """Return the registry backend selected by Settings.registry_backend."""
    if settings.registry_backend == "memory":
        logger.warning("Using in-memory account registry -- accounts are lost on restart")
        return InMemoryAccountRegistry()
    if settings.registry_backend == "json":
        return JsonFileAccountRegistry(settings.accounts_file)

    from identity.store import AccountStore

    return AccountStore(settings.database_url)
