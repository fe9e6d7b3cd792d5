"""
identity/store.py -- SQLAlchemy Core persistence backend for the account registry.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Route and service code never touches SQL.

Atomic create:
  The email column carries a UNIQUE constraint and every stored email is
  already normalized, so the database itself is the insert-if-absent
  primitive. Two concurrent inserts for the same email cannot both commit;
  the loser's IntegrityError is translated to AlreadyExists. No application
  lock is involved, so creates for different emails never serialize.

Security:
  All queries use bound parameters. No f-strings in SQL.

DB path: signet_accounts.db in the working directory unless DATABASE_URL says
otherwise.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from identity.errors import AlreadyExists, NotFound
from identity.models import Account
from identity.registry import lookup_key, new_account_id, normalize_email, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("display_name", String(255), nullable=False),
    Column("email", String(320), nullable=False, unique=True),  # always lowercased
    Column("password_hash", Text),  # NULL for OAuth-only accounts
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so session reads never wait behind a write.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """SQL-backed AccountRegistry.

    Usage:
        store = AccountStore("sqlite:///signet_accounts.db")
        account = store.create("Ada", "ada@example.com", hash_password("secret"))
        store.find_by_email("ADA@example.com")
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///signet_accounts.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def find_by_email(self, email: str) -> Account | None:
        """Look up an account by email, case-insensitively. Returns None if not found."""
        key = lookup_key(email)
        if key is None:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == key)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_id(self, account_id: str) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def create(self, display_name: str, email: str, password_hash: str | None) -> Account:
        """Insert a new account and return it.

        Raises AlreadyExists if the normalized email is taken, including when
        a concurrent request committed the same email a moment earlier.
        """
        account = Account(
            id=new_account_id(),
            display_name=display_name,
            email=normalize_email(email),
            password_hash=password_hash,
            created_at=now_iso(),
        )
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _accounts.insert().values(
                        id=account.id,
                        display_name=account.display_name,
                        email=account.email,
                        password_hash=account.password_hash,
                        created_at=account.created_at,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise AlreadyExists() from exc
        return account

    def update_password(self, account_id: str, new_password_hash: str) -> bool:
        """Replace the stored hash. Raises NotFound if account_id does not exist."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update().where(_accounts.c.id == account_id).values(password_hash=new_password_hash)
            )
            conn.commit()
        if result.rowcount == 0:
            raise NotFound()
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        display_name=row.display_name,
        email=row.email,
        password_hash=row.password_hash,
        created_at=row.created_at,
    )
