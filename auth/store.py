"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. The orchestrator never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email) is enforced by the database. create() translates the
  resulting IntegrityError into DuplicateEmail so the orchestrator does not
  need a racy exists-then-insert check of its own.

DB URL: Settings.database_url (SQLite file by default). Tests pass a
named shared-memory SQLite URI.

Layer rule: no imports from api/, cache/, or notify/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import DuplicateEmail, StoreError
from auth.models import User

logger = logging.getLogger("authgate.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("mfa_secret", String(64)),  # base32 TOTP seed, NULL until enrollment
    Column("mfa_enabled", Integer, nullable=False, server_default="0"),
    Column("verification_token", String(128)),
    Column("email_verified_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

# Fields accepted by create() and update(). Validated before any SQL so a
# caller cannot smuggle arbitrary column names into the statement.
_CREATE_FIELDS = frozenset({"name", "email", "hashed_password", "verification_token", "mfa_secret", "mfa_enabled"})
_UPDATE_FIELDS = frozenset(
    {"name", "hashed_password", "verification_token", "mfa_secret", "mfa_enabled", "email_verified_at"}
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_fields(fields: dict[str, Any], allowed: frozenset[str]) -> dict[str, Any]:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
    values = dict(fields)
    if "mfa_enabled" in values:
        values["mfa_enabled"] = 1 if values["mfa_enabled"] else 0
    return values


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Durable repository for User records.

    Usage:
        store = UserStore("sqlite:///auth.db")
        user = store.create({"name": "Ada", "email": "ada@example.com", "hashed_password": h})
        store.find_by_email("ada@example.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def create(self, fields: dict[str, Any]) -> User:
        """Insert a new user and return it with its assigned id.

        Raises DuplicateEmail if the email is already registered, StoreError
        for any other database failure.
        """
        values = _check_fields(fields, _CREATE_FIELDS)
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.insert().values(created_at=_now_iso(), **values))
                conn.commit()
                user_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            if self.exists_by_email(values.get("email", "")):
                logger.info("Rejected duplicate email on create")
                raise DuplicateEmail() from exc
            logger.error("Failed to create user: %s", exc)
            raise StoreError(f"Unable to create user: {exc}") from exc
        except SQLAlchemyError as exc:
            logger.error("Failed to create user: %s", exc)
            raise StoreError(f"Unable to create user: {exc}") from exc

        logger.info("User created in database (user_id=%s)", user_id)
        user = self.find_by_id(user_id)
        if user is None:
            raise StoreError("User not found after write.")
        return user

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by exact (already normalised) email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update(self, user: User, fields: dict[str, Any]) -> User:
        """Apply fields to an existing user and return the refreshed record.

        email is immutable here; changing it would orphan cache entries keyed
        by the old address.
        """
        values = _check_fields(fields, _UPDATE_FIELDS)
        if not values:
            return user
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.update().where(_users.c.id == user.id).values(**values))
                conn.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to update user %s: %s", user.id, exc)
            raise StoreError(f"Unable to update user: {exc}") from exc
        if result.rowcount == 0:
            raise StoreError(f"User {user.id} does not exist.")

        logger.info("User updated in database (user_id=%s, fields=%s)", user.id, sorted(values))
        refreshed = self.find_by_id(user.id)
        if refreshed is None:
            raise StoreError("User not found after write.")
        return refreshed

    def exists_by_email(self, email: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().with_only_columns(_users.c.id).where(_users.c.email == email)).first()
        return row is not None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        mfa_secret=row.mfa_secret,
        mfa_enabled=bool(row.mfa_enabled),
        verification_token=row.verification_token,
        email_verified_at=row.email_verified_at,
        created_at=row.created_at,
    )
