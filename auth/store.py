"""
auth/store.py -- SQLAlchemy Core persistence layer for users and sessions.

Pattern: Repository + Data Mapper. UserStore and SessionStore are the
repositories; _row_to_user / _row_to_session are the mappers. Service and
route code never touches SQL directly.

Both stores share one Engine (one connection pool) built by
create_store_engine(). They live in the same database because sessions
reference users with ON DELETE CASCADE.

Security:
  All queries use bound parameters. No f-strings in SQL.

Timestamps:
  The domain uses timezone-aware UTC datetimes. Columns hold ISO 8601 text
  with fixed microsecond precision, so lexical order equals chronological
  order and the expiry sweep can compare strings in SQL on any backend.

Email uniqueness:
  Enforced by a partial unique index over live (non-deleted) rows, so a
  soft-deleted account does not block re-registration of its address.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.errors import NotFoundError
from auth.models import SafeUser, Session, User, UserRole

logger = logging.getLogger("authgate.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False),
    Column("password", Text),  # NULL for accounts without a local password
    Column("role", String(20), nullable=False, server_default=UserRole.user.value),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

Index(
    "ux_users_email_live",
    _users.c.email,
    unique=True,
    sqlite_where=_users.c.deleted_at.is_(None),
    postgresql_where=_users.c.deleted_at.is_(None),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("refresh_token", Text, nullable=False, unique=True),
    Column("user_agent", String(255), nullable=False, server_default="unknown"),
    Column("ip_address", String(45), nullable=False, server_default="unknown"),  # fits IPv6
    Column("expires_at", String(32), nullable=False),
    Column("is_valid", Boolean, nullable=False, server_default="1"),
    Column("last_used_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_USER_UPDATABLE = {"name", "email", "password", "role"}
_SESSION_UPDATABLE = {"refresh_token", "user_agent", "ip_address", "expires_at", "is_valid", "last_used_at"}
_SESSION_TIMESTAMPS = {"expires_at", "last_used_at"}


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Per-connection SQLite setup.

    WAL lets readers proceed during writes. foreign_keys is OFF by default in
    SQLite and must be enabled on every connection for ON DELETE CASCADE.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_store_engine(db_url: str) -> Engine:
    """Create the shared Engine and make sure the schema exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        engine = create_store_engine("sqlite:///authgate.db")
        store = UserStore(engine)
        safe = store.create(User(name="ada", email="ada@example.com", password=hasher.hash("...")))
        user = store.find_by_email("ada@example.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def find_by_id(self, user_id: str) -> User | None:
        """Look up a live user by primary key. Returns None if absent or soft-deleted."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.id == user_id) & _users.c.deleted_at.is_(None))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_email(self, email: str) -> User | None:
        """Look up a live user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.email == email) & _users.c.deleted_at.is_(None))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def create(self, user: User) -> SafeUser:
        """Insert a new user and return it without the password hash.

        Raises sqlalchemy.exc.IntegrityError if the email is already taken by
        a live account. AuthService checks first; the index catches races.
        """
        now = utcnow()
        user_id = user.id or _new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    name=user.name,
                    email=user.email,
                    password=user.password,
                    role=UserRole(user.role).value,
                    created_at=_to_iso(now),
                    updated_at=_to_iso(now),
                )
            )
            conn.commit()
        return SafeUser(
            id=user_id,
            name=user.name,
            email=user.email,
            role=UserRole(user.role),
            created_at=now,
            updated_at=now,
        )

    def update(self, user_id: str, **fields) -> SafeUser:
        """Update mutable fields (name, email, password, role) on a live user.

        Raises NotFoundError if no live user has this id, ValueError on an
        unknown field name.
        """
        unknown = set(fields) - _USER_UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if "role" in fields:
            fields["role"] = UserRole(fields["role"]).value
        fields["updated_at"] = _to_iso(utcnow())
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where((_users.c.id == user_id) & _users.c.deleted_at.is_(None)).values(**fields)
            )
            conn.commit()
        if result.rowcount == 0:
            raise NotFoundError(f"User {user_id} not found")
        updated = self.find_by_id(user_id)
        if updated is None:
            raise NotFoundError(f"User {user_id} not found")
        return updated.to_safe()

    def delete(self, user_id: str) -> None:
        """Permanently delete a user. Sessions go with it (ON DELETE CASCADE)."""
        with self.engine.connect() as conn:
            conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()

    def soft_delete(self, user_id: str) -> bool:
        """Stamp deleted_at and invalidate the user's sessions in one transaction.

        Returns True if a live user was marked, False otherwise.
        """
        now = _to_iso(utcnow())
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & _users.c.deleted_at.is_(None))
                .values(deleted_at=now, updated_at=now)
            )
            if result.rowcount:
                conn.execute(
                    _sessions.update().where(_sessions.c.user_id == user_id).values(is_valid=False, updated_at=now)
                )
        return result.rowcount > 0

    def count(self) -> int:
        """Number of live users."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.deleted_at.is_(None))
            ).scalar()
        return result or 0


class SessionStore:
    """Repository for Session entities, keyed by id and by refresh token."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def find_by_id(self, session_id: str) -> Session | None:
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def find_by_refresh_token(self, refresh_token: str) -> Session | None:
        """O(1) lookup via the UNIQUE index on refresh_token."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.refresh_token == refresh_token)).fetchone()
        return _row_to_session(row) if row is not None else None

    def list_by_user_id(self, user_id: str) -> list[Session]:
        """All sessions of a user, most recently used first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.last_used_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def create(self, session: Session) -> Session:
        """Insert a session and return it with id and timestamps filled in.

        Raises sqlalchemy.exc.IntegrityError on a duplicate refresh token or
        an unknown user_id.
        """
        now = utcnow()
        created = Session(
            id=session.id or _new_id(),
            user_id=session.user_id,
            refresh_token=session.refresh_token,
            user_agent=session.user_agent or "unknown",
            ip_address=session.ip_address or "unknown",
            expires_at=session.expires_at,
            is_valid=session.is_valid,
            last_used_at=session.last_used_at or now,
            created_at=now,
            updated_at=now,
        )
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=created.id,
                    user_id=created.user_id,
                    refresh_token=created.refresh_token,
                    user_agent=created.user_agent,
                    ip_address=created.ip_address,
                    expires_at=_to_iso(created.expires_at),
                    is_valid=created.is_valid,
                    last_used_at=_to_iso(created.last_used_at),
                    created_at=_to_iso(now),
                    updated_at=_to_iso(now),
                )
            )
            conn.commit()
        return created

    def update(self, session_id: str, **fields) -> Session:
        """Partial update. updated_at is always bumped.

        Raises NotFoundError if the session does not exist, ValueError on an
        unknown field name.
        """
        unknown = set(fields) - _SESSION_UPDATABLE
        if unknown:
            raise ValueError(f"Unknown session fields: {sorted(unknown)!r}")
        for key in _SESSION_TIMESTAMPS & set(fields):
            fields[key] = _to_iso(fields[key])
        fields["updated_at"] = _to_iso(utcnow())
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(**fields))
            conn.commit()
        if result.rowcount == 0:
            raise NotFoundError(f"Session {session_id} not found")
        updated = self.find_by_id(session_id)
        if updated is None:
            raise NotFoundError(f"Session {session_id} not found")
        return updated

    def delete(self, session_id: str) -> None:
        """Delete one session. Deleting a missing session is a no-op."""
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.commit()

    def invalidate(self, session_id: str) -> bool:
        """Mark one session unusable. Returns False if it does not exist."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where(_sessions.c.id == session_id)
                .values(is_valid=False, updated_at=_to_iso(utcnow()))
            )
            conn.commit()
        return result.rowcount > 0

    def invalidate_all_by_user_id(self, user_id: str) -> int:
        """Mark every still-valid session of a user unusable. Returns the number changed.

        The rows stay behind so a refresh with one of their tokens is refused
        instead of falling through to the stateless path; the expiry sweep
        removes them later.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update()
                .where((_sessions.c.user_id == user_id) & _sessions.c.is_valid.is_(True))
                .values(is_valid=False, updated_at=_to_iso(utcnow()))
            )
            conn.commit()
        return result.rowcount

    def delete_all_by_user_id(self, user_id: str) -> int:
        """Delete every session of a user. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def delete_all_expired_sessions(self, now: datetime | None = None) -> int:
        """Purge sessions whose expires_at has elapsed. Returns the number removed."""
        cutoff = _to_iso(now or utcnow())
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= cutoff))
            conn.commit()
        if result.rowcount:
            logger.info("Purged %d expired session(s)", result.rowcount)
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password=row.password,
        role=UserRole(row.role),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
        deleted_at=_from_iso(row.deleted_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        refresh_token=row.refresh_token,
        user_agent=row.user_agent,
        ip_address=row.ip_address,
        expires_at=_from_iso(row.expires_at),
        is_valid=bool(row.is_valid),
        last_used_at=_from_iso(row.last_used_at),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )
