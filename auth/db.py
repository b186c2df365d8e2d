"""
auth/db.py -- Shared SQLAlchemy Core engine, schema, and transaction scope.

Pattern: one Database object owns the engine and the schema for both auth
collections (users, sessions). CredentialStore and SessionManager are thin
repositories on top of it. Keeping both tables behind one engine is what lets
account deletion remove the sessions and the user in a single transaction.

Every repository method takes an optional `conn`. Passed in, the method joins
the caller's transaction; omitted, the method runs in its own short
transaction via Database.connection(). No repository method performs a
read-then-write across two transactions.

Security:
  All queries use bound parameters. No f-strings in SQL.

  sessions.user_id is a FOREIGN KEY to users.id. SQLite only enforces foreign
  keys with PRAGMA foreign_keys=ON, which is set per connection below. This
  makes "issue a session for a deleted user" fail at the store.

Timestamps:
  Stored as ISO-8601 UTC strings with fixed microsecond precision, so string
  comparison in SQL (expires_at > :now) is chronological comparison.

Timeouts:
  store_timeout seconds bounds lock waits (SQLite busy timeout, driver connect
  timeout) and pool checkout. A timed-out statement rolls back its transaction,
  so a timeout never leaves a partial mutation behind.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Connection, Engine

Clock = Callable[[], datetime]

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("name", String(100)),
    Column("preferences", Text, nullable=False),  # JSON object
    Column("email_verified", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("failed_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
)

sessions = Table(
    "sessions",
    _metadata,
    Column("token", String(64), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("ip", String(45)),  # IPv6 max length
    Column("user_agent", Text),
    Column("remember_me", Boolean, nullable=False, server_default="0"),
    Index("ix_sessions_user_id", "user_id"),
    Index("ix_sessions_expires_at", "expires_at"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Format a datetime as fixed-width UTC ISO-8601 (always with microseconds)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class Database:
    """Engine + schema owner shared by the auth repositories.

    Usage:
        db = Database("sqlite:///gatehouse.db", timeout=5.0)
        with db.transaction() as conn:
            ...
        db.close()
    """

    def __init__(self, db_url: str, timeout: float = 5.0, clock: Clock = utcnow) -> None:
        self.timeout = timeout
        self.clock = clock
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout
        elif db_url.startswith(("postgresql", "mysql")):
            connect_args["connect_timeout"] = max(1, int(timeout))
        # hide_parameters keeps tokens and digests out of exception text (and so out of logs).
        engine_kwargs: dict = {"connect_args": connect_args, "hide_parameters": True}
        if not db_url.startswith("sqlite"):
            engine_kwargs["pool_timeout"] = timeout
        self.engine: Engine = create_engine(db_url, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    def now(self) -> datetime:
        return self.clock()

    def now_iso(self) -> str:
        return to_iso(self.clock())

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """One atomic unit: commits on clean exit, rolls back on any exception."""
        with self.engine.begin() as conn:
            yield conn

    @contextmanager
    def connection(self, conn: Connection | None = None) -> Iterator[Connection]:
        """Join the caller's transaction if given one, otherwise open a new one."""
        if conn is not None:
            yield conn
            return
        with self.engine.begin() as own:
            yield own

    def ping(self) -> bool:
        """Cheap liveness probe for the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()
