"""
auth/sessions.py -- Repository for login sessions.

A session is valid iff its row exists, now < expires_at, and the owning user
row still exists. All three are checked in the same SELECT on every call to
validate(); validity is never cached and never extended (no sliding renewal).

Expired rows are inert even before purge_expired() removes them physically:
every lookup filters on expires_at.

user_id is a plain identity (weak reference). The foreign key on
sessions.user_id means issue() fails at the store for a user that has already
been deleted, which surfaces here as NotFound.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import and_, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from auth.db import Database, sessions, to_iso, users
from auth.errors import NotFound
from auth.models import ClientContext, Session
from auth.tokens import generate_session_token, token_label

logger = logging.getLogger("gatehouse.auth")


class SessionManager:
    """Issue, validate and revoke session records.

    Usage:
        manager = SessionManager(db)
        session = manager.issue(user_id, timedelta(hours=24), ClientContext(ip="10.0.0.1"))
        manager.validate(session.token)      # -> Session or None
        manager.revoke(session.token)
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def issue(
        self,
        user_id: int,
        ttl: timedelta,
        context: ClientContext,
        remember_me: bool = False,
        conn: Connection | None = None,
    ) -> Session:
        """Create a session with a fresh token and an immutable context snapshot.

        The token is the primary key, so a value can never be stored twice: a
        (256-bit) collision fails the insert instead of overwriting a session.
        Raises NotFound if the owner does not exist, whether it was already gone
        or was deleted between the check and the insert (foreign key).
        """
        now = self.db.now()
        created_at = to_iso(now)
        expires_at = to_iso(now + ttl)
        token = generate_session_token()
        try:
            with self.db.connection(conn) as c:
                if c.execute(select(users.c.id).where(users.c.id == user_id)).first() is None:
                    raise NotFound()
                c.execute(
                    sessions.insert().values(
                        token=token,
                        user_id=user_id,
                        created_at=created_at,
                        expires_at=expires_at,
                        ip=context.ip,
                        user_agent=context.user_agent,
                        remember_me=remember_me,
                    )
                )
        except IntegrityError as exc:
            raise NotFound() from exc
        return Session(
            token=token,
            user_id=user_id,
            created_at=created_at,
            expires_at=expires_at,
            ip=context.ip,
            user_agent=context.user_agent,
            remember_me=remember_me,
        )

    def validate(self, token: str, conn: Connection | None = None) -> Session | None:
        """Return the live session for a token, or None if absent, expired or orphaned."""
        if not token:
            return None
        now = self.db.now_iso()
        stmt = (
            select(sessions)
            .select_from(sessions.join(users, sessions.c.user_id == users.c.id))
            .where(and_(sessions.c.token == token, sessions.c.expires_at > now))
        )
        with self.db.connection(conn) as c:
            row = c.execute(stmt).fetchone()
        return _row_to_session(row) if row is not None else None

    def revoke(self, token: str, conn: Connection | None = None) -> bool:
        """Delete one session. Idempotent: absent or expired tokens are not an error.

        Returns True only if a live (unexpired) session was removed.
        """
        if not token:
            return False
        now = self.db.now_iso()
        with self.db.connection(conn) as c:
            live = c.execute(
                select(sessions.c.token).where(and_(sessions.c.token == token, sessions.c.expires_at > now))
            ).first()
            c.execute(sessions.delete().where(sessions.c.token == token))
        if live is not None:
            logger.info("Session revoked: %s at %s", token_label(token), now)
        return live is not None

    def revoke_all_for_user(
        self,
        user_id: int,
        except_token: str | None = None,
        conn: Connection | None = None,
    ) -> int:
        """Delete every session owned by user_id, optionally sparing one token.

        Returns the number of rows deleted.
        """
        condition = sessions.c.user_id == user_id
        if except_token is not None:
            condition = and_(condition, sessions.c.token != except_token)
        with self.db.connection(conn) as c:
            result = c.execute(sessions.delete().where(condition))
        return result.rowcount

    def purge_expired(self) -> int:
        """Physically delete expired sessions. Returns the number of rows removed."""
        now = self.db.now_iso()
        with self.db.connection() as c:
            result = c.execute(sessions.delete().where(sessions.c.expires_at <= now))
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_session(row) -> Session:
    return Session(
        token=row.token,
        user_id=row.user_id,
        created_at=row.created_at,
        expires_at=row.expires_at,
        ip=row.ip,
        user_agent=row.user_agent,
        remember_me=bool(row.remember_me),
    )
