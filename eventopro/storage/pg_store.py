"""PostgreSQL-backed stores (psycopg 3).

Each call opens a short-lived connection from `connect` and commits on exit.
Uniqueness is enforced by the constraints in `db/migrations/0001_auth.sql`;
violations are translated to ConflictError by constraint name.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, List, Optional

import psycopg
from psycopg import errors

from eventopro.auth.exceptions import ConflictError
from eventopro.auth.models import Activity, NewUser, Session, User, utcnow
from eventopro.storage.base import Stores, check_update_fields

logger = logging.getLogger(__name__)

Connect = Callable[[], psycopg.Connection]

_USER_COLUMNS = (
    "id, username, email, password, name, role, provider, provider_id, avatar_url, created_at, last_login_at"
)

_CONSTRAINT_FIELDS = {
    "users_username_key": "username",
    "users_email_key": "email",
    "users_provider_identity_key": "provider_id",
}


def _row_to_user(row) -> User:
    (
        user_id,
        username,
        email,
        password,
        name,
        role,
        provider,
        provider_id,
        avatar_url,
        created_at,
        last_login_at,
    ) = row
    return User(
        id=int(user_id),
        username=username,
        email=email,
        password=password,
        name=name,
        role=role,
        provider=provider,
        provider_id=provider_id,
        avatar_url=avatar_url,
        created_at=created_at,
        last_login_at=last_login_at,
    )


def _conflict_from(exc: errors.UniqueViolation) -> ConflictError:
    constraint = getattr(getattr(exc, "diag", None), "constraint_name", None) or ""
    field = _CONSTRAINT_FIELDS.get(constraint)
    if field is None:
        logger.warning("Unique violation on unexpected constraint %r", constraint)
        field = "username"
    return ConflictError(field)


def connect_factory(dsn: str) -> Connect:
    def _connect() -> psycopg.Connection:
        return psycopg.connect(dsn)

    return _connect


class PgUserStore:
    def __init__(self, connect: Connect) -> None:
        self._connect = connect

    def _fetch_one(self, where: str, params: tuple) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(f"SELECT {_USER_COLUMNS} FROM users WHERE {where}", params).fetchone()
        return _row_to_user(row) if row else None

    def get(self, user_id: int) -> Optional[User]:
        return self._fetch_one("id = %s", (user_id,))

    def get_by_username(self, username: str) -> Optional[User]:
        return self._fetch_one("username = %s", (username,))

    def get_by_email(self, email: str) -> Optional[User]:
        return self._fetch_one("email = %s", (email,))

    def get_by_provider(self, provider: str, provider_id: str) -> Optional[User]:
        return self._fetch_one("provider = %s AND provider_id = %s", (provider, provider_id))

    def list(self) -> List[User]:
        with self._connect() as conn:
            rows = conn.execute(f"SELECT {_USER_COLUMNS} FROM users ORDER BY id").fetchall()
        return [_row_to_user(r) for r in rows]

    def create(self, new_user: NewUser) -> User:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    INSERT INTO users (username, email, password, name, role, provider, provider_id, avatar_url)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_USER_COLUMNS}
                    """,
                    (
                        new_user.username,
                        new_user.email,
                        new_user.password,
                        new_user.name,
                        new_user.role,
                        new_user.provider,
                        new_user.provider_id,
                        new_user.avatar_url,
                    ),
                ).fetchone()
        except errors.UniqueViolation as e:
            raise _conflict_from(e) from e
        if not row:
            raise RuntimeError("INSERT INTO users returned no row")
        return _row_to_user(row)

    def update(self, user_id: int, **fields: Any) -> Optional[User]:
        check_update_fields(fields)
        if not fields:
            return self.get(user_id)
        # Column names come from the UPDATABLE_USER_FIELDS allowlist, never from input.
        assignments = ", ".join(f"{col} = %s" for col in fields)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"UPDATE users SET {assignments} WHERE id = %s RETURNING {_USER_COLUMNS}",
                    (*fields.values(), user_id),
                ).fetchone()
        except errors.UniqueViolation as e:
            raise _conflict_from(e) from e
        return _row_to_user(row) if row else None

    def set_role(self, user_id: int, role: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"UPDATE users SET role = %s WHERE id = %s RETURNING {_USER_COLUMNS}",
                (role, user_id),
            ).fetchone()
        return _row_to_user(row) if row else None

    def touch_login(self, user_id: int) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE users SET last_login_at = NOW() WHERE id = %s", (user_id,))

    def delete(self, user_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM users WHERE id = %s", (user_id,))
            return cur.rowcount > 0


class PgSessionStore:
    def __init__(self, connect: Connect) -> None:
        self._connect = connect

    def create(self, token: str, user_id: int, expires_at: datetime) -> Session:
        with self._connect() as conn:
            row = conn.execute(
                """
                INSERT INTO sessions (sid, user_id, expires_at)
                VALUES (%s, %s, %s)
                RETURNING created_at
                """,
                (token, user_id, expires_at),
            ).fetchone()
        created_at = row[0] if row else utcnow()
        return Session(token=token, user_id=user_id, created_at=created_at, expires_at=expires_at)

    def get(self, token: str) -> Optional[Session]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT sid, user_id, created_at, expires_at
                FROM sessions
                WHERE sid = %s AND expires_at > NOW()
                """,
                (token,),
            ).fetchone()
        if not row:
            return None
        sid, user_id, created_at, expires_at = row
        return Session(token=sid, user_id=int(user_id), created_at=created_at, expires_at=expires_at)

    def delete(self, token: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM sessions WHERE sid = %s", (token,))

    def delete_for_user(self, user_id: int, *, keep: Optional[str] = None) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM sessions WHERE user_id = %s AND sid IS DISTINCT FROM %s",
                (user_id, keep),
            )
            return cur.rowcount

    def purge_expired(self) -> int:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE expires_at <= NOW()")
            return cur.rowcount


class PgActivityLog:
    def __init__(self, connect: Connect) -> None:
        self._connect = connect

    def append(self, activity: Activity) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO activities (action, description, user_id, event_id, attendee_id, target_user_id, "timestamp")
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    activity.action,
                    activity.description,
                    activity.user_id,
                    activity.event_id,
                    activity.attendee_id,
                    activity.target_user_id,
                    activity.timestamp,
                ),
            )


def pg_stores(dsn: str) -> Stores:
    connect = connect_factory(dsn)
    return Stores(users=PgUserStore(connect), sessions=PgSessionStore(connect), activities=PgActivityLog(connect))
