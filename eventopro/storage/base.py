"""Storage interfaces for users, sessions and the activity log.

Two implementations share these interfaces:
- `memory_store.py`: in-process dicts, for development and tests.
- `pg_store.py`: PostgreSQL via psycopg, where unique constraints serialize
  conflicting writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional, Protocol

from eventopro.auth.models import Activity, NewUser, Session, User

# Columns a profile update may touch. Role goes through set_role, password through the
# password-change flow.
UPDATABLE_USER_FIELDS = ("username", "email", "name", "avatar_url", "password")


class UserStore(Protocol):
    """
    Credential store.

    `create` and `update` raise ConflictError(field) when username, email or the
    (provider, provider_id) pair would no longer be unique.
    """

    def get(self, user_id: int) -> Optional[User]: ...

    def get_by_username(self, username: str) -> Optional[User]: ...

    def get_by_email(self, email: str) -> Optional[User]: ...

    def get_by_provider(self, provider: str, provider_id: str) -> Optional[User]: ...

    def list(self) -> List[User]: ...

    def create(self, new_user: NewUser) -> User: ...

    def update(self, user_id: int, **fields: Any) -> Optional[User]: ...

    def set_role(self, user_id: int, role: str) -> Optional[User]: ...

    def touch_login(self, user_id: int) -> None: ...

    def delete(self, user_id: int) -> bool: ...


class SessionStore(Protocol):
    def create(self, token: str, user_id: int, expires_at: datetime) -> Session: ...

    def get(self, token: str) -> Optional[Session]:
        """Return the live session for token, or None if missing or expired."""

    def delete(self, token: str) -> None:
        """Remove the session; a no-op when it does not exist."""

    def delete_for_user(self, user_id: int, *, keep: Optional[str] = None) -> int: ...

    def purge_expired(self) -> int: ...


class ActivityLog(Protocol):
    def append(self, activity: Activity) -> None: ...


@dataclass
class Stores:
    users: UserStore
    sessions: SessionStore
    activities: ActivityLog


def check_update_fields(fields: dict) -> None:
    unknown = set(fields) - set(UPDATABLE_USER_FIELDS)
    if unknown:
        raise ValueError(f"Unsupported user field(s): {', '.join(sorted(unknown))}")
