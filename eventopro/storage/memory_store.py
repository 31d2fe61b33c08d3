"""In-memory stores for development and tests (used when Postgres is not configured)."""

from __future__ import annotations

import dataclasses
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from eventopro.auth.exceptions import ConflictError
from eventopro.auth.models import Activity, NewUser, Session, User, utcnow
from eventopro.storage.base import Stores, check_update_fields


class MemoryUserStore:
    """
    Dict-backed UserStore.

    A single lock stands in for the database's unique constraints: every
    check-then-write runs under it, so concurrent creates for the same
    username/email/provider identity cannot both succeed.
    """

    def __init__(self) -> None:
        self._users: Dict[int, User] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    def _check_unique(self, candidate: User, *, exclude_id: Optional[int] = None) -> None:
        for u in self._users.values():
            if u.id == exclude_id:
                continue
            if u.username == candidate.username:
                raise ConflictError("username")
            if u.email == candidate.email:
                raise ConflictError("email")
            if (
                candidate.provider_id is not None
                and u.provider == candidate.provider
                and u.provider_id == candidate.provider_id
            ):
                raise ConflictError("provider_id")

    def get(self, user_id: int) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def get_by_username(self, username: str) -> Optional[User]:
        with self._lock:
            return next((u for u in self._users.values() if u.username == username), None)

    def get_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            return next((u for u in self._users.values() if u.email == email), None)

    def get_by_provider(self, provider: str, provider_id: str) -> Optional[User]:
        with self._lock:
            return next(
                (u for u in self._users.values() if u.provider == provider and u.provider_id == provider_id),
                None,
            )

    def list(self) -> List[User]:
        with self._lock:
            return sorted(self._users.values(), key=lambda u: u.id)

    def create(self, new_user: NewUser) -> User:
        with self._lock:
            user = User(id=self._next_id, created_at=utcnow(), **dataclasses.asdict(new_user))
            self._check_unique(user)
            self._users[user.id] = user
            self._next_id += 1
            return user

    def update(self, user_id: int, **fields: Any) -> Optional[User]:
        check_update_fields(fields)
        with self._lock:
            current = self._users.get(user_id)
            if current is None:
                return None
            updated = dataclasses.replace(current, **fields)
            self._check_unique(updated, exclude_id=user_id)
            self._users[user_id] = updated
            return updated

    def set_role(self, user_id: int, role: str) -> Optional[User]:
        with self._lock:
            current = self._users.get(user_id)
            if current is None:
                return None
            updated = dataclasses.replace(current, role=role)
            self._users[user_id] = updated
            return updated

    def touch_login(self, user_id: int) -> None:
        with self._lock:
            current = self._users.get(user_id)
            if current is not None:
                self._users[user_id] = dataclasses.replace(current, last_login_at=utcnow())

    def delete(self, user_id: int) -> bool:
        with self._lock:
            return self._users.pop(user_id, None) is not None


class MemorySessionStore:
    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self, token: str, user_id: int, expires_at: datetime) -> Session:
        session = Session(token=token, user_id=user_id, created_at=utcnow(), expires_at=expires_at)
        with self._lock:
            self._sessions[token] = session
        return session

    def get(self, token: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return None
            if session.is_expired():
                del self._sessions[token]
                return None
            return session

    def delete(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def delete_for_user(self, user_id: int, *, keep: Optional[str] = None) -> int:
        with self._lock:
            doomed = [t for t, s in self._sessions.items() if s.user_id == user_id and t != keep]
            for t in doomed:
                del self._sessions[t]
            return len(doomed)

    def purge_expired(self) -> int:
        now = utcnow()
        with self._lock:
            doomed = [t for t, s in self._sessions.items() if s.is_expired(now)]
            for t in doomed:
                del self._sessions[t]
            return len(doomed)


class MemoryActivityLog:
    def __init__(self) -> None:
        self._items: List[Activity] = []
        self._lock = threading.Lock()

    def append(self, activity: Activity) -> None:
        with self._lock:
            self._items.append(activity)

    def all(self) -> List[Activity]:
        with self._lock:
            return list(self._items)


def memory_stores() -> Stores:
    return Stores(users=MemoryUserStore(), sessions=MemorySessionStore(), activities=MemoryActivityLog())
