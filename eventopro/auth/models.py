from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

ROLE_ADMIN = "admin"
ROLE_USER = "user"
ROLES = (ROLE_ADMIN, ROLE_USER)

PROVIDER_LOCAL = "local"
PROVIDER_GOOGLE = "google"
PROVIDER_FACEBOOK = "facebook"
PROVIDER_DEV = "dev"
PROVIDERS = (PROVIDER_LOCAL, PROVIDER_GOOGLE, PROVIDER_FACEBOOK, PROVIDER_DEV)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class User:
    """Account record as persisted by a UserStore."""

    id: int
    username: str
    email: str
    role: str = ROLE_USER  # admin|user
    provider: str = PROVIDER_LOCAL  # local|google|facebook|dev
    password: Optional[str] = None  # salted hash, local accounts only
    name: Optional[str] = None
    provider_id: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_login_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_local(self) -> bool:
        return self.provider == PROVIDER_LOCAL

    def public_dict(self) -> Dict[str, Any]:
        # Never expose the password hash or provider identity.
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "provider": self.provider,
            "avatarUrl": self.avatar_url,
        }


@dataclass(frozen=True)
class NewUser:
    """Fields accepted by UserStore.create; id and created_at are assigned by the store."""

    username: str
    email: str
    password: Optional[str] = None
    name: Optional[str] = None
    role: str = ROLE_USER
    provider: str = PROVIDER_LOCAL
    provider_id: Optional[str] = None
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class Session:
    token: str
    user_id: int
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass(frozen=True)
class Activity:
    action: str  # register|login|logout|password_change|promote_admin|setup
    description: str
    user_id: Optional[int] = None
    event_id: Optional[int] = None
    attendee_id: Optional[int] = None
    target_user_id: Optional[int] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ExternalProfile:
    """Identity returned by an OAuth provider after the code exchange."""

    provider: str
    provider_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class AuthResult:
    user: User
    created: bool = False
