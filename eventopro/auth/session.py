"""
Server-side sessions.

The cookie carries only an opaque random token, signed with itsdangerous so
forged or truncated values are rejected before touching the store. The
token-to-user mapping and its fixed expiry live in the SessionStore.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from itsdangerous import BadSignature, URLSafeTimedSerializer

from eventopro.auth.config import AuthConfig
from eventopro.auth.models import Session, User, utcnow
from eventopro.auth.util import random_token
from eventopro.storage.base import Stores

logger = logging.getLogger(__name__)

SESSION_SALT = "eventopro-session-v1"


def session_cookie_name(cfg: AuthConfig) -> str:
    # `__Host-` requires Secure + Path=/ + no Domain; browsers may reject it on HTTP.
    return "__Host-eventopro_session" if cfg.cookie_secure else "eventopro_session"


def _serializer(cfg: AuthConfig) -> Optional[URLSafeTimedSerializer]:
    if not cfg.session_secret:
        return None
    return URLSafeTimedSerializer(secret_key=cfg.session_secret, salt=SESSION_SALT)


def sign_token(cfg: AuthConfig, token: str) -> Optional[str]:
    s = _serializer(cfg)
    if s is None:
        return None
    return s.dumps(token)


def unsign_token(cfg: AuthConfig, value: str | None) -> Optional[str]:
    if not value:
        return None
    s = _serializer(cfg)
    if s is None:
        return None
    try:
        token = s.loads(value, max_age=cfg.session_ttl_seconds)
    except BadSignature:
        # BadTimeSignature/SignatureExpired are subclasses.
        return None
    return token if isinstance(token, str) and token else None


def create_session(cfg: AuthConfig, stores: Stores, user: User) -> Optional[str]:
    """
    Start a session for user.

    Returns the signed cookie value, or None when session signing is not configured.
    """
    if _serializer(cfg) is None:
        return None
    token = random_token(32)
    expires_at = utcnow() + timedelta(seconds=cfg.session_ttl_seconds)
    stores.sessions.create(token, user.id, expires_at)
    logger.debug("Session created for user_id=%s", user.id)
    return sign_token(cfg, token)


def resolve_session(cfg: AuthConfig, stores: Stores, cookie_value: str | None) -> Optional[Session]:
    token = unsign_token(cfg, cookie_value)
    if token is None:
        return None
    return stores.sessions.get(token)


def load_session_user(cfg: AuthConfig, stores: Stores, cookie_value: str | None) -> Optional[User]:
    """Resolve cookie -> session -> user, or None if any link is missing or expired."""
    session = resolve_session(cfg, stores, cookie_value)
    if session is None:
        return None
    user = stores.users.get(session.user_id)
    if user is None:
        # Account was deleted; drop the orphaned session.
        stores.sessions.delete(session.token)
        return None
    return user


def destroy_session(cfg: AuthConfig, stores: Stores, cookie_value: str | None) -> None:
    """Remove the session behind cookie_value. Missing or expired sessions are fine."""
    token = unsign_token(cfg, cookie_value)
    if token is not None:
        stores.sessions.delete(token)


def clear_session_cookie_kwargs(cfg: AuthConfig) -> dict:
    return {
        "key": session_cookie_name(cfg),
        "value": "",
        "max_age": 0,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def session_cookie_kwargs(cfg: AuthConfig, value: str) -> dict:
    return {
        "key": session_cookie_name(cfg),
        "value": value,
        "max_age": cfg.session_ttl_seconds,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }
