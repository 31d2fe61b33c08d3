from __future__ import annotations

from typing import Optional

from fastapi import Request

from eventopro.auth.config import AuthConfig
from eventopro.auth.models import User
from eventopro.auth.session import load_session_user, session_cookie_name
from eventopro.authz.policy import POLICY_ADMIN, POLICY_AUTHENTICATED, enforce
from eventopro.storage.base import Stores


def get_config(request: Request) -> AuthConfig:
    return request.app.state.auth_config


def get_stores(request: Request) -> Stores:
    return request.app.state.stores


def authenticate_request(request: Request) -> Optional[User]:
    """
    Resolve the session cookie on request to a user, or None.

    Blocking (store lookups); the middleware calls it from the thread pool.
    """
    cfg = get_config(request)
    return load_session_user(cfg, get_stores(request), request.cookies.get(session_cookie_name(cfg)))


def current_user(request: Request) -> Optional[User]:
    """Identity attached by the session middleware for this request."""
    return getattr(request.state, "user", None)


def require_user(request: Request) -> User:
    return enforce(current_user(request), POLICY_AUTHENTICATED)


def require_admin(request: Request) -> User:
    return enforce(current_user(request), POLICY_ADMIN)
