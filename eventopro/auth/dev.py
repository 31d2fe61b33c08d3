"""Development sign-in bypass: no credential check, never available in production."""

from __future__ import annotations

import logging
from typing import Optional

from eventopro.auth.activity import record_activity
from eventopro.auth.config import AuthConfig
from eventopro.auth.exceptions import DevLoginDisabled
from eventopro.auth.federated import find_or_provision
from eventopro.auth.models import PROVIDER_DEV, ROLE_ADMIN, ROLE_USER, AuthResult, ExternalProfile
from eventopro.storage.base import Stores

logger = logging.getLogger(__name__)


def authenticate_dev(
    cfg: AuthConfig,
    stores: Stores,
    *,
    email: Optional[str] = None,
    name: Optional[str] = None,
    admin: bool = False,
) -> AuthResult:
    """
    Reuse or provision a `dev` provider account.

    The admin flag only applies when the account is first created; the default
    identities differ per flag (dev-admin@dev.local / dev-user@dev.local).

    Raises:
        DevLoginDisabled: In production or when DEV_LOGIN_ENABLED is off (maps to 404)
    """
    if not cfg.dev_login_allowed:
        raise DevLoginDisabled()

    email = (email or "").strip().lower() or ("dev-admin@dev.local" if admin else "dev-user@dev.local")
    name = (name or "").strip() or ("Dev Admin" if admin else "Dev User")
    profile = ExternalProfile(provider=PROVIDER_DEV, provider_id=email, display_name=name, email=email)

    result = find_or_provision(stores, profile, role=ROLE_ADMIN if admin else ROLE_USER)
    user = result.user
    stores.users.touch_login(user.id)
    if result.created:
        record_activity(stores.activities, "register", f"New dev user registered: {user.username}", user_id=user.id)
    else:
        record_activity(stores.activities, "login", f"Dev user logged in: {user.username}", user_id=user.id)
    logger.warning("Dev login bypass used for user_id=%s role=%s", user.id, user.role)
    return result
