"""Account lifecycle for local credentials and profile data."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from eventopro.auth.activity import record_activity
from eventopro.auth.exceptions import NotFoundError, ProviderMismatchError, ValidationError
from eventopro.auth.models import PROVIDER_LOCAL, ROLE_ADMIN, ROLE_USER, NewUser, User
from eventopro.auth.passwords import hash_password, validate_password, verify_password
from eventopro.storage.base import Stores

logger = logging.getLogger(__name__)

_USERNAME_RE = re.compile(r"^[A-Za-z0-9_.\-]{3,64}$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")


def _clean_username(username: str | None) -> str:
    u = (username or "").strip()
    if not _USERNAME_RE.match(u):
        raise ValidationError("Username must be 3-64 characters: letters, digits, '.', '_' or '-'")
    return u


def _clean_email(email: str | None) -> str:
    e = (email or "").strip()
    if not _EMAIL_RE.match(e) or len(e) > 254:
        raise ValidationError("Invalid email address")
    return e


def register_local(
    stores: Stores,
    *,
    username: str,
    email: str,
    password: str,
    name: Optional[str] = None,
) -> User:
    """
    Create a local account (self-registration).

    New accounts always get role "user" and provider "local".

    Raises:
        ValidationError: If a field is malformed or the password violates policy
        ConflictError: If username or email is already taken
    """
    validate_password(password)
    new_user = NewUser(
        username=_clean_username(username),
        email=_clean_email(email),
        password=hash_password(password),
        name=(name or "").strip() or None,
        role=ROLE_USER,
        provider=PROVIDER_LOCAL,
    )
    user = stores.users.create(new_user)
    record_activity(stores.activities, "register", f"New user registered: {user.username}", user_id=user.id)
    logger.info("Registered local user_id=%s", user.id)
    return user


def change_password(
    stores: Stores,
    user: User,
    *,
    current_password: str,
    new_password: str,
    keep_session: Optional[str] = None,
) -> User:
    """
    Replace a local account's password and revoke its other sessions.

    Raises:
        ProviderMismatchError: If the account signs in through an external provider
        ValidationError: If the current password is wrong or the new one violates policy
    """
    fresh = stores.users.get(user.id)
    if fresh is None:
        raise NotFoundError("User not found")
    if not fresh.is_local:
        raise ProviderMismatchError(fresh.provider)
    if not verify_password(current_password, fresh.password):
        raise ValidationError("Current password is incorrect")

    validate_password(new_password)
    updated = stores.users.update(fresh.id, password=hash_password(new_password))
    if updated is None:
        raise NotFoundError("User not found")

    revoked = stores.sessions.delete_for_user(updated.id, keep=keep_session)
    if revoked:
        logger.info("Password change revoked %d other session(s) for user_id=%s", revoked, updated.id)
    record_activity(
        stores.activities,
        "password_change",
        f"Password changed: {updated.username}",
        user_id=updated.id,
    )
    return updated


def update_profile(stores: Stores, user: User, fields: Dict[str, Any]) -> User:
    """
    Update the caller's own profile (username, email, name, avatar_url).

    Raises:
        ValidationError: If a field is malformed
        ConflictError: If the new username or email is taken
    """
    changes: Dict[str, Any] = {}
    if fields.get("username") is not None:
        changes["username"] = _clean_username(fields["username"])
    if fields.get("email") is not None:
        changes["email"] = _clean_email(fields["email"])
    if "name" in fields:
        changes["name"] = (fields.get("name") or "").strip() or None
    if "avatar_url" in fields:
        changes["avatar_url"] = (fields.get("avatar_url") or "").strip() or None

    updated = stores.users.update(user.id, **changes)
    if updated is None:
        raise NotFoundError("User not found")
    return updated


def bootstrap_admin(
    stores: Stores,
    *,
    username: str,
    password: str,
    email: Optional[str] = None,
) -> User:
    """
    Ensure an administrator account exists.

    Creates the account when the username is free; promotes it when it exists
    with another role. An existing account's password is left untouched.
    """
    existing = stores.users.get_by_username(username)
    if existing is None:
        validate_password(password)
        user = stores.users.create(
            NewUser(
                username=username,
                email=email or f"{username}@eventopro.local",
                password=hash_password(password),
                name="System Administrator",
                role=ROLE_ADMIN,
                provider=PROVIDER_LOCAL,
            )
        )
        record_activity(stores.activities, "setup", "Initial administrator configured by the system", user_id=user.id)
        logger.info("Created initial admin user %s", username)
        return user

    if existing.role != ROLE_ADMIN:
        promoted = stores.users.set_role(existing.id, ROLE_ADMIN) or existing
        record_activity(
            stores.activities,
            "setup",
            f"User {existing.username} promoted to administrator by the system",
            user_id=existing.id,
            target_user_id=existing.id,
        )
        logger.info("Promoted existing user %s to admin", username)
        return promoted
    return existing
