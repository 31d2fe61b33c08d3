from __future__ import annotations

import logging

from eventopro.auth.activity import record_activity
from eventopro.auth.exceptions import AuthFailure
from eventopro.auth.models import AuthResult
from eventopro.auth.passwords import hash_password, needs_rehash, verify_dummy, verify_password
from eventopro.storage.base import Stores

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid username or password"


def authenticate_local(stores: Stores, username: str, password: str) -> AuthResult:
    """
    Authenticate a local account with username/password.

    Unknown username, an account without a password (federated) and a wrong
    password all raise the same AuthFailure, after the same hashing work.

    Raises:
        AuthFailure: On any credential mismatch
    """
    user = stores.users.get_by_username(username)
    if user is None or not user.password:
        verify_dummy(password)
        raise AuthFailure(INVALID_CREDENTIALS)

    if not verify_password(password, user.password):
        raise AuthFailure(INVALID_CREDENTIALS)

    if needs_rehash(user.password):
        # Hash parameters were raised since this password was set.
        stores.users.update(user.id, password=hash_password(password))

    stores.users.touch_login(user.id)
    user = stores.users.get(user.id) or user

    record_activity(
        stores.activities,
        "login",
        f"User logged in: {user.username}",
        user_id=user.id,
    )
    logger.info("Local login succeeded for user_id=%s", user.id)
    return AuthResult(user=user, created=False)
