"""
Federated (OAuth) sign-in: find or provision the account for an external identity.

Concurrency: two callbacks for the same brand-new identity may both miss the
lookup. The (provider, provider_id) unique constraint lets exactly one insert
win; the loser sees ConflictError("provider_id") and reloads the winner's row.
"""

from __future__ import annotations

import logging

from eventopro.auth.activity import record_activity
from eventopro.auth.exceptions import AuthFailure, ConflictError, ValidationError
from eventopro.auth.models import ROLE_USER, AuthResult, ExternalProfile, NewUser, User
from eventopro.auth.util import synthesize_email, username_from_display_name
from eventopro.storage.base import Stores

logger = logging.getLogger(__name__)

# Attempts at `name`, `name.2`, `name.3`, ... before giving up on a username.
MAX_USERNAME_ATTEMPTS = 20


def _provision(stores: Stores, profile: ExternalProfile, *, role: str = ROLE_USER) -> User:
    """Insert a new user for profile; raises ConflictError("provider_id") if it already exists."""
    base = username_from_display_name(
        profile.display_name, fallback=f"{profile.provider}.{profile.provider_id}".lower()
    )
    email = (profile.email or "").strip() or synthesize_email(profile.provider, profile.provider_id)

    for attempt in range(1, MAX_USERNAME_ATTEMPTS + 1):
        username = base if attempt == 1 else f"{base}.{attempt}"
        try:
            return stores.users.create(
                NewUser(
                    username=username,
                    email=email,
                    name=profile.display_name,
                    role=role,
                    provider=profile.provider,
                    provider_id=profile.provider_id,
                    avatar_url=profile.avatar_url,
                )
            )
        except ConflictError as e:
            # Stores report whichever constraint fires first; a concurrent winner for the same
            # identity also collides on username and email, so check for it before retrying.
            if stores.users.get_by_provider(profile.provider, profile.provider_id) is not None:
                raise ConflictError("provider_id") from e
            if e.field != "username":
                raise
    raise ConflictError("username", "Could not allocate a unique username")


def find_or_provision(stores: Stores, profile: ExternalProfile, *, role: str = ROLE_USER) -> AuthResult:
    """Look up the account for profile, creating it on first sign-in."""
    existing = stores.users.get_by_provider(profile.provider, profile.provider_id)
    if existing is not None:
        return AuthResult(user=existing, created=False)
    try:
        return AuthResult(user=_provision(stores, profile, role=role), created=True)
    except ConflictError as e:
        if e.field != "provider_id":
            raise
        winner = stores.users.get_by_provider(profile.provider, profile.provider_id)
        if winner is None:
            # Constraint fired but the row is gone (deleted in between); surface as a failure.
            raise AuthFailure(f"Sign-in with {profile.provider} failed") from e
        logger.info("Concurrent provisioning for %s identity; reusing user_id=%s", profile.provider, winner.id)
        return AuthResult(user=winner, created=False)


def authenticate_federated(stores: Stores, profile: ExternalProfile) -> AuthResult:
    """
    Resolve an external profile to a user, provisioning on first sign-in.

    New accounts always get role "user", whatever the provider says.

    Raises:
        ValidationError: If the profile carries no provider id
        AuthFailure: If the profile's email belongs to an account using another sign-in method
    """
    if not (profile.provider_id or "").strip():
        raise ValidationError("External profile is missing an id")

    try:
        result = find_or_provision(stores, profile)
    except ConflictError as e:
        if e.field == "email":
            raise AuthFailure("An account with this email already exists; sign in with your original method") from e
        raise

    user = result.user
    stores.users.touch_login(user.id)
    if result.created:
        record_activity(
            stores.activities,
            "register",
            f"New user registered via {profile.provider}: {user.name or user.username}",
            user_id=user.id,
        )
    else:
        record_activity(
            stores.activities,
            "login",
            f"User logged in via {profile.provider}: {user.username}",
            user_id=user.id,
        )
    return result
