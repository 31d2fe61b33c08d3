from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from eventopro.auth.activity import record_activity
from eventopro.auth.exceptions import AuthenticationRequired, AuthorizationDenied, NotFoundError
from eventopro.auth.models import ROLE_ADMIN, User
from eventopro.storage.base import Stores

logger = logging.getLogger(__name__)

POLICY_AUTHENTICATED = "authenticated"
POLICY_ADMIN = "admin"

LOGIN_PATH = "/auth"
DEFAULT_PATH = "/"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    status_code: int = 200
    reason: str = ""
    redirect_to: Optional[str] = None  # for browser routes; API routes use status_code

    @property
    def unauthenticated(self) -> bool:
        return self.status_code == 401

    @property
    def forbidden(self) -> bool:
        return self.status_code == 403


ALLOW = Decision(allowed=True)


def evaluate(identity: Optional[User], policy: str) -> Decision:
    """
    Decide whether identity may use a route declared with policy.

    Missing identity and missing role are different denials: the first sends
    the user to the login page (401), the second to the default page (403).
    """
    if policy not in (POLICY_AUTHENTICATED, POLICY_ADMIN):
        raise ValueError(f"Unknown route policy: {policy}")
    if identity is None:
        return Decision(allowed=False, status_code=401, reason="Not authenticated", redirect_to=LOGIN_PATH)
    if policy == POLICY_ADMIN and identity.role != ROLE_ADMIN:
        return Decision(
            allowed=False,
            status_code=403,
            reason="Access denied. Only administrators can perform this operation.",
            redirect_to=DEFAULT_PATH,
        )
    return ALLOW


def enforce(identity: Optional[User], policy: str) -> User:
    """
    Like evaluate(), but raises on denial and returns the identity on success.

    Raises:
        AuthenticationRequired: No identity
        AuthorizationDenied: Identity lacks the role the policy requires
    """
    decision = evaluate(identity, policy)
    if decision.unauthenticated:
        raise AuthenticationRequired(decision.reason)
    if decision.forbidden:
        raise AuthorizationDenied(decision.reason)
    if identity is None:
        raise AuthenticationRequired()
    return identity


def promote_to_admin(stores: Stores, actor: Optional[User], target_id: int) -> User:
    """
    Give target_id the admin role. Only admins may do this.

    Raises:
        AuthenticationRequired: No actor
        AuthorizationDenied: Actor is not an admin
        NotFoundError: No such target user
    """
    actor = enforce(actor, POLICY_ADMIN)
    target = stores.users.get(target_id)
    if target is None:
        raise NotFoundError("User not found")

    updated = stores.users.set_role(target.id, ROLE_ADMIN)
    if updated is None:
        raise NotFoundError("User not found")

    record_activity(
        stores.activities,
        "promote_admin",
        f"User {target.username} promoted to administrator by {actor.username}",
        user_id=actor.id,
        target_user_id=target.id,
    )
    logger.info("user_id=%s promoted user_id=%s to admin", actor.id, target.id)
    return updated
