"""
Role authority: maps callers to roles and checks them against a static
permission table.

The document store holds the canonical role. The identity provider's `role`
custom claim is a projection of it, refreshed on login and on every role
change, and never trusted on its own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from backend.db import DbClient, UserRecord
from backend.errors import ForbiddenError, ValidationError
from backend.identity import IdentityProvider
from shared.types import ROLE_RANK, Role

logger = logging.getLogger(__name__)

MANAGE_ROLES = "manage-roles"
CREATE_COMMUNITY = "create-community"
UPDATE_LOGO = "update-logo"
MANAGE_EVENTS = "manage-events"
RELEASE_SLOT = "release-slot"
LIST_USERS = "list-users"
EDIT_ANY_PROFILE = "edit-any-profile"
VIEW_COMMUNITY = "view-community"
VIEW_PROFILE = "view-profile"

# Minimum role required for each action.
PERMISSIONS = {
    MANAGE_ROLES: Role.OWNER,
    CREATE_COMMUNITY: Role.ADMIN,
    UPDATE_LOGO: Role.ADMIN,
    MANAGE_EVENTS: Role.ADMIN,
    RELEASE_SLOT: Role.ADMIN,
    LIST_USERS: Role.ADMIN,
    EDIT_ANY_PROFILE: Role.ADMIN,
    VIEW_COMMUNITY: Role.USER,
    VIEW_PROFILE: Role.USER,
}


@dataclass
class Caller:
    """An authenticated request identity with its resolved role."""

    uid: str
    email: str
    role: Role


def has_role(role: Role, required: Role) -> bool:
    return ROLE_RANK[role] >= ROLE_RANK[required]


def is_permitted(role: Role, action: str) -> bool:
    required = PERMISSIONS.get(action)
    if required is None:
        logger.warning("Denied unknown action %r", action)
        return False
    return has_role(role, required)


def authorize(caller: Caller, action: str, message: str = "Insufficient permissions") -> None:
    """Raise ForbiddenError unless the caller's role permits `action`."""
    if not is_permitted(caller.role, action):
        raise ForbiddenError(message)


def resolve_role(user: Optional[UserRecord]) -> Role:
    """Stored role, or `user` when there is no profile record."""
    if user is None:
        return Role.USER
    return user.role


def sync_role_claim(identity: IdentityProvider, uid: str, role: Role) -> bool:
    """
    Rewrite the identity provider's role claim if it disagrees with `role`.

    Returns True when a write happened. Failures are logged; the next login
    reconciles again.
    """
    try:
        current = identity.get_user(uid).role_claim
        if current == role.value:
            return False
        identity.set_role_claim(uid, role)
    except Exception:
        logger.exception("Failed to sync role claim for %s to %s", uid, role.value)
        return False
    logger.info("Role claim for %s set to %s", uid, role.value)
    return True


def resolve_login_role(
    db: DbClient,
    identity: IdentityProvider,
    uid: str,
    email: str,
    owner_email: Optional[str] = None,
) -> tuple[Role, Optional[UserRecord]]:
    """
    Determine the role for a successful login.

    The configured owner email is promoted to `owner` only while no owner
    exists yet. The identity provider claim is reconciled with the result.
    """
    user = db.get_user(uid)
    role = resolve_role(user)

    if (
        owner_email
        and email.strip().lower() == owner_email.strip().lower()
        and role != Role.OWNER
        and db.find_owner() is None
    ):
        if user is None:
            user = UserRecord(uid=uid, email=email, role=Role.OWNER)
            db.save_user(user)
        else:
            db.update_user_role(uid, Role.OWNER)
            user = db.get_user(uid)
        role = Role.OWNER
        logger.info("Bootstrapped %s as owner", email)

    sync_role_claim(identity, uid, role)
    return role, user


def set_role(
    db: DbClient, identity: IdentityProvider, target: UserRecord, role: Role
) -> UserRecord:
    """
    Change a user's role: document store first, then the claim projection.

    Idempotent; setting the current role only re-syncs the claim.
    """
    if target.role == Role.OWNER and role != Role.OWNER:
        raise ValidationError("Cannot change the owner's role")
    if target.role != role:
        db.update_user_role(target.uid, role)
        logger.info("Role for %s changed from %s to %s", target.email, target.role.value, role.value)
    sync_role_claim(identity, target.uid, role)
    return db.get_user(target.uid) or target
