"""
Account flows: sign-up with a slot claim, login, and admin role changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from backend import allocator, roles
from backend.db import DbClient, UserRecord
from backend.errors import NotFoundError, ValidationError
from backend.identity import IdentityProvider
from shared.types import Role

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    uid: str
    role: Role
    token: str
    user: Optional[UserRecord]


def sign_up(
    db: DbClient,
    identity: IdentityProvider,
    *,
    name: str,
    email: str,
    password: str,
    community_id: str,
    country: str,
    max_attempts: int = allocator.DEFAULT_MAX_ATTEMPTS,
) -> UserRecord:
    """
    Create an account and claim `country` in `community_id`.

    The identity account is created first and deleted again if the claim
    fails, so a failed sign-up leaves neither a profile nor an occupied slot.
    """
    community = db.get_community(community_id)
    if community is None:
        raise ValidationError("Community not found")
    if community.available_count <= 0:
        raise ValidationError("No available countries in this community")
    if country not in community.slots:
        raise ValidationError("Country is not part of this community")
    if country not in allocator.available_countries(community):
        raise ValidationError("Country is already taken")

    account = identity.create_user(email=email, password=password, display_name=name)
    profile = UserRecord(uid=account.uid, email=email, name=name, role=Role.USER)
    try:
        claimed = allocator.claim_slot(
            db, community_id, country, profile, max_attempts=max_attempts
        )
    except Exception:
        _discard_account(identity, account.uid)
        raise

    roles.sync_role_claim(identity, claimed.uid, Role.USER)
    return claimed


def _discard_account(identity: IdentityProvider, uid: str) -> None:
    try:
        identity.delete_user(uid)
    except Exception:
        logger.exception("Failed to delete identity %s after failed sign-up", uid)


def log_in(
    db: DbClient,
    identity: IdentityProvider,
    *,
    email: str,
    password: str,
    owner_email: Optional[str] = None,
) -> LoginResult:
    uid, token = identity.sign_in(email, password)
    role, user = roles.resolve_login_role(db, identity, uid, email, owner_email)
    return LoginResult(uid=uid, role=role, token=token, user=user)


def _find_or_create_profile(
    db: DbClient, identity: IdentityProvider, email: str
) -> UserRecord:
    user = db.get_user_by_email(email)
    if user is not None:
        return user
    # Accounts created outside the API may have no profile document yet.
    account = identity.get_user_by_email(email)
    user = db.get_user(account.uid)
    if user is None:
        user = UserRecord(uid=account.uid, email=email, name=account.display_name)
        db.save_user(user)
    return user


def grant_admin(
    db: DbClient, identity: IdentityProvider, caller: roles.Caller, email: str
) -> UserRecord:
    roles.authorize(caller, roles.MANAGE_ROLES, "Only owner can add admins")
    if not email:
        raise ValidationError("Email is required")
    target = _find_or_create_profile(db, identity, email)
    return roles.set_role(db, identity, target, Role.ADMIN)


def revoke_admin(
    db: DbClient, identity: IdentityProvider, caller: roles.Caller, email: str
) -> UserRecord:
    roles.authorize(caller, roles.MANAGE_ROLES, "Only owner can remove admins")
    if not email:
        raise ValidationError("Email is required")
    target = db.get_user_by_email(email)
    if target is None:
        raise NotFoundError("User not found")
    return roles.set_role(db, identity, target, Role.USER)
