"""
Request authentication: resolves the `Authorization` header to a Caller.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header

from backend.db import DbClient
from backend.dependencies import get_db_client, get_identity_provider
from backend.errors import UnauthenticatedError
from backend.identity import IdentityProvider
from backend.roles import Caller, resolve_role

BEARER_PREFIX = "Bearer "


def get_caller(
    authorization: Optional[str] = Header(None),
    db: DbClient = Depends(get_db_client),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> Caller:
    if not authorization:
        raise UnauthenticatedError("No token provided")
    token = authorization
    if token[: len(BEARER_PREFIX)].lower() == BEARER_PREFIX.lower():
        token = token[len(BEARER_PREFIX):]
    token = token.strip()
    if not token:
        raise UnauthenticatedError("No token provided")

    claims = identity.verify_token(token)
    user = db.get_user(claims.uid)
    email = claims.email or (user.email if user else "")
    return Caller(uid=claims.uid, email=email, role=resolve_role(user))
