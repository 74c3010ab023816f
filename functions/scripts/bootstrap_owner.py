"""
Promote an existing account to owner, for deployments that did not set
OWNER_EMAIL before the owner first logged in.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend import roles
from backend.db import UserRecord
from backend.dependencies import get_db_client, get_identity_provider
from backend.errors import CommunityError
from shared.types import Role

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Promote an account to owner")
    parser.add_argument("--email", required=True, help="Email of the account")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    db = get_db_client()
    identity = get_identity_provider()
    email = args.email.strip()

    try:
        account = identity.get_user_by_email(email)
    except CommunityError as exc:
        logger.error("No account for %s: %s", email, exc.message)
        return 1

    owner = db.find_owner()
    if owner is not None and owner.uid != account.uid:
        logger.error("An owner already exists: %s", owner.email)
        return 1

    user = db.get_user(account.uid)
    if user is None:
        user = UserRecord(uid=account.uid, email=email, name=account.display_name)
        db.save_user(user)
    roles.set_role(db, identity, user, Role.OWNER)
    logger.info("%s is now the owner", email)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
