"""
Membership allocator: at most one user per (community, country) slot.

All slot mutations go through `DbClient.compare_and_set_slots`, which only
commits if the community is unchanged since it was read. A lost race re-reads
the community and re-checks the slot before trying again.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Optional

from backend.db import CommunityRecord, DbClient, UserRecord
from backend.errors import (
    ConflictError,
    NotFoundError,
    SlotUnavailableError,
    ValidationError,
)
from shared.types import EMPTY_SLOT

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5


def placeholder_countries(total: int) -> list[str]:
    return [f"Country{i + 1}" for i in range(total)]


def new_community(
    name: str,
    total_countries: int,
    *,
    created_by: Optional[str] = None,
    logo_url: Optional[str] = None,
    logo_path: Optional[str] = None,
) -> CommunityRecord:
    countries = placeholder_countries(total_countries)
    return CommunityRecord(
        community_id="",
        name=name,
        countries=countries,
        slots={country: EMPTY_SLOT for country in countries},
        occupied_count=0,
        logo_url=logo_url,
        logo_path=logo_path,
        created_by=created_by,
    )


def slots_consistent(record: CommunityRecord) -> bool:
    occupied = sum(1 for uid in record.slots.values() if uid != EMPTY_SLOT)
    return (
        set(record.slots) == set(record.countries)
        and occupied == record.occupied_count
    )


def load_community(db: DbClient, community_id: str) -> CommunityRecord:
    record = db.get_community(community_id)
    if record is None:
        raise NotFoundError("Community not found")
    if not slots_consistent(record):
        logger.error("Community %s has inconsistent slot state", community_id)
    return record


def available_countries(record: CommunityRecord) -> list[str]:
    return [c for c in record.countries if record.slots.get(c) == EMPTY_SLOT]


def assigned_countries(record: CommunityRecord) -> list[str]:
    return [c for c in record.countries if record.slots.get(c, EMPTY_SLOT) != EMPTY_SLOT]


def list_available(db: DbClient, community_id: str) -> list[str]:
    return available_countries(load_community(db, community_id))


def country_summary(db: DbClient, community_id: str) -> dict:
    record = load_community(db, community_id)
    return {
        "available_countries": available_countries(record),
        "total_countries": record.total_countries,
        "assigned_countries": assigned_countries(record),
    }


def claim_slot(
    db: DbClient,
    community_id: str,
    country: str,
    user: UserRecord,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> UserRecord:
    """
    Assign `country` in `community_id` to `user`.

    The slot, the occupied counter and the user record are written together.
    Raises SlotUnavailableError if someone else holds the slot, ConflictError
    if the community kept changing for `max_attempts` reads.
    """
    if user.has_claim:
        raise ValidationError("User already belongs to a community")

    for attempt in range(1, max_attempts + 1):
        snapshot = load_community(db, community_id)
        if country not in snapshot.slots:
            raise ValidationError("Country is not part of this community")
        if snapshot.slots[country] != EMPTY_SLOT:
            raise SlotUnavailableError()

        updated = snapshot.copy()
        updated.slots[country] = user.uid
        updated.occupied_count = snapshot.occupied_count + 1
        claimed = replace(
            user, community_id=community_id, country=country, updated_at=time.time()
        )
        if db.compare_and_set_slots(snapshot, updated, claimed):
            logger.info(
                "User %s claimed %s in community %s", user.uid, country, community_id
            )
            return claimed
        logger.info(
            "Community %s changed during claim (attempt %d/%d)",
            community_id,
            attempt,
            max_attempts,
        )

    raise ConflictError("Community is busy, please try again")


def release_slot(
    db: DbClient,
    community_id: str,
    country: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> Optional[str]:
    """
    Free `country` in `community_id` and clear the occupant's claim.

    Returns the released uid, or None if the slot was already empty.
    """
    for attempt in range(1, max_attempts + 1):
        snapshot = load_community(db, community_id)
        if country not in snapshot.slots:
            raise ValidationError("Country is not part of this community")
        occupant = snapshot.slots[country]
        if occupant == EMPTY_SLOT:
            return None

        updated = snapshot.copy()
        updated.slots[country] = EMPTY_SLOT
        updated.occupied_count = snapshot.occupied_count - 1

        user = db.get_user(occupant)
        cleared = None
        if user and user.community_id == community_id and user.country == country:
            cleared = replace(
                user, community_id=None, country=None, updated_at=time.time()
            )
        if db.compare_and_set_slots(snapshot, updated, cleared):
            logger.info(
                "Released %s in community %s (was %s)", country, community_id, occupant
            )
            return occupant
        logger.info(
            "Community %s changed during release (attempt %d/%d)",
            community_id,
            attempt,
            max_attempts,
        )

    raise ConflictError("Community is busy, please try again")
