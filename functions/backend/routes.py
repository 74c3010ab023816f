"""
HTTP routes for the community API.
"""

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Depends, File, Form, UploadFile

from backend import accounts, allocator, roles
from backend.config import Settings, get_settings
from backend.db import DbClient, EventRecord
from backend.dependencies import (
    get_db_client,
    get_identity_provider,
    get_storage_client,
)
from backend.errors import NotFoundError, ValidationError
from backend.identity import IdentityProvider
from backend.logos import (
    delete_logo_quietly,
    legacy_logo_path,
    read_logo,
    store_logo,
)
from backend.roles import Caller
from backend.schemas import (
    CallerResponse,
    CommunityDetailResponse,
    CommunityResponse,
    CountriesResponse,
    EventRequest,
    EventResponse,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    LogoResponse,
    MessageResponse,
    RoleChangeRequest,
    SignupRequest,
    SignupResponse,
    UpdateUserRequest,
    UserDetailResponse,
    UserProfile,
)
from backend.security import get_caller
from backend.storage import StorageClient

logger = logging.getLogger(__name__)

router = APIRouter()


def _clean(value: str | None) -> str:
    return (value or "").strip()


def _parse_event_date(value: str) -> str:
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError:
        raise ValidationError("Date must be in YYYY-MM-DD format")


def _sorted_events(events: list[EventRecord]) -> list[EventResponse]:
    ordered = sorted(events, key=lambda e: (e.date, e.created_at), reverse=True)
    return [EventResponse.from_record(event) for event in ordered]


@router.get("/healthz", response_model=HealthResponse)
def healthz():
    return HealthResponse(status="ok")


# Auth


@router.post("/auth/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    db: DbClient = Depends(get_db_client),
    identity: IdentityProvider = Depends(get_identity_provider),
    settings: Settings = Depends(get_settings),
):
    email, password = _clean(payload.email), payload.password or ""
    if not email or not password:
        raise ValidationError("Email and password are required")
    result = accounts.log_in(
        db, identity, email=email, password=password, owner_email=settings.owner_email
    )
    return LoginResponse(
        role=result.role.value,
        uid=result.uid,
        token=result.token,
        user=UserProfile.from_record(result.user) if result.user else None,
    )


@router.post("/auth/signup", response_model=SignupResponse, status_code=201)
def signup(
    payload: SignupRequest,
    db: DbClient = Depends(get_db_client),
    identity: IdentityProvider = Depends(get_identity_provider),
    settings: Settings = Depends(get_settings),
):
    fields = {
        "name": _clean(payload.name),
        "email": _clean(payload.email),
        "password": payload.password or "",
        "community_id": _clean(payload.community_id),
        "country": _clean(payload.country),
    }
    if not all(fields.values()):
        raise ValidationError("All fields are required")
    user = accounts.sign_up(
        db, identity, max_attempts=settings.claim_max_attempts, **fields
    )
    return SignupResponse(uid=user.uid, user=UserProfile.from_record(user))


@router.post("/auth/add-admin", response_model=MessageResponse)
def add_admin(
    payload: RoleChangeRequest,
    caller: Caller = Depends(get_caller),
    db: DbClient = Depends(get_db_client),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    accounts.grant_admin(db, identity, caller, _clean(payload.email))
    return MessageResponse(message="Admin role assigned successfully")


@router.post("/auth/remove-admin", response_model=MessageResponse)
def remove_admin(
    payload: RoleChangeRequest,
    caller: Caller = Depends(get_caller),
    db: DbClient = Depends(get_db_client),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    accounts.revoke_admin(db, identity, caller, _clean(payload.email))
    return MessageResponse(message="Admin role removed successfully")


@router.get("/auth/me", response_model=CallerResponse)
def me(caller: Caller = Depends(get_caller), db: DbClient = Depends(get_db_client)):
    user = db.get_user(caller.uid)
    return CallerResponse(
        uid=caller.uid,
        email=caller.email,
        role=caller.role.value,
        user=UserProfile.from_record(user) if user else None,
    )


# Communities


@router.get("/community", response_model=list[CommunityResponse])
def list_communities(
    caller: Caller = Depends(get_caller), db: DbClient = Depends(get_db_client)
):
    roles.authorize(caller, roles.VIEW_COMMUNITY)
    return [
        CommunityResponse.from_record(
            record,
            users_count=len(db.list_users_by_community(record.community_id)),
        )
        for record in db.list_communities()
    ]


@router.post("/community", response_model=CommunityResponse, status_code=201)
async def create_community(
    name: str | None = Form(None),
    total_countries: int | None = Form(None, alias="totalCountries"),
    logo: UploadFile | None = File(None),
    caller: Caller = Depends(get_caller),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_settings),
):
    roles.authorize(
        caller,
        roles.CREATE_COMMUNITY,
        "Only admins and owners can create communities",
    )
    name = _clean(name)
    if not name or not total_countries:
        raise ValidationError("Name and total countries are required")
    if not 1 <= total_countries <= settings.max_countries_per_community:
        raise ValidationError(
            "Total countries must be between 1 and "
            f"{settings.max_countries_per_community}"
        )
    if logo is None or not logo.filename:
        raise ValidationError("Logo file is required")

    logo_path, logo_url = store_logo(
        storage,
        logo.filename,
        logo.content_type,
        await read_logo(logo, settings.max_logo_bytes),
        settings.max_logo_bytes,
    )
    try:
        record = db.create_community(
            allocator.new_community(
                name,
                total_countries,
                created_by=caller.uid,
                logo_url=logo_url,
                logo_path=logo_path,
            )
        )
    except Exception:
        delete_logo_quietly(storage, logo_path)
        raise
    logger.info(
        "Community %s (%s) created by %s with %d countries",
        record.community_id,
        record.name,
        caller.uid,
        record.total_countries,
    )
    return CommunityResponse.from_record(record, users_count=0)


@router.get("/community/{community_id}", response_model=CommunityDetailResponse)
def get_community(
    community_id: str,
    caller: Caller = Depends(get_caller),
    db: DbClient = Depends(get_db_client),
):
    roles.authorize(caller, roles.VIEW_COMMUNITY)
    record = allocator.load_community(db, community_id)
    users = db.list_users_by_community(community_id)
    summary = CommunityResponse.from_record(record, users_count=len(users))
    return CommunityDetailResponse(
        **summary.model_dump(),
        users=[UserProfile.from_record(user) for user in users],
        events=_sorted_events(db.list_events(community_id)),
    )


@router.get("/community/{community_id}/countries", response_model=CountriesResponse)
def get_countries(
    community_id: str,
    caller: Caller = Depends(get_caller),
    db: DbClient = Depends(get_db_client),
):
    roles.authorize(caller, roles.VIEW_COMMUNITY)
    return CountriesResponse(**allocator.country_summary(db, community_id))


@router.delete(
    "/community/{community_id}/countries/{country}", response_model=MessageResponse
)
def release_country(
    community_id: str,
    country: str,
    caller: Caller = Depends(get_caller),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    roles.authorize(
        caller, roles.RELEASE_SLOT, "Only admins and owners can release countries"
    )
    released = allocator.release_slot(
        db, community_id, country, max_attempts=settings.claim_max_attempts
    )
    if released is None:
        return MessageResponse(message="Country is already available")
    return MessageResponse(message="Country released successfully")


@router.post(
    "/community/{community_id}/events", response_model=EventResponse, status_code=201
)
def add_event(
    community_id: str,
    payload: EventRequest,
    caller: Caller = Depends(get_caller),
    db: DbClient = Depends(get_db_client),
):
    roles.authorize(
        caller, roles.MANAGE_EVENTS, "Only admins and owners can add events"
    )
    allocator.load_community(db, community_id)
    title, event_date = _clean(payload.title), _clean(payload.date)
    if not title or not event_date:
        raise ValidationError("Title and date are required")
    event = db.add_event(
        EventRecord(
            event_id="",
            community_id=community_id,
            title=title,
            date=_parse_event_date(event_date),
            description=_clean(payload.description),
            created_by=caller.uid,
        )
    )
    return EventResponse.from_record(event)


@router.get("/community/{community_id}/events", response_model=list[EventResponse])
def list_events(
    community_id: str,
    caller: Caller = Depends(get_caller),
    db: DbClient = Depends(get_db_client),
):
    roles.authorize(caller, roles.VIEW_COMMUNITY)
    allocator.load_community(db, community_id)
    return _sorted_events(db.list_events(community_id))


@router.delete(
    "/community/{community_id}/events/{event_id}", response_model=MessageResponse
)
def delete_event(
    community_id: str,
    event_id: str,
    caller: Caller = Depends(get_caller),
    db: DbClient = Depends(get_db_client),
):
    roles.authorize(
        caller, roles.MANAGE_EVENTS, "Only admins and owners can delete events"
    )
    if not db.delete_event(community_id, event_id):
        raise NotFoundError("Event not found")
    return MessageResponse(message="Event deleted successfully")


@router.put("/community/{community_id}/logo", response_model=LogoResponse)
async def update_logo(
    community_id: str,
    logo: UploadFile | None = File(None),
    caller: Caller = Depends(get_caller),
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    settings: Settings = Depends(get_settings),
):
    roles.authorize(
        caller,
        roles.UPDATE_LOGO,
        "Only admins and owners can update community logo",
    )
    if logo is None or not logo.filename:
        raise ValidationError("No logo file provided")
    community = allocator.load_community(db, community_id)

    logo_path, logo_url = store_logo(
        storage,
        logo.filename,
        logo.content_type,
        await read_logo(logo, settings.max_logo_bytes),
        settings.max_logo_bytes,
    )
    try:
        db.update_community_logo(community_id, logo_url, logo_path)
    except Exception:
        delete_logo_quietly(storage, logo_path)
        raise

    old_path = community.logo_path
    if not old_path and community.logo_url:
        old_path = legacy_logo_path(community.logo_url)
    if old_path and old_path != logo_path:
        delete_logo_quietly(storage, old_path)
    return LogoResponse(logo_url=logo_url)


# Users


@router.get("/user", response_model=list[UserProfile])
def list_users(
    caller: Caller = Depends(get_caller), db: DbClient = Depends(get_db_client)
):
    roles.authorize(caller, roles.LIST_USERS, "Unauthorized")
    return [UserProfile.from_record(user) for user in db.list_users()]


@router.get("/user/community/{community_id}", response_model=list[UserProfile])
def list_community_users(
    community_id: str,
    caller: Caller = Depends(get_caller),
    db: DbClient = Depends(get_db_client),
):
    roles.authorize(caller, roles.LIST_USERS, "Unauthorized")
    return [
        UserProfile.from_record(user)
        for user in db.list_users_by_community(community_id)
    ]


@router.get("/user/{user_id}", response_model=UserDetailResponse)
def get_user(
    user_id: str,
    caller: Caller = Depends(get_caller),
    db: DbClient = Depends(get_db_client),
):
    roles.authorize(caller, roles.VIEW_PROFILE)
    user = db.get_user(user_id)
    if user is None:
        raise NotFoundError("User not found")
    community = db.get_community(user.community_id) if user.community_id else None
    return UserDetailResponse(
        **user.as_dict(),
        community=CommunityResponse.from_record(community) if community else None,
    )


@router.put("/user/{user_id}", response_model=MessageResponse)
def update_user(
    user_id: str,
    payload: UpdateUserRequest,
    caller: Caller = Depends(get_caller),
    db: DbClient = Depends(get_db_client),
):
    if caller.uid != user_id:
        roles.authorize(caller, roles.EDIT_ANY_PROFILE, "Unauthorized")
    name = _clean(payload.name)
    if not name:
        raise ValidationError("Name is required")
    if db.get_user(user_id) is None:
        raise NotFoundError("User not found")
    db.update_user_name(user_id, name)
    return MessageResponse(message="Profile updated successfully")
