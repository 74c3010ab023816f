"""
Pydantic schemas for the community API. JSON keys are camelCase.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from backend.db import CommunityRecord, EventRecord, UserRecord


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoginRequest(ApiModel):
    email: Optional[str] = None
    password: Optional[str] = None


class SignupRequest(ApiModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    community_id: Optional[str] = None
    country: Optional[str] = None


class RoleChangeRequest(ApiModel):
    email: Optional[str] = None


class UpdateUserRequest(ApiModel):
    name: Optional[str] = None


class EventRequest(ApiModel):
    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None


class MessageResponse(ApiModel):
    message: str


class HealthResponse(ApiModel):
    status: Literal["ok"]


class UserProfile(ApiModel):
    uid: str
    email: str
    name: str
    role: str
    community_id: Optional[str] = None
    country: Optional[str] = None
    created_at: float
    updated_at: float

    @classmethod
    def from_record(cls, user: UserRecord) -> "UserProfile":
        return cls(**user.as_dict())


class LoginResponse(ApiModel):
    role: str
    uid: str
    token: str
    user: Optional[UserProfile] = None


class SignupResponse(ApiModel):
    uid: str
    user: UserProfile


class CallerResponse(ApiModel):
    uid: str
    email: str
    role: str
    user: Optional[UserProfile] = None


class EventResponse(ApiModel):
    id: str
    community_id: str
    title: str
    date: str
    description: str
    created_by: Optional[str] = None
    created_at: float

    @classmethod
    def from_record(cls, event: EventRecord) -> "EventResponse":
        return cls(
            id=event.event_id,
            community_id=event.community_id,
            title=event.title,
            date=event.date,
            description=event.description,
            created_by=event.created_by,
            created_at=event.created_at,
        )


class CommunityResponse(ApiModel):
    id: str
    name: str
    logo_url: Optional[str] = None
    countries: list[str]
    slots: dict[str, str]
    total_countries: int
    available_countries: int
    occupied_count: int
    users_count: Optional[int] = None
    created_by: Optional[str] = None
    created_at: float
    updated_at: float

    @classmethod
    def from_record(
        cls, record: CommunityRecord, users_count: Optional[int] = None
    ) -> "CommunityResponse":
        data = record.as_dict()
        data["id"] = data.pop("community_id")
        return cls(**data, users_count=users_count)


class CommunityDetailResponse(CommunityResponse):
    users: list[UserProfile]
    events: list[EventResponse]


class CountriesResponse(ApiModel):
    available_countries: list[str]
    total_countries: int
    assigned_countries: list[str]


class LogoResponse(ApiModel):
    logo_url: str


class UserDetailResponse(UserProfile):
    community: Optional[CommunityResponse] = None
