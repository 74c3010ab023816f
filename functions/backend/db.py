"""
Document store abstraction: Firestore, SQL (via SQLAlchemy) and an in-memory
test implementation.

Every store exposes the same compare-and-set primitive for slot mutations:
`compare_and_set_slots` writes a community's slot map, its occupied counter
and (optionally) one user record in a single atomic step, and only if the
community's stored `version` still matches the snapshot the caller read.
"""

from __future__ import annotations

import copy
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from typing import Dict, Optional, Protocol

from dacite import Config, from_dict
from firebase_admin import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from sqlalchemy import (
    JSON,
    Column,
    Float,
    Integer,
    String,
    create_engine,
    delete,
    select,
    update,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from shared.firebase_constants import (
    COMMUNITIES_COLLECTION,
    EVENTS_COLLECTION,
    USERS_COLLECTION,
)
from shared.json_utils import convert_keys
from shared.types import Role


@dataclass
class CommunityRecord:
    community_id: str
    name: str
    countries: list[str]
    slots: Dict[str, str]
    occupied_count: int = 0
    logo_url: Optional[str] = None
    logo_path: Optional[str] = None
    version: int = 0
    created_by: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    @property
    def total_countries(self) -> int:
        return len(self.countries)

    @property
    def available_count(self) -> int:
        return self.total_countries - self.occupied_count

    def copy(self) -> "CommunityRecord":
        return replace(self, countries=list(self.countries), slots=dict(self.slots))

    def as_dict(self) -> dict:
        return {
            "community_id": self.community_id,
            "name": self.name,
            "logo_url": self.logo_url,
            "countries": list(self.countries),
            "slots": dict(self.slots),
            "total_countries": self.total_countries,
            "available_countries": self.available_count,
            "occupied_count": self.occupied_count,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class UserRecord:
    uid: str
    email: str
    name: str = ""
    role: Role = Role.USER
    community_id: Optional[str] = None
    country: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    @property
    def has_claim(self) -> bool:
        return bool(self.community_id and self.country)

    def as_dict(self) -> dict:
        return {
            "uid": self.uid,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "community_id": self.community_id,
            "country": self.country,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class EventRecord:
    event_id: str
    community_id: str
    title: str
    date: str
    description: str = ""
    created_by: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return asdict(self)


class DbClient(Protocol):
    """Interface for document store access."""

    def create_community(self, record: CommunityRecord) -> CommunityRecord:
        ...

    def get_community(self, community_id: str) -> Optional[CommunityRecord]:
        ...

    def list_communities(self) -> list[CommunityRecord]:
        ...

    def update_community_logo(
        self, community_id: str, logo_url: str, logo_path: str
    ) -> None:
        ...

    def compare_and_set_slots(
        self,
        expected: CommunityRecord,
        updated: CommunityRecord,
        user: Optional[UserRecord] = None,
    ) -> bool:
        """
        Write `updated`'s slots and counter if the stored version still equals
        `expected.version`. `user` is inserted whole when it has no record yet;
        an existing record only takes `community_id`, `country` and
        `updated_at` from it.
        """
        ...

    def get_user(self, uid: str) -> Optional[UserRecord]:
        ...

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    def save_user(self, user: UserRecord) -> None:
        ...

    def update_user_name(self, uid: str, name: str) -> None:
        ...

    def update_user_role(self, uid: str, role: Role) -> None:
        ...

    def list_users(self) -> list[UserRecord]:
        ...

    def list_users_by_community(self, community_id: str) -> list[UserRecord]:
        ...

    def find_owner(self) -> Optional[UserRecord]:
        ...

    def add_event(self, event: EventRecord) -> EventRecord:
        ...

    def list_events(self, community_id: str) -> list[EventRecord]:
        ...

    def delete_event(self, community_id: str, event_id: str) -> bool:
        ...


def _new_id() -> str:
    return uuid.uuid4().hex


class InMemoryDbClient:
    """Simple in-memory document store for development and tests."""

    def __init__(self):
        self.communities: Dict[str, CommunityRecord] = {}
        self.users: Dict[str, UserRecord] = {}
        self.events: Dict[str, EventRecord] = {}
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.communities.clear()
            self.users.clear()
            self.events.clear()

    def create_community(self, record: CommunityRecord) -> CommunityRecord:
        stored = record.copy()
        if not stored.community_id:
            stored.community_id = _new_id()
        with self._lock:
            self.communities[stored.community_id] = stored
        return stored.copy()

    def get_community(self, community_id: str) -> Optional[CommunityRecord]:
        with self._lock:
            record = self.communities.get(community_id)
            return record.copy() if record else None

    def list_communities(self) -> list[CommunityRecord]:
        with self._lock:
            return [record.copy() for record in self.communities.values()]

    def update_community_logo(
        self, community_id: str, logo_url: str, logo_path: str
    ) -> None:
        with self._lock:
            record = self.communities.get(community_id)
            if not record:
                return
            record.logo_url = logo_url
            record.logo_path = logo_path
            record.updated_at = time.time()

    def compare_and_set_slots(
        self,
        expected: CommunityRecord,
        updated: CommunityRecord,
        user: Optional[UserRecord] = None,
    ) -> bool:
        with self._lock:
            current = self.communities.get(expected.community_id)
            if current is None or current.version != expected.version:
                return False
            current.slots = dict(updated.slots)
            current.occupied_count = updated.occupied_count
            current.version = expected.version + 1
            current.updated_at = time.time()
            if user is not None:
                existing = self.users.get(user.uid)
                if existing is None:
                    self.users[user.uid] = copy.copy(user)
                else:
                    existing.community_id = user.community_id
                    existing.country = user.country
                    existing.updated_at = user.updated_at
            return True

    def get_user(self, uid: str) -> Optional[UserRecord]:
        with self._lock:
            user = self.users.get(uid)
            return copy.copy(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self._lock:
            for user in self.users.values():
                if user.email == email:
                    return copy.copy(user)
        return None

    def save_user(self, user: UserRecord) -> None:
        with self._lock:
            self.users[user.uid] = copy.copy(user)

    def update_user_name(self, uid: str, name: str) -> None:
        with self._lock:
            user = self.users.get(uid)
            if user:
                user.name = name
                user.updated_at = time.time()

    def update_user_role(self, uid: str, role: Role) -> None:
        with self._lock:
            user = self.users.get(uid)
            if user:
                user.role = role
                user.updated_at = time.time()

    def list_users(self) -> list[UserRecord]:
        with self._lock:
            return [copy.copy(user) for user in self.users.values()]

    def list_users_by_community(self, community_id: str) -> list[UserRecord]:
        with self._lock:
            return [
                copy.copy(user)
                for user in self.users.values()
                if user.community_id == community_id
            ]

    def find_owner(self) -> Optional[UserRecord]:
        with self._lock:
            for user in self.users.values():
                if user.role == Role.OWNER:
                    return copy.copy(user)
        return None

    def add_event(self, event: EventRecord) -> EventRecord:
        stored = copy.copy(event)
        if not stored.event_id:
            stored.event_id = _new_id()
        with self._lock:
            self.events[stored.event_id] = stored
        return copy.copy(stored)

    def list_events(self, community_id: str) -> list[EventRecord]:
        with self._lock:
            return [
                copy.copy(event)
                for event in self.events.values()
                if event.community_id == community_id
            ]

    def delete_event(self, community_id: str, event_id: str) -> bool:
        with self._lock:
            event = self.events.get(event_id)
            if not event or event.community_id != community_id:
                return False
            del self.events[event_id]
            return True


_DACITE_CONFIG = Config(cast=[Role], check_types=False)


def _community_to_doc(record: CommunityRecord) -> dict:
    data = asdict(record)
    data.pop("community_id")
    return convert_keys(data, "snake_to_camel", preserve=("slots",))


def _community_from_doc(community_id: str, data: dict) -> CommunityRecord:
    fields = convert_keys(data, "camel_to_snake", preserve=("slots",))
    fields["community_id"] = community_id
    return from_dict(data_class=CommunityRecord, data=fields, config=_DACITE_CONFIG)


def _user_to_doc(user: UserRecord) -> dict:
    data = asdict(user)
    data.pop("uid")
    data["role"] = user.role.value
    return convert_keys(data, "snake_to_camel")


def _membership_doc(user: UserRecord) -> dict:
    return {
        "communityId": user.community_id,
        "country": user.country,
        "updatedAt": user.updated_at,
    }


def _user_from_doc(uid: str, data: dict) -> UserRecord:
    fields = convert_keys(data, "camel_to_snake")
    fields["uid"] = uid
    fields.setdefault("email", "")
    if fields.get("role") not in {role.value for role in Role}:
        fields["role"] = Role.USER.value
    return from_dict(data_class=UserRecord, data=fields, config=_DACITE_CONFIG)


def _event_from_doc(community_id: str, event_id: str, data: dict) -> EventRecord:
    fields = convert_keys(data, "camel_to_snake")
    fields["event_id"] = event_id
    fields["community_id"] = community_id
    return from_dict(data_class=EventRecord, data=fields, config=_DACITE_CONFIG)


class FirestoreDbClient:
    """
    Firestore-backed implementation. Documents use camelCase keys; slot maps
    are stored verbatim since their keys are country names.
    """

    def __init__(self, client=None):
        self.client = client or firestore.client()
        self._communities = self.client.collection(COMMUNITIES_COLLECTION)
        self._users = self.client.collection(USERS_COLLECTION)

    def _events(self, community_id: str):
        return self._communities.document(community_id).collection(
            EVENTS_COLLECTION
        )

    def create_community(self, record: CommunityRecord) -> CommunityRecord:
        stored = record.copy()
        if stored.community_id:
            doc_ref = self._communities.document(stored.community_id)
        else:
            doc_ref = self._communities.document()
            stored.community_id = doc_ref.id
        doc_ref.set(_community_to_doc(stored))
        return stored

    def get_community(self, community_id: str) -> Optional[CommunityRecord]:
        doc = self._communities.document(community_id).get()
        if not doc.exists:
            return None
        return _community_from_doc(doc.id, doc.to_dict())

    def list_communities(self) -> list[CommunityRecord]:
        return [
            _community_from_doc(doc.id, doc.to_dict())
            for doc in self._communities.stream()
        ]

    def update_community_logo(
        self, community_id: str, logo_url: str, logo_path: str
    ) -> None:
        self._communities.document(community_id).update(
            {"logoUrl": logo_url, "logoPath": logo_path, "updatedAt": time.time()}
        )

    def compare_and_set_slots(
        self,
        expected: CommunityRecord,
        updated: CommunityRecord,
        user: Optional[UserRecord] = None,
    ) -> bool:
        community_ref = self._communities.document(expected.community_id)

        user_ref = self._users.document(user.uid) if user is not None else None

        @firestore.transactional
        def _swap(transaction) -> bool:
            # Firestore transactions need every read before the first write.
            snapshot = community_ref.get(transaction=transaction)
            user_snapshot = (
                user_ref.get(transaction=transaction) if user_ref is not None else None
            )
            if not snapshot.exists:
                return False
            if (snapshot.to_dict() or {}).get("version", 0) != expected.version:
                return False
            transaction.update(
                community_ref,
                {
                    "slots": dict(updated.slots),
                    "occupiedCount": updated.occupied_count,
                    "version": expected.version + 1,
                    "updatedAt": time.time(),
                },
            )
            if user_snapshot is None:
                return True
            if user_snapshot.exists:
                transaction.update(user_ref, _membership_doc(user))
            else:
                transaction.set(user_ref, _user_to_doc(user))
            return True

        return _swap(self.client.transaction())

    def get_user(self, uid: str) -> Optional[UserRecord]:
        doc = self._users.document(uid).get()
        if not doc.exists:
            return None
        return _user_from_doc(doc.id, doc.to_dict())

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        query = self._users.where(filter=FieldFilter("email", "==", email)).limit(1)
        for doc in query.stream():
            return _user_from_doc(doc.id, doc.to_dict())
        return None

    def save_user(self, user: UserRecord) -> None:
        self._users.document(user.uid).set(_user_to_doc(user))

    def update_user_name(self, uid: str, name: str) -> None:
        self._users.document(uid).update({"name": name, "updatedAt": time.time()})

    def update_user_role(self, uid: str, role: Role) -> None:
        self._users.document(uid).set(
            {"role": role.value, "updatedAt": time.time()}, merge=True
        )

    def list_users(self) -> list[UserRecord]:
        return [_user_from_doc(doc.id, doc.to_dict()) for doc in self._users.stream()]

    def list_users_by_community(self, community_id: str) -> list[UserRecord]:
        query = self._users.where(
            filter=FieldFilter("communityId", "==", community_id)
        )
        return [_user_from_doc(doc.id, doc.to_dict()) for doc in query.stream()]

    def find_owner(self) -> Optional[UserRecord]:
        query = self._users.where(
            filter=FieldFilter("role", "==", Role.OWNER.value)
        ).limit(1)
        for doc in query.stream():
            return _user_from_doc(doc.id, doc.to_dict())
        return None

    def add_event(self, event: EventRecord) -> EventRecord:
        stored = copy.copy(event)
        events = self._events(stored.community_id)
        doc_ref = (
            events.document(stored.event_id) if stored.event_id else events.document()
        )
        stored.event_id = doc_ref.id
        data = asdict(stored)
        data.pop("event_id")
        doc_ref.set(convert_keys(data, "snake_to_camel"))
        return stored

    def list_events(self, community_id: str) -> list[EventRecord]:
        return [
            _event_from_doc(community_id, doc.id, doc.to_dict())
            for doc in self._events(community_id).stream()
        ]

    def delete_event(self, community_id: str, event_id: str) -> bool:
        doc_ref = self._events(community_id).document(event_id)
        if not doc_ref.get().exists:
            return False
        doc_ref.delete()
        return True


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_community_record(self, row: "CommunityRow") -> CommunityRecord:
        return CommunityRecord(
            community_id=row.community_id,
            name=row.name,
            countries=list(row.countries or []),
            slots=dict(row.slots or {}),
            occupied_count=row.occupied_count,
            logo_url=row.logo_url,
            logo_path=row.logo_path,
            version=row.version,
            created_by=row.created_by,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_user_record(self, row: "UserRow") -> UserRecord:
        return UserRecord(
            uid=row.uid,
            email=row.email,
            name=row.name or "",
            role=Role(row.role) if row.role in {r.value for r in Role} else Role.USER,
            community_id=row.community_id,
            country=row.country,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_event_record(self, row: "EventRow") -> EventRecord:
        return EventRecord(
            event_id=row.event_id,
            community_id=row.community_id,
            title=row.title,
            date=row.date,
            description=row.description or "",
            created_by=row.created_by,
            created_at=row.created_at,
        )

    @staticmethod
    def _apply_user(row: "UserRow", user: UserRecord) -> None:
        row.email = user.email
        row.name = user.name
        row.role = user.role.value
        row.community_id = user.community_id
        row.country = user.country
        row.created_at = user.created_at
        row.updated_at = user.updated_at

    def create_community(self, record: CommunityRecord) -> CommunityRecord:
        stored = record.copy()
        if not stored.community_id:
            stored.community_id = _new_id()
        with self.Session() as session:
            session.add(
                CommunityRow(
                    community_id=stored.community_id,
                    name=stored.name,
                    logo_url=stored.logo_url,
                    logo_path=stored.logo_path,
                    countries=list(stored.countries),
                    slots=dict(stored.slots),
                    occupied_count=stored.occupied_count,
                    version=stored.version,
                    created_by=stored.created_by,
                    created_at=stored.created_at,
                    updated_at=stored.updated_at,
                )
            )
            session.commit()
        return stored

    def get_community(self, community_id: str) -> Optional[CommunityRecord]:
        with self.Session() as session:
            row = session.get(CommunityRow, community_id)
            return self._to_community_record(row) if row else None

    def list_communities(self) -> list[CommunityRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(CommunityRow).order_by(CommunityRow.created_at.asc())
            ).scalars()
            return [self._to_community_record(row) for row in rows]

    def update_community_logo(
        self, community_id: str, logo_url: str, logo_path: str
    ) -> None:
        with self.Session() as session:
            session.execute(
                update(CommunityRow)
                .where(CommunityRow.community_id == community_id)
                .values(logo_url=logo_url, logo_path=logo_path, updated_at=time.time())
            )
            session.commit()

    def compare_and_set_slots(
        self,
        expected: CommunityRecord,
        updated: CommunityRecord,
        user: Optional[UserRecord] = None,
    ) -> bool:
        with self.Session() as session:
            result = session.execute(
                update(CommunityRow)
                .where(
                    CommunityRow.community_id == expected.community_id,
                    CommunityRow.version == expected.version,
                )
                .values(
                    slots=dict(updated.slots),
                    occupied_count=updated.occupied_count,
                    version=expected.version + 1,
                    updated_at=time.time(),
                )
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            if user is not None:
                row = session.get(UserRow, user.uid)
                if row is None:
                    row = UserRow(uid=user.uid)
                    session.add(row)
                    self._apply_user(row, user)
                else:
                    row.community_id = user.community_id
                    row.country = user.country
                    row.updated_at = user.updated_at
            session.commit()
            return True

    def get_user(self, uid: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, uid)
            return self._to_user_record(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == email).limit(1)
            ).scalar_one_or_none()
            return self._to_user_record(row) if row else None

    def save_user(self, user: UserRecord) -> None:
        with self.Session() as session:
            row = session.get(UserRow, user.uid)
            if row is None:
                row = UserRow(uid=user.uid)
                session.add(row)
            self._apply_user(row, user)
            session.commit()

    def update_user_name(self, uid: str, name: str) -> None:
        with self.Session() as session:
            row = session.get(UserRow, uid)
            if not row:
                return
            row.name = name
            row.updated_at = time.time()
            session.commit()

    def update_user_role(self, uid: str, role: Role) -> None:
        with self.Session() as session:
            row = session.get(UserRow, uid)
            if not row:
                return
            row.role = role.value
            row.updated_at = time.time()
            session.commit()

    def list_users(self) -> list[UserRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(UserRow).order_by(UserRow.created_at.asc())
            ).scalars()
            return [self._to_user_record(row) for row in rows]

    def list_users_by_community(self, community_id: str) -> list[UserRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(UserRow).where(UserRow.community_id == community_id)
            ).scalars()
            return [self._to_user_record(row) for row in rows]

    def find_owner(self) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.role == Role.OWNER.value).limit(1)
            ).scalar_one_or_none()
            return self._to_user_record(row) if row else None

    def add_event(self, event: EventRecord) -> EventRecord:
        stored = copy.copy(event)
        if not stored.event_id:
            stored.event_id = _new_id()
        with self.Session() as session:
            session.add(
                EventRow(
                    event_id=stored.event_id,
                    community_id=stored.community_id,
                    title=stored.title,
                    date=stored.date,
                    description=stored.description,
                    created_by=stored.created_by,
                    created_at=stored.created_at,
                )
            )
            session.commit()
        return stored

    def list_events(self, community_id: str) -> list[EventRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(EventRow).where(EventRow.community_id == community_id)
            ).scalars()
            return [self._to_event_record(row) for row in rows]

    def delete_event(self, community_id: str, event_id: str) -> bool:
        with self.Session() as session:
            result = session.execute(
                delete(EventRow).where(
                    EventRow.community_id == community_id,
                    EventRow.event_id == event_id,
                )
            )
            session.commit()
            return result.rowcount == 1


Base = declarative_base()


class CommunityRow(Base):
    __tablename__ = "communities"

    community_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    logo_url = Column(String, nullable=True)
    logo_path = Column(String, nullable=True)
    countries = Column(JSON, nullable=False)
    slots = Column(JSON, nullable=False)
    occupied_count = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=0)
    created_by = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class UserRow(Base):
    __tablename__ = "users"

    uid = Column(String, primary_key=True)
    email = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)
    role = Column(String, nullable=False, default=Role.USER.value, index=True)
    community_id = Column(String, nullable=True, index=True)
    country = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class EventRow(Base):
    __tablename__ = "events"

    event_id = Column(String, primary_key=True)
    community_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    date = Column(String, nullable=False)
    description = Column(String, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
