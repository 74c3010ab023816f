"""
Identity provider abstraction: Firebase Authentication and an in-memory test
implementation.
"""

from __future__ import annotations

import hashlib
import secrets
import threading
import uuid
from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Protocol

import requests
from firebase_admin import auth

from backend.errors import NotFoundError, UnauthenticatedError, ValidationError
from shared.types import Role

REQUEST_TIMEOUT = 30  # seconds
SIGN_IN_URL = (
    "https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword"
)
MIN_PASSWORD_LENGTH = 6


@dataclass
class IdentityRecord:
    uid: str
    email: str
    display_name: str = ""
    role_claim: Optional[str] = None


@dataclass
class TokenClaims:
    uid: str
    email: Optional[str] = None
    role_claim: Optional[str] = None


class IdentityProvider(Protocol):
    """Operations the API needs from the authentication provider."""

    def create_user(
        self, email: str, password: str, display_name: str
    ) -> IdentityRecord:
        ...

    def delete_user(self, uid: str) -> None:
        ...

    def get_user(self, uid: str) -> IdentityRecord:
        ...

    def get_user_by_email(self, email: str) -> IdentityRecord:
        ...

    def sign_in(self, email: str, password: str) -> tuple[str, str]:
        """Returns (uid, id_token) for valid credentials."""
        ...

    def verify_token(self, token: str) -> TokenClaims:
        ...

    def set_role_claim(self, uid: str, role: Role) -> None:
        ...


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, 100_000)


@dataclass
class _StoredIdentity:
    record: IdentityRecord
    salt: bytes
    password_hash: bytes


@dataclass
class InMemoryIdentityProvider:
    """Test double for the identity provider. Tokens are opaque random strings."""

    users: Dict[str, _StoredIdentity] = field(default_factory=dict)
    tokens: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    def create_user(
        self, email: str, password: str, display_name: str
    ) -> IdentityRecord:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password should be at least {MIN_PASSWORD_LENGTH} characters"
            )
        with self._lock:
            if any(u.record.email == email for u in self.users.values()):
                raise ValidationError(
                    "The email address is already in use by another account."
                )
            salt = secrets.token_bytes(16)
            record = IdentityRecord(
                uid=uuid.uuid4().hex[:28], email=email, display_name=display_name
            )
            self.users[record.uid] = _StoredIdentity(
                record=record, salt=salt, password_hash=_hash_password(password, salt)
            )
            return replace(record)

    def delete_user(self, uid: str) -> None:
        with self._lock:
            if self.users.pop(uid, None) is None:
                raise NotFoundError("User not found")
            self.tokens = {t: u for t, u in self.tokens.items() if u != uid}

    def get_user(self, uid: str) -> IdentityRecord:
        with self._lock:
            stored = self.users.get(uid)
            if stored is None:
                raise NotFoundError("User not found")
            return replace(stored.record)

    def get_user_by_email(self, email: str) -> IdentityRecord:
        with self._lock:
            for stored in self.users.values():
                if stored.record.email == email:
                    return replace(stored.record)
        raise NotFoundError("User not found")

    def issue_token(self, uid: str) -> str:
        token = secrets.token_urlsafe(24)
        with self._lock:
            self.tokens[token] = uid
        return token

    def sign_in(self, email: str, password: str) -> tuple[str, str]:
        with self._lock:
            match = next(
                (u for u in self.users.values() if u.record.email == email), None
            )
        if match is None or not secrets.compare_digest(
            match.password_hash, _hash_password(password, match.salt)
        ):
            raise ValidationError("Invalid email or password")
        return match.record.uid, self.issue_token(match.record.uid)

    def verify_token(self, token: str) -> TokenClaims:
        with self._lock:
            uid = self.tokens.get(token)
            stored = self.users.get(uid) if uid else None
        if stored is None:
            raise UnauthenticatedError("Invalid token")
        return TokenClaims(
            uid=stored.record.uid,
            email=stored.record.email,
            role_claim=stored.record.role_claim,
        )

    def set_role_claim(self, uid: str, role: Role) -> None:
        with self._lock:
            stored = self.users.get(uid)
            if stored is None:
                raise NotFoundError("User not found")
            stored.record.role_claim = role.value


def _to_identity_record(user) -> IdentityRecord:
    claims = user.custom_claims or {}
    return IdentityRecord(
        uid=user.uid,
        email=user.email or "",
        display_name=user.display_name or "",
        role_claim=claims.get("role"),
    )


class FirebaseIdentityProvider:
    """
    Firebase Authentication via the Admin SDK. Password sign-in goes through
    the Identity Toolkit REST API, which needs the project's web API key.
    """

    def __init__(self, app=None, web_api_key: Optional[str] = None):
        self.app = app
        self.web_api_key = web_api_key

    def create_user(
        self, email: str, password: str, display_name: str
    ) -> IdentityRecord:
        try:
            user = auth.create_user(
                email=email, password=password, display_name=display_name, app=self.app
            )
        except auth.EmailAlreadyExistsError:
            raise ValidationError(
                "The email address is already in use by another account."
            )
        except ValueError as e:
            raise ValidationError(str(e))
        return _to_identity_record(user)

    def delete_user(self, uid: str) -> None:
        try:
            auth.delete_user(uid, app=self.app)
        except auth.UserNotFoundError:
            raise NotFoundError("User not found")

    def get_user(self, uid: str) -> IdentityRecord:
        try:
            return _to_identity_record(auth.get_user(uid, app=self.app))
        except auth.UserNotFoundError:
            raise NotFoundError("User not found")

    def get_user_by_email(self, email: str) -> IdentityRecord:
        try:
            return _to_identity_record(auth.get_user_by_email(email, app=self.app))
        except auth.UserNotFoundError:
            raise NotFoundError("User not found")

    def sign_in(self, email: str, password: str) -> tuple[str, str]:
        if not self.web_api_key:
            raise RuntimeError("FIREBASE_WEB_API_KEY is required for password sign-in")
        response = requests.post(
            SIGN_IN_URL,
            params={"key": self.web_api_key},
            json={"email": email, "password": password, "returnSecureToken": True},
            timeout=REQUEST_TIMEOUT,
        )
        if response.status_code == 400:
            raise ValidationError("Invalid email or password")
        response.raise_for_status()
        payload = response.json()
        return payload["localId"], payload["idToken"]

    def verify_token(self, token: str) -> TokenClaims:
        try:
            decoded = auth.verify_id_token(token, app=self.app)
        except (
            auth.InvalidIdTokenError,
            auth.ExpiredIdTokenError,
            auth.RevokedIdTokenError,
            auth.CertificateFetchError,
            auth.UserDisabledError,
            ValueError,
        ):
            raise UnauthenticatedError("Invalid token")
        return TokenClaims(
            uid=decoded["uid"],
            email=decoded.get("email"),
            role_claim=decoded.get("role"),
        )

    def set_role_claim(self, uid: str, role: Role) -> None:
        try:
            user = auth.get_user(uid, app=self.app)
        except auth.UserNotFoundError:
            raise NotFoundError("User not found")
        claims = dict(user.custom_claims or {})
        claims["role"] = role.value
        auth.set_custom_user_claims(uid, claims, app=self.app)
