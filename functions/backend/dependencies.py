"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

import firebase_admin
from firebase_admin import credentials, firestore

from backend.config import Settings, get_settings
from backend.db import DbClient, FirestoreDbClient, InMemoryDbClient, SqlDbClient
from backend.identity import (
    FirebaseIdentityProvider,
    IdentityProvider,
    InMemoryIdentityProvider,
)
from backend.storage import (
    FirebaseStorageClient,
    InMemoryStorageClient,
    S3StorageClient,
    StorageClient,
)

logger = logging.getLogger(__name__)

_firebase_app: firebase_admin.App | None = None
_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_identity_provider: IdentityProvider | None = None


def get_firebase_app(settings: Settings | None = None) -> firebase_admin.App:
    """
    Initialize the default Firebase app once, from the service account in the
    environment or application default credentials.
    """
    global _firebase_app
    if _firebase_app:
        return _firebase_app

    settings = settings or get_settings()
    service_account = settings.firebase_credentials
    credential = (
        credentials.Certificate(service_account)
        if service_account
        else credentials.ApplicationDefault()
    )
    options = {"projectId": settings.firebase_project_id}
    if settings.firebase_storage_bucket:
        options["storageBucket"] = settings.firebase_storage_bucket
    _firebase_app = firebase_admin.initialize_app(credential, options)
    return _firebase_app


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _db_client = InMemoryDbClient()
    elif settings.database_url:
        _db_client = SqlDbClient(settings.database_url)
    elif settings.firebase_configured:
        _db_client = FirestoreDbClient(firestore.client(get_firebase_app(settings)))
    else:
        logger.warning("No document store configured; using in-memory store")
        _db_client = InMemoryDbClient()
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _storage_client = InMemoryStorageClient()
    elif settings.s3_bucket:
        _storage_client = S3StorageClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_base_url=settings.s3_public_base_url or "",
        )
    elif settings.firebase_storage_bucket:
        _storage_client = FirebaseStorageClient(
            settings.firebase_storage_bucket, app=get_firebase_app(settings)
        )
    else:
        logger.warning("No blob store configured; using in-memory storage")
        _storage_client = InMemoryStorageClient()
    return _storage_client


def get_identity_provider() -> IdentityProvider:
    global _identity_provider
    if _identity_provider:
        return _identity_provider

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.firebase_configured:
        _identity_provider = InMemoryIdentityProvider()
    else:
        _identity_provider = FirebaseIdentityProvider(
            app=get_firebase_app(settings),
            web_api_key=settings.firebase_web_api_key,
        )
    return _identity_provider
