"""
Configuration and settings for the community backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Initial owner; only consulted while no owner account exists.
    owner_email: Optional[str] = Field(default=None)

    # Firebase (auth, Firestore, storage)
    firebase_project_id: Optional[str] = Field(default=None)
    firebase_client_email: Optional[str] = Field(default=None)
    firebase_private_key: Optional[str] = Field(default=None)
    firebase_storage_bucket: Optional[str] = Field(default=None)
    firebase_web_api_key: Optional[str] = Field(default=None)

    # SQL document store (any SQLAlchemy URL)
    database_url: Optional[str] = Field(default=None)

    # S3-compatible storage
    s3_endpoint: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_bucket: Optional[str] = Field(default=None)
    s3_public_base_url: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias="COMMUNITY_USE_IN_MEMORY_BACKENDS",
    )

    # Limits
    max_logo_bytes: int = Field(default=5 * 1024 * 1024)
    max_countries_per_community: int = Field(default=500)
    claim_max_attempts: int = Field(default=5, ge=1)

    @property
    def firebase_configured(self) -> bool:
        return bool(self.firebase_project_id)

    @property
    def firebase_credentials(self) -> Optional[dict]:
        """Service account info, or None to use application default credentials."""
        if not (self.firebase_client_email and self.firebase_private_key):
            return None
        return {
            "type": "service_account",
            "project_id": self.firebase_project_id,
            "client_email": self.firebase_client_email,
            "private_key": self.firebase_private_key.replace("\\n", "\n"),
            "token_uri": "https://oauth2.googleapis.com/token",
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
