"""
Error taxonomy shared by the domain modules and the HTTP layer.

Each error carries the HTTP status it maps to; `backend.app` turns them into
JSON responses.
"""

from __future__ import annotations


class CommunityError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnauthenticatedError(CommunityError):
    status_code = 401


class ForbiddenError(CommunityError):
    status_code = 403


class ValidationError(CommunityError):
    status_code = 400


class NotFoundError(CommunityError):
    status_code = 404


class ConflictError(CommunityError):
    status_code = 400


class SlotUnavailableError(ConflictError):
    """The requested country is already claimed by another user."""

    def __init__(self, message: str = "Country is already taken"):
        super().__init__(message)


class UploadError(CommunityError):
    status_code = 400
