"""Service error hierarchy.

Every failure the API reports on purpose is a ``ServiceError``. Each subclass
fixes the HTTP status, the machine-readable ``error`` code and whether the
caller may retry; ``app.main`` renders them all in the ErrorResponse shape.
"""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    status_code: int = 500
    error: str = "internal_error"
    retryable: bool = False

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        self.message = message or self.error.replace("_", " ")
        self.extra = extra
        super().__init__(self.message)


class UserIdRequired(ServiceError):
    status_code = 400
    error = "user_id_required"


class InvalidRequest(ServiceError):
    status_code = 400
    error = "invalid_request"

    def __init__(self, error: str, message: str | None = None, **extra: Any) -> None:
        self.error = error
        super().__init__(message, **extra)


class ProjectNotFound(ServiceError):
    """Missing project and project owned by someone else look the same."""

    status_code = 404
    error = "project_not_found"


class ImageRequired(ServiceError):
    status_code = 409
    error = "image_required"


class ProviderError(ServiceError):
    status_code = 502
    retryable = True


class ProviderUnavailable(ProviderError):
    """Transport failure or non-2xx reply from the preview provider."""

    error = "provider_unavailable"

    def __init__(
        self, message: str | None = None, *, http_status: int | None = None, **extra: Any
    ) -> None:
        self.http_status = http_status
        super().__init__(message, **extra)


class InvalidResponse(ProviderError):
    """Provider replied 2xx but the body lacks a field the contract requires."""

    error = "invalid_provider_response"

    def __init__(self, message: str | None = None, *, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class ProfileNotFound(ServiceError):
    status_code = 404
    error = "profile_not_found"


class QuotaExhausted(ServiceError):
    status_code = 402
    error = "quota_exhausted"

    def __init__(self, *, quota: int, used: int) -> None:
        self.quota = quota
        self.used = used
        super().__init__(
            "Monthly quota exhausted",
            quota=quota,
            used=used,
            remaining=0,
        )


class ConsumeConflict(ServiceError):
    status_code = 409
    error = "consume_conflict"
    retryable = True
