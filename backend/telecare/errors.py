"""Service-level error taxonomy.

Every failure a service can report is one of the subclasses below. The API
layer renders them uniformly as ``{"success": false, "message": ..., "error": kind}``
plus any structured ``meta`` (e.g. ``requiresAuth`` for the Google consent flow).
"""
from typing import Any, Dict, Optional


class ServiceError(Exception):
    kind: str = "service_error"
    status_code: int = 500

    def __init__(self, message: str, *, meta: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.meta: Dict[str, Any] = dict(meta or {})

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": False, "message": self.message, "error": self.kind}
        payload.update(self.meta)
        return payload


class ValidationError(ServiceError):
    kind = "validation_error"
    status_code = 400


class NotFound(ServiceError):
    kind = "not_found"
    status_code = 404


class Forbidden(ServiceError):
    kind = "forbidden"
    status_code = 403


class InvalidState(ServiceError):
    kind = "invalid_state"
    status_code = 400


class AuthorizationRequired(ServiceError):
    """No Google credentials exist yet for this doctor."""

    kind = "authorization_required"
    status_code = 400

    def __init__(self, message: str = "Google Calendar authorization required", *, meta=None):
        super().__init__(message, meta={"requiresAuth": True, **(meta or {})})


class ReauthorizationRequired(ServiceError):
    """Stored credentials are expired/revoked and cannot be refreshed."""

    kind = "reauthorization_required"
    status_code = 401

    def __init__(self, message: str = "Google authorization expired", *, meta=None):
        super().__init__(message, meta={"requiresAuth": True, "requiresReauth": True, **(meta or {})})


class ExternalServiceError(ServiceError):
    kind = "external_service_error"
    status_code = 500

    def __init__(self, message: str, *, provider_message: str | None = None, meta=None):
        extra = dict(meta or {})
        if provider_message:
            extra["detail"] = provider_message
        super().__init__(message, meta=extra)
        self.provider_message = provider_message
