"""Typed failures raised by the governance core.

Each error carries the HTTP status and the machine-readable code the admin
API returns; `gallery_admin.main` turns them into JSON responses.
"""
from typing import Any, Optional


class GovernanceError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str = "", *, detail: Optional[Any] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.detail = detail

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.message}
        if self.detail is not None:
            body["context"] = self.detail
        return body


class Unauthorized(GovernanceError):
    """No principal could be resolved for the request."""
    status_code = 401
    code = "unauthorized"


class Forbidden(GovernanceError):
    """The principal resolved but lacks the capability or role."""
    status_code = 403
    code = "forbidden"


class NotFound(GovernanceError):
    status_code = 404
    code = "not_found"


class ValidationError(GovernanceError):
    """Malformed key or inconsistent flag fields."""
    status_code = 400
    code = "validation_error"


class ConflictError(GovernanceError):
    """Optimistic-concurrency retries were exhausted."""
    status_code = 409
    code = "conflict"


class DependencyError(GovernanceError):
    """The datastore (or a stored procedure) is unavailable or timed out."""
    status_code = 503
    code = "dependency_unavailable"


class ImmutableRecordError(GovernanceError):
    """Attempt to rewrite an append-only history or audit row."""
    status_code = 409
    code = "immutable_record"


class ConfigurationError(GovernanceError):
    """Deployment bug, e.g. a capability referenced but never registered."""
    status_code = 500
    code = "configuration_error"
