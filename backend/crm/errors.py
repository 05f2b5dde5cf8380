"""
Error taxonomy for CRM operations.

Services raise these; main.py converts them to JSON responses so that
every failure reaches the client as a displayable message.
"""

from typing import Optional


class CRMError(Exception):
    """Base class for errors surfaced to the user."""

    status_code = 400
    code = "crm_error"

    def __init__(self, message: str, detail: Optional[dict] = None):
        self.message = message
        self.detail = detail or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class ValidationError(CRMError):
    """Empty or invalid required field."""

    status_code = 422
    code = "validation_error"


class NotFoundError(CRMError):
    """Referenced entity does not exist (or is outside the caller's scope)."""

    status_code = 404
    code = "not_found"


class InvariantViolation(CRMError):
    """Action rejected before any write because it would break a rule."""

    status_code = 409
    code = "invariant_violation"


class ExternalServiceError(CRMError):
    """Non-2xx from an outbound API or a failed database call."""

    status_code = 502
    code = "external_service_error"

    def __init__(self, service: str, message: str, detail: Optional[dict] = None):
        self.service = service
        super().__init__(f"{service}: {message}", detail)
