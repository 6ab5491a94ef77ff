"""Application error taxonomy.

Every error carries a human-readable ``message`` suitable for direct display
and a machine-checkable ``code``.  Routes never build error payloads by hand;
the handler registered in ``app.py`` serialises these with ``to_dict()``.
"""

from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(AppError):
    """Caller-fixable input or business-rule violation."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    """Entity does not exist or belongs to another company."""

    status_code = 404
    code = "NOT_FOUND"


class AuthError(AppError):
    status_code = 401
    code = "AUTH_ERROR"


class PermissionDeniedError(AppError):
    status_code = 403
    code = "FORBIDDEN"
