# Overview: Domain error taxonomy shared by services and routes.

"""
Domain errors.

Every business-rule violation raised by the services is one of these kinds.
Routes turn them into `{"error": {"code", "message", "details"}}` with the
matching HTTP status; anything else is an unexpected failure (logged, 500).

    ValidationError   400  malformed input or failed business precondition
    ForbiddenError    403  role/ownership check failed
    NotFoundError     404  entity absent or outside the caller's organization
    ConflictError     409  overlap, duplicate, double billing
    AlreadyPaidError  409  payment already marked paid
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    status_code = 500
    default_code = "DOMAIN_ERROR"

    def __init__(self, message: str, code: str | None = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }

    def to_response(self) -> tuple[dict, int]:
        return {"error": self.to_dict()}, self.status_code


class ValidationError(DomainError, ValueError):
    """400-level input problem or business precondition failure."""
    status_code = 400
    default_code = "VALIDATION_ERROR"


class ForbiddenError(DomainError):
    """403-level role or ownership failure."""
    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(DomainError):
    """404-level: missing, or belongs to another organization."""
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(DomainError):
    """409-level business rule conflict (overlap, duplicate, double billing)."""
    status_code = 409
    default_code = "CONFLICT"


class AlreadyPaidError(ConflictError):
    default_code = "ALREADY_PAID"
