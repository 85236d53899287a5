"""
Typed failures raised by the booking and pricing engine.

All of them are local, recoverable conditions. Nothing is mutated before one
of these is raised, so callers can render the message and move on.
"""

from typing import Any, Optional

from .core.responses import ErrorCodes


class DetailingError(Exception):
    """Base class for engine failures."""

    code = ErrorCodes.INTERNAL_ERROR
    http_status = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(DetailingError):
    """Malformed or out-of-policy input (unknown service, bad date, ...)."""

    code = ErrorCodes.VALIDATION_ERROR
    http_status = 422


class NotFound(DetailingError):
    """Booking, subscription or catalog item absent."""

    code = ErrorCodes.NOT_FOUND
    http_status = 404


class StateConflict(DetailingError):
    """Transition not permitted from the current state, or a lost compare-and-swap."""

    code = ErrorCodes.STATE_CONFLICT
    http_status = 409


class PolicyViolation(DetailingError):
    """Request breaks a business rule (cancel a terminal booking, review twice, ...)."""

    code = ErrorCodes.POLICY_VIOLATION
    http_status = 409
