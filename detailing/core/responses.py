"""
Response envelope shared by every endpoint.

    {"data": ..., "status": "success"}
    {"error": {"code": ..., "message": ..., "details": {...}}, "status": "error"}

details is left out when empty. Codes map one-to-one onto the engine's
failure classes in errors.py:

    VALIDATION_ERROR   422  malformed or out-of-policy input
    NOT_FOUND          404  booking, subscription or catalog item absent
    STATE_CONFLICT     409  transition not allowed now, or a lost concurrent update
    POLICY_VIOLATION   409  business rule refused (double review, no open offer)
    INTERNAL_ERROR     500
"""

from typing import Any, Optional

from pydantic import BaseModel


class ErrorCodes:
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    STATE_CONFLICT = "STATE_CONFLICT"
    POLICY_VIOLATION = "POLICY_VIOLATION"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorBody(BaseModel):
    code: str
    message: str
    details: Optional[dict[str, Any]] = None


def success_response(data: Any) -> dict:
    return {"data": data, "status": "success"}


def error_response(code: str, message: str, details: Optional[dict] = None) -> dict:
    body = ErrorBody(code=code, message=message, details=details or None)
    return {"error": body.model_dump(exclude_none=True), "status": "error"}
