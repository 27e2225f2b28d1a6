from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class ApprovalError(ApiError):
    """Raised when a decision violates the staged approval rules."""

    STAGE_NOT_PENDING = "STAGE_NOT_PENDING"
    STAGE_OUT_OF_ORDER = "STAGE_OUT_OF_ORDER"
    ROLE_NOT_ALLOWED = "ROLE_NOT_ALLOWED"
    REMARKS_REQUIRED = "REMARKS_REQUIRED"
    REQUEST_TERMINAL = "REQUEST_TERMINAL"
    INVALID_DECISION = "INVALID_DECISION"

    _STATUS_BY_CODE = {
        ROLE_NOT_ALLOWED: 403,
        REMARKS_REQUIRED: 422,
        INVALID_DECISION: 422,
    }

    def __init__(self, code: str, message: str):
        super().__init__(self._STATUS_BY_CODE.get(code, 409), code, message)


class BalanceError(ApiError):
    """Raised when a leave ledger operation is not allowed for the employee."""

    def __init__(self, code: str, message: str):
        super().__init__(422, code, message)


class TimeClockUnavailableError(ApiError):
    def __init__(self, message: str = "Time-clock store is unavailable."):
        super().__init__(503, "TIMECLOCK_UNAVAILABLE", message)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
