"""
API error handling. Structured JSON errors with codes.

Every error response: {"error": {"code": "...", "message": "...", "details": {...}}}
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from casino.errors import (
    AuthenticityError, CasinoError, OracleRejected, OracleUnavailable,
    Overflow, ResourceError, StateError, ValidationError,
    AccountNotFound, BetNotFound, PositionNotFound,
)


class APIError(Exception):
    """Structured API error with HTTP status and machine-readable code."""

    def __init__(self, status: int, code: str, message: str,
                 details: dict | None = None):
        self.status = status
        self.code = code
        self.message = message
        self.details = details or {}

    def response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status,
            content={"error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }},
        )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return exc.response()


# Most specific first
_STATUS = [
    ((BetNotFound, PositionNotFound, AccountNotFound), 404),
    (OracleUnavailable, 503),
    (OracleRejected, 502),
    (ValidationError, 400),
    (Overflow, 400),
    (AuthenticityError, 403),
    (StateError, 409),
    (ResourceError, 409),
]


def translate_engine_error(exc: Exception) -> APIError:
    """Translate engine exceptions to structured API errors."""
    msg = str(exc)
    if isinstance(exc, CasinoError):
        for types, status in _STATUS:
            if isinstance(exc, types):
                return APIError(status, exc.code, msg)
        return APIError(400, exc.code, msg)
    return APIError(400, "bad_request", msg)
