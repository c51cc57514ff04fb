from typing import Any, Dict, Optional

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    Standard error payload returned by the proxy itself (as opposed to
    upstream errors, which are relayed untouched):

    {
        "error": "bad_request",
        "message": "Invalid JSON",
        "code": 400,
        "details": {...}
    }
    """

    error: str = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable error message")
    code: int = Field(..., description="HTTP status code for this error")
    details: Optional[Dict[str, Any]] = Field(
        default=None, description="Optional structured error details"
    )


def error_response(
    status_code: int,
    *,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """
    Helper to build a JSONResponse with a standardised error body.
    """
    payload = ErrorResponse(
        error=error,
        message=message,
        code=status_code,
        details=details,
    )
    return JSONResponse(status_code=status_code, content=payload.model_dump())


def bad_request(message: str, *, details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    return error_response(
        status.HTTP_400_BAD_REQUEST, error="bad_request", message=message, details=details
    )


def unauthorized(message: str, *, details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    return error_response(
        status.HTTP_401_UNAUTHORIZED, error="unauthorized", message=message, details=details
    )


def bad_gateway(message: str, *, details: Optional[Dict[str, Any]] = None) -> JSONResponse:
    return error_response(
        status.HTTP_502_BAD_GATEWAY,
        error="upstream_unreachable",
        message=message,
        details=details,
    )


def gateway_timeout(
    message: str, *, details: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    return error_response(
        status.HTTP_504_GATEWAY_TIMEOUT,
        error="upstream_timeout",
        message=message,
        details=details,
    )


def internal_error(
    message: str, *, details: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        error="internal_error",
        message=message,
        details=details,
    )


__all__ = [
    "ErrorResponse",
    "bad_gateway",
    "bad_request",
    "error_response",
    "gateway_timeout",
    "internal_error",
    "unauthorized",
]
