"""Error body shape and exception handlers for the treasury API."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from treasury.errors import (
    EmptySnapshotError,
    InsufficientFundsError,
    InternalConsistencyError,
    InvalidRequestError,
    StorageFaultError,
    TreasuryError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)

# Subclasses come before their bases.
_TREASURY_ERROR_STATUS: tuple[tuple[type[TreasuryError], int, str], ...] = (
    (EmptySnapshotError, 404, "empty_snapshot"),
    (InvalidRequestError, 400, "invalid_request"),
    (UpstreamUnavailableError, 503, "upstream_unavailable"),
    (InsufficientFundsError, 409, "insufficient_funds"),
    (InternalConsistencyError, 500, "internal_consistency"),
    (StorageFaultError, 500, "storage_fault"),
)


class ApiError(Exception):
    """Request-level failure raised by route handlers."""

    def __init__(self, status_code: int, code: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message

    @staticmethod
    def not_found(code: str, message: str) -> "ApiError":
        return ApiError(404, code, message)


def error_body(code: str, message: str, details: Optional[Any] = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return {"error": error}


def classify_treasury_error(exc: TreasuryError) -> tuple[int, str]:
    for error_type, status_code, code in _TREASURY_ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code, code
    return 500, "treasury_error"


async def treasury_error_handler(request: Request, exc: TreasuryError) -> JSONResponse:
    status_code, code = classify_treasury_error(exc)
    if status_code >= 500:
        logger.error("%s %s failed with %s: %s", request.method, request.url.path, code, exc)
    else:
        logger.warning("%s %s rejected with %s: %s", request.method, request.url.path, code, exc)
    return JSONResponse(status_code=status_code, content=error_body(code, str(exc)))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = [
        {"field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"), "message": error.get("msg")}
        for error in exc.errors()
    ]
    message = problems[0]["message"] if problems else "Request validation failed"
    return JSONResponse(status_code=400, content=error_body("invalid_request", str(message), problems))


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TreasuryError, treasury_error_handler)
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
