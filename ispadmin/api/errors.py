"""Translate core errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ispadmin.errors import (
    ConflictError,
    ConsoleError,
    EmptyInputError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    UnauthenticatedError,
)

logger = logging.getLogger(__name__)

# Checked in order, subclasses before their bases.
_STATUS_CODES: tuple[tuple[type[ConsoleError], int], ...] = (
    (UnauthenticatedError, 401),
    (ForbiddenError, 403),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (ConflictError, 409),
    (EmptyInputError, 400),
    (StorageError, 503),
)

# Auth and storage failures never echo the underlying reason.
_GENERIC_DETAILS: dict[type[ConsoleError], str] = {
    UnauthenticatedError: "Not authenticated",
    ForbiddenError: "Not authorized",
    StorageError: "Storage is temporarily unavailable",
}


def status_for(exc: ConsoleError) -> tuple[int, str]:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code, _GENERIC_DETAILS.get(error_type, str(exc))
    return 500, "Internal error"


async def console_error_handler(request: Request, exc: ConsoleError) -> JSONResponse:
    status_code, detail = status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": detail})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ConsoleError, console_error_handler)
