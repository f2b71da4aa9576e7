# tracedock/core/errors.py
"""
API error taxonomy and FastAPI exception handlers.

Every failure response carries a machine-readable `code`:

- VALIDATION_ERROR (400): malformed payload or query, with a field-level map
- NOT_FOUND (404): unknown log / error group / trace / span id
- INTERNAL_ERROR (500): storage unavailable or any unexpected exception

Storage contention on error-group fingerprints never reaches this layer; the
repository resolves it locally.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from pydantic import ValidationError

logger = logging.getLogger(__name__)


def fail(
    code: str,
    message: str,
    details: Optional[Any] = None,
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": message, "code": code}
    if details is not None:
        body["details"] = details
    return body


class ApiError(Exception):
    """Base class for errors that map directly onto an HTTP response."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(ApiError):
    status_code = 404
    code = "NOT_FOUND"


class InvalidRequestError(ApiError):
    status_code = 400
    code = "VALIDATION_ERROR"


def flatten_errors(errors: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Collapse pydantic error dicts into {fieldErrors: {field: [msg]}, formErrors: [msg]}.

    The leading "body"/"query"/"path" location segment is dropped so the map
    is keyed by the payload field name the client sent.
    """
    field_errors: Dict[str, List[str]] = {}
    form_errors: List[str] = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ())]
        if loc and loc[0] in ("body", "query", "path", "header"):
            loc = loc[1:]
        msg = err.get("msg", "Invalid value")
        if loc:
            field_errors.setdefault(".".join(loc), []).append(msg)
        else:
            form_errors.append(msg)
    return {"fieldErrors": field_errors, "formErrors": form_errors}


def install_exception_handlers(app: FastAPI, *, expose_details: bool = False) -> None:
    """Register the handlers that turn exceptions into the error envelope."""

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return ORJSONResponse(
            status_code=exc.status_code,
            content=fail(exc.code, exc.message, exc.details),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        message = "Invalid request body" if request.method in ("POST", "PATCH", "PUT") else "Invalid query parameters"
        return ORJSONResponse(
            status_code=400,
            content=fail("VALIDATION_ERROR", message, flatten_errors(exc.errors())),
        )

    @app.exception_handler(ValidationError)
    async def model_validation_handler(request: Request, exc: ValidationError):
        return ORJSONResponse(
            status_code=400,
            content=fail("VALIDATION_ERROR", "Invalid request", flatten_errors(exc.errors())),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

        details = None
        if expose_details:
            details = {"type": exc.__class__.__name__, "message": str(exc)}

        return ORJSONResponse(
            status_code=500,
            content=fail("INTERNAL_ERROR", "Internal server error", details),
        )
