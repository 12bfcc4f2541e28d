"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.exceptions import (
    BillingError,
    ConcurrencyConflict,
    InvariantViolation,
    InvoiceValidationError,
    NotFound,
    TransitionRefused,
)

logger = logging.getLogger(__name__)

# Domain error -> HTTP status
_STATUS_CODES: dict[type[BillingError], int] = {
    NotFound: 404,
    InvoiceValidationError: 422,
    InvariantViolation: 409,
    TransitionRefused: 409,
    ConcurrencyConflict: 409,
}


def _error(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message, request_id).model_dump(mode="json"),
    )


def _validation_message(errors: list[dict]) -> str:
    parts = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts)


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError):
        status_code = next(
            (status for error_type, status in _STATUS_CODES.items() if isinstance(exc, error_type)),
            400,
        )
        if status_code == 409:
            logger.info("Refused %s %s: %s (%s)", request.method, request.url.path, exc.message, exc.code)
        return _error(request, status_code, exc.code, exc.message)

    @app.exception_handler(ValidationError)
    async def model_validation_handler(request: Request, exc: ValidationError):
        return _error(request, 422, ErrorCodes.VALIDATION_ERROR, _validation_message(exc.errors()))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(request, 422, ErrorCodes.VALIDATION_ERROR, _validation_message(exc.errors()))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error(request, 400, ErrorCodes.INVALID_REQUEST, str(exc))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _error(request, 500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
