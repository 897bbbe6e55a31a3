"""Global exception handlers for FastAPI.

Domain errors raised by services are translated here, so routers only
deal with the happy path.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from auth.exceptions import (
    AccountExistsError,
    AuthError,
    InvalidCredentialsError,
    InvalidOrExpiredCodeError,
    RateLimitExceededError,
    SessionExpiredError,
    TooManyAttemptsError,
    UserInactiveError,
)
from clients.email_client import EmailGatewayError
from core.exceptions import (
    CreditAccountNotFoundError,
    CreditError,
    InsufficientCreditsError,
    InvalidTransactionError,
)

logger = logging.getLogger(__name__)

# Exception class -> (HTTP status, error code)
_AUTH_ERRORS = {
    InvalidOrExpiredCodeError: (400, ErrorCodes.INVALID_CODE),
    TooManyAttemptsError: (400, ErrorCodes.TOO_MANY_ATTEMPTS),
    InvalidCredentialsError: (401, ErrorCodes.INVALID_CREDENTIALS),
    SessionExpiredError: (401, ErrorCodes.SESSION_EXPIRED),
    UserInactiveError: (403, ErrorCodes.ACCOUNT_INACTIVE),
    AccountExistsError: (409, ErrorCodes.ALREADY_EXISTS),
}

_CREDIT_ERRORS = {
    InsufficientCreditsError: (400, ErrorCodes.INSUFFICIENT_CREDITS),
    InvalidTransactionError: (400, ErrorCodes.INVALID_TRANSACTION),
    CreditAccountNotFoundError: (404, ErrorCodes.NOT_FOUND),
}


def _json_error(status_code: int, code: str, message: str, details: dict | None = None, headers=None):
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content=error_response(code, message, details).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(request: Request, exc: RateLimitExceededError):
        return _json_error(
            429,
            ErrorCodes.RATE_LIMITED,
            f"Too many requests. Please wait {exc.retry_after_seconds} seconds.",
            details={"retry_after_seconds": exc.retry_after_seconds},
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        mapped = _AUTH_ERRORS.get(type(exc))
        if mapped is None:
            # Store-level race signals must be translated before reaching here
            logger.error("Untranslated auth error: %r", exc)
            return _json_error(500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")

        status_code, code = mapped
        details = None
        if isinstance(exc, InvalidOrExpiredCodeError) and exc.remaining_attempts is not None:
            details = {"remaining_attempts": exc.remaining_attempts}
        return _json_error(status_code, code, str(exc), details)

    @app.exception_handler(CreditError)
    async def credit_error_handler(request: Request, exc: CreditError):
        status_code, code = _CREDIT_ERRORS.get(type(exc), (400, ErrorCodes.INVALID_REQUEST))
        details = None
        if isinstance(exc, InsufficientCreditsError):
            details = {"balance": exc.balance, "required": exc.required}
        return _json_error(status_code, code, str(exc), details)

    @app.exception_handler(EmailGatewayError)
    async def email_error_handler(request: Request, exc: EmailGatewayError):
        return _json_error(
            503,
            ErrorCodes.SERVICE_UNAVAILABLE,
            "Email delivery is unavailable. Please try again later.",
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        message = str(exc)
        if "not found" in message.lower():
            return _json_error(404, ErrorCodes.NOT_FOUND, message)
        return _json_error(400, ErrorCodes.INVALID_REQUEST, message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _json_error(422, ErrorCodes.VALIDATION_ERROR, str(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _json_error(500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
