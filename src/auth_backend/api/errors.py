"""Exception handlers — map service failures to HTTP responses.

Credential and code failures share one vague message per family so a
response never reveals whether a code or session existed.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from auth_backend.services.auth_service import (
    AccountExistsError,
    AlreadyVerifiedError,
    AuthError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    SuperAdminExistsError,
    TwoFactorRequiredError,
    UserNotFoundError,
    WeakPasswordError,
)
from auth_backend.services.base import DeliveryError
from auth_backend.tokens.errors import ErrorKind, TokenServiceError

logger = logging.getLogger(__name__)

INVALID_CREDENTIAL_MESSAGE = "Invalid or expired credentials"

_TOKEN_ERRORS: dict[ErrorKind, tuple[int, str]] = {
    ErrorKind.INVALID_SIGNATURE: (status.HTTP_401_UNAUTHORIZED, INVALID_CREDENTIAL_MESSAGE),
    ErrorKind.EXPIRED: (status.HTTP_401_UNAUTHORIZED, INVALID_CREDENTIAL_MESSAGE),
    ErrorKind.NOT_FOUND: (status.HTTP_401_UNAUTHORIZED, INVALID_CREDENTIAL_MESSAGE),
    ErrorKind.INVALID_CODE: (status.HTTP_401_UNAUTHORIZED, INVALID_CREDENTIAL_MESSAGE),
    ErrorKind.RATE_LIMITED: (
        status.HTTP_429_TOO_MANY_REQUESTS,
        "Too many requests. Please try again later.",
    ),
    ErrorKind.INVALID_INPUT: (status.HTTP_400_BAD_REQUEST, "Invalid request"),
    ErrorKind.INTERNAL_ERROR: (
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Service temporarily unavailable. Please try again.",
    ),
}

_AUTH_ERRORS: dict[type[AuthError], int] = {
    InvalidCredentialsError: status.HTTP_401_UNAUTHORIZED,
    TwoFactorRequiredError: status.HTTP_401_UNAUTHORIZED,
    EmailNotVerifiedError: status.HTTP_403_FORBIDDEN,
    AccountExistsError: status.HTTP_400_BAD_REQUEST,
    WeakPasswordError: status.HTTP_400_BAD_REQUEST,
    AlreadyVerifiedError: status.HTTP_400_BAD_REQUEST,
    SuperAdminExistsError: status.HTTP_400_BAD_REQUEST,
    UserNotFoundError: status.HTTP_401_UNAUTHORIZED,
}


def token_error_response(kind: ErrorKind) -> JSONResponse:
    status_code, message = _TOKEN_ERRORS[kind]
    return JSONResponse(status_code=status_code, content={"detail": message})


def token_error_handler(_request: Request, exc: TokenServiceError) -> JSONResponse:
    if exc.kind is ErrorKind.INTERNAL_ERROR:
        logger.error("Token subsystem failure: %s", exc)
    return token_error_response(exc.kind)


def auth_error_handler(_request: Request, exc: AuthError) -> JSONResponse:
    status_code = _AUTH_ERRORS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    message = str(exc)
    if isinstance(exc, UserNotFoundError):
        message = INVALID_CREDENTIAL_MESSAGE
    return JSONResponse(status_code=status_code, content={"detail": message})


def delivery_error_handler(_request: Request, exc: DeliveryError) -> JSONResponse:
    logger.error("Delivery failure: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Unable to deliver the code right now. Please try again later."},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TokenServiceError, token_error_handler)
    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(DeliveryError, delivery_error_handler)
