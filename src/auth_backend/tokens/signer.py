"""Signer — produces and verifies JWT session credentials."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import jwt
from jwt.exceptions import PyJWTError

from auth_backend.models.token import SESSION_PURPOSES, TokenPurpose
from auth_backend.tokens.errors import (
    ExpiredError,
    InvalidInputError,
    InvalidSignatureError,
    TokenServiceError,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


class Signer:
    """Stateless JWT signer bound to one process-wide secret.

    Expiry is evaluated against the injected clock rather than by PyJWT so
    the boundary is inclusive: a credential presented at exactly its
    ``exp`` instant is expired.
    """

    def __init__(
        self, secret: str, algorithm: str = "HS256", clock: Clock = utcnow
    ) -> None:
        if not secret:
            raise InvalidInputError("Signing secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._clock = clock

    def issue(
        self, subject_id: str, purpose: TokenPurpose, expires_at: datetime
    ) -> str:
        """Sign a credential for *subject_id* valid until *expires_at*."""
        if not subject_id:
            raise InvalidInputError("Subject id is required")
        if purpose not in SESSION_PURPOSES:
            raise InvalidInputError(f"{purpose.value} is not a session purpose")

        payload: dict[str, Any] = {
            "sub": subject_id,
            "iat": int(self._clock().timestamp()),
            "exp": int(expires_at.timestamp()),
            "type": purpose.value,
        }
        if purpose is TokenPurpose.REFRESH:
            # Unique per issuance so every refresh credential has its own record
            payload["jti"] = secrets.token_hex(16)

        try:
            token = jwt.encode(payload, self._secret, algorithm=self._algorithm)
        except (PyJWTError, NotImplementedError, TypeError, ValueError) as exc:
            logger.exception("Failed to sign %s credential", purpose.value)
            raise TokenServiceError("Unable to sign credential") from exc
        return str(token)

    def verify(self, credential: str) -> dict[str, Any]:
        """Check signature then expiry; return the decoded payload."""
        try:
            payload = jwt.decode(
                credential,
                self._secret,
                algorithms=[self._algorithm],
                options={
                    "require": ["sub", "iat", "exp", "type"],
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                },
            )
        except PyJWTError as exc:
            raise InvalidSignatureError(f"Invalid credential: {exc}") from exc

        try:
            expires_at = datetime.fromtimestamp(int(payload["exp"]), UTC)
        except (TypeError, ValueError, OverflowError) as exc:
            raise InvalidSignatureError("Malformed expiry claim") from exc

        if self._clock() >= expires_at:
            raise ExpiredError("Credential has expired")
        return payload
