"""Error kinds and the result type shared by the token subsystem.

Expected business outcomes (a denied issuance, an unknown or wrong code,
an expired credential) travel back as a ``Result`` carrying an
``ErrorKind``.  Hard faults — a store that cannot be reached, a signing
failure, malformed input from the caller — raise ``TokenServiceError``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    INVALID_SIGNATURE = "InvalidSignature"
    EXPIRED = "Expired"
    NOT_FOUND = "NotFound"
    INVALID_CODE = "InvalidCode"
    RATE_LIMITED = "RateLimited"
    INVALID_INPUT = "InvalidInput"
    INTERNAL_ERROR = "InternalError"

    @property
    def retryable(self) -> bool:
        """Only transient store failures are worth retrying as-is."""
        return self is ErrorKind.INTERNAL_ERROR


class TokenServiceError(Exception):
    """Base error for the token subsystem; always carries its kind."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str = "", kind: ErrorKind | None = None) -> None:
        if kind is not None:
            self.kind = kind
        super().__init__(message or self.kind.value)


class InvalidSignatureError(TokenServiceError):
    """Credential was tampered with, malformed, or signed for another purpose."""

    kind = ErrorKind.INVALID_SIGNATURE


class ExpiredError(TokenServiceError):
    """Credential is at or past its expiry instant."""

    kind = ErrorKind.EXPIRED


class InvalidInputError(TokenServiceError):
    """Malformed purpose, kind or subject supplied by the caller."""

    kind = ErrorKind.INVALID_INPUT


class StoreUnavailableError(TokenServiceError):
    """The credential store failed; the attempt may be retried."""

    kind = ErrorKind.INTERNAL_ERROR


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a core operation: a value, or the kind of failure."""

    value: T | None = None
    error: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorKind) -> Result[T]:
        return cls(error=error)

    def unwrap(self) -> T | None:
        """Return the value or raise ``TokenServiceError`` with the failure kind."""
        if self.error is not None:
            raise TokenServiceError(kind=self.error)
        return self.value
