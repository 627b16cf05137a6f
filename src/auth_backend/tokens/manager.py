"""Token lifecycle manager — mints, persists and invalidates credentials."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from auth_backend.database.token_store import TokenStore
from auth_backend.models.token import ONE_TIME_CODE_PURPOSES, TokenPurpose
from auth_backend.tokens.errors import ErrorKind, InvalidInputError, Result
from auth_backend.tokens.otp import credential_digest, generate_code, hash_code
from auth_backend.tokens.rate_limiter import RateLimiter, RateLimitPolicy
from auth_backend.tokens.signer import Clock, Signer, utcnow

logger = logging.getLogger(__name__)


def require_purpose(
    purpose: TokenPurpose | str, allowed: Iterable[TokenPurpose]
) -> TokenPurpose:
    """Coerce *purpose* to a member of *allowed* or raise ``InvalidInputError``."""
    try:
        parsed = TokenPurpose(purpose)
    except ValueError as exc:
        raise InvalidInputError(f"Unknown purpose: {purpose!r}") from exc
    if parsed not in allowed:
        raise InvalidInputError(f"Purpose {parsed.value} is not valid here")
    return parsed


def require_subject(subject_id: str) -> str:
    if not isinstance(subject_id, str) or not subject_id.strip():
        raise InvalidInputError("Subject id is required")
    return subject_id


@dataclass(frozen=True)
class IssuedCredential:
    value: str
    expires_at: datetime


@dataclass(frozen=True)
class SessionPair:
    access: IssuedCredential
    refresh: IssuedCredential


class TokenManager:
    """Bridges the signer and code generator with the token store.

    All collaborators are passed in; the manager holds no module-level
    state and is safe to share for the lifetime of the process.
    """

    def __init__(
        self,
        store: TokenStore,
        signer: Signer,
        rate_limiter: RateLimiter,
        *,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        otp_ttl: timedelta,
        otp_hash_rounds: int = 10,
        clock: Clock = utcnow,
    ) -> None:
        for name, ttl in (("access", access_ttl), ("refresh", refresh_ttl), ("otp", otp_ttl)):
            if ttl <= timedelta(0):
                raise InvalidInputError(f"{name} lifetime must be positive")
        self._store = store
        self._signer = signer
        self._rate_limiter = rate_limiter
        self._access_ttl = access_ttl
        self._refresh_ttl = refresh_ttl
        self._otp_ttl = otp_ttl
        self._otp_hash_rounds = otp_hash_rounds
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings, store: TokenStore, signer: Signer, clock: Clock = utcnow
    ) -> TokenManager:
        return cls(
            store,
            signer,
            RateLimiter(RateLimitPolicy.from_settings(settings)),
            access_ttl=timedelta(minutes=settings.access_ttl_minutes),
            refresh_ttl=timedelta(days=settings.refresh_ttl_days),
            otp_ttl=timedelta(minutes=settings.otp_ttl_minutes),
            otp_hash_rounds=settings.otp_hash_rounds,
            clock=clock,
        )

    # ── Session credentials ──────────────────────────────

    async def issue_session_pair(self, subject_id: str) -> SessionPair:
        """Mint an access credential and a persisted refresh credential.

        Raises ``StoreUnavailableError`` if the refresh record cannot be
        written; the already-signed access credential is then discarded.
        """
        require_subject(subject_id)
        # Whole seconds so the returned instant matches the signed ``exp``
        now = self._clock().replace(microsecond=0)

        access_expires = now + self._access_ttl
        access = self._signer.issue(subject_id, TokenPurpose.ACCESS, access_expires)

        refresh_expires = now + self._refresh_ttl
        refresh = self._signer.issue(subject_id, TokenPurpose.REFRESH, refresh_expires)

        await self._store.create_session(
            subject_id, TokenPurpose.REFRESH, credential_digest(refresh), refresh_expires
        )
        logger.info("Issued session pair for subject %s", subject_id)
        return SessionPair(
            access=IssuedCredential(value=access, expires_at=access_expires),
            refresh=IssuedCredential(value=refresh, expires_at=refresh_expires),
        )

    async def revoke_session(self, refresh_value: str) -> Result[None]:
        """Delete the record behind a refresh credential.

        ``NotFound`` when nothing matched; idempotent callers treat that as
        success.
        """
        if not refresh_value:
            raise InvalidInputError("Refresh credential is required")
        deleted = await self._store.delete_session(
            credential_digest(refresh_value), TokenPurpose.REFRESH
        )
        if not deleted:
            return Result.failure(ErrorKind.NOT_FOUND)
        logger.info("Refresh session revoked")
        return Result.success()

    async def revoke_all_sessions(self, subject_id: str) -> int:
        """Flag every outstanding refresh session of *subject_id* as revoked."""
        require_subject(subject_id)
        count = await self._store.revoke_sessions(subject_id)
        logger.info("Revoked %d session(s) for subject %s", count, subject_id)
        return count

    # ── One-time codes ───────────────────────────────────

    async def issue_one_time_code(
        self, subject_id: str, purpose: TokenPurpose | str
    ) -> Result[str]:
        """Issue a code for (*subject_id*, *purpose*) if the rate limiter allows.

        On success the result carries the plaintext code for delivery; only
        its hash is stored.  A lost race against a concurrent issuance for
        the same pair is reported as ``RateLimited``.
        """
        require_subject(subject_id)
        purpose = require_purpose(purpose, ONE_TIME_CODE_PURPOSES)

        record = await self._store.find_one_time_code(subject_id, purpose)
        now = self._clock()
        decision = self._rate_limiter.evaluate(record, now)

        if not decision.allowed:
            if decision.escalate and record is not None:
                await self._store.escalate_cooldown(
                    record.id, record.version, decision.cooldown_minutes
                )
            return Result.failure(ErrorKind.RATE_LIMITED)

        code = generate_code()
        code_hash = hash_code(code, rounds=self._otp_hash_rounds)
        expires_at = now + self._otp_ttl

        if record is None:
            created = await self._store.create_one_time_code(
                subject_id, purpose, code_hash, expires_at, decision.cooldown_minutes
            )
            if created is None:
                return Result.failure(ErrorKind.RATE_LIMITED)
        else:
            swapped = await self._store.replace_one_time_code(
                record.id,
                record.version,
                code_hash=code_hash,
                expires_at=expires_at,
                request_count=decision.request_count,
                cooldown_minutes=decision.cooldown_minutes,
                new_window=decision.new_window,
            )
            if not swapped:
                logger.info(
                    "Code record for subject %s (%s) changed underneath; denying",
                    subject_id,
                    purpose.value,
                )
                return Result.failure(ErrorKind.RATE_LIMITED)

        logger.info(
            "Issued %s code for subject %s (request %d)",
            purpose.value,
            subject_id,
            decision.request_count,
        )
        return Result.success(code)

    async def delete_one_time_codes(
        self, subject_id: str, purpose: TokenPurpose | str | None = None
    ) -> int:
        """Explicitly invalidate outstanding codes of *subject_id*."""
        require_subject(subject_id)
        if purpose is not None:
            purpose = require_purpose(purpose, ONE_TIME_CODE_PURPOSES)
        return await self._store.delete_one_time_codes(subject_id, purpose)
