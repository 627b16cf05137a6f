"""Verifier — validates presented session credentials and one-time codes."""

from __future__ import annotations

import logging
from typing import Any

from auth_backend.database.token_store import TokenStore
from auth_backend.models.token import ONE_TIME_CODE_PURPOSES, SESSION_PURPOSES, TokenPurpose
from auth_backend.tokens.errors import (
    ErrorKind,
    ExpiredError,
    InvalidSignatureError,
    Result,
)
from auth_backend.tokens.manager import require_purpose, require_subject
from auth_backend.tokens.otp import check_code, credential_digest, is_well_formed
from auth_backend.tokens.signer import Clock, Signer, utcnow

logger = logging.getLogger(__name__)


class Verifier:
    """Checks credentials against signature rules and the token store.

    Session credentials:
        signature → expiry → purpose → [stored record → record expiry] → valid

    One-time codes:
        stored record → expiry → hash comparison → consumed (deleted) → valid

    Every failure is terminal for the attempt.  A code record is only ever
    deleted by a successful comparison, so a wrong guess leaves a still
    valid code usable.
    """

    def __init__(self, store: TokenStore, signer: Signer, clock: Clock = utcnow) -> None:
        self._store = store
        self._signer = signer
        self._clock = clock

    async def verify_session(
        self,
        credential: str,
        purpose: TokenPurpose | str,
        require_stored_record: bool | None = None,
    ) -> Result[dict[str, Any]]:
        """Validate a session credential issued for *purpose*.

        ``require_stored_record`` defaults to ``True`` for refresh
        credentials, whose record must still exist, be unrevoked and be
        unexpired; access credentials are verified standalone.
        """
        purpose = require_purpose(purpose, SESSION_PURPOSES)
        if not credential:
            return Result.failure(ErrorKind.INVALID_SIGNATURE)

        try:
            payload = self._signer.verify(credential)
        except (InvalidSignatureError, ExpiredError) as exc:
            logger.debug("Session credential rejected: %s", exc.kind.value)
            return Result.failure(exc.kind)

        if payload.get("type") != purpose.value:
            logger.info("Credential of type %r presented as %s", payload.get("type"), purpose.value)
            return Result.failure(ErrorKind.INVALID_SIGNATURE)

        if require_stored_record is None:
            require_stored_record = purpose is TokenPurpose.REFRESH
        if not require_stored_record:
            return Result.success(payload)

        record = await self._store.find_session(credential_digest(credential), purpose)
        if record is None or record.subject_id != payload["sub"]:
            return Result.failure(ErrorKind.NOT_FOUND)

        if record.revoked:
            logger.info("Revoked %s session presented for subject %s", purpose.value, record.subject_id)
            return Result.failure(ErrorKind.EXPIRED)

        if self._clock() >= record.expires_at:
            await self._store.delete(record.id)
            logger.info("Expired %s session removed for subject %s", purpose.value, record.subject_id)
            return Result.failure(ErrorKind.EXPIRED)

        return Result.success(payload)

    async def verify_one_time_code(
        self, subject_id: str, purpose: TokenPurpose | str, code: str
    ) -> Result[None]:
        """Check *code* for (*subject_id*, *purpose*) and consume it on success."""
        require_subject(subject_id)
        purpose = require_purpose(purpose, ONE_TIME_CODE_PURPOSES)

        record = await self._store.find_one_time_code(subject_id, purpose)
        if record is None:
            return Result.failure(ErrorKind.NOT_FOUND)

        if self._clock() >= record.expires_at:
            return Result.failure(ErrorKind.EXPIRED)

        if not isinstance(code, str) or not is_well_formed(code) or not check_code(code, record.value):
            logger.info("Incorrect %s code for subject %s", purpose.value, subject_id)
            return Result.failure(ErrorKind.INVALID_CODE)

        # Only the request that still sees this version gets to consume it
        consumed = await self._store.delete(record.id, expected_version=record.version)
        if not consumed:
            return Result.failure(ErrorKind.NOT_FOUND)

        logger.info("%s code consumed for subject %s", purpose.value, subject_id)
        return Result.success()
