"""Token store — durable credential records with atomic conditional writes.

Every method runs in its own transaction.  Mutations of an existing record
are compare-and-swap on its ``version`` column, so two concurrent requests
that read the same record can never both apply an update computed from
that read: the loser sees ``False`` and the caller decides what it means.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from auth_backend.models.token import Token, TokenKind, TokenPurpose
from auth_backend.tokens.errors import StoreUnavailableError
from auth_backend.tokens.signer import Clock, utcnow

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored instant is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class TokenStore:
    """Encapsulates all database access for token records."""

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], clock: Clock = utcnow
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session, session.begin():
                yield session
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Credential store operation failed")
            raise StoreUnavailableError("Credential store unavailable") from exc

    @staticmethod
    def _normalize(token: Token | None) -> Token | None:
        if token is not None:
            token.expires_at = as_utc(token.expires_at)
            token.created_at = as_utc(token.created_at)
            token.updated_at = as_utc(token.updated_at)
        return token

    # ── Creation ─────────────────────────────────────────

    async def create_session(
        self, subject_id: str, purpose: TokenPurpose, digest: str, expires_at: datetime
    ) -> Token:
        """Persist a session record holding the credential *digest*."""
        now = self._clock()
        token = Token(
            subject_id=subject_id,
            value=digest,
            purpose=purpose.value,
            kind=TokenKind.SESSION.value,
            expires_at=expires_at,
            revoked=False,
            version=1,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._transaction() as session:
                session.add(token)
        except IntegrityError as exc:
            raise StoreUnavailableError("Unable to persist session record") from exc
        return self._normalize(token)

    async def create_one_time_code(
        self,
        subject_id: str,
        purpose: TokenPurpose,
        code_hash: str,
        expires_at: datetime,
        cooldown_minutes: int,
    ) -> Token | None:
        """Insert the first code record for (*subject_id*, *purpose*).

        Returns ``None`` when a record for the pair already exists, i.e. a
        concurrent issuance won the race.
        """
        now = self._clock()
        token = Token(
            subject_id=subject_id,
            value=code_hash,
            purpose=purpose.value,
            kind=TokenKind.ONE_TIME_CODE.value,
            expires_at=expires_at,
            revoked=False,
            request_count=1,
            cooldown_minutes=cooldown_minutes,
            version=1,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self._transaction() as session:
                session.add(token)
        except IntegrityError:
            logger.info(
                "Concurrent code issuance for subject %s (%s)", subject_id, purpose.value
            )
            return None
        return self._normalize(token)

    # ── Lookups ──────────────────────────────────────────

    async def get(self, token_id: str) -> Token | None:
        async with self._transaction() as session:
            token = await session.get(Token, token_id)
        return self._normalize(token)

    async def find_one_time_code(
        self, subject_id: str, purpose: TokenPurpose
    ) -> Token | None:
        """Return the code record for the pair, expired or not."""
        stmt = select(Token).where(
            Token.subject_id == subject_id,
            Token.purpose == purpose.value,
            Token.kind == TokenKind.ONE_TIME_CODE.value,
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            token = result.scalar_one_or_none()
        return self._normalize(token)

    async def find_session(self, digest: str, purpose: TokenPurpose) -> Token | None:
        stmt = select(Token).where(
            Token.value == digest,
            Token.purpose == purpose.value,
            Token.kind == TokenKind.SESSION.value,
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            token = result.scalars().first()
        return self._normalize(token)

    # ── Conditional updates ──────────────────────────────

    async def replace_one_time_code(
        self,
        token_id: str,
        expected_version: int,
        *,
        code_hash: str,
        expires_at: datetime,
        request_count: int,
        cooldown_minutes: int,
        new_window: bool = False,
    ) -> bool:
        """Swap in a fresh code and counters if the record is unchanged.

        ``new_window`` restarts the rate-limit window by moving
        ``created_at`` to now.
        """
        now = self._clock()
        values = {
            "value": code_hash,
            "expires_at": expires_at,
            "request_count": request_count,
            "cooldown_minutes": cooldown_minutes,
            "updated_at": now,
            "version": Token.version + 1,
        }
        if new_window:
            values["created_at"] = now
        stmt = (
            update(Token)
            .where(Token.id == token_id, Token.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            rowcount = result.rowcount
        return rowcount == 1

    async def escalate_cooldown(
        self, token_id: str, expected_version: int, cooldown_minutes: int
    ) -> bool:
        """Raise the record's cooldown, stamping ``updated_at`` as its start."""
        stmt = (
            update(Token)
            .where(Token.id == token_id, Token.version == expected_version)
            .values(
                cooldown_minutes=cooldown_minutes,
                updated_at=self._clock(),
                version=Token.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            rowcount = result.rowcount
        return rowcount == 1

    async def revoke_sessions(self, subject_id: str) -> int:
        """Flag every live refresh record of *subject_id* as revoked."""
        stmt = (
            update(Token)
            .where(
                Token.subject_id == subject_id,
                Token.purpose == TokenPurpose.REFRESH.value,
                Token.revoked.is_(False),
            )
            .values(revoked=True, updated_at=self._clock(), version=Token.version + 1)
            .execution_options(synchronize_session=False)
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            rowcount = result.rowcount
        return rowcount

    # ── Deletion ─────────────────────────────────────────

    async def delete(self, token_id: str, expected_version: int | None = None) -> bool:
        """Delete a record, optionally only if it is still at *expected_version*."""
        stmt = delete(Token).where(Token.id == token_id)
        if expected_version is not None:
            stmt = stmt.where(Token.version == expected_version)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            rowcount = result.rowcount
        return rowcount == 1

    async def delete_session(self, digest: str, purpose: TokenPurpose) -> bool:
        stmt = delete(Token).where(
            Token.value == digest,
            Token.purpose == purpose.value,
            Token.kind == TokenKind.SESSION.value,
        )
        async with self._transaction() as session:
            result = await session.execute(stmt)
            rowcount = result.rowcount
        return rowcount > 0

    async def delete_one_time_codes(
        self, subject_id: str, purpose: TokenPurpose | None = None
    ) -> int:
        stmt = delete(Token).where(
            Token.subject_id == subject_id,
            Token.kind == TokenKind.ONE_TIME_CODE.value,
        )
        if purpose is not None:
            stmt = stmt.where(Token.purpose == purpose.value)
        async with self._transaction() as session:
            result = await session.execute(stmt)
            rowcount = result.rowcount
        return rowcount
