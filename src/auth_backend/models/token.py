"""SQLAlchemy Token model and the closed purpose/kind enumerations."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from auth_backend.models.user import Base, new_id


class TokenPurpose(str, enum.Enum):
    """What a credential may be used for. Exactly one per record."""

    ACCESS = "access"
    REFRESH = "refresh"
    RESET_PASSWORD = "resetPassword"
    VERIFY_EMAIL = "verifyEmail"
    TWO_FA = "twoFa"

    @property
    def kind(self) -> TokenKind:
        if self in SESSION_PURPOSES:
            return TokenKind.SESSION
        return TokenKind.ONE_TIME_CODE


class TokenKind(str, enum.Enum):
    """Selects the validation algorithm for a record."""

    SESSION = "session"
    ONE_TIME_CODE = "one-time-code"


SESSION_PURPOSES = frozenset({TokenPurpose.ACCESS, TokenPurpose.REFRESH})
ONE_TIME_CODE_PURPOSES = frozenset(
    {TokenPurpose.RESET_PASSWORD, TokenPurpose.VERIFY_EMAIL, TokenPurpose.TWO_FA}
)


class Token(Base):
    """A persisted credential.

    Refresh sessions store the SHA-256 digest of the signed credential;
    one-time codes store a bcrypt hash. Plaintext never reaches this table.
    Timestamps are written by ``TokenStore`` from its clock, and ``version``
    is bumped on every write so updates can be applied compare-and-swap.
    """

    __tablename__ = "tokens"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    value: Mapped[str] = mapped_column(String(128), nullable=False)
    purpose: Mapped[str] = mapped_column(String(32), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    request_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cooldown_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_tokens_value", "value"),
        Index("ix_tokens_subject_purpose", "subject_id", "purpose"),
        # At most one one-time code per (subject, purpose)
        Index(
            "uq_tokens_one_time_code",
            "subject_id",
            "purpose",
            unique=True,
            sqlite_where=text("kind = 'one-time-code'"),
            postgresql_where=text("kind = 'one-time-code'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Token id={self.id} subject={self.subject_id!r} "
            f"purpose={self.purpose} kind={self.kind}>"
        )
