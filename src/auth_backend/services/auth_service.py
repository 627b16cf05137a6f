"""Auth service — registration, login, verification and 2FA flows.

Orchestrates the user repository, the token manager/verifier and the
delivery channels.  Token failures surface as ``TokenServiceError`` with
their kind; account-level failures raise the ``AuthError`` family below.
The HTTP layer decides how each maps to a response.
"""

from __future__ import annotations

import hmac
import logging
import re
from dataclasses import dataclass

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth_backend.config import Settings
from auth_backend.database.repository import UserRepository
from auth_backend.models.token import TokenPurpose
from auth_backend.models.user import ROLE_SUPER_ADMIN, ROLE_USER, User
from auth_backend.services.base import BaseDelivery, DeliveryError, Message
from auth_backend.tokens.errors import ErrorKind, TokenServiceError
from auth_backend.tokens.manager import SessionPair, TokenManager
from auth_backend.tokens.verifier import Verifier

logger = logging.getLogger(__name__)

# bcrypt cost factor for account passwords
PASSWORD_HASH_ROUNDS = 12
MIN_PASSWORD_LENGTH = 6
# bcrypt rejects input longer than this
MAX_PASSWORD_BYTES = 72

# Pre-computed cost-12 hash, checked when the email is unknown so both
# paths cost the same
_DUMMY_PASSWORD_HASH = "$2b$12$ZP2PVB8yI35X.mkRqcUPUuSzJA1CNRt4dZ7X3cyrfJu.2S3w.Qen2"

ACCOUNT_EXISTS_MESSAGE = (
    "An account with this email address already exists. "
    "Please log in or reset your password if you've forgotten it"
)


class AuthError(Exception):
    """Base authentication error."""


class InvalidCredentialsError(AuthError):
    """Unknown email or wrong password."""


class EmailNotVerifiedError(AuthError):
    """Login attempted before the email address was confirmed."""


class TwoFactorRequiredError(AuthError):
    """2FA is enabled and no code was supplied."""


class AccountExistsError(AuthError):
    """Registration with an email that is already taken."""


class WeakPasswordError(AuthError):
    """Password does not meet the policy."""


class UserNotFoundError(AuthError):
    """No active account matched the lookup."""


class AlreadyVerifiedError(AuthError):
    """The email address was confirmed earlier."""


class SuperAdminExistsError(AuthError):
    """Only one super admin may be bootstrapped."""


@dataclass
class AuthResult:
    """Value object returned by register and login."""

    user: User
    tokens: SessionPair


def validate_password(password: str) -> None:
    """Six characters to 72 bytes, with at least one letter and one digit."""
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise WeakPasswordError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    if len(password.encode()) > MAX_PASSWORD_BYTES:
        raise WeakPasswordError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")
    if not re.search(r"\d", password) or not re.search(r"[a-zA-Z]", password):
        raise WeakPasswordError("Password must contain at least one letter and one number")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=PASSWORD_HASH_ROUNDS)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        return False


class AuthService:
    """Account flows built on top of the token subsystem.

    One instance per request: it wraps the request's database session.
    The token manager, verifier and delivery channels are process-scoped
    and injected.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        tokens: TokenManager,
        verifier: Verifier,
        email: BaseDelivery,
        sms: BaseDelivery,
        settings: Settings,
    ) -> None:
        self._db = db_session
        self._users = UserRepository(db_session)
        self._tokens = tokens
        self._verifier = verifier
        self._email = email
        self._sms = sms
        self._settings = settings

    # ── Registration & login ─────────────────────────────

    async def register(
        self,
        name: str,
        email: str,
        password: str,
        phone: str | None = None,
        admin_secret: str | None = None,
    ) -> AuthResult:
        """Create an account, issue a session and send the verification code."""
        validate_password(password)

        if await self._users.is_email_taken(email):
            raise AccountExistsError(ACCOUNT_EXISTS_MESSAGE)

        role = ROLE_USER
        if admin_secret and self._settings.admin_secret and hmac.compare_digest(
            admin_secret.encode(), self._settings.admin_secret.encode()
        ):
            if await self._users.find_by_role(ROLE_SUPER_ADMIN) is not None:
                raise SuperAdminExistsError("A super admin already exists")
            role = ROLE_SUPER_ADMIN

        try:
            user = await self._users.create(
                name=name,
                email=email.strip().lower(),
                phone=phone,
                password_hash=hash_password(password),
                role=role,
            )
            await self._db.commit()
        except IntegrityError as exc:
            # A concurrent registration took the email first
            await self._db.rollback()
            raise AccountExistsError(ACCOUNT_EXISTS_MESSAGE) from exc
        logger.info("Registered user %s (role %s)", user.id, role)

        tokens = await self._tokens.issue_session_pair(user.id)

        await self._send_quietly(self._email, user.email, welcome_message(user.name, self._settings))
        await self._send_verification_code(user)
        return AuthResult(user=user, tokens=tokens)

    async def login(self, email: str, password: str, otp: str | None = None) -> AuthResult:
        """Check credentials (and the 2FA code when enabled); issue a session."""
        user = await self._users.find_by_email(email)
        if user is None:
            verify_password(password, _DUMMY_PASSWORD_HASH)
            raise InvalidCredentialsError("Incorrect email or password")
        if not verify_password(password, user.password_hash):
            raise InvalidCredentialsError("Incorrect email or password")

        if not user.is_email_verified:
            raise EmailNotVerifiedError("Email not verified")

        if user.two_fa_enabled:
            if not otp:
                raise TwoFactorRequiredError("2FA code is required")
            result = await self._verifier.verify_one_time_code(user.id, TokenPurpose.TWO_FA, otp)
            result.unwrap()

        tokens = await self._tokens.issue_session_pair(user.id)
        logger.info("User %s logged in", user.id)
        return AuthResult(user=user, tokens=tokens)

    async def refresh(self, refresh_token: str) -> SessionPair:
        """Rotate a refresh credential: the old one is consumed, a new pair issued."""
        result = await self._verifier.verify_session(refresh_token, TokenPurpose.REFRESH)
        payload = result.unwrap()

        user = await self._users.find_by_id(payload["sub"])
        if user is None:
            raise TokenServiceError(kind=ErrorKind.NOT_FOUND)

        # A concurrent refresh with the same credential loses here
        (await self._tokens.revoke_session(refresh_token)).unwrap()
        return await self._tokens.issue_session_pair(user.id)

    async def logout(self, refresh_token: str) -> None:
        result = await self._tokens.revoke_session(refresh_token)
        if not result.ok and result.error is not ErrorKind.NOT_FOUND:
            result.unwrap()

    # ── Email verification ───────────────────────────────

    async def send_email_verification(self, email: str) -> None:
        user = await self._require_user_by_email(email)
        if user.is_email_verified:
            raise AlreadyVerifiedError("Email already verified")
        await self._send_verification_code(user, quiet=False)

    async def verify_email(self, user_id: str, code: str) -> User:
        user = await self._require_user(user_id)
        if user.is_email_verified:
            raise AlreadyVerifiedError("Email already verified")

        result = await self._verifier.verify_one_time_code(user.id, TokenPurpose.VERIFY_EMAIL, code)
        result.unwrap()

        user = await self._users.update_by_id(user.id, is_email_verified=True)
        await self._db.commit()
        logger.info("Email verified for user %s", user_id)
        return user

    # ── Password reset ───────────────────────────────────

    async def request_password_reset(self, email: str) -> None:
        user = await self._require_user_by_email(email)
        code = (await self._tokens.issue_one_time_code(user.id, TokenPurpose.RESET_PASSWORD)).unwrap()
        await self._email.deliver(user.email, password_reset_message(code, self._settings))

    async def reset_password(self, email: str, code: str, new_password: str) -> None:
        """Set a new password once the reset code checks out.

        Every outstanding refresh session is revoked afterwards.
        """
        validate_password(new_password)

        user = await self._users.find_by_email(email)
        if user is None:
            # Same outcome as an unknown code
            raise TokenServiceError(kind=ErrorKind.NOT_FOUND)

        result = await self._verifier.verify_one_time_code(user.id, TokenPurpose.RESET_PASSWORD, code)
        result.unwrap()

        await self._users.update_by_id(user.id, password_hash=hash_password(new_password))
        await self._db.commit()
        await self._tokens.revoke_all_sessions(user.id)
        logger.info("Password reset for user %s", user.id)

    # ── Two-factor authentication ────────────────────────

    async def request_two_fa_code(self, email: str) -> None:
        """Send a 2FA code by SMS, or by email when no phone is on file."""
        user = await self._require_user_by_email(email)
        code = (await self._tokens.issue_one_time_code(user.id, TokenPurpose.TWO_FA)).unwrap()
        message = two_fa_message(code, self._settings)
        if user.phone:
            await self._sms.deliver(user.phone, message)
        else:
            await self._email.deliver(user.email, message)

    async def enable_two_fa(self, user_id: str, code: str) -> User:
        return await self._set_two_fa(user_id, code, enabled=True)

    async def disable_two_fa(self, user_id: str, code: str) -> User:
        return await self._set_two_fa(user_id, code, enabled=False)

    # ── Private helpers ──────────────────────────────────

    async def _set_two_fa(self, user_id: str, code: str, *, enabled: bool) -> User:
        user = await self._require_user(user_id)
        result = await self._verifier.verify_one_time_code(user.id, TokenPurpose.TWO_FA, code)
        result.unwrap()

        user = await self._users.update_by_id(user.id, two_fa_enabled=enabled)
        await self._db.commit()
        logger.info("2FA %s for user %s", "enabled" if enabled else "disabled", user_id)
        return user

    async def _require_user(self, user_id: str) -> User:
        user = await self._users.find_by_id(user_id)
        if user is None:
            raise UserNotFoundError("User not found")
        return user

    async def _require_user_by_email(self, email: str) -> User:
        user = await self._users.find_by_email(email)
        if user is None:
            raise UserNotFoundError("User not found")
        return user

    async def _send_verification_code(self, user: User, quiet: bool = True) -> None:
        result = await self._tokens.issue_one_time_code(user.id, TokenPurpose.VERIFY_EMAIL)
        if not result.ok and quiet:
            logger.warning("Verification code for user %s not issued: %s", user.id, result.error.value)
            return
        message = email_verification_message(result.unwrap(), self._settings)
        if quiet:
            await self._send_quietly(self._email, user.email, message)
        else:
            await self._email.deliver(user.email, message)

    @staticmethod
    async def _send_quietly(channel: BaseDelivery, destination: str, message: Message) -> None:
        """Best-effort send for follow-up messages after a completed action."""
        try:
            await channel.deliver(destination, message)
        except DeliveryError:
            logger.exception("Follow-up %s to %s could not be delivered", channel.name, destination)


# ── Message bodies ───────────────────────────────────────


def welcome_message(name: str, settings: Settings) -> Message:
    return Message(
        subject=f"Welcome to {settings.app_name}",
        body=(
            f"Hello {name},\n\n"
            f"Welcome to {settings.app_name}! We're excited to have you on board.\n\n"
            "If you have any questions or need assistance, don't hesitate to "
            "reach out to our support team.\n\n"
            "Best regards,\n"
            f"The {settings.app_name} Team"
        ),
    )


def email_verification_message(code: str, settings: Settings) -> Message:
    return Message(
        subject="Confirm your email address",
        body=(
            "Dear user,\n\n"
            f"Your email verification code is: {code}\n"
            f"It expires in {settings.otp_ttl_minutes} minutes.\n\n"
            "If you did not create an account, please ignore this email."
        ),
    )


def password_reset_message(code: str, settings: Settings) -> Message:
    return Message(
        subject="Reset Password",
        body=(
            "Dear user,\n\n"
            f"Your password reset code is: {code}\n"
            f"It expires in {settings.otp_ttl_minutes} minutes.\n\n"
            "If you did not request a password reset, please ignore this email."
        ),
    )


def two_fa_message(code: str, settings: Settings) -> Message:
    return Message(
        subject=f"{settings.app_name} sign-in code",
        body=f"Your verification code is: {code}",
    )
