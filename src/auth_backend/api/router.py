"""Auth API router — REST surface over the account and token flows.

Endpoints
---------
POST  /v1/auth/register                 → create account, session pair
POST  /v1/auth/login                    → session pair (2FA code when enabled)
POST  /v1/auth/refresh                  → rotate refresh credential
POST  /v1/auth/logout                   → revoke refresh credential
POST  /v1/auth/send-verification-email  → email a verification code
PATCH /v1/auth/verify-email             → confirm email (authenticated)
POST  /v1/auth/reset-password           → email a reset code
PATCH /v1/auth/update-password          → set new password with reset code
POST  /v1/auth/request-otp              → send a 2FA code
PATCH /v1/auth/enable-2fa               → enable 2FA (authenticated)
PATCH /v1/auth/disable-2fa              → disable 2FA (authenticated)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr, Field

from auth_backend.models.token import TokenPurpose
from auth_backend.models.user import User
from auth_backend.services.auth_service import (
    AlreadyVerifiedError,
    AuthService,
    UserNotFoundError,
)
from auth_backend.services.base import DeliveryError
from auth_backend.tokens.errors import ErrorKind, TokenServiceError
from auth_backend.tokens.manager import SessionPair

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])

_bearer = HTTPBearer(auto_error=False)

GENERIC_CODE_SENT = "If an account exists for this email, a code has been sent."


# ── Response / request models ────────────────────────────

class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    email: EmailStr
    password: str = Field(max_length=128)
    phone: str | None = Field(default=None, max_length=32)
    admin_secret: str | None = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    otp: str | None = None


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class EmailRequest(BaseModel):
    email: EmailStr


class CodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=16)


class UpdatePasswordRequest(BaseModel):
    email: EmailStr
    code: str = Field(min_length=1, max_length=16)
    new_password: str = Field(max_length=128)


class CredentialOut(BaseModel):
    token: str
    expires: datetime


class TokensOut(BaseModel):
    access: CredentialOut
    refresh: CredentialOut

    @classmethod
    def from_pair(cls, pair: SessionPair) -> TokensOut:
        return cls(
            access=CredentialOut(token=pair.access.value, expires=pair.access.expires_at),
            refresh=CredentialOut(token=pair.refresh.value, expires=pair.refresh.expires_at),
        )


class UserOut(BaseModel):
    id: str
    name: str
    email: str
    role: str
    is_email_verified: bool
    two_fa_enabled: bool

    @classmethod
    def from_user(cls, user: User) -> UserOut:
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            is_email_verified=bool(user.is_email_verified),
            two_fa_enabled=bool(user.two_fa_enabled),
        )


class AuthOut(BaseModel):
    user: UserOut
    tokens: TokensOut


class MessageOut(BaseModel):
    message: str


# ── Dependencies ─────────────────────────────────────────

async def get_auth_service(request: Request) -> AsyncGenerator[AuthService, None]:
    """Build a per-request ``AuthService`` from the app's shared components."""
    state = request.app.state
    async with state.session_factory() as session:
        yield AuthService(
            db_session=session,
            tokens=state.token_manager,
            verifier=state.verifier,
            email=state.email_service,
            sms=state.sms_service,
            settings=state.settings,
        )


async def get_current_user_id(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> str:
    """Resolve the subject of a valid access credential."""
    if credentials is None:
        raise TokenServiceError(kind=ErrorKind.INVALID_SIGNATURE)
    result = await request.app.state.verifier.verify_session(
        credentials.credentials, TokenPurpose.ACCESS
    )
    return result.unwrap()["sub"]


# ── Endpoints ────────────────────────────────────────────

@router.post("/register", response_model=AuthOut, status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    result = await auth.register(
        name=body.name,
        email=body.email,
        password=body.password,
        phone=body.phone,
        admin_secret=body.admin_secret,
    )
    return AuthOut(user=UserOut.from_user(result.user), tokens=TokensOut.from_pair(result.tokens))


@router.post("/login", response_model=AuthOut)
async def login(body: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    result = await auth.login(body.email, body.password, body.otp)
    return AuthOut(user=UserOut.from_user(result.user), tokens=TokensOut.from_pair(result.tokens))


@router.post("/refresh", response_model=TokensOut)
async def refresh(body: RefreshRequest, auth: AuthService = Depends(get_auth_service)):
    pair = await auth.refresh(body.refresh_token)
    return TokensOut.from_pair(pair)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(body: RefreshRequest, auth: AuthService = Depends(get_auth_service)) -> Response:
    await auth.logout(body.refresh_token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@asynccontextmanager
async def _same_answer_for_every_email(action: str) -> AsyncIterator[None]:
    """Swallow the outcomes that would tell a known email from an unknown one."""
    try:
        yield
    except (UserNotFoundError, AlreadyVerifiedError) as exc:
        logger.info("%s skipped: %s", action, type(exc).__name__)
    except TokenServiceError as exc:
        if exc.kind is not ErrorKind.RATE_LIMITED:
            raise
        logger.info("%s rate limited", action)
    except DeliveryError:
        logger.exception("%s: code could not be delivered", action)


@router.post("/send-verification-email", response_model=MessageOut)
async def send_verification_email(
    body: EmailRequest, auth: AuthService = Depends(get_auth_service)
):
    async with _same_answer_for_every_email("Verification email"):
        await auth.send_email_verification(body.email)
    return MessageOut(message=GENERIC_CODE_SENT)


@router.patch("/verify-email", response_model=UserOut)
async def verify_email(
    body: CodeRequest,
    user_id: str = Depends(get_current_user_id),
    auth: AuthService = Depends(get_auth_service),
):
    user = await auth.verify_email(user_id, body.code)
    return UserOut.from_user(user)


@router.post("/reset-password", response_model=MessageOut)
async def reset_password(body: EmailRequest, auth: AuthService = Depends(get_auth_service)):
    async with _same_answer_for_every_email("Password reset"):
        await auth.request_password_reset(body.email)
    return MessageOut(message=GENERIC_CODE_SENT)


@router.patch("/update-password", response_model=MessageOut)
async def update_password(
    body: UpdatePasswordRequest, auth: AuthService = Depends(get_auth_service)
):
    await auth.reset_password(body.email, body.code, body.new_password)
    return MessageOut(message="Password updated successfully")


@router.post("/request-otp", response_model=MessageOut)
async def request_otp(body: EmailRequest, auth: AuthService = Depends(get_auth_service)):
    async with _same_answer_for_every_email("2FA code request"):
        await auth.request_two_fa_code(body.email)
    return MessageOut(message=GENERIC_CODE_SENT)


@router.patch("/enable-2fa", response_model=UserOut)
async def enable_two_fa(
    body: CodeRequest,
    user_id: str = Depends(get_current_user_id),
    auth: AuthService = Depends(get_auth_service),
):
    user = await auth.enable_two_fa(user_id, body.code)
    return UserOut.from_user(user)


@router.patch("/disable-2fa", response_model=UserOut)
async def disable_two_fa(
    body: CodeRequest,
    user_id: str = Depends(get_current_user_id),
    auth: AuthService = Depends(get_auth_service),
):
    user = await auth.disable_two_fa(user_id, body.code)
    return UserOut.from_user(user)
