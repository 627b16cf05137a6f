"""Tests for the AuthService account flows."""

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from auth_backend.models.token import TokenPurpose
from auth_backend.models.user import ROLE_SUPER_ADMIN, ROLE_USER
from auth_backend.services import auth_service
from auth_backend.services.auth_service import (
    AccountExistsError,
    AlreadyVerifiedError,
    AuthService,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    SuperAdminExistsError,
    TwoFactorRequiredError,
    UserNotFoundError,
    WeakPasswordError,
)
from auth_backend.tokens.errors import ErrorKind, TokenServiceError

PASSWORD = "secret123"
LONG_PASSWORD = "a1" * 40


@pytest_asyncio.fixture
async def auth(session_factory, manager, verifier, email, sms, app_settings):
    async with session_factory() as session:
        yield AuthService(
            db_session=session,
            tokens=manager,
            verifier=verifier,
            email=email,
            sms=sms,
            settings=app_settings,
        )


async def _verified_user(auth, email, address="alice@example.com", phone=None):
    result = await auth.register("Alice", address, PASSWORD, phone=phone)
    await auth.verify_email(result.user.id, email.last_code())
    return result.user


# ── Registration ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_register_sends_welcome_and_verification(auth, email, verifier):
    result = await auth.register("Alice", "Alice@Example.com", PASSWORD)

    assert result.user.email == "alice@example.com"
    assert result.user.role == ROLE_USER
    assert not result.user.is_email_verified
    access = await verifier.verify_session(result.tokens.access.value, TokenPurpose.ACCESS)
    assert access.value["sub"] == result.user.id

    subjects = [message.subject for _, message in email.sent]
    assert subjects == ["Welcome to Test Auth", "Confirm your email address"]
    assert {destination for destination, _ in email.sent} == {"alice@example.com"}


@pytest.mark.asyncio
async def test_register_survives_delivery_failure(auth, email):
    email.fail = True
    result = await auth.register("Alice", "alice@example.com", PASSWORD)
    assert result.user.id


@pytest.mark.asyncio
async def test_register_rejects_duplicate_email(auth):
    await auth.register("Alice", "alice@example.com", PASSWORD)
    with pytest.raises(AccountExistsError):
        await auth.register("Alice Again", "ALICE@example.com", PASSWORD)


@pytest.mark.asyncio
@pytest.mark.parametrize("password", ["", "a1", "lettersonly", "12345678"])
async def test_register_rejects_weak_password(auth, password):
    with pytest.raises(WeakPasswordError):
        await auth.register("Alice", "alice@example.com", password)


@pytest.mark.asyncio
async def test_admin_secret_bootstraps_one_super_admin(auth):
    result = await auth.register(
        "Root", "root@example.com", PASSWORD, admin_secret="bootstrap-secret"
    )
    assert result.user.role == ROLE_SUPER_ADMIN

    with pytest.raises(SuperAdminExistsError):
        await auth.register("Root 2", "root2@example.com", PASSWORD, admin_secret="bootstrap-secret")

    wrong = await auth.register("Bob", "bob@example.com", PASSWORD, admin_secret="guess")
    assert wrong.user.role == ROLE_USER


@pytest.mark.asyncio
async def test_register_rejects_password_over_72_bytes(auth):
    with pytest.raises(WeakPasswordError):
        await auth.register("Alice", "alice@example.com", LONG_PASSWORD)


@pytest.mark.asyncio
async def test_concurrent_duplicate_registration(auth, monkeypatch):
    await auth.register("Alice", "alice@example.com", PASSWORD)
    # The second request checked before the first one committed
    monkeypatch.setattr(auth._users, "is_email_taken", AsyncMock(return_value=False))

    with pytest.raises(AccountExistsError):
        await auth.register("Alice Again", "alice@example.com", PASSWORD)

    # The session is usable again after the rollback
    assert (await auth.register("Bob", "bob@example.com", PASSWORD)).user.id


# ── Email verification ───────────────────────────────────


@pytest.mark.asyncio
async def test_verify_email(auth, email):
    result = await auth.register("Alice", "alice@example.com", PASSWORD)

    user = await auth.verify_email(result.user.id, email.last_code())

    assert user.is_email_verified
    with pytest.raises(AlreadyVerifiedError):
        await auth.verify_email(result.user.id, "123456")


@pytest.mark.asyncio
async def test_verification_resend_is_rate_limited(auth, email, clock):
    await auth.register("Alice", "alice@example.com", PASSWORD)

    with pytest.raises(TokenServiceError) as exc_info:
        await auth.send_email_verification("alice@example.com")
    assert exc_info.value.kind is ErrorKind.RATE_LIMITED

    clock.advance(minutes=1)
    await auth.send_email_verification("alice@example.com")
    assert email.sent[-1][1].subject == "Confirm your email address"


@pytest.mark.asyncio
async def test_verify_email_wrong_code(auth, email):
    result = await auth.register("Alice", "alice@example.com", PASSWORD)
    code = email.last_code()
    wrong = f"{(int(code) + 1) % 10**6:06d}"

    with pytest.raises(TokenServiceError) as exc_info:
        await auth.verify_email(result.user.id, wrong)
    assert exc_info.value.kind is ErrorKind.INVALID_CODE


# ── Login, refresh, logout ───────────────────────────────


@pytest.mark.asyncio
async def test_login_requires_verified_email(auth):
    await auth.register("Alice", "alice@example.com", PASSWORD)
    with pytest.raises(EmailNotVerifiedError):
        await auth.login("alice@example.com", PASSWORD)


@pytest.mark.asyncio
async def test_login(auth, email):
    user = await _verified_user(auth, email)

    result = await auth.login("ALICE@example.com", PASSWORD)

    assert result.user.id == user.id
    assert result.tokens.access.value


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("address", "password"),
    [("alice@example.com", "wrong-pass1"), ("nobody@example.com", PASSWORD)],
)
async def test_login_bad_credentials(auth, email, address, password):
    await _verified_user(auth, email)
    with pytest.raises(InvalidCredentialsError):
        await auth.login(address, password)


@pytest.mark.asyncio
async def test_long_password_login_fails_alike_for_every_email(auth, email):
    await _verified_user(auth, email)

    for address in ("alice@example.com", "nobody@example.com"):
        with pytest.raises(InvalidCredentialsError):
            await auth.login(address, LONG_PASSWORD)


def test_dummy_hash_costs_the_same_as_real_hashes():
    assert auth_service._DUMMY_PASSWORD_HASH.startswith("$2b$12$")
    assert not auth_service.verify_password(PASSWORD, auth_service._DUMMY_PASSWORD_HASH)


@pytest.mark.asyncio
async def test_refresh_rotates_credential(auth, email):
    await _verified_user(auth, email)
    first = (await auth.login("alice@example.com", PASSWORD)).tokens

    second = await auth.refresh(first.refresh.value)
    assert second.refresh.value != first.refresh.value

    with pytest.raises(TokenServiceError) as exc_info:
        await auth.refresh(first.refresh.value)
    assert exc_info.value.kind is ErrorKind.NOT_FOUND

    assert (await auth.refresh(second.refresh.value)).access.value


@pytest.mark.asyncio
async def test_logout_is_idempotent(auth, email):
    await _verified_user(auth, email)
    tokens = (await auth.login("alice@example.com", PASSWORD)).tokens

    await auth.logout(tokens.refresh.value)
    await auth.logout(tokens.refresh.value)

    with pytest.raises(TokenServiceError):
        await auth.refresh(tokens.refresh.value)


# ── Password reset ───────────────────────────────────────


@pytest.mark.asyncio
async def test_password_reset_revokes_sessions(auth, email):
    await _verified_user(auth, email)
    old = (await auth.login("alice@example.com", PASSWORD)).tokens

    await auth.request_password_reset("alice@example.com")
    assert email.sent[-1][1].subject == "Reset Password"
    await auth.reset_password("alice@example.com", email.last_code(), "newpass456")

    with pytest.raises(TokenServiceError) as exc_info:
        await auth.refresh(old.refresh.value)
    assert exc_info.value.kind is ErrorKind.EXPIRED

    with pytest.raises(InvalidCredentialsError):
        await auth.login("alice@example.com", PASSWORD)
    assert (await auth.login("alice@example.com", "newpass456")).tokens


@pytest.mark.asyncio
async def test_password_reset_rejects_password_over_72_bytes(auth, email):
    await _verified_user(auth, email)
    await auth.request_password_reset("alice@example.com")

    with pytest.raises(WeakPasswordError):
        await auth.reset_password("alice@example.com", email.last_code(), LONG_PASSWORD)


@pytest.mark.asyncio
async def test_password_reset_unknown_email(auth):
    with pytest.raises(UserNotFoundError):
        await auth.request_password_reset("nobody@example.com")

    with pytest.raises(TokenServiceError) as exc_info:
        await auth.reset_password("nobody@example.com", "123456", "newpass456")
    assert exc_info.value.kind is ErrorKind.NOT_FOUND


@pytest.mark.asyncio
async def test_password_reset_code_single_use(auth, email):
    await _verified_user(auth, email)
    await auth.request_password_reset("alice@example.com")
    code = email.last_code()
    await auth.reset_password("alice@example.com", code, "newpass456")

    with pytest.raises(TokenServiceError) as exc_info:
        await auth.reset_password("alice@example.com", code, "another789")
    assert exc_info.value.kind is ErrorKind.NOT_FOUND


# ── Two-factor authentication ────────────────────────────


@pytest.mark.asyncio
async def test_two_fa_flow_by_email(auth, email, sms, clock):
    user = await _verified_user(auth, email)

    await auth.request_two_fa_code("alice@example.com")
    assert not sms.sent
    enabled = await auth.enable_two_fa(user.id, email.last_code())
    assert enabled.two_fa_enabled

    with pytest.raises(TwoFactorRequiredError):
        await auth.login("alice@example.com", PASSWORD)

    clock.advance(minutes=1)
    await auth.request_two_fa_code("alice@example.com")
    result = await auth.login("alice@example.com", PASSWORD, otp=email.last_code())
    assert result.user.id == user.id

    clock.advance(minutes=1)
    await auth.request_two_fa_code("alice@example.com")
    disabled = await auth.disable_two_fa(user.id, email.last_code())
    assert not disabled.two_fa_enabled


@pytest.mark.asyncio
async def test_two_fa_code_goes_by_sms_when_phone_on_file(auth, email, sms):
    user = await _verified_user(auth, email, phone="+15551234567")
    sent_before = len(email.sent)

    await auth.request_two_fa_code("alice@example.com")

    assert len(email.sent) == sent_before
    destination, _ = sms.sent[-1]
    assert destination == "+15551234567"
    assert (await auth.enable_two_fa(user.id, sms.last_code())).two_fa_enabled


@pytest.mark.asyncio
async def test_two_fa_login_wrong_code(auth, email):
    user = await _verified_user(auth, email)
    await auth.request_two_fa_code("alice@example.com")
    await auth.enable_two_fa(user.id, email.last_code())

    with pytest.raises(TokenServiceError) as exc_info:
        await auth.login("alice@example.com", PASSWORD, otp="000000")
    assert exc_info.value.kind is ErrorKind.NOT_FOUND
