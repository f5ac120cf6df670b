import pytest

from app.core.errors import (
    AccountExists,
    InvalidCredentials,
    OTPExpired,
    OTPStillActive,
    RequiresVerification,
)
from app.core.security import decode_access_token
from app.schemas.auth import UserCreate

pytestmark = pytest.mark.asyncio


def _signup(email: str = "ravi@example.com", password: str = "secret123") -> UserCreate:
    return UserCreate(name="Ravi", email=email, password=password)


async def test_register_creates_unverified_account_and_mails_code(auth_service, mailer, store):
    user, dispatch = await auth_service.register(_signup())

    assert user.is_verified is False
    assert user.role.value == "student"
    assert dispatch.delivery.success
    assert mailer.sent == [("ravi@example.com", dispatch.issued.code, "Ravi")]
    assert (await store.get("ravi@example.com")).code == dispatch.issued.code


async def test_register_rejects_duplicate_email(auth_service):
    await auth_service.register(_signup())
    with pytest.raises(AccountExists):
        await auth_service.register(_signup(email="RAVI@example.com"))


async def test_delivery_failure_does_not_roll_back_code(auth_service, mailer, store):
    mailer.fail = True
    dispatch = await auth_service.send_otp("ravi@example.com", "Ravi")

    assert dispatch.delivery.success is False
    assert dispatch.delivery.error
    entry = await store.get("ravi@example.com")
    assert entry.code == dispatch.issued.code

    result = await auth_service.verify_otp("ravi@example.com", dispatch.issued.code)
    assert result.user is None and result.token is None


async def test_send_otp_refuses_second_send_but_resend_goes_through(auth_service, mailer):
    await auth_service.send_otp("ravi@example.com")
    with pytest.raises(OTPStillActive):
        await auth_service.send_otp("ravi@example.com")

    await auth_service.resend_otp("ravi@example.com")
    assert len(mailer.sent) == 2


async def test_resend_uses_account_name_when_none_given(auth_service, mailer):
    await auth_service.register(_signup())
    await auth_service.resend_otp("ravi@example.com")

    assert mailer.sent[-1][2] == "Ravi"


async def test_verify_flips_flag_and_issues_session(auth_service, mailer):
    user, _ = await auth_service.register(_signup())

    result = await auth_service.verify_otp(user.email, mailer.last_code(user.email))

    assert result.user.is_verified and result.user.is_active
    assert decode_access_token(result.token).sub == str(user.id)
    assert result.user.last_login is not None


async def test_expired_code_leaves_account_unverified(auth_service, mailer, clock):
    user, _ = await auth_service.register(_signup())
    clock.advance(minutes=15)

    with pytest.raises(OTPExpired):
        await auth_service.verify_otp(user.email, mailer.last_code(user.email))

    refreshed = await auth_service.accounts.find_by_email(user.email)
    assert refreshed.is_verified is False


async def test_login_unverified_account_requires_verification(auth_service):
    await auth_service.register(_signup())

    with pytest.raises(RequiresVerification) as exc:
        await auth_service.login("ravi@example.com", "secret123")

    assert exc.value.data == {"requires_verification": True, "email": "ravi@example.com"}


async def test_login_failures_are_indistinguishable(auth_service, verified_user):
    with pytest.raises(InvalidCredentials) as unknown:
        await auth_service.login("ghost@example.com", "secret123")
    with pytest.raises(InvalidCredentials) as wrong_pw:
        await auth_service.login(verified_user.email, "not-the-password")

    assert unknown.value.to_dict() == wrong_pw.value.to_dict()
    assert unknown.value.status_code == wrong_pw.value.status_code == 401


async def test_wrong_password_on_unverified_account_is_invalid_credentials(auth_service):
    await auth_service.register(_signup())
    with pytest.raises(InvalidCredentials):
        await auth_service.login("ravi@example.com", "wrong-password")


async def test_login_verified_account_returns_token(auth_service, verified_user):
    result = await auth_service.login("Asha@Example.com", "secret123")

    assert result.user.id == verified_user.id
    assert decode_access_token(result.token).sub == str(verified_user.id)

    current = await auth_service.get_current_user(result.token)
    assert current.email == "asha@example.com"
