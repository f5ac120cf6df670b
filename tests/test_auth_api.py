import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio

SIGNUP = {"name": "Meera", "email": "meera@example.com", "password": "secret123"}


async def _register(client: AsyncClient) -> dict:
    response = await client.post("/auth/register", json=SIGNUP)
    assert response.status_code == 201
    return response.json()


async def test_healthcheck(client: AsyncClient):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.headers["X-Request-ID"]


async def test_request_id_is_echoed(client: AsyncClient):
    response = await client.get("/", headers={"X-Request-ID": "abc123"})
    assert response.headers["X-Request-ID"] == "abc123"


async def test_full_signup_verify_login_flow(client: AsyncClient, mailer):
    body = await _register(client)
    assert body["success"] is True
    assert body["data"]["email"] == "meera@example.com"

    login = await client.post("/auth/login", json={"email": SIGNUP["email"], "password": SIGNUP["password"]})
    assert login.status_code == 403
    assert login.json()["error"] == "RequiresVerification"
    assert login.json()["data"]["requires_verification"] is True
    assert "token" not in login.json()["data"]

    code = mailer.last_code("meera@example.com")
    verified = await client.post("/auth/verify-otp", json={"email": SIGNUP["email"], "otp": code})
    assert verified.status_code == 200
    data = verified.json()["data"]
    assert data["user"]["is_verified"] is True
    assert data["token"]

    login = await client.post("/auth/login", json={"email": SIGNUP["email"], "password": SIGNUP["password"]})
    assert login.status_code == 200
    token = login.json()["data"]["token"]
    assert login.json()["data"]["user"]["email"] == "meera@example.com"

    me = await client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["data"]["name"] == "Meera"


async def test_send_otp_then_duplicate_send_is_throttled(client: AsyncClient):
    first = await client.post("/auth/send-otp", json={"email": "a@x.com", "name": "A"})
    assert first.status_code == 200
    assert first.json()["data"]["expires_in"] == 600
    assert first.json()["data"]["email_sent"] is True

    second = await client.post("/auth/send-otp", json={"email": "a@x.com"})
    assert second.status_code == 429
    body = second.json()
    assert body["success"] is False
    assert body["error"] == "RateLimited"
    assert body["data"]["expires_in"] == 600
    assert second.headers["Retry-After"] == "600"


async def test_resend_supersedes_original_code(client: AsyncClient, mailer):
    await client.post("/auth/send-otp", json={"email": "a@x.com"})
    original = mailer.last_code("a@x.com")

    resent = await client.post("/auth/resend-otp", json={"email": "a@x.com"})
    assert resent.status_code == 200
    fresh = mailer.last_code("a@x.com")

    if original != fresh:
        stale = await client.post("/auth/verify-otp", json={"email": "a@x.com", "otp": original})
        assert stale.status_code == 400
        assert stale.json()["error"] == "Mismatch"

    ok = await client.post("/auth/verify-otp", json={"email": "a@x.com", "otp": fresh})
    assert ok.status_code == 200
    assert ok.json()["data"] == {"email": "a@x.com", "token": None, "user": None}


async def test_second_verify_reports_already_consumed(client: AsyncClient, mailer):
    await client.post("/auth/send-otp", json={"email": "a@x.com"})
    code = mailer.last_code("a@x.com")

    assert (await client.post("/auth/verify-otp", json={"email": "a@x.com", "otp": code})).status_code == 200
    again = await client.post("/auth/verify-otp", json={"email": "a@x.com", "otp": code})
    assert again.status_code == 400
    assert again.json()["error"] == "AlreadyConsumed"


async def test_verify_after_expiry(client: AsyncClient, mailer, clock):
    await client.post("/auth/send-otp", json={"email": "a@x.com"})
    clock.advance(minutes=11)

    response = await client.post("/auth/verify-otp", json={"email": "a@x.com", "otp": mailer.last_code("a@x.com")})
    assert response.status_code == 400
    assert response.json()["error"] == "Expired"


async def test_verify_without_pending_code(client: AsyncClient):
    response = await client.post("/auth/verify-otp", json={"email": "a@x.com", "otp": "123456"})
    assert response.status_code == 404
    assert response.json()["error"] == "NotFound"


async def test_invalid_email_is_rejected(client: AsyncClient):
    response = await client.post("/auth/send-otp", json={"email": "nope"})
    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Invalid email format.", "error": "InvalidEmail"}


async def test_delivery_failure_is_a_warning(client: AsyncClient, mailer, store):
    mailer.fail = True
    response = await client.post("/auth/send-otp", json={"email": "a@x.com"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert "Warning" in body["message"]
    assert body["data"]["email_sent"] is False
    assert body["data"]["delivery_error"]
    assert await store.get("a@x.com") is not None


async def test_login_failures_share_one_response(client: AsyncClient, verified_user):
    unknown = await client.post("/auth/login", json={"email": "ghost@example.com", "password": "secret123"})
    wrong = await client.post("/auth/login", json={"email": verified_user.email, "password": "bad-password"})

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json()
    assert unknown.json()["error"] == "InvalidCredentials"


async def test_register_duplicate(client: AsyncClient):
    await _register(client)
    response = await client.post("/auth/register", json=SIGNUP)
    assert response.status_code == 400
    assert response.json()["error"] == "AccountExists"


async def test_me_requires_token(client: AsyncClient):
    missing = await client.get("/auth/me")
    assert missing.status_code == 401
    assert missing.json()["error"] == "InvalidToken"

    garbage = await client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert garbage.status_code == 401


async def test_logout(client: AsyncClient, auth_service, verified_user):
    result = await auth_service.login(verified_user.email, "secret123")
    response = await client.post("/auth/logout", headers={"Authorization": f"Bearer {result.token}"})
    assert response.status_code == 200
    assert response.json()["success"] is True


async def test_verify_rate_limit(client: AsyncClient, throttle):
    throttle.verify_limit = 2
    for _ in range(2):
        response = await client.post("/auth/verify-otp", json={"email": "a@x.com", "otp": "000000"})
        assert response.status_code == 404

    limited = await client.post("/auth/verify-otp", json={"email": "a@x.com", "otp": "000000"})
    assert limited.status_code == 429
    assert limited.json()["error"] == "RateLimited"
    assert int(limited.headers["Retry-After"]) >= 1


async def test_resend_cooldown(client: AsyncClient, throttle):
    throttle.resend_cooldown = 30
    assert (await client.post("/auth/resend-otp", json={"email": "a@x.com"})).status_code == 200

    again = await client.post("/auth/resend-otp", json={"email": "a@x.com"})
    assert again.status_code == 429
    assert again.json()["message"] == "Please wait before requesting another code."


async def test_send_welcome_uses_console_delivery(client: AsyncClient):
    response = await client.post("/auth/send-welcome", json={"email": "a@x.com", "name": "A"})
    assert response.status_code == 200
    assert response.json()["message"] == "Welcome email sent successfully."


async def test_unknown_route_uses_envelope(client: AsyncClient):
    response = await client.get("/auth/nope")
    assert response.status_code == 404
    assert response.json()["success"] is False
