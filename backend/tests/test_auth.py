# tests/test_auth.py — Identity provider client and token verification
import json
import time
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from jose import jwt

from auth import GoTrueIdentityProvider, SessionRegistry, verify_access_token
from errors import AuthFailure
from tests.conftest import FakeIdentityProvider, JWT_SECRET


def _provider(handler) -> GoTrueIdentityProvider:
    return GoTrueIdentityProvider("https://auth.iti.tech/", "anon-key", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_sign_in_success():
    seen = {}

    def handler(request: httpx.Request):
        seen["request"] = request
        return httpx.Response(200, json={"access_token": "tok", "user": {"id": "user-1"}})

    session = await _provider(handler).sign_in("ana@iti.tech", "secret")

    assert session.user_id == "user-1"
    assert session.access_token == "tok"
    request = seen["request"]
    assert request.url.path == "/auth/v1/token"
    assert request.url.params["grant_type"] == "password"
    assert request.headers["apikey"] == "anon-key"
    assert json.loads(request.content) == {"email": "ana@iti.tech", "password": "secret"}


@pytest.mark.asyncio
async def test_sign_in_failure_message():
    def handler(request):
        return httpx.Response(400, json={"error": "invalid_grant", "error_description": "Invalid login credentials"})

    with pytest.raises(AuthFailure) as exc:
        await _provider(handler).sign_in("ana@iti.tech", "wrong")
    assert exc.value.message == "Invalid login credentials"


@pytest.mark.asyncio
async def test_update_password_sends_bearer():
    seen = {}

    def handler(request: httpx.Request):
        seen["request"] = request
        return httpx.Response(200, json={"id": "user-1"})

    await _provider(handler).update_password("tok", "nova-senha")
    assert seen["request"].method == "PUT"
    assert seen["request"].url.path == "/auth/v1/user"
    assert seen["request"].headers["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
async def test_unreachable_provider():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    with pytest.raises(AuthFailure) as exc:
        await _provider(handler).sign_out("tok")
    assert exc.value.message == "Serviço de autenticação indisponível."


def _token(secret=JWT_SECRET, **claims) -> str:
    payload = {"sub": "user-1", "aud": "authenticated", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def test_verify_access_token():
    assert verify_access_token(_token(), JWT_SECRET)["sub"] == "user-1"


def test_verify_rejects_bad_tokens():
    with pytest.raises(AuthFailure):
        verify_access_token(_token(secret="another-secret-another-secret-1234"), JWT_SECRET)
    with pytest.raises(AuthFailure) as exc:
        verify_access_token(_token(exp=datetime.now(timezone.utc) - timedelta(minutes=1)), JWT_SECRET)
    assert exc.value.message == "Sessão expirada. Faça login novamente."
    with pytest.raises(AuthFailure):
        verify_access_token(_token(sub=""), JWT_SECRET)
    with pytest.raises(AuthFailure):
        verify_access_token("not-a-jwt", JWT_SECRET)
    with pytest.raises(AuthFailure):
        verify_access_token(_token(), "")


@pytest.mark.asyncio
async def test_registry_keeps_one_session_per_user_until_expiry(store, settings, admin):
    registry = SessionRegistry(store, settings)
    cache = await registry.resolve(FakeIdentityProvider.issue_token(admin["id"], expires_in=60))
    assert await registry.resolve(FakeIdentityProvider.issue_token(admin["id"])) is cache

    # The later token (one hour) keeps the session alive
    assert registry.prune(now=time.time() + 120) == 0
    assert registry.prune(now=time.time() + 7200) == 1
    assert registry.get_stats() == {"sessions": 0}
    assert cache.current_user is None
    assert store.feed.get_stats()["handlers"] == 0
