from datetime import timedelta

import httpx
import pytest
from fastapi import HTTPException

from app.auth.service.auth_service import AuthService
from app.core.logger import get_logger
from pkg.auth_token_client.client import TokenClient, TokenPayload
from pkg.supabase_rest.client import SupabaseRestClient

SECRET = "test-jwt-secret-with-at-least-32-bytes!!"
logger = get_logger("test-auth")


def test_token_round_trip():
    client = TokenClient(SECRET)
    token = client.create_access_token(TokenPayload(user_id="user-1", email="u@example.com"))

    payload = client.decode_token(token)

    assert payload["sub"] == "user-1"
    assert payload["aud"] == "authenticated"
    assert payload["email"] == "u@example.com"


def test_expired_and_foreign_tokens_are_rejected():
    client = TokenClient(SECRET, leeway_seconds=0)
    expired = client.create_access_token(TokenPayload(user_id="user-1"), expires_in=timedelta(seconds=-60))
    with pytest.raises(ValueError, match="expired"):
        client.decode_token(expired)

    foreign = TokenClient("another-secret-that-is-also-32-bytes-long").create_access_token(TokenPayload(user_id="x"))
    with pytest.raises(ValueError, match="Invalid"):
        client.decode_token(foreign)


async def test_local_verification():
    token_client = TokenClient(SECRET)
    service = AuthService(logger, token_client=token_client)

    user = await service.verify_token(token_client.create_access_token(TokenPayload(user_id="user-1")))

    assert user["user_id"] == "user-1"
    assert user["role"] == "authenticated"
    with pytest.raises(HTTPException) as exc_info:
        await service.verify_token("garbage")
    assert exc_info.value.status_code == 401


async def test_remote_verification():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/auth/v1/user"
        if request.headers.get("Authorization") == "Bearer good":
            return httpx.Response(200, json={"id": "user-9", "email": "nine@example.com", "role": "authenticated"})
        return httpx.Response(401, json={"message": "invalid JWT"})

    rest_client = SupabaseRestClient(logger, "http://test", "anon-key", transport=httpx.MockTransport(handler))
    service = AuthService(logger, rest_client=rest_client)

    user = await service.verify_token("good")
    assert user == {"user_id": "user-9", "email": "nine@example.com", "role": "authenticated"}

    with pytest.raises(HTTPException) as exc_info:
        await service.verify_token("bad")
    assert exc_info.value.status_code == 401
    await rest_client.close()


def test_auth_service_needs_a_backend():
    with pytest.raises(ValueError):
        AuthService(logger)
