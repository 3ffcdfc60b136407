import httpx
import pytest

from app.assistant.service.model_registry import ModelRegistry
from app.core.errors import DecodeError, HttpStatusError, NetworkError
from app.core.logger import get_logger
from pkg.supabase_rest.client import SupabaseRestClient

ROWS = [
    {"id": "b", "display_name": "GPT-4o mini", "model_identifier": "gpt-4o-mini",
     "base_url": "https://api.openai.com/v1", "is_active": True, "ordering": 2},
    {"id": "a", "display_name": "DeepSeek", "model_identifier": "deepseek-chat",
     "base_url": "https://api.deepseek.com/v1", "is_active": True, "ordering": 1},
    {"id": "c", "display_name": "Broken", "model_identifier": "broken",
     "base_url": "not a url", "is_active": True, "ordering": 0},
    {"id": "d", "display_name": "Claude", "model_identifier": "claude",
     "base_url": "https://api.anthropic.com/v1", "is_active": True, "ordering": None},
]


def _registry(handler) -> ModelRegistry:
    rest_client = SupabaseRestClient(
        get_logger("test-registry"), "http://test", "anon-key", transport=httpx.MockTransport(handler)
    )
    return ModelRegistry(rest_client)


async def test_lists_active_models_in_order():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["auth"] = request.headers.get("Authorization")
        seen["apikey"] = request.headers.get("apikey")
        return httpx.Response(200, json=ROWS)

    options = await _registry(handler).list_active_models(access_token="tok")

    assert [o.model_identifier for o in options] == ["deepseek-chat", "gpt-4o-mini", "claude"]
    assert options[2].ordering == 100
    assert seen["path"] == "/rest/v1/ai_model_configs"
    assert seen["params"]["is_active"] == "eq.true"
    assert seen["params"]["order"] == "ordering.asc"
    assert seen["auth"] == "Bearer tok"
    assert seen["apikey"] == "anon-key"


async def test_http_error_is_mapped():
    registry = _registry(lambda request: httpx.Response(401, json={"message": "JWT expired"}))
    with pytest.raises(HttpStatusError) as exc_info:
        await registry.list_active_models()
    assert exc_info.value.status_code == 401


async def test_transport_error_is_mapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("name resolution failed", request=request)

    with pytest.raises(NetworkError):
        await _registry(handler).list_active_models()


async def test_unexpected_body_is_decode_error():
    with pytest.raises(DecodeError):
        await _registry(lambda request: httpx.Response(200, json={"rows": []})).list_active_models()
    with pytest.raises(DecodeError):
        await _registry(lambda request: httpx.Response(200, json=[{"id": "x", "base_url": "https://a.b"}])).list_active_models()
