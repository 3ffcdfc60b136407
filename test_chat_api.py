"""HTTP-level tests for the ai-chat function, driven through the ASGI app in-process."""
import httpx
import pytest

from app.assistant.entity.message import ModelOption
from app.assistant.service.chat_service import AIChatService
from app.assistant.service.model_registry import ModelRegistry
from app.assistant.service.stream_controller import ChatController
from app.auth.service.auth_service import AuthService
from app.chat.entity.chat import UsageStatus
from app.chat.service.proxy_service import ChatProxyService
from app.core.errors import NetworkError
from app.core.logger import get_logger
from app.llm.service.stream_decoder import DONE_EVENT, format_event
from main import app
from pkg.auth_token_client.client import TokenClient, TokenPayload
from pkg.supabase_rest.client import SupabaseRestClient
from conftest import HELLO_CHUNKS, FakeProvider

logger = get_logger("test-chat-api")

JWT_SECRET = "test-jwt-secret-with-at-least-32-bytes!!"
ENDPOINT = "/functions/v1/ai-chat"


def _token(user_id: str = "user-1") -> str:
    return TokenClient(JWT_SECRET).create_access_token(TokenPayload(user_id=user_id, email="u@example.com"))


def _body(model_identifier: str = "gpt-4o-mini") -> dict:
    return {
        "model_identifier": model_identifier,
        "messages": [{"role": "user", "content": [{"type": "text", "text": "hi"}]}],
        "client_message_id": "req-1",
        "attachments": [],
    }


def _install(proxy_service: ChatProxyService) -> None:
    app.state.proxy_service = proxy_service
    app.state.auth_service = AuthService(logger, token_client=TokenClient(JWT_SECRET))
    app.state.postgres_conn = None
    app.state.startup_complete = True
    app.state.startup_error = None


@pytest.fixture
async def client(proxy_service):
    _install(proxy_service)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        yield client
    app.state.proxy_service = None
    app.state.auth_service = None
    app.state.startup_complete = False


async def test_options_returns_empty_200(client):
    response = await client.options(ENDPOINT)
    assert response.status_code == 200
    assert response.content == b""


async def test_cors_preflight(client):
    response = await client.options(
        ENDPOINT,
        headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "authorization, content-type",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "authorization" in response.headers["access-control-allow-headers"]
    assert response.content == b""


async def test_missing_bearer_is_401(client, usage_logs):
    response = await client.post(ENDPOINT, json=_body())
    assert response.status_code == 401
    assert response.json() == {"status": False, "message": "Unauthorized"}
    assert response.headers["www-authenticate"] == "Bearer"
    assert usage_logs.entries == []


async def test_invalid_token_is_401(client):
    response = await client.post(ENDPOINT, json=_body(), headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


async def test_unknown_model_is_404(client, usage_logs):
    response = await client.post(
        ENDPOINT, json=_body("retired-model"), headers={"Authorization": f"Bearer {_token()}"}
    )
    assert response.status_code == 404
    assert response.json()["message"] == "Model not available"
    assert usage_logs.entries == []


async def test_invalid_json_is_400(client):
    response = await client.post(
        ENDPOINT,
        content=b"{oops",
        headers={"Authorization": f"Bearer {_token()}", "Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json() == {"status": False, "message": "Invalid JSON"}


async def test_upstream_failure_is_500(model_configs, usage_logs):
    failing = FakeProvider([], fail_open=NetworkError("connection refused"))
    _install(
        ChatProxyService(
            model_configs, usage_logs, provider_factory=lambda k, u: failing, secret_resolver={"OPENAI_API_KEY": "x"}.get
        )
    )
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as client:
        response = await client.post(ENDPOINT, json=_body(), headers={"Authorization": f"Bearer {_token()}"})

    assert response.status_code == 500
    assert response.json()["message"] == "Upstream request failed"
    assert [e.status for e in usage_logs.entries] == [UsageStatus.ERROR]


async def test_stream_success(client, usage_logs):
    response = await client.post(ENDPOINT, json=_body(), headers={"Authorization": f"Bearer {_token()}"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-store"
    assert response.text == "".join(format_event(c) for c in HELLO_CHUNKS) + DONE_EVENT
    assert len(usage_logs.entries) == 1
    assert usage_logs.entries[0].status == UsageStatus.SUCCESS
    assert usage_logs.entries[0].user_id == "user-1"
    assert usage_logs.entries[0].total_tokens == 5


async def test_degraded_mode_returns_startup_error(client):
    app.state.startup_error = "Service credentials missing: SUPABASE_JWT_SECRET or SUPABASE_URL/SUPABASE_ANON_KEY"
    try:
        response = await client.post(ENDPOINT, json=_body(), headers={"Authorization": f"Bearer {_token()}"})
        health = await client.get("/health")
    finally:
        app.state.startup_error = None

    assert response.status_code == 500
    assert response.json()["message"].startswith("Service credentials missing")
    assert health.status_code == 200


async def test_health_reports_checks(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["startup_complete"] is True
    assert response.json()["checks"]["proxy_service"].endswith("ready")


async def test_controller_streams_through_proxy(client, usage_logs):
    """One user turn from the client controller, through the proxy, to a fake upstream and back."""
    rest_client = SupabaseRestClient(
        logger, "http://testserver", "anon-key", transport=httpx.ASGITransport(app=app)
    )
    token = _token()
    controller = ChatController(AIChatService(rest_client), ModelRegistry(rest_client), access_token_provider=lambda: token)
    await controller.select_model(
        ModelOption(id="1", display_name="GPT-4o mini", model_identifier="gpt-4o-mini", base_url="https://api.openai.com/v1")
    )

    assert await controller.send_message("Hello?")
    await controller.wait_for_generation()

    reply = controller.state.messages[-1]
    assert reply.content == "Hello"
    assert reply.state.kind == "normal"
    assert controller.state.usage_metrics.total_tokens == 5
    assert controller.state.is_streaming is False
    assert [e.status for e in usage_logs.entries] == [UsageStatus.SUCCESS]
    assert usage_logs.entries[0].request_id == str(controller.state.messages[0].id)
    await rest_client.close()
