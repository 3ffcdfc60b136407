from fastapi import APIRouter, Depends, HTTPException, Request, Response

from app.auth.api.dependencies import CurrentUserDep
from app.chat.api.dto import ChatCompletionRequest
from app.chat.api.handler import CORS_HEADERS, handle_chat_stream
from app.chat.service.proxy_service import ChatProxyService
from app.core.logger import get_logger

chat_router = APIRouter(prefix="/functions/v1", tags=["Chat"])
logger = get_logger("ChatRouter")


def get_proxy_service(request: Request) -> ChatProxyService:
    """Dependency to get the chat proxy service from app.state."""
    proxy_service = getattr(request.app.state, "proxy_service", None)
    if proxy_service is None:
        raise HTTPException(status_code=500, detail="Service credentials missing")
    return proxy_service


@chat_router.options("/ai-chat")
async def chat_preflight():
    """CORS preflight: 200, no body."""
    return Response(status_code=200, headers=CORS_HEADERS)


@chat_router.post("/ai-chat")
async def chat_stream_api(
    body: ChatCompletionRequest,
    current_user: CurrentUserDep,
    proxy_service: ChatProxyService = Depends(get_proxy_service),
):
    """
    Streaming chat endpoint (Server-Sent Events).
    Each event carries the provider's chunk JSON verbatim; a clean stream ends with `data: [DONE]`.
    """
    return await handle_chat_stream(body, current_user["user_id"], proxy_service)
