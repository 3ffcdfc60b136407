from fastapi import HTTPException
from fastapi.responses import StreamingResponse

from app.chat.api.dto import ChatCompletionRequest
from app.chat.service.proxy_service import ChatProxyService
from app.core.errors import ChatError
from app.core.logger import get_logger

logger = get_logger("ChatHandler")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}

SSE_HEADERS = {
    **CORS_HEADERS,
    "Cache-Control": "no-store",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # for Nginx
}


async def handle_chat_stream(
    body: ChatCompletionRequest,
    user_id: str,
    proxy_service: ChatProxyService,
) -> StreamingResponse:
    """
    Authenticated → ConfigResolved → Streaming.
    Errors before the first byte become HTTP status codes; later ones abort the stream.
    """
    logger.debug(
        f"handle_chat_stream start | user={user_id} model={body.model_identifier} "
        f"messages={len(body.messages)} attachments={len(body.attachments)}"
    )
    try:
        resolved = await proxy_service.resolve(user_id, body)
        events = await proxy_service.open_stream(user_id, body, resolved)
    except ChatError as e:
        if e.status_code is None:
            logger.error(f"handle_chat_stream upstream error | {e.code}: {e.message}")
            raise HTTPException(status_code=500, detail="Upstream request failed")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error(f"handle_chat_stream error | {e}")
        raise HTTPException(status_code=500, detail="Upstream request failed")

    return StreamingResponse(events, media_type="text/event-stream", headers=SSE_HEADERS)
