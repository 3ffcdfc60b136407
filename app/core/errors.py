"""
Error taxonomy shared by the chat proxy and the client stream controller.
"""
from typing import Optional


class ChatError(Exception):
    """Base exception for chat pipeline errors"""
    status_code: Optional[int] = None
    code: str = "chat_error"

    def __init__(self, message: str = "", code: Optional[str] = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        if code:
            self.code = code


class Unauthorized(ChatError):
    """Missing or invalid bearer credential"""
    status_code = 401
    code = "unauthorized"


class ModelNotAvailable(ChatError):
    """Requested model is unknown or inactive"""
    status_code = 404
    code = "model_not_available"


class SecretMissing(ChatError):
    """Provider secret for a model is not configured"""
    status_code = 500
    code = "secret_missing"


class NetworkError(ChatError):
    """Transport-level failure (DNS, TLS, connection reset)"""
    code = "network_error"


class StreamInterrupted(NetworkError):
    """Stream ended before the [DONE] sentinel"""
    code = "stream_interrupted"


class HttpStatusError(ChatError):
    """Non-2xx response before any bytes were streamed"""
    code = "http_error"

    def __init__(self, status_code: int, payload: str = ""):
        super().__init__(f"HTTP {status_code}: {payload}".strip(), code=f"http_{status_code}")
        self.status_code = status_code
        self.payload = payload


class DecodeError(ChatError):
    """Response body could not be decoded into the expected shape"""
    code = "decode_error"


class MalformedChunk(DecodeError):
    """A single SSE event carried invalid JSON"""
    code = "malformed_chunk"

    def __init__(self, payload: str, reason: str = ""):
        super().__init__(f"Malformed stream chunk: {reason or payload[:80]}")
        self.payload = payload


class EmptyOutput(ChatError):
    """Stream completed cleanly without any text"""
    code = "empty_output"


class Cancelled(ChatError):
    """Generation stopped by the user"""
    code = "cancelled"
