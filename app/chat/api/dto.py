from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional, Union


class ImageURL(BaseModel):
    url: str


class ContentPart(BaseModel):
    type: Literal["text", "image_url"]
    text: Optional[str] = None
    image_url: Optional[ImageURL] = None

    @classmethod
    def text_part(cls, text: str) -> "ContentPart":
        return cls(type="text", text=text)

    @classmethod
    def image_part(cls, url: str) -> "ContentPart":
        return cls(type="image_url", image_url=ImageURL(url=url))


class Message(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: Union[str, List[ContentPart]]


class AttachmentPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    url: str
    content_type: str = Field(alias="contentType")


class ChatCompletionRequest(BaseModel):
    """Request body accepted by the ai-chat proxy."""
    model_identifier: str
    messages: List[Message]
    client_message_id: str
    attachments: List[AttachmentPayload] = Field(default_factory=list)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)

