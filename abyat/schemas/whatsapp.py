from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

PLACEHOLDER_TEXT = {
    "voice": "[voice message]",
    "image": "[image]",
    "audio": "[audio]",
    "video": "[video]",
    "document": "[document]",
}
UNSUPPORTED_PLACEHOLDER = "[unsupported message]"


class TextBody(BaseModel):
    body: str = ""


class ReplySelection(BaseModel):
    id: Optional[str] = None
    title: Optional[str] = None


class InteractiveReply(BaseModel):
    type: Optional[str] = None  # button_reply, list_reply
    button_reply: Optional[ReplySelection] = None
    list_reply: Optional[ReplySelection] = None

    @property
    def selection(self) -> Optional[ReplySelection]:
        return self.button_reply or self.list_reply


class ImageAttachment(BaseModel):
    id: Optional[str] = None
    caption: Optional[str] = None
    mime_type: Optional[str] = None


class InboundMessage(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    from_: str = Field(alias="from")
    id: Optional[str] = None
    type: str = "text"
    timestamp: Optional[str] = None
    text: Optional[TextBody] = None
    interactive: Optional[InteractiveReply] = None
    image: Optional[ImageAttachment] = None

    @property
    def text_body(self) -> str:
        return (self.text.body if self.text else "").strip()

    @property
    def placeholder(self) -> str:
        return PLACEHOLDER_TEXT.get(self.type, UNSUPPORTED_PLACEHOLDER)


class ChangeValue(BaseModel):
    model_config = ConfigDict(extra="allow")

    messaging_product: Optional[str] = None
    messages: list[InboundMessage] = Field(default_factory=list)


class Change(BaseModel):
    model_config = ConfigDict(extra="allow")

    field: Optional[str] = None
    value: Optional[ChangeValue] = None


class Entry(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    changes: list[Change] = Field(default_factory=list)


class WebhookPayload(BaseModel):
    """Meta webhook envelope; only the first message of the first change is used."""

    model_config = ConfigDict(extra="allow")

    object: Optional[str] = None
    entry: list[Entry] = Field(default_factory=list)

    def first_message(self) -> Optional[InboundMessage]:
        if not self.entry or not self.entry[0].changes:
            return None
        value = self.entry[0].changes[0].value
        if value is None or not value.messages:
            return None
        return value.messages[0]


class WebhookAck(BaseModel):
    success: bool = True
    message: str = "received"
