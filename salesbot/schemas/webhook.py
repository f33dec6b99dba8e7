from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class InboundText(BaseModel):
    body: Optional[str] = None


class InboundMessage(BaseModel):
    id: Optional[str] = None
    sender: Optional[str] = None  # "from" is reserved in Python
    to: Optional[str] = None
    chat_id: Optional[str] = None
    type: Optional[str] = None
    text: Optional[InboundText] = None
    from_me: bool = False

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def __init__(self, **data):
        if "from" in data:
            data["sender"] = data.pop("from")
        super().__init__(**data)

    @property
    def is_text(self) -> bool:
        return self.type == "text"

    @property
    def body(self) -> str:
        if self.text is None or self.text.body is None:
            return ""
        return self.text.body.strip()

    @property
    def customer_address(self) -> Optional[str]:
        """Chat address of the customer, whichever side authored the message."""
        if self.from_me:
            return self.to or self.chat_id or self.sender
        return self.sender


class WebhookPayload(BaseModel):
    # Items are validated one at a time so a bad entry cannot sink the batch.
    messages: Optional[list[Any]] = None

    model_config = ConfigDict(extra="ignore")
