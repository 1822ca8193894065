from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

NON_TEXT_MARKER = "[non-text message]"


class EventCategory(str, Enum):
    TEXT = "text"
    PHOTO = "photo"
    DOCUMENT = "document"
    VOICE = "voice"
    ORDER = "order"
    OTHER = "other"


class AttachmentKind(str, Enum):
    PHOTO = "photo"
    DOCUMENT = "document"
    VOICE = "voice"


class Attachment(BaseModel):
    kind: AttachmentKind
    file_id: str  # handle of the stored copy
    name: str
    link: Optional[str] = None


class Ticket(BaseModel):
    user_id: int
    user_name: Optional[str] = None
    chat_id: Optional[int] = None  # absent only in hand-edited records
    text: Optional[str] = None
    created_at: datetime
    category: EventCategory = EventCategory.TEXT
    attachments: list[Attachment] = Field(default_factory=list)

    # Store handle; not part of the persisted body
    handle: Optional[str] = Field(default=None, exclude=True)

    def to_document(self) -> bytes:
        return self.model_dump_json(indent=2).encode("utf-8")

    @classmethod
    def from_document(cls, data: bytes, handle: Optional[str] = None) -> "Ticket":
        ticket = cls.model_validate_json(data)
        ticket.handle = handle
        return ticket


class Reply(BaseModel):
    ticket_handle: str
    operator_id: int
    operator_name: Optional[str] = None
    created_at: datetime
    content: str

    handle: Optional[str] = Field(default=None, exclude=True)

    def to_document(self) -> bytes:
        return self.model_dump_json(indent=2).encode("utf-8")
