"""Inbound events and callback actions, decoded once at the webhook boundary.

Telegram updates carry different optional fields depending on what the user
did. `decode_update` turns them into one of three event types so the
dispatcher and engines never probe optional fields. Callback button payloads
are short strings (Telegram limits them to 64 bytes); `encode_action` and
`decode_action` map them to action dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from support_bot.schemas.telegram import TelegramMessage, TelegramUpdate, TelegramUser
from support_bot.schemas.ticket import AttachmentKind, EventCategory


@dataclass(frozen=True)
class Browse:
    pass


@dataclass(frozen=True)
class NextPage:
    pass


@dataclass(frozen=True)
class PreviousPage:
    pass


@dataclass(frozen=True)
class SelectItem:
    item_id: str


@dataclass(frozen=True)
class OrderItem:
    item_id: str


@dataclass(frozen=True)
class ViewTicket:
    handle: str


@dataclass(frozen=True)
class BeginReply:
    handle: str


@dataclass(frozen=True)
class CancelReply:
    pass


Action = Union[Browse, NextPage, PreviousPage, SelectItem, OrderItem, ViewTicket, BeginReply, CancelReply]

# Bot API limit for callback_data, in bytes
CALLBACK_DATA_LIMIT = 64

_PLAIN_TAGS = {
    "browse": Browse,
    "page:next": NextPage,
    "page:prev": PreviousPage,
    "cancel": CancelReply,
}

_ARG_TAGS = {
    "item": (SelectItem, "item_id"),
    "order": (OrderItem, "item_id"),
    "view": (ViewTicket, "handle"),
    "reply": (BeginReply, "handle"),
}


def encode_action(action: Action) -> str:
    """Callback payload for a button carrying this action."""
    for tag, action_cls in _PLAIN_TAGS.items():
        if isinstance(action, action_cls):
            return tag
    for tag, (action_cls, field_name) in _ARG_TAGS.items():
        if isinstance(action, action_cls):
            return f"{tag}:{getattr(action, field_name)}"
    raise ValueError(f"Unknown action: {action!r}")


def decode_action(data: Optional[str]) -> Optional[Action]:
    """Parse a callback payload. Unknown or malformed payloads give None."""
    if not data:
        return None
    if data in _PLAIN_TAGS:
        return _PLAIN_TAGS[data]()

    tag, sep, argument = data.partition(":")
    if not sep or not argument or tag not in _ARG_TAGS:
        return None
    action_cls, field_name = _ARG_TAGS[tag]
    return action_cls(**{field_name: argument})


@dataclass(frozen=True)
class Sender:
    user_id: int
    name: Optional[str] = None
    label: str = ""

    @classmethod
    def from_telegram(cls, user: TelegramUser) -> "Sender":
        return cls(user_id=user.id, name=user.full_name, label=user.label)


@dataclass(frozen=True)
class RawAttachment:
    kind: AttachmentKind
    file_id: str  # Telegram file_id
    mime_type: str
    file_name: str


@dataclass(frozen=True)
class MessageEvent:
    sender: Sender
    chat_id: int
    message_id: int
    category: EventCategory
    timestamp: datetime
    text: Optional[str] = None
    attachments: tuple[RawAttachment, ...] = ()


@dataclass(frozen=True)
class CommandEvent:
    sender: Sender
    chat_id: int
    message_id: int
    command: str
    timestamp: datetime
    argument: Optional[str] = None


@dataclass(frozen=True)
class CallbackEvent:
    sender: Sender
    callback_id: str
    data: Optional[str]
    action: Optional[Action]
    chat_id: Optional[int] = None
    message_id: Optional[int] = None


InboundEvent = Union[MessageEvent, CommandEvent, CallbackEvent]


def _message_attachments(message: TelegramMessage) -> tuple[RawAttachment, ...]:
    attachments = []
    photo = message.largest_photo
    if photo:
        attachments.append(
            RawAttachment(
                kind=AttachmentKind.PHOTO,
                file_id=photo.file_id,
                mime_type="image/jpeg",
                file_name=f"{photo.file_unique_id}.jpg",
            )
        )
    if message.document:
        doc = message.document
        attachments.append(
            RawAttachment(
                kind=AttachmentKind.DOCUMENT,
                file_id=doc.file_id,
                mime_type=doc.mime_type or "application/octet-stream",
                file_name=doc.file_name or doc.file_unique_id,
            )
        )
    if message.voice:
        voice = message.voice
        attachments.append(
            RawAttachment(
                kind=AttachmentKind.VOICE,
                file_id=voice.file_id,
                mime_type=voice.mime_type or "audio/ogg",
                file_name=f"{voice.file_unique_id}.ogg",
            )
        )
    return tuple(attachments)


def _message_category(message: TelegramMessage) -> EventCategory:
    if message.photo:
        return EventCategory.PHOTO
    if message.document:
        return EventCategory.DOCUMENT
    if message.voice:
        return EventCategory.VOICE
    if message.text:
        return EventCategory.TEXT
    return EventCategory.OTHER


def _parse_command(text: str) -> tuple[str, Optional[str]]:
    head, _, rest = text.strip().partition(" ")
    command = head[1:].split("@", 1)[0].lower()
    argument = rest.strip() or None
    return command, argument


def decode_update(update: TelegramUpdate) -> Optional[InboundEvent]:
    """Decode a Telegram update. Returns None for updates the bot does not act on."""
    callback = update.callback_query
    if callback:
        if callback.from_user.is_bot:
            return None
        source = callback.message
        return CallbackEvent(
            sender=Sender.from_telegram(callback.from_user),
            callback_id=callback.id,
            data=callback.data,
            action=decode_action(callback.data),
            chat_id=source.chat.id if source else None,
            message_id=source.message_id if source else None,
        )

    message = update.message
    if not message or not message.from_user or message.from_user.is_bot:
        return None

    sender = Sender.from_telegram(message.from_user)
    timestamp = datetime.fromtimestamp(message.date, tz=timezone.utc)

    if message.text and message.text.startswith("/"):
        command, argument = _parse_command(message.text)
        if command:
            return CommandEvent(
                sender=sender,
                chat_id=message.chat.id,
                message_id=message.message_id,
                command=command,
                argument=argument,
                timestamp=timestamp,
            )

    return MessageEvent(
        sender=sender,
        chat_id=message.chat.id,
        message_id=message.message_id,
        category=_message_category(message),
        timestamp=timestamp,
        text=message.text or message.caption,
        attachments=_message_attachments(message),
    )
