from html import escape
from typing import Optional

import httpx

from support_bot.logging_config import get_logger
from support_bot.schemas.events import BeginReply, ViewTicket, encode_action
from support_bot.schemas.ticket import Ticket
from support_bot.services.errors import TransportError

logger = get_logger("telegram_service")

# Telegram caps messages at 4096 characters and captions at 1024
MESSAGE_CHUNK = 4000
CAPTION_LIMIT = 1024
TICKET_TEXT_LIMIT = 2500


class TelegramService:
    """Async client for the Telegram Bot API."""

    BASE_URL = "https://api.telegram.org/bot{token}"
    FILE_URL = "https://api.telegram.org/file/bot{token}/{path}"

    def __init__(self, bot_token: str, client: Optional[httpx.AsyncClient] = None):
        self.bot_token = bot_token
        self.base_url = self.BASE_URL.format(token=bot_token)
        self._client = client or httpx.AsyncClient(timeout=30.0)

    async def close(self) -> None:
        await self._client.aclose()

    async def _make_request(self, method: str, data: Optional[dict] = None) -> dict:
        """Call a Bot API method. Raises TransportError unless Telegram answers ok."""
        url = f"{self.base_url}/{method}"
        try:
            response = await self._client.post(url, json=data or {})
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Telegram API error: {method}: {e}")
            raise TransportError(f"{method} failed: {e}") from e

        if not payload.get("ok"):
            description = payload.get("description", "unknown error")
            logger.warning(
                f"Telegram API rejected {method}",
                extra={"context": {"method": method, "description": description}},
            )
            raise TransportError(f"{method} rejected: {description}", {"method": method})
        return payload.get("result") or {}

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = "HTML",
    ) -> dict:
        """Send message to Telegram chat."""
        data = {"chat_id": chat_id, "text": text}
        if parse_mode:
            data["parse_mode"] = parse_mode
        if reply_markup:
            data["reply_markup"] = reply_markup

        return await self._make_request("sendMessage", data)

    async def _send_media(
        self,
        method: str,
        field: str,
        chat_id: int,
        media: str,
        caption: Optional[str],
        reply_markup: Optional[dict],
        parse_mode: Optional[str],
    ) -> dict:
        # media is a Telegram file_id or an http(s) URL; both are sent by reference
        data = {"chat_id": chat_id, field: media}
        if caption:
            data["caption"] = caption
            if parse_mode:
                data["parse_mode"] = parse_mode
        if reply_markup:
            data["reply_markup"] = reply_markup
        return await self._make_request(method, data)

    async def send_photo(
        self,
        chat_id: int,
        photo: str,
        caption: Optional[str] = None,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = "HTML",
    ) -> dict:
        """Send photo to Telegram chat."""
        return await self._send_media("sendPhoto", "photo", chat_id, photo, caption, reply_markup, parse_mode)

    async def send_document(
        self,
        chat_id: int,
        document: str,
        caption: Optional[str] = None,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = "HTML",
    ) -> dict:
        """Send document to Telegram chat."""
        return await self._send_media(
            "sendDocument", "document", chat_id, document, caption, reply_markup, parse_mode
        )

    async def send_voice(
        self,
        chat_id: int,
        voice: str,
        caption: Optional[str] = None,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = "HTML",
    ) -> dict:
        """Send voice note to Telegram chat."""
        return await self._send_media("sendVoice", "voice", chat_id, voice, caption, reply_markup, parse_mode)

    async def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None) -> dict:
        data = {"callback_query_id": callback_query_id}
        if text:
            data["text"] = text
        return await self._make_request("answerCallbackQuery", data)

    async def delete_message(self, chat_id: int, message_id: int) -> dict:
        return await self._make_request("deleteMessage", {"chat_id": chat_id, "message_id": message_id})

    async def get_file(self, file_id: str) -> dict:
        return await self._make_request("getFile", {"file_id": file_id})

    async def get_download_link(self, file_id: str) -> str:
        """Resolve a file_id to its download URL (valid for about an hour)."""
        info = await self.get_file(file_id)
        file_path = info.get("file_path")
        if not file_path:
            raise TransportError(f"No file_path for file {file_id}")
        return self.FILE_URL.format(token=self.bot_token, path=file_path)

    async def download_file(self, file_id: str) -> bytes:
        link = await self.get_download_link(file_id)
        try:
            response = await self._client.get(link)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Telegram file download failed: {file_id}: {e}")
            raise TransportError(f"Download of {file_id} failed: {e}") from e
        return response.content

    async def set_webhook(self, url: str, secret_token: Optional[str] = None) -> dict:
        data = {"url": url}
        if secret_token:
            data["secret_token"] = secret_token
        return await self._make_request("setWebhook", data)


def build_ticket_buttons(handle: str) -> dict:
    """Build inline keyboard attached to a ticket notification."""
    return {
        "inline_keyboard": [
            [
                {"text": "👁 View", "callback_data": encode_action(ViewTicket(handle))},
                {"text": "↩️ Reply", "callback_data": encode_action(BeginReply(handle))},
            ],
        ]
    }


def split_text(text: str, limit: int = MESSAGE_CHUNK) -> list[str]:
    """Split plain text into message-sized chunks, preferring line breaks."""
    chunks = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(text[:cut])
        text = text[cut:].lstrip("\n")
    if text or not chunks:
        chunks.append(text)
    return chunks


def clip_html(text: str, limit: int) -> tuple[str, bool]:
    """HTML-escape text, cutting it so the escaped form stays within limit.

    Returns the escaped text and whether it was cut. Entities are never split.
    """
    escaped = escape(text)
    if len(escaped) <= limit:
        return escaped, False

    pieces = []
    size = 0
    for char in text:
        piece = escape(char)
        if size + len(piece) > limit:
            break
        pieces.append(piece)
        size += len(piece)
    return "".join(pieces) + "…", True


def ticket_text_clipped(ticket: Ticket) -> bool:
    return bool(ticket.text) and len(escape(ticket.text)) > TICKET_TEXT_LIMIT


def _format_ticket(ticket: Ticket, header: str, sender_label: str, clip_note: str) -> list[str]:
    if ticket.text:
        text, clipped = clip_html(ticket.text, TICKET_TEXT_LIMIT)
        if clipped:
            text += f"\n<i>{clip_note}</i>"
    else:
        text = "<i>(no text)</i>"
    created = ticket.created_at.strftime("%Y-%m-%d %H:%M:%S UTC")

    lines = [
        header,
        "",
        f"<b>From:</b> {escape(sender_label)} (<code>{ticket.user_id}</code>)",
        f"<b>Ticket:</b> <code>{escape(ticket.handle or '')}</code>",
        f"<b>Type:</b> {ticket.category.value}",
        f"<b>Created:</b> {created}",
        "",
        "<b>Message:</b>",
        text,
    ]

    if ticket.attachments:
        lines.append("")
        lines.append(f"<b>Attachments ({len(ticket.attachments)}):</b>")
        for attachment in ticket.attachments:
            name = escape(attachment.name)
            if attachment.link:
                lines.append(f'• {attachment.kind.value}: <a href="{escape(attachment.link)}">{name}</a>')
            else:
                lines.append(f"• {attachment.kind.value}: {name}")

    return lines


def format_ticket_notification(ticket: Ticket, sender_label: str) -> str:
    """Format the operator notification for a new ticket."""
    lines = _format_ticket(ticket, "🔔 <b>New ticket</b>", sender_label, "(shortened, press View for the full text)")
    return "\n".join(lines)


def format_ticket_details(ticket: Ticket) -> str:
    """Full ticket view shown to an operator. Long text is shortened here and sent separately."""
    lines = _format_ticket(
        ticket, "🎫 <b>Ticket</b>", ticket.user_name or str(ticket.user_id), "(shortened, full text follows)"
    )
    lines.append("")
    lines.append(f"<b>Chat:</b> <code>{ticket.chat_id}</code>")
    return "\n".join(lines)


def format_ticket_line(ticket: Ticket) -> str:
    """One-line summary used by the ticket list."""
    created = ticket.created_at.strftime("%m-%d %H:%M")
    who = escape(ticket.user_name or str(ticket.user_id))
    preview = ticket.text or f"[{ticket.category.value}]"
    if len(preview) > 40:
        preview = preview[:40] + "…"
    return f"<code>{escape(ticket.handle or '')}</code> · {created} · {who}: {escape(preview)}"
