from datetime import datetime, timezone
from html import escape
from typing import Iterable, Optional

from support_bot.logging_config import event_logger
from support_bot.schemas.events import MessageEvent, Sender
from support_bot.schemas.ticket import AttachmentKind, Reply, Ticket
from support_bot.services.errors import NotFoundError, StoreError, TransportError, UnauthorizedError
from support_bot.services.result import ErrorCode, Result
from support_bot.services.session_registry import SessionRegistry
from support_bot.services.telegram_service import (
    CAPTION_LIMIT,
    TelegramService,
    build_ticket_buttons,
    clip_html,
    format_ticket_details,
    format_ticket_line,
    split_text,
    ticket_text_clipped,
)
from support_bot.services.ticket_store import TicketStore

SUPPORT_LABEL = "Support"
UNSUPPORTED_TEXT = (
    "⚠️ This kind of message cannot be forwarded. Send text, a photo, a document or a voice note."
)
RECENT_REPLIES_SHOWN = 5
REPLY_PREVIEW_LIMIT = 150


def support_text(text: str) -> str:
    return f"{SUPPORT_LABEL}: {text}"


class ReplyRoutingEngine:
    """Operator side: reply sessions, forwarding to customers, ticket lookup."""

    def __init__(
        self,
        telegram: TelegramService,
        store: TicketStore,
        registry: SessionRegistry,
        operator_ids: Iterable[int],
        clear_pending_on_forward_failure: bool = True,
    ):
        self.telegram = telegram
        self.store = store
        self.registry = registry
        self.operator_ids = frozenset(operator_ids)
        self.clear_pending_on_forward_failure = clear_pending_on_forward_failure

    def is_operator(self, user_id: int) -> bool:
        return user_id in self.operator_ids

    def _deny(self, user_id: int) -> Optional[Result]:
        """Failure result for non-operators, None for operators."""
        if self.is_operator(user_id):
            return None
        return Result.from_exception(UnauthorizedError(f"User {user_id} is not an operator", {"user_id": user_id}))

    async def begin_reply(self, operator: Sender, handle: str) -> Result[str]:
        denied = self._deny(operator.user_id)
        if denied:
            return denied

        self.registry.set_pending_reply(operator.user_id, handle)
        event_logger("reply_service", operator_id=operator.user_id).info(
            "Reply session started", context={"handle": handle}
        )
        await self._tell(
            operator.user_id,
            f"✍️ Replying to ticket <code>{escape(handle)}</code>.\n"
            "Send your answer as the next message, or /cancel.",
        )
        return Result.success(handle)

    async def cancel_reply(self, operator: Sender) -> Result[Optional[str]]:
        denied = self._deny(operator.user_id)
        if denied:
            return denied

        handle = self.registry.pop_pending_reply(operator.user_id)
        if handle:
            await self._tell(operator.user_id, f"🚫 Reply to <code>{escape(handle)}</code> cancelled.")
        else:
            await self._tell(operator.user_id, "Nothing to cancel.")
        return Result.success(handle)

    async def route(self, event: MessageEvent) -> Result[Reply]:
        """Forward an operator message to the customer of the pending ticket."""
        operator = event.sender
        denied = self._deny(operator.user_id)
        if denied:
            return denied

        if not event.text and not event.attachments:
            # Target stays pending so the operator can send a supported message
            await self._tell(operator.user_id, UNSUPPORTED_TEXT)
            return Result.failure("Unsupported content", ErrorCode.UNSUPPORTED_CONTENT)

        # Claim before the first await so a second message cannot reuse the target
        handle = self.registry.pop_pending_reply(operator.user_id)
        if handle is None:
            await self._tell(
                operator.user_id,
                "ℹ️ No reply in progress. Press <b>Reply</b> under a ticket or use /reply &lt;ticket&gt;.",
            )
            return Result.failure("No pending reply", ErrorCode.NO_PENDING)

        log = event_logger("reply_service", operator_id=operator.user_id, handle=handle)

        try:
            ticket = await self.store.get_ticket(handle)
        except NotFoundError as e:
            log.warning(f"Ticket not found: {e}")
            await self._tell(operator.user_id, f"❌ Ticket <code>{escape(handle)}</code> not found. Reply cancelled.")
            return Result.from_exception(e)
        except StoreError as e:
            log.error(f"Ticket lookup failed: {e}")
            await self._tell(
                operator.user_id, f"❌ Could not load ticket <code>{escape(handle)}</code>. Reply cancelled."
            )
            return Result.from_exception(e)

        if not ticket.chat_id:
            log.error("Ticket has no chat id")
            await self._tell(
                operator.user_id, f"❌ Ticket <code>{escape(handle)}</code> has no chat to answer. Reply cancelled."
            )
            return Result.failure(f"Ticket {handle} has no chat id", ErrorCode.MISSING_CHAT)

        try:
            content = await self._forward(ticket.chat_id, event)
        except TransportError as e:
            log.error(f"Forward to customer failed: {e}", context={"chat_id": ticket.chat_id})
            if self.clear_pending_on_forward_failure:
                note = "Reply cancelled."
            elif self.registry.restore_pending_reply(operator.user_id, handle):
                note = "Send the message again to retry, or /cancel."
            else:
                note = "Another reply was started meanwhile."
            await self._tell(
                operator.user_id,
                f"❌ Not delivered to ticket <code>{escape(handle)}</code> (chat {ticket.chat_id}). {note}",
            )
            return Result.from_exception(e)

        reply = Reply(
            ticket_handle=handle,
            operator_id=operator.user_id,
            operator_name=operator.name,
            created_at=datetime.now(timezone.utc),
            content=content,
        )
        try:
            reply = await self.store.save_reply(reply)
        except StoreError as e:
            log.error(f"Reply delivered but not recorded: {e}")
            await self._tell(operator.user_id, "⚠️ Delivered, but the reply could not be recorded.")
            return Result.success(reply)

        log.info("Reply delivered")
        await self._tell(operator.user_id, f"✅ Sent to ticket <code>{escape(handle)}</code>.")
        return Result.success(reply)

    async def _forward(self, chat_id: int, event: MessageEvent) -> str:
        """Send the operator message to the customer as plain text; returns the recorded content."""
        labelled = support_text(event.text) if event.text else SUPPORT_LABEL
        if not event.attachments:
            for chunk in split_text(labelled):
                await self.telegram.send_message(chat_id, chunk, parse_mode=None)
            return event.text

        # Text too long for a caption goes out as messages after the media
        caption = labelled if len(labelled) <= CAPTION_LIMIT else SUPPORT_LABEL
        for raw in event.attachments:
            if raw.kind == AttachmentKind.PHOTO:
                await self.telegram.send_photo(chat_id, raw.file_id, caption=caption, parse_mode=None)
            elif raw.kind == AttachmentKind.VOICE:
                await self.telegram.send_voice(chat_id, raw.file_id, caption=caption, parse_mode=None)
            else:
                await self.telegram.send_document(chat_id, raw.file_id, caption=caption, parse_mode=None)
        if caption != labelled:
            for chunk in split_text(labelled):
                await self.telegram.send_message(chat_id, chunk, parse_mode=None)

        markers = " ".join(f"[{raw.kind.value}]" for raw in event.attachments)
        return f"{markers} {event.text}" if event.text else markers

    async def list_tickets(self, operator: Sender, limit: int = 10) -> Result[list[Ticket]]:
        denied = self._deny(operator.user_id)
        if denied:
            return denied

        try:
            tickets = await self.store.list_tickets(limit)
        except StoreError as e:
            event_logger("reply_service", operator_id=operator.user_id).error(f"Ticket list failed: {e}")
            await self._tell(operator.user_id, "❌ Could not load tickets.")
            return Result.from_exception(e)

        if not tickets:
            await self._tell(operator.user_id, "📭 No tickets yet.")
            return Result.success([])

        lines = [f"📋 <b>Recent tickets ({len(tickets)})</b>", ""]
        lines.extend(format_ticket_line(ticket) for ticket in tickets)
        lines.append("")
        lines.append("Use /reply &lt;ticket&gt; to answer.")
        await self._tell(operator.user_id, "\n".join(lines))
        return Result.success(tickets)

    async def view_ticket(self, operator: Sender, handle: str) -> Result[Ticket]:
        denied = self._deny(operator.user_id)
        if denied:
            return denied

        log = event_logger("reply_service", operator_id=operator.user_id, handle=handle)
        try:
            ticket = await self.store.get_ticket(handle)
            replies = await self.store.list_replies(handle)
        except NotFoundError as e:
            await self._tell(operator.user_id, f"❌ Ticket <code>{escape(handle)}</code> not found.")
            return Result.from_exception(e)
        except StoreError as e:
            log.error(f"Ticket view failed: {e}")
            await self._tell(operator.user_id, f"❌ Could not load ticket <code>{escape(handle)}</code>.")
            return Result.from_exception(e)

        text = format_ticket_details(ticket)
        if replies:
            text += f"\n\n<b>Replies ({len(replies)}):</b>"
            if len(replies) > RECENT_REPLIES_SHOWN:
                text += f"\n<i>{len(replies) - RECENT_REPLIES_SHOWN} earlier replies omitted</i>"
            for reply in replies[-RECENT_REPLIES_SHOWN:]:
                who = escape(reply.operator_name or str(reply.operator_id))
                content, _ = clip_html(reply.content, REPLY_PREVIEW_LIMIT)
                text += f"\n• {reply.created_at.strftime('%m-%d %H:%M')} {who}: {content}"
        await self._tell(operator.user_id, text, reply_markup=build_ticket_buttons(handle))

        if ticket_text_clipped(ticket):
            for chunk in split_text(ticket.text):
                await self._tell(operator.user_id, chunk, parse_mode=None)
        return Result.success(ticket)

    async def _tell(
        self, operator_id: int, text: str, reply_markup: Optional[dict] = None, parse_mode: Optional[str] = "HTML"
    ) -> None:
        try:
            await self.telegram.send_message(operator_id, text, reply_markup=reply_markup, parse_mode=parse_mode)
        except TransportError as e:
            event_logger("reply_service", operator_id=operator_id).warning(f"Operator message failed: {e}")
