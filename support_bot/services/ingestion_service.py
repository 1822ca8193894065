from datetime import datetime, timezone
from html import escape
from typing import Iterable, Optional

from support_bot.logging_config import event_logger
from support_bot.schemas.catalog import CatalogItem
from support_bot.schemas.events import MessageEvent, RawAttachment, Sender
from support_bot.schemas.ticket import NON_TEXT_MARKER, Attachment, EventCategory, Ticket
from support_bot.services.errors import StoreError, TransportError
from support_bot.services.result import Result
from support_bot.services.telegram_service import (
    TelegramService,
    build_ticket_buttons,
    format_ticket_notification,
)
from support_bot.services.ticket_store import TicketStore

RECEIVED_TEXT = "✅ Thanks! Your request has been passed to our support team. We will answer you here."
ORDER_RECEIVED_TEXT = "🛒 Thanks! Your order request for <b>{name}</b> has been passed to our team."
APOLOGY_TEXT = "⚠️ Sorry, we could not register your request right now. Please try again a bit later."


class TicketIngestionEngine:
    """Turns customer messages into stored tickets and notifies operators."""

    def __init__(self, telegram: TelegramService, store: TicketStore, operator_ids: Iterable[int]):
        self.telegram = telegram
        self.store = store
        self.operator_ids = sorted(set(operator_ids))

    async def ingest(self, event: MessageEvent) -> Result[Ticket]:
        return await self._create_ticket(
            sender=event.sender,
            chat_id=event.chat_id,
            created_at=event.timestamp,
            category=event.category,
            text=event.text,
            raw_attachments=event.attachments,
            confirmation=RECEIVED_TEXT,
        )

    async def ingest_order(self, sender: Sender, chat_id: int, item: CatalogItem) -> Result[Ticket]:
        """Ticket for a purchase request made from an item card."""
        text = f"Order request: {item.name} (id {item.id})"
        if item.price:
            text += f", price {item.price}"
        return await self._create_ticket(
            sender=sender,
            chat_id=chat_id,
            created_at=datetime.now(timezone.utc),
            category=EventCategory.ORDER,
            text=text,
            raw_attachments=(),
            confirmation=ORDER_RECEIVED_TEXT.format(name=escape(item.name)),
        )

    async def _create_ticket(
        self,
        sender: Sender,
        chat_id: int,
        created_at: datetime,
        category: EventCategory,
        text: Optional[str],
        raw_attachments: tuple[RawAttachment, ...],
        confirmation: str,
    ) -> Result[Ticket]:
        log = event_logger("ingestion_service", user_id=sender.user_id, chat_id=chat_id)
        ticket_key = f"{created_at.strftime('%Y%m%dT%H%M%S')}_{sender.user_id}"

        try:
            attachments = await self._store_attachments(ticket_key, raw_attachments)
        except (TransportError, StoreError) as e:
            # All-or-nothing: no ticket references a partial attachment list
            log.error(f"Attachment handling failed, ticket aborted: {e}", context={"attachments": len(raw_attachments)})
            await self._apologize(chat_id, log)
            return Result.from_exception(e)

        if not text and not attachments:
            text = NON_TEXT_MARKER

        ticket = Ticket(
            user_id=sender.user_id,
            user_name=sender.name,
            chat_id=chat_id,
            text=text,
            created_at=created_at,
            category=category,
            attachments=attachments,
        )

        try:
            ticket = await self.store.save_ticket(ticket)
        except StoreError as e:
            log.error(f"Ticket persistence failed: {e}")
            await self._apologize(chat_id, log)
            return Result.from_exception(e)

        log.info("Ticket created", context={"handle": ticket.handle, "category": category.value})

        try:
            await self.telegram.send_message(chat_id, confirmation)
        except TransportError as e:
            log.warning(f"Could not confirm ticket to customer: {e}", context={"handle": ticket.handle})

        await self._notify_operators(ticket, sender.label or sender.name or str(sender.user_id))
        return Result.success(ticket)

    async def _store_attachments(self, ticket_key: str, raw_attachments: tuple[RawAttachment, ...]) -> list[Attachment]:
        attachments = []
        for index, raw in enumerate(raw_attachments, start=1):
            data = await self.telegram.download_file(raw.file_id)
            attachment = await self.store.upload_attachment(
                ticket_key, index, raw.kind, raw.file_name, data, raw.mime_type
            )
            attachments.append(attachment)
        return attachments

    async def _notify_operators(self, ticket: Ticket, sender_label: str) -> int:
        text = format_ticket_notification(ticket, sender_label)
        buttons = build_ticket_buttons(ticket.handle)
        log = event_logger("ingestion_service", handle=ticket.handle)

        delivered = 0
        for operator_id in self.operator_ids:
            try:
                await self.telegram.send_message(operator_id, text, reply_markup=buttons)
                delivered += 1
            except TransportError as e:
                log.warning(f"Operator notification failed: {e}", context={"operator_id": operator_id})
        if not delivered and self.operator_ids:
            log.error("Ticket reached no operator")
        return delivered

    async def _apologize(self, chat_id: int, log) -> None:
        try:
            await self.telegram.send_message(chat_id, APOLOGY_TEXT)
        except TransportError as e:
            log.warning(f"Could not deliver apology: {e}")
