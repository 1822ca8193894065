"""Routes decoded inbound events to the engines.

Engines never call each other; this module is the only place that composes
them (for example an Order press looks up the item in the browsing session and
then opens a ticket).
"""

from dataclasses import dataclass
from html import escape
from typing import Optional

from support_bot.logging_config import get_logger
from support_bot.schemas.events import (
    BeginReply,
    Browse,
    CallbackEvent,
    CancelReply,
    CommandEvent,
    InboundEvent,
    MessageEvent,
    NextPage,
    OrderItem,
    PreviousPage,
    SelectItem,
    ViewTicket,
)
from support_bot.services.catalog_service import SESSION_EXPIRED_TEXT, CatalogBrowsingEngine
from support_bot.services.catalog_source import CatalogSource
from support_bot.services.errors import TransportError
from support_bot.services.ingestion_service import TicketIngestionEngine
from support_bot.services.reply_service import ReplyRoutingEngine
from support_bot.services.result import ErrorCode, Result
from support_bot.services.session_registry import SessionRegistry
from support_bot.services.telegram_service import TelegramService
from support_bot.services.ticket_store import TicketStore

logger = get_logger("dispatch_service")

CUSTOMER_HELP = """👋 Hello, <b>{name}</b>!

This is the support and shop bot.

ℹ️ How to use it:
1. Write your question, or send a photo, document or voice note. Our team will answer you right here.
2. Send /catalog to browse our products and place an order."""

OPERATOR_HELP = """🛠 <b>Operator commands</b>

/list · recent tickets
/reply &lt;ticket&gt; · start answering a ticket
/cancel · stop the current reply

Buttons under ticket notifications do the same. While a reply is in progress your next message (text, photo, document or voice) is forwarded to the customer."""


@dataclass
class BotServices:
    telegram: TelegramService
    store: TicketStore
    catalog_source: CatalogSource
    registry: SessionRegistry
    ingestion: TicketIngestionEngine
    replies: ReplyRoutingEngine
    catalog: CatalogBrowsingEngine
    ticket_list_limit: int = 10

    async def close(self) -> None:
        await self.telegram.close()
        await self.store.drive.close()
        await self.catalog_source.sheets.close()


@dataclass(frozen=True)
class DispatchOutcome:
    success: bool
    message: str


def _outcome(result: Result, label: str) -> DispatchOutcome:
    if result.ok:
        return DispatchOutcome(True, label)
    return DispatchOutcome(False, f"{label}: {result.error_code}")


async def dispatch_event(services: BotServices, event: InboundEvent) -> DispatchOutcome:
    if isinstance(event, CallbackEvent):
        return await handle_callback(services, event)
    if isinstance(event, CommandEvent):
        return await handle_command(services, event)
    if isinstance(event, MessageEvent):
        return await handle_message(services, event)
    raise TypeError(f"Unsupported event: {type(event).__name__}")


async def handle_message(services: BotServices, event: MessageEvent) -> DispatchOutcome:
    if services.replies.is_operator(event.sender.user_id):
        return _outcome(await services.replies.route(event), "operator message")
    return _outcome(await services.ingestion.ingest(event), "ticket")


async def handle_command(services: BotServices, event: CommandEvent) -> DispatchOutcome:
    sender = event.sender
    is_operator = services.replies.is_operator(sender.user_id)
    command = event.command

    if command in ("start", "help"):
        text = OPERATOR_HELP if is_operator else CUSTOMER_HELP.format(name=escape(sender.name or "there"))
        await _send(services, event.chat_id, text)
        return DispatchOutcome(True, command)

    if command == "catalog":
        return _outcome(await services.catalog.browse(sender.user_id, event.chat_id), "catalog")

    if command == "list":
        return _outcome(await services.replies.list_tickets(sender, services.ticket_list_limit), "list")

    if command == "reply":
        if is_operator and not event.argument:
            await _send(services, event.chat_id, "Usage: /reply &lt;ticket&gt;")
            return DispatchOutcome(False, "reply: missing ticket")
        return _outcome(await services.replies.begin_reply(sender, event.argument or ""), "reply")

    if command == "cancel":
        return _outcome(await services.replies.cancel_reply(sender), "cancel")

    logger.info(f"Unknown command /{command} from {sender.user_id}")
    if is_operator:
        await _send(services, event.chat_id, OPERATOR_HELP)
    return DispatchOutcome(True, "Ignoring command")


async def handle_callback(services: BotServices, event: CallbackEvent) -> DispatchOutcome:
    sender = event.sender
    chat_id = event.chat_id or sender.user_id
    action = event.action
    notice: Optional[str] = None

    if action is None:
        logger.warning(f"Unknown callback data: {event.data!r}")
        outcome = DispatchOutcome(False, f"Invalid callback data: {event.data}")
    elif isinstance(action, Browse):
        outcome = _outcome(await services.catalog.browse(sender.user_id, chat_id), "browse")
    elif isinstance(action, (NextPage, PreviousPage)):
        turn = services.catalog.next_page if isinstance(action, NextPage) else services.catalog.previous_page
        result = await turn(sender.user_id, chat_id, replace_message_id=event.message_id)
        if result.error_code == ErrorCode.NO_SESSION:
            notice = SESSION_EXPIRED_TEXT
        outcome = _outcome(result, "page")
    elif isinstance(action, SelectItem):
        outcome = _outcome(await services.catalog.select(sender.user_id, chat_id, action.item_id), "select")
    elif isinstance(action, OrderItem):
        item = services.catalog.find_item(sender.user_id, action.item_id)
        if item is None:
            notice = SESSION_EXPIRED_TEXT
            outcome = DispatchOutcome(False, f"order: {ErrorCode.NOT_FOUND}")
        else:
            outcome = _outcome(await services.ingestion.ingest_order(sender, chat_id, item), "order")
    elif isinstance(action, ViewTicket):
        outcome = _outcome(await services.replies.view_ticket(sender, action.handle), "view")
    elif isinstance(action, BeginReply):
        outcome = _outcome(await services.replies.begin_reply(sender, action.handle), "reply")
    elif isinstance(action, CancelReply):
        outcome = _outcome(await services.replies.cancel_reply(sender), "cancel")
    else:
        raise TypeError(f"Unhandled action: {action!r}")

    try:
        await services.telegram.answer_callback_query(event.callback_id, notice)
    except TransportError as e:
        logger.warning(f"answerCallbackQuery failed: {e}")
    return outcome


async def _send(services: BotServices, chat_id: int, text: str) -> None:
    try:
        await services.telegram.send_message(chat_id, text)
    except TransportError as e:
        logger.warning(f"Message to {chat_id} failed: {e}")
