from dataclasses import dataclass
from html import escape
from typing import Optional

from support_bot.logging_config import event_logger
from support_bot.schemas.catalog import CatalogItem
from support_bot.schemas.events import Browse, NextPage, OrderItem, PreviousPage, SelectItem, encode_action
from support_bot.services.catalog_source import CatalogSource
from support_bot.services.errors import CatalogError, SessionMissError, TransportError
from support_bot.services.result import ErrorCode, Result
from support_bot.services.session_registry import SessionRegistry
from support_bot.services.state_machine import BrowsingSession, next_page, previous_page, start_browsing
from support_bot.services.telegram_service import TelegramService

EMPTY_CATALOG_TEXT = "🛍 The catalog is empty right now. Please check back later."
CATALOG_ERROR_TEXT = "⚠️ Sorry, the catalog is not available right now. Please try again later."
SESSION_EXPIRED_TEXT = "Catalog expired, send /catalog to open it again."


@dataclass(frozen=True)
class RenderedView:
    text: str
    reply_markup: dict
    photo: Optional[str] = None


def render_page(session: BrowsingSession) -> RenderedView:
    """Page text plus one button per item and a navigation row."""
    lines = [f"🛍 <b>Catalog</b> (page {session.page + 1} of {session.last_page + 1})", ""]
    buttons = []
    for item in session.page_items():
        lines.append(f"<b>{escape(item.name)}</b> · {escape(item.price)}")
        if item.description:
            lines.append(escape(item.description))
        lines.append("")
        buttons.append([{"text": item.name or item.id, "callback_data": encode_action(SelectItem(item.id))}])

    nav = []
    if session.has_previous:
        nav.append({"text": "⬅️ Previous", "callback_data": encode_action(PreviousPage())})
    if session.has_next:
        nav.append({"text": "Next ➡️", "callback_data": encode_action(NextPage())})
    if nav:
        buttons.append(nav)

    return RenderedView(text="\n".join(lines).rstrip(), reply_markup={"inline_keyboard": buttons})


def render_item(item: CatalogItem) -> RenderedView:
    lines = [f"<b>{escape(item.name)}</b>", f"💰 {escape(item.price)}"]
    if item.description:
        lines.append("")
        lines.append(escape(item.description))
    markup = {
        "inline_keyboard": [
            [{"text": "🛒 Order", "callback_data": encode_action(OrderItem(item.id))}],
            [{"text": "⬅️ Back to catalog", "callback_data": encode_action(Browse())}],
        ]
    }
    return RenderedView(text="\n".join(lines), reply_markup=markup, photo=item.image_url or None)


class CatalogBrowsingEngine:
    def __init__(
        self,
        telegram: TelegramService,
        catalog: CatalogSource,
        registry: SessionRegistry,
        page_size: int = 5,
    ):
        self.telegram = telegram
        self.catalog = catalog
        self.registry = registry
        self.page_size = page_size

    async def browse(self, user_id: int, chat_id: int, replace_message_id: Optional[int] = None) -> Result[BrowsingSession]:
        """Open the catalog, fetching it only when the user has no session yet."""
        log = event_logger("catalog_service", user_id=user_id)
        session = self.registry.get_browsing_session(user_id)
        if session is None:
            try:
                items = await self.catalog.fetch_items()
            except CatalogError as e:
                log.error(f"Catalog fetch failed: {e}")
                await self._send_text(chat_id, CATALOG_ERROR_TEXT)
                return Result.from_exception(e)

            if not items:
                await self._send_text(chat_id, EMPTY_CATALOG_TEXT)
                return Result.failure("Catalog is empty", ErrorCode.EMPTY_CATALOG)

            # Concurrent browses may both get here; the last write wins
            session = start_browsing(items, self.page_size)
            self.registry.set_browsing_session(user_id, session)
            log.info(f"Browsing session started with {len(items)} items")

        await self._show(chat_id, render_page(session), replace_message_id)
        return Result.success(session)

    async def next_page(self, user_id: int, chat_id: int, replace_message_id: Optional[int] = None) -> Result[BrowsingSession]:
        return await self._turn(user_id, chat_id, next_page, replace_message_id)

    async def previous_page(
        self, user_id: int, chat_id: int, replace_message_id: Optional[int] = None
    ) -> Result[BrowsingSession]:
        return await self._turn(user_id, chat_id, previous_page, replace_message_id)

    async def _turn(self, user_id, chat_id, step, replace_message_id) -> Result[BrowsingSession]:
        session = self.registry.get_browsing_session(user_id)
        if session is None:
            return Result.from_exception(SessionMissError(SESSION_EXPIRED_TEXT, {"user_id": user_id}))
        session = step(session)
        self.registry.set_browsing_session(user_id, session)
        await self._show(chat_id, render_page(session), replace_message_id)
        return Result.success(session)

    async def select(self, user_id: int, chat_id: int, item_id: str) -> Result[CatalogItem]:
        """Show one item. Unknown ids render nothing."""
        item = self.find_item(user_id, item_id)
        if item is None:
            event_logger("catalog_service", user_id=user_id).info(f"Selected item not in session: {item_id}")
            return Result.failure(f"Item {item_id} not found", ErrorCode.NOT_FOUND)
        await self._show(chat_id, render_item(item))
        return Result.success(item)

    def find_item(self, user_id: int, item_id: str) -> Optional[CatalogItem]:
        session = self.registry.get_browsing_session(user_id)
        return session.find_item(item_id) if session else None

    async def _show(self, chat_id: int, view: RenderedView, replace_message_id: Optional[int] = None) -> None:
        if replace_message_id:
            try:
                await self.telegram.delete_message(chat_id, replace_message_id)
            except TransportError as e:
                event_logger("catalog_service", chat_id=chat_id).warning(f"Could not delete old page: {e}")
        log = event_logger("catalog_service", chat_id=chat_id)
        if view.photo:
            try:
                await self.telegram.send_photo(chat_id, view.photo, caption=view.text, reply_markup=view.reply_markup)
                return
            except TransportError as e:
                log.warning(f"Item photo failed, falling back to text: {e}", context={"photo": view.photo})
        try:
            await self.telegram.send_message(chat_id, view.text, reply_markup=view.reply_markup)
        except TransportError as e:
            log.error(f"Catalog render failed: {e}")

    async def _send_text(self, chat_id: int, text: str) -> None:
        try:
            await self.telegram.send_message(chat_id, text)
        except TransportError as e:
            event_logger("catalog_service", chat_id=chat_id).warning(f"Catalog notice failed: {e}")
