import asyncio

import pytest

from conftest import CUSTOMER_CHAT_ID, CUSTOMER_ID, PRODUCTS_RANGE, FakeSheets, product_rows
from support_bot.schemas.catalog import CatalogItem
from support_bot.services.catalog_service import (
    CATALOG_ERROR_TEXT,
    EMPTY_CATALOG_TEXT,
    SESSION_EXPIRED_TEXT,
    CatalogBrowsingEngine,
    render_item,
    render_page,
)
from support_bot.services.catalog_source import CatalogSource
from support_bot.services.result import ErrorCode
from support_bot.services.state_machine import start_browsing


def nav_callbacks(markup: dict) -> list[str]:
    return [
        button["callback_data"]
        for row in markup["inline_keyboard"]
        for button in row
        if button["callback_data"].startswith("page:")
    ]


def item_callbacks(markup: dict) -> list[str]:
    return [
        button["callback_data"]
        for row in markup["inline_keyboard"]
        for button in row
        if button["callback_data"].startswith("item:")
    ]


class TestRenderPage:
    def test_first_page_has_only_next(self):
        items = [CatalogItem(id=f"p{n}", name=f"Product {n}", price="1") for n in range(1, 8)]
        view = render_page(start_browsing(items, 5))

        assert "page 1 of 2" in view.text
        assert item_callbacks(view.reply_markup) == [f"item:p{n}" for n in range(1, 6)]
        assert nav_callbacks(view.reply_markup) == ["page:next"]

    def test_single_page_has_no_navigation(self):
        items = [CatalogItem(id="p1", name="Only")]
        view = render_page(start_browsing(items, 5))

        assert nav_callbacks(view.reply_markup) == []

    def test_names_are_escaped(self):
        items = [CatalogItem(id="p1", name="<b>Tea & Co</b>", price="5")]
        view = render_page(start_browsing(items, 5))

        assert "&lt;b&gt;Tea &amp; Co&lt;/b&gt;" in view.text

    def test_item_view_offers_order_and_back(self):
        view = render_item(CatalogItem(id="p2", name="Mug", price="7 USD", image_url="https://img/mug.jpg"))

        callbacks = [b["callback_data"] for row in view.reply_markup["inline_keyboard"] for b in row]
        assert callbacks == ["order:p2", "browse"]
        assert view.photo == "https://img/mug.jpg"


class TestBrowsing:
    @pytest.mark.asyncio
    async def test_seven_items_paginate_into_two_pages(self, catalog, telegram, registry):
        result = await catalog.browse(CUSTOMER_ID, CUSTOMER_CHAT_ID)

        assert result.ok is True
        assert registry.get_browsing_session(CUSTOMER_ID).page == 0
        first = telegram.sent(chat_id=CUSTOMER_CHAT_ID)[-1]
        assert "Product 1" in first["text"] and "Product 5" in first["text"]
        assert "Product 6" not in first["text"]
        assert nav_callbacks(first["reply_markup"]) == ["page:next"]

        await catalog.next_page(CUSTOMER_ID, CUSTOMER_CHAT_ID)

        assert registry.get_browsing_session(CUSTOMER_ID).page == 1
        second = telegram.sent(chat_id=CUSTOMER_CHAT_ID)[-1]
        assert item_callbacks(second["reply_markup"]) == ["item:p6", "item:p7"]
        assert nav_callbacks(second["reply_markup"]) == ["page:prev"]

    @pytest.mark.asyncio
    async def test_next_on_last_page_stays_put(self, catalog, registry):
        await catalog.browse(CUSTOMER_ID, CUSTOMER_CHAT_ID)
        await catalog.next_page(CUSTOMER_ID, CUSTOMER_CHAT_ID)
        result = await catalog.next_page(CUSTOMER_ID, CUSTOMER_CHAT_ID)

        assert result.ok is True
        assert registry.get_browsing_session(CUSTOMER_ID).page == 1

    @pytest.mark.asyncio
    async def test_previous_on_first_page_stays_put(self, catalog, registry):
        await catalog.browse(CUSTOMER_ID, CUSTOMER_CHAT_ID)
        result = await catalog.previous_page(CUSTOMER_ID, CUSTOMER_CHAT_ID)

        assert result.ok is True
        assert registry.get_browsing_session(CUSTOMER_ID).page == 0

    @pytest.mark.asyncio
    async def test_browse_reuses_existing_session(self, catalog, sheets, registry):
        await catalog.browse(CUSTOMER_ID, CUSTOMER_CHAT_ID)
        await catalog.next_page(CUSTOMER_ID, CUSTOMER_CHAT_ID)
        reads_after_first = len(sheets.reads)

        await catalog.browse(CUSTOMER_ID, CUSTOMER_CHAT_ID)

        assert len(sheets.reads) == reads_after_first
        assert registry.get_browsing_session(CUSTOMER_ID).page == 1

    @pytest.mark.asyncio
    async def test_navigation_replaces_previous_page(self, catalog, telegram):
        await catalog.browse(CUSTOMER_ID, CUSTOMER_CHAT_ID)
        await catalog.next_page(CUSTOMER_ID, CUSTOMER_CHAT_ID, replace_message_id=42)

        deleted = telegram.sent("delete_message", chat_id=CUSTOMER_CHAT_ID)
        assert deleted == [{"chat_id": CUSTOMER_CHAT_ID, "message_id": 42}]

    @pytest.mark.asyncio
    async def test_failed_delete_still_renders(self, catalog, telegram):
        await catalog.browse(CUSTOMER_ID, CUSTOMER_CHAT_ID)
        telegram.fail_methods.add("delete_message")

        result = await catalog.next_page(CUSTOMER_ID, CUSTOMER_CHAT_ID, replace_message_id=42)

        assert result.ok is True
        assert "page 2 of 2" in telegram.sent(chat_id=CUSTOMER_CHAT_ID)[-1]["text"]


class TestBrowsingFailures:
    @pytest.mark.asyncio
    async def test_navigation_without_session(self, catalog, telegram):
        result = await catalog.next_page(CUSTOMER_ID, CUSTOMER_CHAT_ID)

        assert result.error_code == ErrorCode.NO_SESSION
        assert result.error == SESSION_EXPIRED_TEXT
        assert telegram.calls == []

    @pytest.mark.asyncio
    async def test_empty_catalog_creates_no_session(self, telegram, registry):
        sheets = FakeSheets({PRODUCTS_RANGE: product_rows(0)})
        engine = CatalogBrowsingEngine(telegram, CatalogSource(sheets, "sheet-1", PRODUCTS_RANGE), registry)

        result = await engine.browse(CUSTOMER_ID, CUSTOMER_CHAT_ID)

        assert result.error_code == ErrorCode.EMPTY_CATALOG
        assert registry.get_browsing_session(CUSTOMER_ID) is None
        assert telegram.sent(chat_id=CUSTOMER_CHAT_ID)[-1]["text"] == EMPTY_CATALOG_TEXT

    @pytest.mark.asyncio
    async def test_catalog_error_apologizes(self, catalog, sheets, telegram, registry):
        sheets.fail = True

        result = await catalog.browse(CUSTOMER_ID, CUSTOMER_CHAT_ID)

        assert result.error_code == ErrorCode.CATALOG_ERROR
        assert registry.get_browsing_session(CUSTOMER_ID) is None
        assert telegram.sent(chat_id=CUSTOMER_CHAT_ID)[-1]["text"] == CATALOG_ERROR_TEXT


class TestItemSelection:
    @pytest.mark.asyncio
    async def test_select_known_item(self, catalog, telegram):
        await catalog.browse(CUSTOMER_ID, CUSTOMER_CHAT_ID)

        result = await catalog.select(CUSTOMER_ID, CUSTOMER_CHAT_ID, "p3")

        assert result.value.name == "Product 3"
        assert "Product 3" in telegram.sent(chat_id=CUSTOMER_CHAT_ID)[-1]["text"]

    @pytest.mark.asyncio
    async def test_unknown_item_renders_nothing(self, catalog, telegram, registry):
        await catalog.browse(CUSTOMER_ID, CUSTOMER_CHAT_ID)
        calls_before = len(telegram.calls)

        result = await catalog.select(CUSTOMER_ID, CUSTOMER_CHAT_ID, "p99")

        assert result.error_code == ErrorCode.NOT_FOUND
        assert len(telegram.calls) == calls_before
        assert registry.get_browsing_session(CUSTOMER_ID).page == 0

    @pytest.mark.asyncio
    async def test_item_photo_falls_back_to_text(self, telegram, registry):
        sheets = FakeSheets(
            {
                PRODUCTS_RANGE: [["id", "name", "price", "image_url"], ["p1", "Mug", "7", "https://img/mug.jpg"]],
            }
        )
        engine = CatalogBrowsingEngine(telegram, CatalogSource(sheets, "sheet-1", PRODUCTS_RANGE), registry)
        await engine.browse(CUSTOMER_ID, CUSTOMER_CHAT_ID)
        telegram.fail_methods.add("send_photo")

        result = await engine.select(CUSTOMER_ID, CUSTOMER_CHAT_ID, "p1")

        assert result.ok is True
        assert "Mug" in telegram.sent(chat_id=CUSTOMER_CHAT_ID)[-1]["text"]


class GatedSheets(FakeSheets):
    """Each read waits on its own event so tests can interleave fetches."""

    def __init__(self, ranges):
        super().__init__(ranges)
        self.gates: list[asyncio.Event] = []

    async def read_rows(self, sheet_id, range_spec):
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()
        return await super().read_rows(sheet_id, range_spec)


class TestConcurrentBrowse:
    @pytest.mark.asyncio
    async def test_concurrent_browses_leave_one_valid_session(self, telegram, registry):
        sheets = GatedSheets({PRODUCTS_RANGE: product_rows(7)})
        engine = CatalogBrowsingEngine(telegram, CatalogSource(sheets, "sheet-1", PRODUCTS_RANGE), registry)

        task_1 = asyncio.create_task(engine.browse(CUSTOMER_ID, CUSTOMER_CHAT_ID))
        task_2 = asyncio.create_task(engine.browse(CUSTOMER_ID, CUSTOMER_CHAT_ID))

        while len(sheets.gates) < 2:
            await asyncio.sleep(0)

        sheets.gates[1].set()
        sheets.gates[0].set()

        result_1, result_2 = await asyncio.gather(task_1, task_2)

        assert result_1.ok is True
        assert result_2.ok is True
        session = registry.get_browsing_session(CUSTOMER_ID)
        assert session.page == 0
        assert len(session.items) == 7
