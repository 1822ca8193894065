import asyncio
from datetime import datetime, timezone
from typing import Optional

import pytest

from support_bot.schemas.events import MessageEvent, RawAttachment, Sender
from support_bot.schemas.ticket import AttachmentKind, EventCategory
from support_bot.services.catalog_service import CatalogBrowsingEngine
from support_bot.services.catalog_source import CatalogSource
from support_bot.services.dispatch_service import BotServices
from support_bot.services.drive_service import StoredObject
from support_bot.services.errors import CatalogError, NotFoundError, StoreError, TransportError
from support_bot.services.ingestion_service import TicketIngestionEngine
from support_bot.services.reply_service import ReplyRoutingEngine
from support_bot.services.session_registry import SessionRegistry
from support_bot.services.ticket_store import TicketStore

OPERATOR_IDS = (111, 222)
CUSTOMER_ID = 501
CUSTOMER_CHAT_ID = 501

PRODUCTS_RANGE = "Products!A:D"
IMAGES_RANGE = "Images!A:B"


class FakeTelegram:
    """Records every Bot API call; chats in fail_chats raise TransportError."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.fail_chats: set[int] = set()
        self.fail_methods: set[str] = set()
        self.files: dict[str, bytes] = {}
        self.failing_downloads: set[str] = set()
        self.closed = False

    def _record(self, method: str, **kwargs) -> dict:
        self.calls.append((method, kwargs))
        if method in self.fail_methods or kwargs.get("chat_id") in self.fail_chats:
            raise TransportError(f"{method} rejected: chat not found")
        return {"message_id": len(self.calls)}

    async def send_message(self, chat_id, text, reply_markup=None, parse_mode="HTML"):
        return self._record(
            "send_message", chat_id=chat_id, text=text, reply_markup=reply_markup, parse_mode=parse_mode
        )

    async def send_photo(self, chat_id, photo, caption=None, reply_markup=None, parse_mode="HTML"):
        return self._record(
            "send_photo",
            chat_id=chat_id,
            photo=photo,
            caption=caption,
            reply_markup=reply_markup,
            parse_mode=parse_mode,
        )

    async def send_document(self, chat_id, document, caption=None, reply_markup=None, parse_mode="HTML"):
        return self._record(
            "send_document", chat_id=chat_id, document=document, caption=caption, reply_markup=reply_markup
        )

    async def send_voice(self, chat_id, voice, caption=None, reply_markup=None, parse_mode="HTML"):
        return self._record("send_voice", chat_id=chat_id, voice=voice, caption=caption, reply_markup=reply_markup)

    async def answer_callback_query(self, callback_query_id, text=None):
        return self._record("answer_callback_query", callback_query_id=callback_query_id, text=text)

    async def delete_message(self, chat_id, message_id):
        return self._record("delete_message", chat_id=chat_id, message_id=message_id)

    async def download_file(self, file_id):
        self.calls.append(("download_file", {"file_id": file_id}))
        if file_id in self.failing_downloads or file_id not in self.files:
            raise TransportError(f"Download of {file_id} failed")
        return self.files[file_id]

    async def set_webhook(self, url, secret_token=None):
        return self._record("set_webhook", url=url, secret_token=secret_token)

    async def close(self):
        self.closed = True

    def sent(self, method: str = "send_message", chat_id: Optional[int] = None) -> list[dict]:
        return [
            kwargs
            for name, kwargs in self.calls
            if name == method and (chat_id is None or kwargs.get("chat_id") == chat_id)
        ]


class FakeDrive:
    """In-memory document store. fail_on_upload makes the n-th upload (1-based) fail."""

    def __init__(self):
        self.folders: dict[str, str] = {}
        self.folder_calls = 0
        self.objects: dict[str, tuple[str, bytes]] = {}
        self.uploads: list[str] = []
        self.fail_on_upload: Optional[int] = None
        self.fail_reads = False
        self.closed = False

    async def create_folder(self, name, parent_id=None):
        self.folder_calls += 1
        await asyncio.sleep(0)
        return self.folders.setdefault(name, f"folder-{len(self.folders) + 1}")

    async def upload_object(self, folder_id, name, data, mime_type):
        self.uploads.append(name)
        if self.fail_on_upload == len(self.uploads):
            raise StoreError(f"Upload of {name} failed")
        object_id = f"obj{len(self.uploads)}"
        self.objects[object_id] = (name, data)
        return StoredObject(id=object_id, name=name, link=f"https://drive.example/{object_id}")

    async def list_objects(self, folder_id, name_prefix="", limit=100):
        found = [
            StoredObject(id=object_id, name=name, link=f"https://drive.example/{object_id}")
            for object_id, (name, _) in self.objects.items()
            if name.startswith(name_prefix)
        ]
        return list(reversed(found))[:limit]

    async def get_object(self, object_id):
        if self.fail_reads:
            raise StoreError("Drive API error 500")
        if object_id not in self.objects:
            raise NotFoundError(f"Drive object not found: {object_id}")
        return self.objects[object_id][1]

    async def close(self):
        self.closed = True

    def put(self, name: str, data: bytes) -> str:
        object_id = f"manual{len(self.objects) + 1}"
        self.objects[object_id] = (name, data)
        return object_id


class FakeSheets:
    def __init__(self, ranges: Optional[dict[str, list[list[str]]]] = None):
        self.ranges = ranges or {}
        self.reads: list[str] = []
        self.fail = False
        self.closed = False

    async def read_rows(self, sheet_id, range_spec):
        self.reads.append(range_spec)
        if self.fail:
            raise CatalogError("Sheets API error 503")
        return self.ranges.get(range_spec, [])

    async def close(self):
        self.closed = True


def product_rows(count: int) -> list[list[str]]:
    rows = [["ID", "Name", "Price", "Description"]]
    for n in range(1, count + 1):
        rows.append([f"p{n}", f"Product {n}", f"{n * 10} USD", f"Description {n}"])
    return rows


def make_sender(user_id: int = CUSTOMER_ID, name: str = "Aung Aung") -> Sender:
    return Sender(user_id=user_id, name=name, label=f"{name} (user{user_id})")


def make_message(
    text: Optional[str] = None,
    user_id: int = CUSTOMER_ID,
    chat_id: int = CUSTOMER_CHAT_ID,
    attachments: tuple[RawAttachment, ...] = (),
    category: Optional[EventCategory] = None,
) -> MessageEvent:
    if category is None:
        category = EventCategory.TEXT if text else EventCategory.OTHER
        if attachments:
            category = EventCategory(attachments[0].kind.value)
    return MessageEvent(
        sender=make_sender(user_id),
        chat_id=chat_id,
        message_id=10,
        category=category,
        timestamp=datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc),
        text=text,
        attachments=attachments,
    )


def make_attachment(file_id: str, kind: AttachmentKind = AttachmentKind.PHOTO) -> RawAttachment:
    mime = {"photo": "image/jpeg", "document": "application/pdf", "voice": "audio/ogg"}[kind.value]
    return RawAttachment(kind=kind, file_id=file_id, mime_type=mime, file_name=f"{file_id}.bin")


@pytest.fixture
def telegram():
    return FakeTelegram()


@pytest.fixture
def drive():
    return FakeDrive()


@pytest.fixture
def sheets():
    return FakeSheets({PRODUCTS_RANGE: product_rows(7), IMAGES_RANGE: [["id", "image_url"]]})


@pytest.fixture
def store(drive):
    return TicketStore(drive, "support-tickets")


@pytest.fixture
def catalog_source(sheets):
    return CatalogSource(sheets, "sheet-1", PRODUCTS_RANGE, IMAGES_RANGE)


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def ingestion(telegram, store):
    return TicketIngestionEngine(telegram, store, OPERATOR_IDS)


@pytest.fixture
def replies(telegram, store, registry):
    return ReplyRoutingEngine(telegram, store, registry, OPERATOR_IDS)


@pytest.fixture
def catalog(telegram, catalog_source, registry):
    return CatalogBrowsingEngine(telegram, catalog_source, registry, page_size=5)


@pytest.fixture
def services(telegram, store, catalog_source, registry, ingestion, replies, catalog):
    return BotServices(
        telegram=telegram,
        store=store,
        catalog_source=catalog_source,
        registry=registry,
        ingestion=ingestion,
        replies=replies,
        catalog=catalog,
    )
