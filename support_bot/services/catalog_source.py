from typing import Optional

from support_bot.logging_config import get_logger
from support_bot.schemas.catalog import CatalogItem
from support_bot.schemas.events import CALLBACK_DATA_LIMIT, OrderItem, SelectItem, encode_action
from support_bot.services.sheets_service import SheetsService

logger = get_logger("catalog_source")

HEADER_ALIASES = {
    "id": "id",
    "item_id": "id",
    "product_id": "id",
    "sku": "id",
    "name": "name",
    "title": "name",
    "price": "price",
    "description": "description",
    "desc": "description",
    "image": "image_url",
    "image_url": "image_url",
    "url": "image_url",
}


def _normalize_header(header: str) -> Optional[str]:
    key = header.strip().lower().replace(" ", "_")
    return HEADER_ALIASES.get(key)


def rows_to_records(rows: list[list[str]]) -> list[dict[str, str]]:
    """Map data rows to dicts keyed by known field names. First row is the header."""
    if not rows:
        return []
    fields = [_normalize_header(h) for h in rows[0]]
    records = []
    for row in rows[1:]:
        record = {}
        for field, cell in zip(fields, row):
            if field and field not in record:
                record[field] = cell.strip()
        records.append(record)
    return records


def fits_callback(item_id: str) -> bool:
    """Whether the item and order buttons for this id fit in callback data."""
    return all(
        len(encode_action(action).encode("utf-8")) <= CALLBACK_DATA_LIMIT
        for action in (SelectItem(item_id), OrderItem(item_id))
    )


def build_items(product_rows: list[list[str]], image_rows: Optional[list[list[str]]] = None) -> list[CatalogItem]:
    """Catalog items in sheet order with image URLs merged by id. Rows without a usable id are dropped."""
    images = {}
    for record in rows_to_records(image_rows or []):
        item_id = record.get("id")
        if item_id and record.get("image_url"):
            images.setdefault(item_id, record["image_url"])

    items = []
    dropped = 0
    for record in rows_to_records(product_rows):
        item_id = record.get("id")
        if not item_id:
            dropped += 1
            continue
        if not fits_callback(item_id):
            logger.warning(f"Dropped catalog row with overlong id {item_id[:20]}…")
            continue
        items.append(
            CatalogItem(
                id=item_id,
                name=record.get("name", ""),
                price=record.get("price", ""),
                description=record.get("description", ""),
                image_url=images.get(item_id, record.get("image_url", "")),
            )
        )

    if dropped:
        logger.warning(f"Dropped {dropped} catalog rows without id")
    return items


class CatalogSource:
    def __init__(self, sheets: SheetsService, sheet_id: str, items_range: str, images_range: str = ""):
        self.sheets = sheets
        self.sheet_id = sheet_id
        self.items_range = items_range
        self.images_range = images_range

    async def fetch_items(self) -> list[CatalogItem]:
        """Read the catalog. Raises CatalogError when the sheet cannot be read."""
        product_rows = await self.sheets.read_rows(self.sheet_id, self.items_range)
        image_rows = None
        if self.images_range:
            image_rows = await self.sheets.read_rows(self.sheet_id, self.images_range)
        items = build_items(product_rows, image_rows)
        logger.info(f"Fetched {len(items)} catalog items")
        return items
