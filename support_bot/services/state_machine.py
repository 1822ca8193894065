"""Catalog browsing states and page transitions."""

import math
from dataclasses import dataclass, replace
from typing import Optional

from support_bot.schemas.catalog import CatalogItem


def last_page_index(item_count: int, page_size: int) -> int:
    """ceil(item_count / page_size) - 1, and 0 for an empty catalog."""
    if page_size < 1:
        raise ValueError(f"page_size must be positive, got {page_size}")
    if item_count <= 0:
        return 0
    return math.ceil(item_count / page_size) - 1


def clamp_page(page: int, item_count: int, page_size: int) -> int:
    return max(0, min(page, last_page_index(item_count, page_size)))


@dataclass(frozen=True)
class BrowsingSession:
    items: tuple[CatalogItem, ...]
    page: int = 0
    page_size: int = 5

    def __post_init__(self):
        object.__setattr__(self, "page", clamp_page(self.page, len(self.items), self.page_size))

    @property
    def last_page(self) -> int:
        return last_page_index(len(self.items), self.page_size)

    @property
    def has_previous(self) -> bool:
        return self.page > 0

    @property
    def has_next(self) -> bool:
        return self.page < self.last_page

    def page_items(self) -> tuple[CatalogItem, ...]:
        start = self.page * self.page_size
        return self.items[start : start + self.page_size]

    def find_item(self, item_id: str) -> Optional[CatalogItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


def start_browsing(items: list[CatalogItem], page_size: int) -> BrowsingSession:
    """No session -> browsing page 0."""
    return BrowsingSession(items=tuple(items), page=0, page_size=page_size)


def next_page(session: BrowsingSession) -> BrowsingSession:
    """Advance one page; stays put on the last page."""
    return replace(session, page=min(session.page + 1, session.last_page))


def previous_page(session: BrowsingSession) -> BrowsingSession:
    """Go back one page; stays put on the first page."""
    return replace(session, page=max(session.page - 1, 0))
