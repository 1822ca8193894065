from support_bot.services.catalog_service import CatalogBrowsingEngine
from support_bot.services.ingestion_service import TicketIngestionEngine
from support_bot.services.reply_service import ReplyRoutingEngine
from support_bot.services.result import ErrorCode, Result
from support_bot.services.session_registry import InMemorySessionStore, SessionRegistry

__all__ = [
    "CatalogBrowsingEngine",
    "TicketIngestionEngine",
    "ReplyRoutingEngine",
    "ErrorCode",
    "Result",
    "InMemorySessionStore",
    "SessionRegistry",
]
