from fastapi import Request

from support_bot.config import Settings
from support_bot.logging_config import get_logger
from support_bot.services.catalog_service import CatalogBrowsingEngine
from support_bot.services.catalog_source import CatalogSource
from support_bot.services.dispatch_service import BotServices
from support_bot.services.drive_service import DriveService
from support_bot.services.google_auth import build_drive, build_sheets, load_credentials
from support_bot.services.ingestion_service import TicketIngestionEngine
from support_bot.services.reply_service import ReplyRoutingEngine
from support_bot.services.session_registry import InMemorySessionStore, SessionRegistry
from support_bot.services.sheets_service import SheetsService
from support_bot.services.telegram_service import TelegramService
from support_bot.services.ticket_store import TicketStore

logger = get_logger("dependencies")


def build_services(settings: Settings) -> BotServices:
    """Wire adapters, session registry and engines from settings."""
    operator_ids = settings.operator_id_set
    if not operator_ids:
        logger.warning("OPERATOR_IDS is empty: tickets will not be delivered to anyone")

    drive_api = sheets_api = None
    if settings.google_service_account_file:
        credentials = load_credentials(settings.google_service_account_file)
        drive_api = build_drive(credentials)
        sheets_api = build_sheets(credentials)
    else:
        logger.warning("GOOGLE_SERVICE_ACCOUNT_FILE is empty: ticket store and catalog are unavailable")

    telegram = TelegramService(settings.bot_token)
    store = TicketStore(DriveService(drive_api), settings.tickets_folder_name, settings.drive_parent_folder_id)
    catalog_source = CatalogSource(
        SheetsService(sheets_api),
        settings.catalog_sheet_id,
        settings.catalog_range,
        settings.catalog_images_range,
    )
    registry = SessionRegistry(
        pending_replies=InMemorySessionStore(),
        browsing_sessions=InMemorySessionStore(
            max_entries=settings.browsing_session_max_entries,
            ttl_seconds=settings.browsing_session_ttl_seconds,
        ),
    )

    return BotServices(
        telegram=telegram,
        store=store,
        catalog_source=catalog_source,
        registry=registry,
        ingestion=TicketIngestionEngine(telegram, store, operator_ids),
        replies=ReplyRoutingEngine(
            telegram,
            store,
            registry,
            operator_ids,
            clear_pending_on_forward_failure=settings.clear_pending_on_forward_failure,
        ),
        catalog=CatalogBrowsingEngine(telegram, catalog_source, registry, page_size=settings.catalog_page_size),
        ticket_list_limit=settings.ticket_list_limit,
    )


def get_services(request: Request) -> BotServices:
    return request.app.state.services
