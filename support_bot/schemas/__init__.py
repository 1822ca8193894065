from support_bot.schemas.catalog import CatalogItem
from support_bot.schemas.telegram import TelegramUpdate, TelegramWebhookResponse
from support_bot.schemas.ticket import Attachment, Reply, Ticket

__all__ = ["CatalogItem", "TelegramUpdate", "TelegramWebhookResponse", "Attachment", "Reply", "Ticket"]
