"""Exception taxonomy shared by adapters and engines."""

from typing import Optional

from support_bot.services.result import ErrorCode


class SupportBotError(Exception):
    code = "unknown"

    def __init__(self, message: str, context: Optional[dict] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)


class TransportError(SupportBotError):
    """Telegram send/fetch failure."""

    code = ErrorCode.TRANSPORT_ERROR


class StoreError(SupportBotError):
    """Document store create/upload/list/get failure."""

    code = ErrorCode.STORE_ERROR


class CatalogError(SupportBotError):
    """Catalog row fetch failure."""

    code = ErrorCode.CATALOG_ERROR


class NotFoundError(StoreError):
    code = ErrorCode.NOT_FOUND



class SessionMissError(SupportBotError):
    """No live catalog session for the user."""

    code = ErrorCode.NO_SESSION


class UnauthorizedError(SupportBotError):
    code = ErrorCode.UNAUTHORIZED
