import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from support_bot.config import settings
from support_bot.dependencies import get_services
from support_bot.logging_config import get_logger
from support_bot.schemas.events import decode_update
from support_bot.schemas.telegram import TelegramUpdate, TelegramWebhookResponse
from support_bot.schemas.ticket import NON_TEXT_MARKER
from support_bot.services.dispatch_service import BotServices, dispatch_event

logger = get_logger("telegram_webhook")

router = APIRouter()


async def parse_telegram_update(request: Request) -> Optional[dict]:
    """Update body as a dict, tolerating invalid UTF-8. None when it is not JSON."""
    raw = await request.body()
    try:
        return json.loads(raw)
    except UnicodeDecodeError:
        logger.warning("Webhook payload is not valid UTF-8, replacing bad bytes")
    except ValueError as e:
        logger.error(f"Webhook payload is not JSON: {e}")
        return None

    try:
        return json.loads(raw.decode("utf-8", errors="replace"))
    except ValueError as e:
        logger.error(f"Webhook payload is not JSON: {e}")
        return None


def log_inbound_update(update: TelegramUpdate) -> None:
    """One log line per delivery: update type, who sent it and what."""
    source = update.callback_query or update.message or update.edited_message
    user = source.from_user if source else None
    user_label = user.label if user else "unknown-user"

    content = None
    message = update.message or update.edited_message
    if update.callback_query:
        content = update.callback_query.data
    elif message:
        content = message.text or message.caption
        if message.largest_photo:
            content = f"Photo file_id: {message.largest_photo.file_id}"
        elif message.document:
            content = f"Document file_id: {message.document.file_id}"
        elif message.voice:
            content = f"Voice file_id: {message.voice.file_id}"

    logger.info(
        f"{update.update_type} | From: {user_label} | Message: {content or NON_TEXT_MARKER}",
        extra={"context": {"update_id": update.update_id, "user_id": user.id if user else None}},
    )


@router.post("/telegram-webhook", response_model=TelegramWebhookResponse)
async def handle_telegram_webhook(
    request: Request,
    services: BotServices = Depends(get_services),
    secret_token: Optional[str] = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
):
    """
    Handle Telegram webhook updates:
    - Callback queries (button clicks) -> catalog navigation, ticket view/reply
    - Messages from operators -> commands or forwarding to the customer
    - Messages from customers -> commands, catalog or a new ticket
    """
    if settings.webhook_secret and secret_token != settings.webhook_secret:
        logger.warning("Rejected webhook call with wrong secret token")
        return TelegramWebhookResponse(success=False, message="Invalid secret token")

    try:
        body = await parse_telegram_update(request)
        if body is None:
            return TelegramWebhookResponse(success=False, message="Invalid telegram payload")

        update = TelegramUpdate(**body)
        log_inbound_update(update)

        event = decode_update(update)
        if event is None:
            return TelegramWebhookResponse(success=True, message="No actionable content")

        outcome = await dispatch_event(services, event)
        return TelegramWebhookResponse(success=outcome.success, message=outcome.message)

    except Exception as e:
        # Telegram redelivers on non-2xx, so failures are reported in the body
        logger.error(f"Telegram webhook error: {e}", exc_info=True)
        return TelegramWebhookResponse(success=False, message=str(e))
