from fastapi import FastAPI, Request

from support_bot import __version__
from support_bot.config import settings
from support_bot.dependencies import build_services
from support_bot.logging_config import get_logger, setup_logging
from support_bot.routers import telegram_webhook
from support_bot.services.errors import SupportBotError
from support_bot.services.health_service import get_system_health

setup_logging(settings.log_level, settings.log_dir or None)

logger = get_logger("main")

app = FastAPI(
    title="Support Bot",
    description="Telegram support desk and product catalog bot",
    version=__version__,
)

app.include_router(telegram_webhook.router)


@app.on_event("startup")
async def start_services() -> None:
    if not settings.bot_token:
        logger.error("Missing BOT_TOKEN")
        raise RuntimeError("BOT_TOKEN is not configured")

    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)
    services = app.state.services

    try:
        folder_id = await services.store.ensure_folder()
        logger.info(f"Ticket folder ready: {folder_id}")
    except SupportBotError as e:
        logger.error(f"Ticket folder unavailable at startup: {e}")

    if settings.webhook_url:
        url = f"{settings.webhook_url.rstrip('/')}/telegram-webhook"
        try:
            await services.telegram.set_webhook(url, settings.webhook_secret or None)
            logger.info(f"Webhook registered: {url}")
        except SupportBotError as e:
            logger.error(f"Webhook registration failed: {e}")
    else:
        logger.warning("WEBHOOK_URL not set: webhook not registered")


@app.on_event("shutdown")
async def stop_services() -> None:
    services = getattr(app.state, "services", None)
    if services is not None:
        await services.close()


@app.get("/health")
async def health(request: Request):
    services = getattr(request.app.state, "services", None)
    if services is None:
        return {"status": "starting"}
    return get_system_health(services.registry)
