from fastapi import FastAPI

from relaybot.config import settings
from relaybot.database import StoreInitError, init_db
from relaybot.logging_config import get_logger, setup_logging
from relaybot.routers import telegram_webhook

setup_logging(settings.log_level)
logger = get_logger("main")

app = FastAPI(
    title="Relay Bot",
    description="Relays private chats with a Telegram bot into per-user forum topics of a staff group",
    version="0.1.0",
)

app.include_router(telegram_webhook.router)


@app.on_event("startup")
def on_startup() -> None:
    try:
        init_db()
    except StoreInitError:
        # Each webhook call retries and answers 500 until the store is reachable
        logger.error("Store unavailable at startup")
        return
    logger.info("Relay bot started", extra={"context": {"admin_group_id": settings.admin_group_id}})


@app.get("/health")
async def health():
    return {"status": "ok"}
