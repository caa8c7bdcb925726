import asyncio
import json
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from relaybot.database import StoreInitError, init_db
from relaybot.logging_config import get_logger
from relaybot.schemas.telegram import TelegramUpdate, TelegramWebhookResponse
from relaybot.services.update_service import process_update

logger = get_logger("telegram_webhook")

router = APIRouter()

_store_ready = False


async def ensure_store() -> None:
    """Create or migrate the schema off the event loop, until it has succeeded once."""
    global _store_ready
    if _store_ready:
        return
    await asyncio.to_thread(init_db)
    _store_ready = True


async def parse_telegram_update(request: Request) -> Optional[dict]:
    """
    Parse Telegram update with tolerant decoding to avoid utf-8 crashes.
    Returns dict or None.
    """
    try:
        return await request.json()
    except Exception as e:
        logger.warning(f"Standard request.json() failed: {e}, fallback decoding")

    raw = await request.body()
    for enc in ("utf-8", "latin-1"):
        try:
            return json.loads(raw.decode(enc, errors="replace"))
        except ValueError:
            continue

    logger.error("Failed to decode Telegram webhook payload after fallbacks")
    return None


@router.post("/telegram-webhook", response_model=TelegramWebhookResponse)
async def handle_telegram_webhook(request: Request, background_tasks: BackgroundTasks):
    """
    Acknowledge a Telegram update and process it after the response:
    - private messages -> verification, menu input or relay into the user's topic
    - staff group topic messages -> delivery to the user
    - edits -> before/after notices
    - callback queries -> card buttons and the operator menu
    """
    try:
        await ensure_store()
    except StoreInitError as e:
        return JSONResponse(
            status_code=500,
            content=TelegramWebhookResponse(success=False, message=f"Store initialization failed: {e}").model_dump(),
        )

    body = await parse_telegram_update(request)
    if body is None:
        return TelegramWebhookResponse(success=True, message="OK")

    try:
        update = TelegramUpdate(**body)
    except (ValidationError, TypeError) as e:
        logger.warning(f"Malformed Telegram update ignored: {e}")
        return TelegramWebhookResponse(success=True, message="OK")

    background_tasks.add_task(process_update, update)
    return TelegramWebhookResponse(success=True, message="OK")


# Webhooks registered against the bare service URL
@router.post("/", response_model=TelegramWebhookResponse, include_in_schema=False)
async def handle_root_webhook(request: Request, background_tasks: BackgroundTasks):
    return await handle_telegram_webhook(request, background_tasks)
