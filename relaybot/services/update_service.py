"""Classify an incoming update and run it against its own store session."""

from typing import Callable, Optional

from sqlalchemy.orm import Session

from relaybot.config import settings
from relaybot.database import SessionLocal
from relaybot.logging_config import ContextLogger, get_logger
from relaybot.schemas.telegram import TelegramMessage, TelegramUpdate
from relaybot.services import config_service
from relaybot.services.callback_service import handle_callback_query
from relaybot.services.edit_service import handle_staff_edit, handle_user_edit
from relaybot.services.menu_service import AwaitingInput, handle_menu_input, load_menu_state, open_main_menu
from relaybot.services.relay_service import relay_inbound, relay_outbound
from relaybot.services.result import FailureCode, Result
from relaybot.services.state_machine import VerificationState, parse_state
from relaybot.services.telegram_service import TelegramService
from relaybot.services.user_service import get_or_create_user
from relaybot.services.verification_service import (
    STAFF_BYPASS_NOTICE,
    apply_operator_bypass,
    handle_start,
    handle_verification,
)

logger = get_logger("update_service")

START_COMMANDS = ("/start", "/help")
START_HINT = "Please send /start to begin."


def handle_private_message(db: Session, telegram: TelegramService, message: TelegramMessage) -> Result[str]:
    user_id = str(message.chat.id)
    text = message.text or ""
    username = message.from_user.username if message.from_user else None

    is_primary = config_service.is_primary_admin(user_id)
    is_operator = config_service.is_admin_user(db, user_id, username)

    user = get_or_create_user(db, user_id)
    if is_operator:
        apply_operator_bypass(db, user)

    if text.strip() in START_COMMANDS:
        if is_primary:
            return open_main_menu(db, telegram, user_id)
        if is_operator:
            telegram.send_message(chat_id=user_id, text=STAFF_BYPASS_NOTICE, parse_mode=None)
            return Result.success("staff_notice")
        if user.is_blocked:
            return Result.success("blocked")
        result = handle_start(db, telegram, user)
        return Result.success(result.value.value)

    if user.is_blocked:
        return Result.success("blocked")

    if is_primary:
        state = load_menu_state(db, user_id)
        if isinstance(state, AwaitingInput):
            return handle_menu_input(db, telegram, user_id, text, state)

    state = parse_state(user.user_state)
    if state == VerificationState.PENDING_VERIFICATION or (
        state == VerificationState.NEW and text and not text.startswith("/")
    ):
        result = handle_verification(db, telegram, user, text)
        return Result.success(result.value.value) if result.ok else result

    if state == VerificationState.VERIFIED:
        return relay_inbound(db, telegram, message, user)

    telegram.send_message(chat_id=user_id, text=START_HINT, parse_mode=None)
    return Result.success("start_hint")


def dispatch_update(db: Session, telegram: TelegramService, update: TelegramUpdate) -> Result[str]:
    if update.message:
        message = update.message
        if message.chat.type == "private":
            return handle_private_message(db, telegram, message)
        if str(message.chat.id) == str(settings.admin_group_id):
            return relay_outbound(db, telegram, message)
        return Result.failure(f"Message from unrelated chat {message.chat.id}", FailureCode.IGNORED)

    if update.edited_message:
        message = update.edited_message
        if message.chat.type == "private":
            return handle_user_edit(db, telegram, message)
        if str(message.chat.id) == str(settings.admin_group_id):
            return handle_staff_edit(db, telegram, message)
        return Result.failure(f"Edit from unrelated chat {message.chat.id}", FailureCode.IGNORED)

    if update.callback_query:
        return handle_callback_query(db, telegram, update.callback_query)

    return Result.failure("No actionable content", FailureCode.IGNORED)


def process_update(
    update: TelegramUpdate,
    session_factory: Callable[[], Session] = SessionLocal,
    telegram: Optional[TelegramService] = None,
) -> Optional[Result[str]]:
    """Background entry point: one update, one session, commit at the end.

    Exceptions are logged and swallowed, the webhook has already answered.
    """
    log = ContextLogger(logger, {"update_id": update.update_id})
    telegram = telegram or TelegramService(settings.bot_token)
    db = session_factory()
    try:
        result = dispatch_update(db, telegram, update)
        db.commit()
        if result.ok:
            log.info(f"Update processed: {result.value}")
        elif result.transport_failed:
            log.warning(f"Update not delivered: {result.error}", context={"code": result.error_code.value})
        else:
            log.info(f"Update skipped: {result.error}", context={"code": result.error_code.value})
        return result
    except Exception as e:
        db.rollback()
        log.error(f"Update processing failed: {e}", exc_info=True)
        return None
    finally:
        db.close()
