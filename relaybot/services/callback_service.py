"""Button presses on status cards and in the operator menu."""

from typing import Optional

from sqlalchemy.orm import Session

from relaybot.config import settings
from relaybot.logging_config import get_logger
from relaybot.models import User
from relaybot.schemas.telegram import TelegramCallbackQuery
from relaybot.services import config_service
from relaybot.services.card_service import SLOT_FIELDS, CardSlot, build_card_buttons, escape, extract_jump_url
from relaybot.services.menu_service import CALLBACK_PREFIX, handle_config_callback
from relaybot.services.result import FailureCode, Result
from relaybot.services.telegram_service import TelegramService, error_description
from relaybot.services.topic_service import LogTopic, sync_status_cards
from relaybot.services.user_service import get_or_create_user, update_user

logger = get_logger("callback_service")

NO_PERMISSION_TEXT = "You are not allowed to use these buttons."

# action -> (field, new value, toast)
CARD_ACTIONS = {
    "block": ("is_blocked", True, "🚫 User blocked"),
    "unblock": ("is_blocked", False, "✅ User unblocked"),
    "mute": ("is_muted", True, "🔕 Notifications muted"),
    "unmute": ("is_muted", False, "🔔 Notifications restored"),
}


def parse_card_callback(data: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """``block:123`` -> ("block", "123")."""
    if not data or ":" not in data:
        return None, None
    action, target = data.split(":", 1)
    return action, target or None


def slot_for_topic(db: Session, user: User, topic_id: Optional[str]) -> Optional[CardSlot]:
    """Which card slot a message living in ``topic_id`` belongs to."""
    if not topic_id:
        return None
    if user.topic_id and topic_id == user.topic_id:
        return CardSlot.PRIMARY
    if topic_id == config_service.db_config_get(db, LogTopic.PROFILE.value):
        return CardSlot.PROFILE
    if topic_id == config_service.db_config_get(db, LogTopic.BLOCK.value):
        return CardSlot.BLOCK
    return None


def adopt_card(db: Session, user: User, slot: Optional[CardSlot], message_id: int, force: bool = False) -> bool:
    """Remember the pressed card as the slot's message if the slot has none (or when forced)."""
    if slot is None:
        return False
    field = SLOT_FIELDS[slot]
    if getattr(user, field) and not force:
        return False
    update_user(db, user, **{field: str(message_id)})
    return True


def handle_card_action(
    db: Session, telegram: TelegramService, query: TelegramCallbackQuery, action: str, target_user_id: str
) -> Result[str]:
    message = query.message
    topic_id = str(message.message_thread_id) if message.message_thread_id else None
    user = get_or_create_user(db, target_user_id)
    adopt_card(db, user, slot_for_topic(db, user, topic_id), message.message_id)

    field, new_value, toast = CARD_ACTIONS[action]
    fields = {field: new_value}
    if action == "unblock":
        fields["block_count"] = 0
    update_user(db, user, **fields)
    logger.info(
        f"Card action {action}",
        extra={"context": {"user_id": user.user_id, "operator_id": query.from_user.id}},
    )

    markup = build_card_buttons(
        user.user_id, bool(user.is_blocked), bool(user.is_muted), extract_jump_url(message.reply_markup)
    )
    result = telegram.edit_message_reply_markup(str(message.chat.id), message.message_id, markup)
    if not result.get("ok"):
        logger.warning(f"Pressed card not updated: {error_description(result)}")

    telegram.answer_callback_query(query.id, toast)
    sync_status_cards(db, telegram, settings.admin_group_id, user, skip_message_id=str(message.message_id))

    if field == "is_blocked" and topic_id and topic_id == user.topic_id:
        verb = "blocked" if new_value else "unblocked"
        icon = "❌" if new_value else "✅"
        telegram.send_message(
            chat_id=str(message.chat.id),
            text=f"{icon} <b>User {escape(user.display_name)} has been {verb}.</b>",
            message_thread_id=topic_id,
        )

    return Result.success(action)


def handle_pin(
    db: Session, telegram: TelegramService, query: TelegramCallbackQuery, target_user_id: str
) -> Result[str]:
    message = query.message
    topic_id = str(message.message_thread_id) if message.message_thread_id else None
    result = telegram.pin_message(str(message.chat.id), message.message_id, topic_id)

    if not result.get("ok"):
        telegram.answer_callback_query(query.id, f"❌ Pin failed: {error_description(result)}", show_alert=True)
        return Result.failure(error_description(result), FailureCode.PIN_FAILED)

    user = get_or_create_user(db, target_user_id)
    slot = slot_for_topic(db, user, topic_id)
    if slot in (CardSlot.PRIMARY, CardSlot.PROFILE):
        adopt_card(db, user, slot, message.message_id, force=True)

    telegram.answer_callback_query(query.id, "✅ Card pinned")
    return Result.success("pin_card")


def handle_callback_query(db: Session, telegram: TelegramService, query: TelegramCallbackQuery) -> Result[str]:
    """Route a button press. Only operators get past the permission check."""
    operator = query.from_user
    if not config_service.is_admin_user(db, operator.id, operator.username):
        telegram.answer_callback_query(query.id, NO_PERMISSION_TEXT, show_alert=True)
        return Result.failure("Not an operator", FailureCode.FORBIDDEN)

    data = query.data or ""
    if data.startswith(CALLBACK_PREFIX):
        return handle_config_callback(db, telegram, query)

    message = query.message
    if not message or str(message.chat.id) != str(settings.admin_group_id):
        return Result.failure("Card button outside the staff group", FailureCode.IGNORED)

    action, target_user_id = parse_card_callback(data)
    if not target_user_id:
        telegram.answer_callback_query(query.id)
        return Result.failure(f"Malformed callback data: {data}", FailureCode.UNKNOWN_ACTION)

    if action in CARD_ACTIONS:
        return handle_card_action(db, telegram, query, action, target_user_id)
    if action == "pin_card":
        return handle_pin(db, telegram, query, target_user_id)

    telegram.answer_callback_query(query.id)
    return Result.failure(f"Unknown callback action: {action}", FailureCode.UNKNOWN_ACTION)
