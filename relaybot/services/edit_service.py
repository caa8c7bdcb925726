"""Edit notifications in both directions.

Each side keeps only the last known version of a message: the notice shows
that version next to the new one, then the new one replaces it.
"""

from sqlalchemy.orm import Session

from relaybot.config import settings
from relaybot.logging_config import get_logger
from relaybot.schemas.telegram import TelegramMessage
from relaybot.services.card_service import escape, format_timestamp
from relaybot.services.ledger_service import get_message, put_message, staff_message_key
from relaybot.services.relay_service import resolve_operator_topic
from relaybot.services.result import FailureCode, Result
from relaybot.services.telegram_service import TelegramService, error_description
from relaybot.services.user_service import find_user_by_topic, get_user

logger = get_logger("edit_service")

NON_TEXT_PLACEHOLDER = "[media content]"


def format_edit_notice(title: str, previous_text: str, previous_date, new_text: str, edit_date) -> str:
    return (
        f"⚠️ <b>{title}</b>\n"
        f"<b>Sent or last edited:</b> <code>{format_timestamp(previous_date)}</code>\n"
        f"<b>Edited:</b> <code>{format_timestamp(edit_date)}</code>\n"
        f"<b>Previous text:</b>\n{escape(previous_text)}\n"
        f"<b>New text:</b>\n{escape(new_text)}"
    )


def handle_user_edit(db: Session, telegram: TelegramService, message: TelegramMessage) -> Result[str]:
    """A user edited a private message that was relayed earlier."""
    user_id = str(message.chat.id)
    user = get_user(db, user_id)
    if not user or not user.topic_id:
        return Result.failure("User has no topic", FailureCode.IGNORED)

    record = get_message(db, user_id, message.message_id)
    if not record:
        return Result.failure("Nothing to compare against", FailureCode.IGNORED)

    new_text = message.text_content or NON_TEXT_PLACEHOLDER
    edit_date = message.edit_date or message.date
    notice = format_edit_notice("User edited a message", record.text, record.date, new_text, edit_date)

    result = telegram.send_message(
        chat_id=settings.admin_group_id, text=notice, message_thread_id=user.topic_id
    )
    if not result.get("ok"):
        logger.warning(f"Edit notice for user {user_id} not delivered: {error_description(result)}")

    put_message(db, user_id, message.message_id, new_text, edit_date)
    return Result.success(user.topic_id)


def handle_staff_edit(db: Session, telegram: TelegramService, message: TelegramMessage) -> Result[str]:
    """An operator edited a reply inside a user's topic."""
    topic_id = resolve_operator_topic(db, message)
    if topic_id is None:
        return Result.failure("Not an operator topic message", FailureCode.IGNORED)

    user = find_user_by_topic(db, topic_id)
    if not user:
        return Result.failure(f"No user for topic {topic_id}", FailureCode.IGNORED)

    record = get_message(db, user.user_id, staff_message_key(message.message_id))
    if not record:
        return Result.failure("Nothing to compare against", FailureCode.IGNORED)

    new_text = message.text_content or NON_TEXT_PLACEHOLDER
    edit_date = message.edit_date or message.date
    notice = format_edit_notice("Administrator edited a reply", record.text, record.date, new_text, edit_date)

    result = telegram.send_message(chat_id=user.user_id, text=notice)
    if not result.get("ok"):
        logger.error(f"Edit notice to user {user.user_id} failed: {error_description(result)}")
        return Result.failure(error_description(result), FailureCode.DELIVERY_FAILED)

    put_message(db, user.user_id, staff_message_key(message.message_id), new_text, edit_date)
    return Result.success(user.user_id)
