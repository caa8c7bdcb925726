"""Relay between private user chats and their topics in the staff group."""

from typing import Optional

from sqlalchemy.orm import Session

from relaybot.config import settings
from relaybot.logging_config import get_logger
from relaybot.models import User
from relaybot.schemas.telegram import TelegramMessage, TelegramUser
from relaybot.services import config_service
from relaybot.services.card_service import escape, format_backup_header, profile_for
from relaybot.services.filter_service import FilterDecision, evaluate_message, load_filter_config
from relaybot.services.ledger_service import put_message, staff_message_key
from relaybot.services.result import FailureCode, Result
from relaybot.services.telegram_service import (
    TelegramResponseError,
    TelegramService,
    error_description,
    is_thread_missing,
)
from relaybot.services.topic_service import (
    LogTopic,
    TopicUnavailableError,
    refresh_topic_label,
    relocate_topic,
    resolve_topic,
    sync_status_cards,
)
from relaybot.services.user_service import find_user_by_topic, update_user

logger = get_logger("relay_service")

TOPIC_UNAVAILABLE_NOTICE = "Sorry, a support topic could not be created right now. Please try again later."
RELAY_FAILED_NOTICE = "Sorry, your message could not be delivered. Please try again later or contact an administrator."
UNKNOWN_TOPIC_NOTICE = "❌ No user is linked to this topic, the message was not delivered."
UNSUPPORTED_CONTENT_NOTICE = "An administrator sent content the bot cannot forward (for example a poll or special media)."

# animation before document: Telegram sets both on GIFs
OUTBOUND_MEDIA_KINDS = ("video", "audio", "voice", "sticker", "animation", "document")


def notify_user(telegram: TelegramService, chat_id, text: str) -> dict:
    """Plain-text message to a private chat. Operator-written text is not HTML-safe."""
    return telegram.send_message(chat_id=str(chat_id), text=text, parse_mode=None)


def _sender_of(message: TelegramMessage) -> TelegramUser:
    if message.from_user:
        return message.from_user
    return TelegramUser(id=message.chat.id, first_name=message.chat.title or "")


def apply_filter_decision(db: Session, telegram: TelegramService, user: User, decision: FilterDecision) -> None:
    """Persist strikes, send notices and the auto-reply for a non-forwardable message."""
    if decision.keyword_hit:
        fields = {"block_count": decision.strike_count}
        if decision.auto_blocked:
            fields["is_blocked"] = True
        update_user(db, user, **fields)
        logger.info(
            "Blocked keyword hit",
            extra={
                "context": {
                    "user_id": user.user_id,
                    "strikes": decision.strike_count,
                    "auto_blocked": decision.auto_blocked,
                }
            },
        )

    for notice in decision.notices:
        notify_user(telegram, user.user_id, notice)

    if decision.auto_reply:
        notify_user(telegram, user.user_id, decision.auto_reply)

    if decision.auto_blocked:
        sync_status_cards(db, telegram, settings.admin_group_id, user)


def _copy_into_topic(telegram: TelegramService, message: TelegramMessage, user: User, topic_id: str) -> dict:
    try:
        return telegram.copy_message(
            chat_id=settings.admin_group_id,
            from_chat_id=str(message.chat.id),
            message_id=message.message_id,
            message_thread_id=topic_id,
            disable_notification=bool(user.is_blocked or user.is_muted),
        )
    except TelegramResponseError as e:
        return {"ok": False, "description": str(e)}


def mirror_to_backup(db: Session, telegram: TelegramService, message: TelegramMessage, user: User) -> bool:
    """Copy the message into the backup group, if one is configured. Never raises."""
    backup_group_id = config_service.get_config(db, config_service.BACKUP_GROUP_KEY, "")
    if not backup_group_id:
        return False

    header = format_backup_header(user.user_id, profile_for(_sender_of(message)))
    try:
        if message.text:
            telegram.send_message(chat_id=backup_group_id, text=header + escape(message.text), disable_notification=True)
        elif message.caption or message.has_media:
            telegram.send_message(chat_id=backup_group_id, text=header.strip(), disable_notification=True)
            telegram.copy_message(
                chat_id=backup_group_id,
                from_chat_id=str(message.chat.id),
                message_id=message.message_id,
                disable_notification=True,
            )
        else:
            return False
    except Exception as e:
        logger.error(f"Backup mirror failed for user {user.user_id}: {e}", exc_info=True)
        return False
    return True


def relay_inbound(db: Session, telegram: TelegramService, message: TelegramMessage, user: User) -> Result[str]:
    """Relay a verified user's private message into their topic.

    Returns the topic id on success. Filtered, auto-replied and blocked
    messages are a success without a topic (value is the outcome name).
    """
    if user.is_blocked:
        return Result.success("blocked")

    decision = evaluate_message(message, load_filter_config(db), user.block_count or 0)
    if not decision.forwardable:
        apply_filter_decision(db, telegram, user, decision)
        outcome = "keyword_blocked" if decision.keyword_hit else "auto_reply" if decision.auto_reply else "filtered"
        logger.info(f"Message from {user.user_id} not relayed: {decision.reason}")
        return Result.success(outcome)

    sender = _sender_of(message)
    try:
        topic_id = resolve_topic(db, telegram, settings.admin_group_id, user, sender, message.date)
    except TopicUnavailableError as e:
        notify_user(telegram, user.user_id, TOPIC_UNAVAILABLE_NOTICE)
        return Result.failure(str(e), FailureCode.TOPIC_UNAVAILABLE)

    result = _copy_into_topic(telegram, message, user, topic_id)

    if is_thread_missing(result):
        try:
            topic_id = relocate_topic(db, telegram, settings.admin_group_id, user, sender, topic_id, message.date)
        except TopicUnavailableError as e:
            notify_user(telegram, user.user_id, TOPIC_UNAVAILABLE_NOTICE)
            return Result.failure(str(e), FailureCode.TOPIC_UNAVAILABLE)
        result = _copy_into_topic(telegram, message, user, topic_id)

    if not result.get("ok"):
        logger.error(
            "Relay to topic failed",
            extra={"context": {"user_id": user.user_id, "topic_id": topic_id, "error": error_description(result)}},
        )
        notify_user(telegram, user.user_id, RELAY_FAILED_NOTICE)
        return Result.failure(error_description(result), FailureCode.RELAY_FAILED)

    if message.text_content:
        put_message(db, user.user_id, message.message_id, message.text_content, message.date)

    refresh_topic_label(db, telegram, settings.admin_group_id, user, sender)
    mirror_to_backup(db, telegram, message, user)
    return Result.success(topic_id)


def is_digest_topic(db: Session, topic_id: str) -> bool:
    return any(config_service.db_config_get(db, kind.value) == topic_id for kind in LogTopic)


def dispatch_to_user(telegram: TelegramService, user_id: str, message: TelegramMessage) -> dict:
    """Send a staff message to the user using the call matching its content kind."""
    if message.text:
        return telegram.send_message(chat_id=user_id, text=message.text, parse_mode=None)

    if message.photo:
        largest = max(message.photo, key=lambda size: (size.width * size.height, size.file_size or 0))
        return telegram.send_media("photo", user_id, largest.file_id, message.caption)

    for kind in OUTBOUND_MEDIA_KINDS:
        media = getattr(message, kind)
        if media:
            return telegram.send_media(kind, user_id, media.file_id, message.caption)

    return notify_user(telegram, user_id, UNSUPPORTED_CONTENT_NOTICE)


def resolve_operator_topic(db: Session, message: TelegramMessage) -> Optional[str]:
    """Topic id of an operator message in the staff group, or None if it should be ignored."""
    if str(message.chat.id) != str(settings.admin_group_id):
        return None
    if not message.is_topic_message or not message.message_thread_id:
        return None
    sender = message.from_user
    if not sender or sender.is_bot:
        return None
    if not config_service.is_admin_user(db, sender.id, sender.username):
        return None
    return str(message.message_thread_id)


def relay_outbound(db: Session, telegram: TelegramService, message: TelegramMessage) -> Result[str]:
    """Deliver an operator's topic message to the owning user. Returns the user id."""
    topic_id = resolve_operator_topic(db, message)
    if topic_id is None:
        return Result.failure("Not an operator topic message", FailureCode.IGNORED)

    user = find_user_by_topic(db, topic_id)
    if not user:
        if is_digest_topic(db, topic_id):
            return Result.failure("Digest topic", FailureCode.IGNORED)
        telegram.send_message(
            chat_id=settings.admin_group_id, text=UNKNOWN_TOPIC_NOTICE, message_thread_id=topic_id, parse_mode=None
        )
        return Result.failure(f"No user for topic {topic_id}", FailureCode.UNKNOWN_TOPIC)

    try:
        result = dispatch_to_user(telegram, user.user_id, message)
    except TelegramResponseError as e:
        result = {"ok": False, "description": str(e)}

    if not result.get("ok"):
        description = error_description(result)
        logger.error(
            "Delivery to user failed",
            extra={"context": {"user_id": user.user_id, "topic_id": topic_id, "error": description}},
        )
        telegram.send_message(
            chat_id=settings.admin_group_id,
            text=f"❌ Failed to deliver the message to user {user.user_id}: {description}",
            message_thread_id=topic_id,
            parse_mode=None,
        )
        return Result.failure(description, FailureCode.DELIVERY_FAILED)

    if message.text_content:
        put_message(db, user.user_id, staff_message_key(message.message_id), message.text_content, message.date)

    return Result.success(user.user_id)
