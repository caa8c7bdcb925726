"""Topic lifecycle: one live forum topic per user, digest topics, status card sync."""

import json
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from relaybot.logging_config import get_logger
from relaybot.models import User
from relaybot.schemas.telegram import TelegramUser
from relaybot.services import config_service
from relaybot.services.card_service import (
    SLOT_FIELDS,
    CardSlot,
    build_card_buttons,
    format_block_log,
    format_info_card,
    format_profile_log,
    profile_for,
    topic_name_for,
)
from relaybot.services.telegram_service import (
    TelegramResponseError,
    TelegramService,
    error_description,
    is_thread_missing,
    result_message_id,
    topic_jump_url,
)
from relaybot.services.user_service import assign_topic, clear_topic, update_user

logger = get_logger("topic_service")


class TopicUnavailableError(Exception):
    """A topic for the user could not be created right now."""


class LogTopic(str, Enum):
    """Singleton digest topics; the value is the config key caching the topic id."""

    PROFILE = "user_profile_log_topic_id"
    BLOCK = "user_block_log_topic_id"


LOG_TOPIC_NAMES = {
    LogTopic.PROFILE: "📋 User profiles (User Logs)",
    LogTopic.BLOCK: "🚫 Blocked and muted users (Block/Mute Log)",
}


def resolve_topic(
    db: Session,
    telegram: TelegramService,
    chat_id: str,
    user: User,
    sender: TelegramUser,
    date: Optional[int] = None,
) -> str:
    """Return the user's topic, creating it (with its status card) on first use.

    The topic id, the card id, the cached profile and the strike reset are
    written in one compare-and-set, so a failed card send leaves no topic
    reference behind. If another event assigned a topic first, that one wins.
    """
    if user.topic_id:
        return user.topic_id

    profile = profile_for(sender, date)
    try:
        topic_id = telegram.create_forum_topic(chat_id, topic_name_for(sender))
        if not topic_id:
            raise TopicUnavailableError("createForumTopic failed")

        card = telegram.send_message(
            chat_id=chat_id,
            text=format_info_card(user.user_id, profile),
            reply_markup=build_card_buttons(user.user_id, bool(user.is_blocked), bool(user.is_muted)),
            message_thread_id=topic_id,
        )
    except TelegramResponseError as e:
        raise TopicUnavailableError(str(e)) from e

    card_id = result_message_id(card)
    if card_id is None:
        logger.error(
            "Status card send failed, topic discarded",
            extra={"context": {"user_id": user.user_id, "topic_id": topic_id, "error": error_description(card)}},
        )
        raise TopicUnavailableError("status card could not be sent")

    previous_info = user.user_info
    if previous_info.get("first_message_date"):
        profile["first_message_date"] = previous_info["first_message_date"]

    won = assign_topic(
        db,
        user,
        topic_id,
        block_count=0,
        info_card_message_id=str(card_id),
        user_info_json=json.dumps(profile, ensure_ascii=False),
    )
    if not won:
        logger.warning(
            "Concurrent topic creation, adopting existing topic",
            extra={"context": {"user_id": user.user_id, "orphan_topic_id": topic_id, "topic_id": user.topic_id}},
        )
        return user.topic_id

    logger.info(f"Created topic {topic_id} for user {user.user_id}")
    post_profile_card(db, telegram, chat_id, user)
    return topic_id


def relocate_topic(
    db: Session,
    telegram: TelegramService,
    chat_id: str,
    user: User,
    sender: TelegramUser,
    stale_topic_id: str,
    date: Optional[int] = None,
) -> str:
    """Replace a topic the transport reports as missing."""
    logger.warning(f"Topic {stale_topic_id} not found for user {user.user_id}, creating new one...")
    clear_topic(db, user, expected_topic_id=stale_topic_id)
    return resolve_topic(db, telegram, chat_id, user, sender, date)


def refresh_topic_label(db: Session, telegram: TelegramService, chat_id: str, user: User, sender: TelegramUser) -> bool:
    """Rename the topic and refresh the card when the user's name changed. Never raises."""
    if not user.topic_id:
        return False

    info = user.user_info
    fresh = profile_for(sender, info.get("first_message_date"))
    if info.get("name") == fresh["name"] and info.get("username") == fresh["username"]:
        return False

    try:
        result = telegram.edit_forum_topic(chat_id, user.topic_id, topic_name_for(sender))
        if not result.get("ok"):
            logger.info(f"Topic rename skipped for user {user.user_id}: {error_description(result)}")

        if user.info_card_message_id:
            telegram.edit_message(
                chat_id=chat_id,
                message_id=int(user.info_card_message_id),
                text=format_info_card(user.user_id, fresh),
                reply_markup=build_card_buttons(user.user_id, bool(user.is_blocked), bool(user.is_muted)),
            )

        update_user(db, user, user_info=fresh)
        return bool(result.get("ok"))
    except Exception as e:
        logger.warning(f"Topic label refresh failed for user {user.user_id}: {e}")
        return False


def ensure_log_topic(db: Session, telegram: TelegramService, chat_id: str, kind: LogTopic) -> Optional[str]:
    topic_id = config_service.db_config_get(db, kind.value)
    if topic_id:
        return topic_id

    topic_id = telegram.create_forum_topic(chat_id, LOG_TOPIC_NAMES[kind])
    if not topic_id:
        logger.error(f"Failed to create digest topic {kind.name}")
        return None

    config_service.put_config(db, kind.value, topic_id)
    logger.info(f"Created digest topic {kind.name}: {topic_id}")
    return topic_id


def send_to_log_topic(
    db: Session,
    telegram: TelegramService,
    chat_id: str,
    kind: LogTopic,
    text: str,
    reply_markup: Optional[dict] = None,
) -> Optional[int]:
    """Post into a digest topic, recreating it once if it was deleted. Returns message id."""
    topic_id = ensure_log_topic(db, telegram, chat_id, kind)
    if not topic_id:
        return None

    result = telegram.send_message(chat_id=chat_id, text=text, reply_markup=reply_markup, message_thread_id=topic_id)

    if is_thread_missing(result):
        logger.warning(f"Digest topic {kind.name} ({topic_id}) missing, recreating")
        config_service.delete_config(db, kind.value)
        topic_id = ensure_log_topic(db, telegram, chat_id, kind)
        if not topic_id:
            return None
        result = telegram.send_message(
            chat_id=chat_id, text=text, reply_markup=reply_markup, message_thread_id=topic_id
        )

    return result_message_id(result)


def post_profile_card(db: Session, telegram: TelegramService, chat_id: str, user: User) -> None:
    try:
        jump_url = topic_jump_url(chat_id, user.topic_id)
        message_id = send_to_log_topic(
            db,
            telegram,
            chat_id,
            LogTopic.PROFILE,
            text=format_profile_log(user.user_id, user.topic_id, user.user_info),
            reply_markup=build_card_buttons(user.user_id, bool(user.is_blocked), bool(user.is_muted), jump_url),
        )
        if message_id:
            update_user(db, user, profile_log_message_id=str(message_id))
    except Exception as e:
        logger.error(f"Profile digest post failed for user {user.user_id}: {e}", exc_info=True)


def _sync_block_slot(db: Session, telegram: TelegramService, chat_id: str, user: User) -> bool:
    jump_url = topic_jump_url(chat_id, user.topic_id) if user.topic_id else None
    text = format_block_log(user.user_id, user.display_name, bool(user.is_blocked), bool(user.is_muted))
    markup = build_card_buttons(user.user_id, bool(user.is_blocked), bool(user.is_muted), jump_url)

    if user.block_log_message_id:
        result = telegram.edit_message(
            chat_id=chat_id, message_id=int(user.block_log_message_id), text=text, reply_markup=markup
        )
        if result.get("ok") or "message is not modified" in error_description(result).lower():
            return True
        logger.warning(f"Block digest card edit failed, sending a new one: {error_description(result)}")
        update_user(db, user, block_log_message_id=None)

    message_id = send_to_log_topic(db, telegram, chat_id, LogTopic.BLOCK, text, markup)
    if message_id:
        update_user(db, user, block_log_message_id=str(message_id))
        return True
    return False


def sync_status_cards(
    db: Session,
    telegram: TelegramService,
    chat_id: str,
    user: User,
    skip_message_id: Optional[str] = None,
) -> dict[CardSlot, bool]:
    """Bring every rendered status card in line with the user's block/mute flags.

    Slots without a stored message are skipped, the already edited message
    (``skip_message_id``) is left alone, and one failing slot does not stop
    the others. Returns which slots were updated.
    """
    synced: dict[CardSlot, bool] = {}
    jump_url = topic_jump_url(chat_id, user.topic_id) if user.topic_id else None

    for slot in (CardSlot.PRIMARY, CardSlot.PROFILE):
        message_id = getattr(user, SLOT_FIELDS[slot])
        if not message_id or str(message_id) == str(skip_message_id):
            continue
        markup = build_card_buttons(
            user.user_id,
            bool(user.is_blocked),
            bool(user.is_muted),
            jump_url if slot == CardSlot.PROFILE else None,
        )
        try:
            result = telegram.edit_message_reply_markup(chat_id, int(message_id), markup)
            synced[slot] = bool(result.get("ok"))
            if not result.get("ok"):
                logger.warning(f"Status card sync failed ({slot.value}): {error_description(result)}")
        except Exception as e:
            logger.warning(f"Status card sync failed ({slot.value}): {e}")
            synced[slot] = False

    try:
        synced[CardSlot.BLOCK] = _sync_block_slot(db, telegram, chat_id, user)
    except Exception as e:
        logger.warning(f"Status card sync failed (block): {e}")
        synced[CardSlot.BLOCK] = False

    return synced
