import html
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from relaybot.schemas.telegram import TelegramUser

TOPIC_NAME_LIMIT = 128
JUMP_BUTTON_TEXT = "💬 Open conversation"


class CardSlot(str, Enum):
    """Places where a user's status card is rendered. Each is synced independently."""

    PRIMARY = "primary"  # inside the user's own topic
    PROFILE = "profile"  # profile digest topic
    BLOCK = "block"  # block/mute digest topic


SLOT_FIELDS = {
    CardSlot.PRIMARY: "info_card_message_id",
    CardSlot.PROFILE: "profile_log_message_id",
    CardSlot.BLOCK: "block_log_message_id",
}


def escape(text) -> str:
    if text is None:
        return ""
    return html.escape(str(text), quote=False)


def format_timestamp(timestamp: Optional[int]) -> str:
    if not timestamp:
        return "unknown time"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def topic_name_for(sender: TelegramUser) -> str:
    return f"{sender.full_name} | {sender.id}"[:TOPIC_NAME_LIMIT]


def profile_for(sender: TelegramUser, first_message_date: Optional[int] = None) -> dict:
    return {
        "name": sender.full_name,
        "username": f"@{sender.username}" if sender.username else None,
        "first_message_date": first_message_date,
    }


def format_info_card(user_id: str, profile: dict) -> str:
    username = profile.get("username") or "none"
    lines = [
        "<b>👤 User profile</b>",
        f"• Name: {escape(profile.get('name') or 'no name')}",
        f"• Username: <code>{escape(username)}</code>",
        f"• ID: <code>{escape(user_id)}</code>",
    ]
    if profile.get("first_message_date"):
        lines.append(f"• First contact: <code>{format_timestamp(profile['first_message_date'])}</code>")
    return "\n".join(lines)


def format_profile_log(user_id: str, topic_id: str, profile: dict) -> str:
    return f"<b>#new_user</b>\nTopic ID: <code>{escape(topic_id)}</code>\n\n{format_info_card(user_id, profile)}"


def format_block_log(user_id: str, name: str, is_blocked: bool, is_muted: bool) -> str:
    if is_blocked:
        status = "🚫 <b>User is blocked</b>"
    elif is_muted:
        status = "🔕 <b>User is muted</b>"
    else:
        status = "✅ <b>User is active (not blocked, not muted)</b>"
    return (
        f"{status}\n"
        f'User: <a href="tg://user?id={escape(user_id)}">{escape(name)}</a>\n'
        f"ID: <code>{escape(user_id)}</code>"
    )


def build_card_buttons(user_id: str, is_blocked: bool, is_muted: bool, jump_url: Optional[str] = None) -> dict:
    """Inline keyboard encoding the current block/mute state."""
    block_button = (
        {"text": "✅ Unblock", "callback_data": f"unblock:{user_id}"}
        if is_blocked
        else {"text": "🚫 Block", "callback_data": f"block:{user_id}"}
    )
    mute_button = (
        {"text": "🔔 Unmute", "callback_data": f"unmute:{user_id}"}
        if is_muted
        else {"text": "🔕 Mute", "callback_data": f"mute:{user_id}"}
    )
    keyboard = [
        [block_button, mute_button],
        [{"text": "👤 View profile", "url": f"tg://user?id={user_id}"}],
        [{"text": "📌 Pin this card", "callback_data": f"pin_card:{user_id}"}],
    ]
    if jump_url:
        keyboard.append([{"text": JUMP_BUTTON_TEXT, "url": jump_url}])
    return {"inline_keyboard": keyboard}


def extract_jump_url(reply_markup: Optional[dict]) -> Optional[str]:
    """Jump link row of an already rendered card, if it has one."""
    if not reply_markup:
        return None
    rows = reply_markup.get("inline_keyboard") or []
    if not rows or not rows[-1]:
        return None
    url = rows[-1][0].get("url") or ""
    return url if "t.me/c/" in url else None


def format_backup_header(user_id: str, profile: dict) -> str:
    username = profile.get("username") or "none"
    return (
        "<b>--- Backup copy ---</b>\n"
        f'👤 <b>From:</b> <a href="tg://user?id={escape(user_id)}">{escape(profile.get("name") or "no name")}</a>'
        f" • ID: <code>{escape(user_id)}</code> • Username: {escape(username)}\n"
        "------------------\n\n"
    )
