"""Operator configuration menu in the primary operator's private chat.

Callback data grammar: ``config:<action>:<key>[:<value>]`` with actions
menu, toggle, edit, add, list and delete. Free-text input is only accepted
while the operator's stored state is ``AwaitingInput``.
"""

import json
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from sqlalchemy.orm import Session

from relaybot.config import settings
from relaybot.logging_config import get_logger
from relaybot.schemas.telegram import TelegramCallbackQuery
from relaybot.services import config_service
from relaybot.services.card_service import escape
from relaybot.services.config_service import Rule
from relaybot.services.filter_service import LINK_TOGGLE_KEY, TOGGLE_KEYS, ContentClass
from relaybot.services.result import FailureCode, Result
from relaybot.services.telegram_service import TelegramService, error_description

logger = get_logger("menu_service")

CALLBACK_PREFIX = "config:"
RULE_KEYS = (config_service.AUTO_REPLY_KEY, config_service.BLOCK_KEYWORDS_KEY)
AUTO_REPLY_SEPARATOR = "==="


class MenuScreen(str, Enum):
    MAIN = "main"
    BASE = "base"
    AUTOREPLY = "autoreply"
    KEYWORD = "keyword"
    FILTER = "filter"
    AUTHORIZED = "authorized"
    BACKUP = "backup"


class InputKind(str, Enum):
    WELCOME_MESSAGE = "welcome_msg"
    VERIFICATION_QUESTION = "verif_q"
    VERIFICATION_ANSWER = "verif_a"
    BLOCK_THRESHOLD = "block_threshold"
    BACKUP_GROUP = "backup_group_id"
    AUTHORIZED_ADMINS = "authorized_admins"
    ADD_BLOCK_KEYWORD = "block_keywords_add"
    ADD_AUTO_REPLY = "keyword_responses_add"


INPUT_RETURN_MENU = {
    InputKind.WELCOME_MESSAGE: MenuScreen.BASE,
    InputKind.VERIFICATION_QUESTION: MenuScreen.BASE,
    InputKind.VERIFICATION_ANSWER: MenuScreen.BASE,
    InputKind.BLOCK_THRESHOLD: MenuScreen.KEYWORD,
    InputKind.BACKUP_GROUP: MenuScreen.BACKUP,
    InputKind.AUTHORIZED_ADMINS: MenuScreen.AUTHORIZED,
    InputKind.ADD_BLOCK_KEYWORD: MenuScreen.KEYWORD,
    InputKind.ADD_AUTO_REPLY: MenuScreen.AUTOREPLY,
}

# Keys editable through config:edit:<key>
EDITABLE_KEYS = {
    kind.value for kind in InputKind if kind not in (InputKind.ADD_BLOCK_KEYWORD, InputKind.ADD_AUTO_REPLY)
}

INPUT_PROMPTS = {
    InputKind.WELCOME_MESSAGE: "Send the <b>new welcome message</b>:",
    InputKind.VERIFICATION_QUESTION: "Send the <b>new verification question</b>:",
    InputKind.VERIFICATION_ANSWER: (
        "Send the <b>accepted answer</b>. Separate alternatives with <code>|</code>, "
        "for example <code>8|27|29</code>:"
    ),
    InputKind.BLOCK_THRESHOLD: "Send the <b>new strike threshold</b> (a positive number):",
    InputKind.BACKUP_GROUP: "Send the <b>backup group id</b> (for example <code>-1001234567890</code>):",
    InputKind.AUTHORIZED_ADMINS: "Send the <b>staff ids or usernames</b>, separated by commas:",
    InputKind.ADD_BLOCK_KEYWORD: "Send the <b>blocked keyword pattern</b> (a regular expression, e.g. <code>spam|ads</code>):",
    InputKind.ADD_AUTO_REPLY: (
        "Send the <b>auto-reply rule</b> as <code>pattern===response</code>, "
        "for example <code>price|cost===See the pinned price list.</code>:"
    ),
}

# Filter menu rows, in display order
FILTER_ITEMS = [
    (TOGGLE_KEYS[ContentClass.USER_FORWARD], "Forwarded from users"),
    (TOGGLE_KEYS[ContentClass.GROUP_FORWARD], "Forwarded from groups"),
    (TOGGLE_KEYS[ContentClass.CHANNEL_FORWARD], "Forwarded from channels"),
    (TOGGLE_KEYS[ContentClass.AUDIO_VOICE], "Audio / voice"),
    (TOGGLE_KEYS[ContentClass.STICKER_GIF], "Stickers / GIFs"),
    (TOGGLE_KEYS[ContentClass.MEDIA], "Photos / videos / files"),
    (LINK_TOGGLE_KEY, "Messages with links"),
    (TOGGLE_KEYS[ContentClass.TEXT], "Plain text"),
]
FILTER_KEYS = {key for key, _ in FILTER_ITEMS}


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class AwaitingInput:
    kind: InputKind
    return_menu: MenuScreen


MenuState = Union[Idle, AwaitingInput]


def awaiting(kind: InputKind) -> AwaitingInput:
    return AwaitingInput(kind=kind, return_menu=INPUT_RETURN_MENU[kind])


def encode_state(state: MenuState) -> Optional[str]:
    if isinstance(state, AwaitingInput):
        return json.dumps({"kind": state.kind.value, "return_menu": state.return_menu.value})
    return None


def decode_state(raw: Optional[str]) -> MenuState:
    """Stored JSON to a menu state. Anything unreadable is treated as Idle."""
    if not raw:
        return Idle()
    try:
        data = json.loads(raw)
        kind = InputKind(data["kind"])
        return_menu = MenuScreen(data.get("return_menu") or INPUT_RETURN_MENU[kind].value)
    except (ValueError, KeyError, TypeError):
        logger.warning(f"Unreadable menu state reset: {raw!r}")
        return Idle()
    return AwaitingInput(kind=kind, return_menu=return_menu)


def _state_key(operator_id) -> str:
    return f"{config_service.ADMIN_STATE_PREFIX}{operator_id}"


def load_menu_state(db: Session, operator_id) -> MenuState:
    return decode_state(config_service.db_config_get(db, _state_key(operator_id)))


def save_menu_state(db: Session, operator_id, state: MenuState) -> None:
    encoded = encode_state(state)
    if encoded is None:
        config_service.delete_config(db, _state_key(operator_id))
    else:
        config_service.put_config(db, _state_key(operator_id), encoded)


# Rendering


def _back_row(screen: MenuScreen = MenuScreen.MAIN) -> list[dict]:
    label = "⬅️ Back to main menu" if screen == MenuScreen.MAIN else "⬅️ Back"
    return [{"text": label, "callback_data": f"config:menu:{screen.value}"}]


def _snippet(value: Optional[str], limit: int) -> str:
    value = value or ""
    return escape(value[:limit]) + ("..." if len(value) > limit else "")


def render_main(db: Session) -> tuple[str, dict]:
    text = "⚙️ <b>Bot configuration</b>\n\nChoose a category:"
    keyboard = [
        [{"text": "📝 Verification (welcome, question, answer)", "callback_data": "config:menu:base"}],
        [{"text": "🤖 Auto-replies", "callback_data": "config:menu:autoreply"}],
        [{"text": "🚫 Blocked keywords", "callback_data": "config:menu:keyword"}],
        [{"text": "🔗 Content type filters", "callback_data": "config:menu:filter"}],
        [{"text": "🧑‍💻 Authorized staff", "callback_data": "config:menu:authorized"}],
        [{"text": "💾 Backup group", "callback_data": "config:menu:backup"}],
        [{"text": "🔄 Refresh", "callback_data": "config:menu:main"}],
    ]
    return text, {"inline_keyboard": keyboard}


def render_base(db: Session) -> tuple[str, dict]:
    welcome = config_service.get_config(db, "welcome_msg", config_service.DEFAULT_WELCOME_MESSAGE)
    question = config_service.get_config(db, "verif_q", config_service.DEFAULT_VERIFICATION_QUESTION)
    answer = config_service.get_config(db, "verif_a", config_service.DEFAULT_VERIFICATION_ANSWER)
    text = (
        "⚙️ <b>Verification</b>\n\n"
        "<b>Current settings:</b>\n"
        f"• Welcome message: {_snippet(welcome, 30)}\n"
        f"• Question: {_snippet(question, 30)}\n"
        f"• Answer: <code>{escape(answer)}</code>\n\n"
        "Choose what to change:"
    )
    keyboard = [
        [{"text": "📝 Edit welcome message", "callback_data": "config:edit:welcome_msg"}],
        [{"text": "❓ Edit question", "callback_data": "config:edit:verif_q"}],
        [{"text": "🔑 Edit answer", "callback_data": "config:edit:verif_a"}],
        _back_row(),
    ]
    return text, {"inline_keyboard": keyboard}


def render_autoreply(db: Session) -> tuple[str, dict]:
    count = len(config_service.get_rules(db, config_service.AUTO_REPLY_KEY))
    text = f"🤖 <b>Auto-replies</b>\n\nRules: <b>{count}</b>\n\nChoose an action:"
    keyboard = [
        [{"text": "➕ Add rule", "callback_data": "config:add:keyword_responses"}],
        [{"text": f"🗑️ Manage rules ({count})", "callback_data": "config:list:keyword_responses"}],
        _back_row(),
    ]
    return text, {"inline_keyboard": keyboard}


def render_keyword(db: Session) -> tuple[str, dict]:
    count = len(config_service.get_rules(db, config_service.BLOCK_KEYWORDS_KEY))
    threshold = config_service.get_int(db, "block_threshold", config_service.DEFAULT_BLOCK_THRESHOLD)
    text = (
        "🚫 <b>Blocked keywords</b>\n\n"
        f"Patterns: <b>{count}</b>\n"
        f"Strike threshold: <code>{threshold}</code>\n\n"
        "Choose an action:"
    )
    keyboard = [
        [{"text": "➕ Add keyword", "callback_data": "config:add:block_keywords"}],
        [{"text": f"🗑️ Manage keywords ({count})", "callback_data": "config:list:block_keywords"}],
        [{"text": f"✏️ Change threshold ({threshold})", "callback_data": "config:edit:block_threshold"}],
        _back_row(),
    ]
    return text, {"inline_keyboard": keyboard}


def render_filter(db: Session) -> tuple[str, dict]:
    lines = ["🔗 <b>Content type filters</b>", "Tap a number to switch it. Changes apply immediately.", ""]
    buttons = []
    for index, (key, label) in enumerate(FILTER_ITEMS, start=1):
        enabled = config_service.get_bool(db, key)
        status = "✅ allowed" if enabled else "❌ blocked"
        lines.append(f"{index}. {label}: {status}")
        buttons.append(
            {
                "text": f"{index}. {status}",
                "callback_data": f"config:toggle:{key}:{'false' if enabled else 'true'}",
            }
        )
    keyboard = [buttons[i : i + 2] for i in range(0, len(buttons), 2)]
    keyboard.append(_back_row())
    return "\n".join(lines), {"inline_keyboard": keyboard}


def render_authorized(db: Session) -> tuple[str, dict]:
    primary = settings.primary_admin_ids
    authorized = config_service.get_authorized_admins(db)
    total = len(set(primary) | set(authorized))
    text = (
        "🧑‍💻 <b>Authorized staff</b>\n\n"
        f"<b>Primary operators (settings):</b> <code>{escape(', '.join(primary) or 'none')}</code>\n"
        f"<b>Authorized staff:</b> <code>{escape(', '.join(authorized) or 'none')}</code>\n"
        f"<b>Total:</b> {total}\n\n"
        "Staff ids or usernames must match the people replying in topics. "
        "Staff private chats skip verification."
    )
    keyboard = [
        [{"text": "✏️ Set staff list", "callback_data": "config:edit:authorized_admins"}],
        [{"text": f"🗑️ Clear staff list ({len(authorized)})", "callback_data": "config:edit:authorized_admins_clear"}],
        _back_row(),
    ]
    return text, {"inline_keyboard": keyboard}


def render_backup(db: Session) -> tuple[str, dict]:
    backup_group_id = config_service.get_config(db, config_service.BACKUP_GROUP_KEY, "")
    status = f"✅ <code>{escape(backup_group_id)}</code>" if backup_group_id else "❌ not set"
    text = (
        "💾 <b>Backup group</b>\n\n"
        f"<b>Current group:</b> {status}\n\n"
        "The bot must be an administrator there. "
        "Every relayed user message is copied into this group."
    )
    keyboard = [
        [{"text": "✏️ Set backup group", "callback_data": "config:edit:backup_group_id"}],
        [{"text": "🗑️ Clear backup group", "callback_data": "config:edit:backup_group_id_clear"}],
        _back_row(),
    ]
    return text, {"inline_keyboard": keyboard}


RENDERERS = {
    MenuScreen.MAIN: render_main,
    MenuScreen.BASE: render_base,
    MenuScreen.AUTOREPLY: render_autoreply,
    MenuScreen.KEYWORD: render_keyword,
    MenuScreen.FILTER: render_filter,
    MenuScreen.AUTHORIZED: render_authorized,
    MenuScreen.BACKUP: render_backup,
}


def render_rule_list(db: Session, key: str) -> tuple[str, dict]:
    rules = config_service.get_rules(db, key)
    if key == config_service.AUTO_REPLY_KEY:
        header = f"🤖 <b>Auto-reply rules ({len(rules)})</b>\nFormat: <code>pattern</code> ➡️ response"
        back = MenuScreen.AUTOREPLY
    else:
        header = f"🚫 <b>Blocked keywords ({len(rules)})</b>\nTap a button to delete the matching entry."
        back = MenuScreen.KEYWORD

    lines = [header, "---"]
    keyboard = []
    if not rules:
        lines.append("<i>(empty)</i>")
    for index, rule in enumerate(rules, start=1):
        label = f"{index}. <code>{_snippet(rule.pattern, 25)}</code>"
        if rule.response is not None:
            label += f" ➡️ {_snippet(rule.response, 20)}"
        lines.append(label)
        keyboard.append([{"text": f"🗑️ Delete {index}", "callback_data": f"config:delete:{key}:{rule.id}"}])

    keyboard.append(_back_row(back))
    return "\n".join(lines), {"inline_keyboard": keyboard}


def _show(telegram: TelegramService, chat_id: str, text: str, keyboard: dict, message_id: Optional[int] = None) -> dict:
    """Edit the menu message in place; fall back to a new message if that fails."""
    if message_id:
        result = telegram.edit_message(chat_id=chat_id, message_id=message_id, text=text, reply_markup=keyboard)
        if result.get("ok") or "message is not modified" in error_description(result).lower():
            return result
        logger.warning(f"Menu edit failed, sending a new message: {error_description(result)}")
    return telegram.send_message(chat_id=chat_id, text=text, reply_markup=keyboard)


def show_menu(
    db: Session,
    telegram: TelegramService,
    chat_id: str,
    screen: MenuScreen = MenuScreen.MAIN,
    message_id: Optional[int] = None,
) -> dict:
    text, keyboard = RENDERERS[screen](db)
    return _show(telegram, chat_id, text, keyboard, message_id)


def open_main_menu(db: Session, telegram: TelegramService, operator_id: str) -> Result[str]:
    """/start from a primary operator: drop any pending input and show the main menu."""
    save_menu_state(db, operator_id, Idle())
    show_menu(db, telegram, operator_id, MenuScreen.MAIN)
    return Result.success(MenuScreen.MAIN.value)


def _prompt_for_input(
    db: Session, telegram: TelegramService, operator_id: str, message_id: Optional[int], kind: InputKind
) -> None:
    state = awaiting(kind)
    save_menu_state(db, operator_id, state)
    text = f"{INPUT_PROMPTS[kind]}\n\nSend /cancel or tap the button below to cancel."
    keyboard = {"inline_keyboard": [[{"text": "❌ Cancel", "callback_data": f"config:menu:{state.return_menu.value}"}]]}
    _show(telegram, operator_id, text, keyboard, message_id)


def new_rule_id() -> str:
    return str(int(time.time() * 1000))


def delete_rule(db: Session, key: str, rule_id: str) -> bool:
    rules = config_service.get_rules(db, key)
    kept = [rule for rule in rules if rule.id != rule_id]
    if len(kept) == len(rules):
        return False
    config_service.put_rules(db, key, kept)
    return True


def handle_config_callback(db: Session, telegram: TelegramService, query: TelegramCallbackQuery) -> Result[str]:
    """Handle a ``config:`` button press from a primary operator."""
    operator_id = str(query.from_user.id)
    if not config_service.is_primary_admin(operator_id):
        telegram.answer_callback_query(query.id, "This menu is for primary operators only.", show_alert=True)
        return Result.failure("Not a primary operator", FailureCode.FORBIDDEN)

    parts = (query.data or "").split(":", 3)
    action = parts[1] if len(parts) > 1 else ""
    key = parts[2] if len(parts) > 2 else ""
    value = parts[3] if len(parts) > 3 else None
    message_id = query.message.message_id if query.message else None
    toast = None

    if action == "menu":
        try:
            screen = MenuScreen(key or MenuScreen.MAIN.value)
        except ValueError:
            screen = MenuScreen.MAIN
        save_menu_state(db, operator_id, Idle())
        show_menu(db, telegram, operator_id, screen, message_id)

    elif action == "toggle" and key in FILTER_KEYS and value in ("true", "false"):
        config_service.put_config(db, key, value)
        toast = "✅ Filter updated"
        show_menu(db, telegram, operator_id, MenuScreen.FILTER, message_id)

    elif action == "edit" and key == "backup_group_id_clear":
        config_service.put_config(db, config_service.BACKUP_GROUP_KEY, "")
        toast = "✅ Backup group cleared"
        show_menu(db, telegram, operator_id, MenuScreen.BACKUP, message_id)

    elif action == "edit" and key == "authorized_admins_clear":
        config_service.put_config(db, config_service.AUTHORIZED_ADMINS_KEY, "[]")
        toast = "✅ Staff list cleared"
        show_menu(db, telegram, operator_id, MenuScreen.AUTHORIZED, message_id)

    elif action == "edit" and key in EDITABLE_KEYS:
        _prompt_for_input(db, telegram, operator_id, message_id, InputKind(key))

    elif action == "add" and key in RULE_KEYS:
        _prompt_for_input(db, telegram, operator_id, message_id, InputKind(f"{key}_add"))

    elif action == "list" and key in RULE_KEYS:
        text, keyboard = render_rule_list(db, key)
        _show(telegram, operator_id, text, keyboard, message_id)

    elif action == "delete" and key in RULE_KEYS and value:
        toast = "✅ Deleted" if delete_rule(db, key, value) else "Already deleted"
        text, keyboard = render_rule_list(db, key)
        _show(telegram, operator_id, text, keyboard, message_id)

    else:
        telegram.answer_callback_query(query.id, "Unknown action.")
        return Result.failure(f"Unknown menu callback: {query.data}", FailureCode.UNKNOWN_ACTION)

    telegram.answer_callback_query(query.id, toast)
    return Result.success(action)


def _parse_input(db: Session, kind: InputKind, text: str) -> tuple[Optional[str], str]:
    """Turn operator text into a stored value. Returns (value, message); value None means rejected."""
    stripped = text.strip()

    if kind == InputKind.ADD_BLOCK_KEYWORD:
        if not stripped:
            return None, "⚠️ The pattern is empty."
        try:
            re.compile(stripped)
        except re.error as e:
            return None, f"⚠️ Not a valid regular expression: {escape(str(e))}"
        rules = config_service.get_rules(db, config_service.BLOCK_KEYWORDS_KEY)
        if any(rule.pattern == stripped for rule in rules):
            return None, "⚠️ This pattern already exists."
        rules.append(Rule(pattern=stripped, id=new_rule_id()))
        return json.dumps([rule.to_dict() for rule in rules], ensure_ascii=False), (
            f"✅ Blocked keyword <code>{escape(stripped)}</code> added."
        )

    if kind == InputKind.ADD_AUTO_REPLY:
        parts = text.split(AUTO_REPLY_SEPARATOR)
        if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
            return None, "⚠️ Use the format <code>pattern===response</code>."
        pattern, response = parts[0].strip(), parts[1].strip()
        try:
            re.compile(pattern)
        except re.error as e:
            return None, f"⚠️ Not a valid regular expression: {escape(str(e))}"
        rules = config_service.get_rules(db, config_service.AUTO_REPLY_KEY)
        rules.append(Rule(pattern=pattern, id=new_rule_id(), response=response))
        return json.dumps([rule.to_dict() for rule in rules], ensure_ascii=False), (
            f"✅ Auto-reply rule added. Pattern: <code>{escape(pattern)}</code>"
        )

    if kind == InputKind.AUTHORIZED_ADMINS:
        items = [item.strip() for item in text.split(",") if item.strip()]
        return json.dumps(items, ensure_ascii=False), f"✅ Staff list updated ({len(items)})."

    if kind == InputKind.BLOCK_THRESHOLD:
        if not stripped.isdigit() or int(stripped) < 1:
            return None, "⚠️ The threshold must be a positive number."
        return str(int(stripped)), f"✅ Strike threshold set to <code>{int(stripped)}</code>."

    if kind == InputKind.BACKUP_GROUP:
        if stripped:
            return stripped, f"✅ Backup group set to <code>{escape(stripped)}</code>."
        return "", "✅ Backup group cleared."

    if kind in (InputKind.WELCOME_MESSAGE, InputKind.VERIFICATION_QUESTION, InputKind.VERIFICATION_ANSWER):
        value = stripped if kind == InputKind.VERIFICATION_ANSWER else text
        if not value.strip():
            return None, "⚠️ The value cannot be empty, please send it again."
        return value, f"✅ <code>{kind.value}</code> updated: <code>{_snippet(value, 50)}</code>"

    raise ValueError(f"Unhandled input kind: {kind}")


def _storage_key(kind: InputKind) -> str:
    if kind == InputKind.ADD_BLOCK_KEYWORD:
        return config_service.BLOCK_KEYWORDS_KEY
    if kind == InputKind.ADD_AUTO_REPLY:
        return config_service.AUTO_REPLY_KEY
    return kind.value


def handle_menu_input(
    db: Session, telegram: TelegramService, operator_id: str, text: str, state: AwaitingInput
) -> Result[str]:
    """Free text from an operator who is being asked for a value."""
    if text.strip().lower() == "/cancel":
        save_menu_state(db, operator_id, Idle())
        telegram.send_message(chat_id=operator_id, text="❌ Input cancelled.", parse_mode=None)
        show_menu(db, telegram, operator_id, state.return_menu)
        return Result.success("cancelled")

    value, reply = _parse_input(db, state.kind, text)
    telegram.send_message(chat_id=operator_id, text=reply)
    if value is None:
        # Stay in AwaitingInput so the operator can resend
        return Result.failure(reply, FailureCode.INVALID_INPUT)

    config_service.put_config(db, _storage_key(state.kind), value)
    save_menu_state(db, operator_id, Idle())
    logger.info(
        "Configuration updated from menu",
        extra={"context": {"operator_id": operator_id, "key": _storage_key(state.kind)}},
    )
    show_menu(db, telegram, operator_id, state.return_menu)
    return Result.success(state.kind.value)
