from enum import Enum
from typing import Optional

import httpx

from relaybot.logging_config import get_logger

logger = get_logger("telegram_service")

THREAD_MISSING_MARKERS = ("thread not found", "topic_deleted", "topic_id_invalid", "message_thread_id")
PERMISSION_MARKERS = ("not enough rights", "chat_admin_required", "have no rights", "forbidden")

MEDIA_METHODS = {
    "photo": "sendPhoto",
    "video": "sendVideo",
    "audio": "sendAudio",
    "voice": "sendVoice",
    "sticker": "sendSticker",
    "animation": "sendAnimation",
    "document": "sendDocument",
}


class TelegramErrorKind(str, Enum):
    THREAD_MISSING = "thread_missing"
    PERMISSION_DENIED = "permission_denied"
    GENERIC = "generic"


class TelegramResponseError(Exception):
    """Telegram answered with a body that is not JSON."""

    def __init__(self, method: str, status_code: int):
        self.method = method
        self.status_code = status_code
        super().__init__(f"Telegram API {method} returned non-JSON response (HTTP {status_code})")


def error_description(result: dict) -> str:
    return str(result.get("description") or result.get("error") or result)


def classify_error(result: dict) -> Optional[TelegramErrorKind]:
    """Classify a failed API result. Returns None for successful results."""
    if result.get("ok"):
        return None
    description = error_description(result).lower()
    if any(marker in description for marker in THREAD_MISSING_MARKERS):
        return TelegramErrorKind.THREAD_MISSING
    if result.get("error_code") == 403 or any(marker in description for marker in PERMISSION_MARKERS):
        return TelegramErrorKind.PERMISSION_DENIED
    return TelegramErrorKind.GENERIC


def is_thread_missing(result: dict) -> bool:
    return classify_error(result) == TelegramErrorKind.THREAD_MISSING


def result_message_id(result: dict) -> Optional[int]:
    if not result.get("ok"):
        return None
    payload = result.get("result")
    if isinstance(payload, dict):
        return payload.get("message_id")
    return None


def topic_jump_url(group_id: str, topic_id: str) -> str:
    """Deep link into a forum topic of a private supergroup."""
    clean_group_id = str(group_id)
    if clean_group_id.startswith("-100"):
        clean_group_id = clean_group_id[4:]
    return f"https://t.me/c/{clean_group_id}/{topic_id}"


class TelegramService:
    """Thin client for the Telegram Bot API."""

    BASE_URL = "https://api.telegram.org/bot{token}"

    def __init__(self, bot_token: str, timeout: float = 30.0):
        self.bot_token = bot_token
        self.base_url = self.BASE_URL.format(token=bot_token)
        self.timeout = timeout

    def _make_request(self, method: str, data: Optional[dict] = None) -> dict:
        """Call an API method. Transport errors come back as {"ok": False}; a non-JSON body raises."""
        url = f"{self.base_url}/{method}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, json=data or {})
        except httpx.HTTPError as e:
            logger.error(f"Telegram API error: {method}: {e}")
            return {"ok": False, "description": str(e)}

        try:
            result = response.json()
        except ValueError as e:
            raise TelegramResponseError(method, response.status_code) from e

        if not isinstance(result, dict):
            raise TelegramResponseError(method, response.status_code)

        if not result.get("ok"):
            logger.warning(
                f"Telegram API {method} failed",
                extra={"context": {"description": result.get("description"), "error_code": result.get("error_code")}},
            )
        return result

    def send_message(
        self,
        chat_id: str,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = "HTML",
        message_thread_id: Optional[str] = None,
        disable_notification: bool = False,
    ) -> dict:
        data = {"chat_id": chat_id, "text": text}
        if parse_mode:
            data["parse_mode"] = parse_mode
        if reply_markup:
            data["reply_markup"] = reply_markup
        if message_thread_id:
            data["message_thread_id"] = message_thread_id
        if disable_notification:
            data["disable_notification"] = True

        return self._make_request("sendMessage", data)

    def copy_message(
        self,
        chat_id: str,
        from_chat_id: str,
        message_id: int,
        message_thread_id: Optional[str] = None,
        disable_notification: bool = False,
    ) -> dict:
        data = {"chat_id": chat_id, "from_chat_id": from_chat_id, "message_id": message_id}
        if message_thread_id:
            data["message_thread_id"] = message_thread_id
        if disable_notification:
            data["disable_notification"] = True
        return self._make_request("copyMessage", data)

    def send_media(self, kind: str, chat_id: str, file_id: str, caption: Optional[str] = None) -> dict:
        """Send an already uploaded file by file_id. Stickers carry no caption."""
        method = MEDIA_METHODS[kind]
        data = {"chat_id": chat_id, kind: file_id}
        if caption and kind != "sticker":
            data["caption"] = caption
        return self._make_request(method, data)

    def create_forum_topic(self, chat_id: str, name: str) -> Optional[str]:
        """Create forum topic in supergroup. Returns topic_id or None."""
        result = self._make_request("createForumTopic", {"chat_id": chat_id, "name": name})

        if result.get("ok"):
            return str(result["result"]["message_thread_id"])
        logger.warning(f"Failed to create topic: {error_description(result)}")
        return None

    def edit_forum_topic(self, chat_id: str, message_thread_id: str, name: str) -> dict:
        data = {"chat_id": chat_id, "message_thread_id": message_thread_id, "name": name}
        return self._make_request("editForumTopic", data)

    def pin_message(self, chat_id: str, message_id: int, message_thread_id: Optional[str] = None) -> dict:
        data = {"chat_id": chat_id, "message_id": message_id, "disable_notification": True}
        if message_thread_id:
            data["message_thread_id"] = message_thread_id
        return self._make_request("pinChatMessage", data)

    def edit_message(
        self,
        chat_id: str,
        message_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: str = "HTML",
    ) -> dict:
        data = {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text,
            "parse_mode": parse_mode,
        }
        if reply_markup:
            data["reply_markup"] = reply_markup

        return self._make_request("editMessageText", data)

    def edit_message_reply_markup(self, chat_id: str, message_id: int, reply_markup: dict) -> dict:
        data = {"chat_id": chat_id, "message_id": message_id, "reply_markup": reply_markup}
        return self._make_request("editMessageReplyMarkup", data)

    def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None, show_alert: bool = False) -> dict:
        data = {"callback_query_id": callback_query_id, "show_alert": show_alert}
        if text:
            data["text"] = text
        return self._make_request("answerCallbackQuery", data)
