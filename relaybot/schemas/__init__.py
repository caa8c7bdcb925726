from relaybot.schemas.telegram import (
    TelegramCallbackQuery,
    TelegramChat,
    TelegramMessage,
    TelegramUpdate,
    TelegramUser,
    TelegramWebhookResponse,
)

__all__ = [
    "TelegramCallbackQuery",
    "TelegramChat",
    "TelegramMessage",
    "TelegramUpdate",
    "TelegramUser",
    "TelegramWebhookResponse",
]
