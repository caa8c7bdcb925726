from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: str = ""
    last_name: Optional[str] = None
    username: Optional[str] = None

    @property
    def full_name(self) -> str:
        name = self.first_name or ""
        if self.last_name:
            name += f" {self.last_name}"
        return name.strip()


class TelegramChat(BaseModel):
    id: int
    type: str  # private, group, supergroup, channel
    title: Optional[str] = None
    username: Optional[str] = None
    is_forum: Optional[bool] = None


class TelegramMessageEntity(BaseModel):
    type: str  # url, text_link, bold, ...
    offset: int = 0
    length: int = 0
    url: Optional[str] = None


class TelegramFile(BaseModel):
    """Common shape of sendable media: stickers, animations, documents, audio, voice, video."""

    file_id: str
    file_unique_id: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None
    duration: Optional[int] = None

    model_config = ConfigDict(extra="allow")


class TelegramPhotoSize(BaseModel):
    file_id: str
    file_unique_id: Optional[str] = None
    width: int = 0
    height: int = 0
    file_size: Optional[int] = None


class TelegramMessage(BaseModel):
    message_id: int
    date: int
    chat: TelegramChat
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")  # "from" is reserved in Python
    text: Optional[str] = None
    caption: Optional[str] = None
    entities: Optional[list[TelegramMessageEntity]] = None
    caption_entities: Optional[list[TelegramMessageEntity]] = None
    message_thread_id: Optional[int] = None  # Topic ID for forum groups
    is_topic_message: Optional[bool] = None
    edit_date: Optional[int] = None
    reply_to_message: Optional[Any] = None
    reply_markup: Optional[dict] = None
    sender_chat: Optional[TelegramChat] = None
    forward_from: Optional[TelegramUser] = None
    forward_from_chat: Optional[TelegramChat] = None
    photo: Optional[list[TelegramPhotoSize]] = None
    video: Optional[TelegramFile] = None
    document: Optional[TelegramFile] = None
    audio: Optional[TelegramFile] = None
    voice: Optional[TelegramFile] = None
    sticker: Optional[TelegramFile] = None
    animation: Optional[TelegramFile] = None

    model_config = ConfigDict(populate_by_name=True)

    @property
    def text_content(self) -> Optional[str]:
        return self.text or self.caption

    @property
    def has_media(self) -> bool:
        return any(
            (self.photo, self.video, self.document, self.audio, self.voice, self.sticker, self.animation)
        )


class TelegramCallbackQuery(BaseModel):
    id: str
    from_user: TelegramUser = Field(alias="from")
    message: Optional[TelegramMessage] = None
    data: Optional[str] = None  # callback_data from button

    model_config = ConfigDict(populate_by_name=True)


class TelegramUpdate(BaseModel):
    update_id: int
    message: Optional[TelegramMessage] = None
    edited_message: Optional[TelegramMessage] = None
    callback_query: Optional[TelegramCallbackQuery] = None


class TelegramWebhookResponse(BaseModel):
    success: bool
    message: Optional[str] = None
