"""Decides whether an inbound user message is relayed, dropped, or answered automatically.

Evaluation order is fixed and first match wins:

1. block keywords (strike counting, auto block at threshold)
2. content class toggle
3. link overlay
4. auto-reply rules (only for forwardable messages)
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from relaybot.logging_config import get_logger
from relaybot.schemas.telegram import TelegramMessage
from relaybot.services import config_service
from relaybot.services.config_service import Rule

logger = get_logger("filter_service")

AUTO_REPLY_PREFIX = "This is an automatic reply\n\n"
LINK_ENTITY_TYPES = {"url", "text_link"}


class ContentClass(str, Enum):
    USER_FORWARD = "user_forward"
    GROUP_FORWARD = "group_forward"
    CHANNEL_FORWARD = "channel_forward"
    AUDIO_VOICE = "audio_voice"
    STICKER_GIF = "sticker_gif"
    MEDIA = "media"
    TEXT = "text"
    OTHER = "other"


TOGGLE_KEYS = {
    ContentClass.USER_FORWARD: "enable_user_forwarding",
    ContentClass.GROUP_FORWARD: "enable_group_forwarding",
    ContentClass.CHANNEL_FORWARD: "enable_channel_forwarding",
    ContentClass.AUDIO_VOICE: "enable_audio_forwarding",
    ContentClass.STICKER_GIF: "enable_sticker_forwarding",
    ContentClass.MEDIA: "enable_image_forwarding",
    ContentClass.TEXT: "enable_text_forwarding",
}
LINK_TOGGLE_KEY = "enable_link_forwarding"

CLASS_REASONS = {
    ContentClass.USER_FORWARD: "messages forwarded from users",
    ContentClass.GROUP_FORWARD: "messages forwarded from groups",
    ContentClass.CHANNEL_FORWARD: "messages forwarded from channels",
    ContentClass.AUDIO_VOICE: "audio or voice messages",
    ContentClass.STICKER_GIF: "stickers or GIFs",
    ContentClass.MEDIA: "media (photo/video/file)",
    ContentClass.TEXT: "plain text",
}
LINK_REASON = "content with links"


@dataclass
class FilterConfig:
    """Snapshot of everything the filter needs, read once per event."""

    block_rules: list[Rule] = field(default_factory=list)
    block_threshold: int = config_service.DEFAULT_BLOCK_THRESHOLD
    auto_reply_rules: list[Rule] = field(default_factory=list)
    toggles: dict[ContentClass, bool] = field(default_factory=dict)
    allow_links: bool = True

    def allows(self, content_class: ContentClass) -> bool:
        return self.toggles.get(content_class, True)


@dataclass
class FilterDecision:
    forwardable: bool
    reason: Optional[str] = None
    auto_reply: Optional[str] = None
    content_class: Optional[ContentClass] = None
    keyword_hit: bool = False
    strike_count: int = 0
    auto_blocked: bool = False
    notices: list[str] = field(default_factory=list)


def load_filter_config(db: Session) -> FilterConfig:
    return FilterConfig(
        block_rules=config_service.get_rules(db, config_service.BLOCK_KEYWORDS_KEY),
        block_threshold=config_service.get_int(db, "block_threshold", config_service.DEFAULT_BLOCK_THRESHOLD),
        auto_reply_rules=config_service.get_rules(db, config_service.AUTO_REPLY_KEY),
        toggles={content_class: config_service.get_bool(db, key) for content_class, key in TOGGLE_KEYS.items()},
        allow_links=config_service.get_bool(db, LINK_TOGGLE_KEY),
    )


def _compile(pattern: str) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning(f"Invalid rule pattern skipped: {pattern!r}: {e}")
        return None


def match_rule(rules: list[Rule], text: Optional[str]) -> Optional[Rule]:
    """First rule whose pattern occurs anywhere in text. Invalid patterns are skipped."""
    if not text:
        return None
    for rule in rules:
        compiled = _compile(rule.pattern)
        if compiled and compiled.search(text):
            return rule
    return None


def classify_content(message: TelegramMessage) -> ContentClass:
    if message.forward_from:
        return ContentClass.USER_FORWARD
    if message.forward_from_chat:
        if message.forward_from_chat.type == "channel":
            return ContentClass.CHANNEL_FORWARD
        return ContentClass.GROUP_FORWARD
    if message.audio or message.voice:
        return ContentClass.AUDIO_VOICE
    if message.sticker or message.animation:
        return ContentClass.STICKER_GIF
    if message.photo or message.video or message.document:
        return ContentClass.MEDIA
    if message.text:
        return ContentClass.TEXT
    return ContentClass.OTHER


def has_links(message: TelegramMessage) -> bool:
    entities = (message.entities or []) + (message.caption_entities or [])
    return any(entity.type in LINK_ENTITY_TYPES for entity in entities)


def evaluate_message(message: TelegramMessage, config: FilterConfig, strike_count: int = 0) -> FilterDecision:
    text = message.text_content

    # 1. Block keywords
    if match_rule(config.block_rules, text):
        strikes = strike_count + 1
        notices = [
            f"⚠️ Your message matched a blocked keyword ({strikes}/{config.block_threshold}). "
            "It was dropped and will not be delivered."
        ]
        auto_blocked = strikes >= config.block_threshold
        if auto_blocked:
            notices.append(
                "❌ You have triggered blocked keywords too many times and have been blocked automatically. "
                "The bot will no longer accept your messages."
            )
        return FilterDecision(
            forwardable=False,
            reason="blocked keyword",
            keyword_hit=True,
            strike_count=strikes,
            auto_blocked=auto_blocked,
            notices=notices,
        )

    # 2. Content class
    content_class = classify_content(message)
    reason = None
    if content_class in CLASS_REASONS and not config.allows(content_class):
        reason = CLASS_REASONS[content_class]

    # 3. Link overlay, composed with any class reason
    if has_links(message) and not config.allow_links:
        reason = f"{reason} (contains link)" if reason else LINK_REASON

    if reason:
        return FilterDecision(
            forwardable=False,
            reason=reason,
            content_class=content_class,
            strike_count=strike_count,
            notices=[f"This message was filtered: {reason}. Such content is not forwarded."],
        )

    # 4. Auto-reply
    rule = match_rule(config.auto_reply_rules, text)
    if rule and rule.response:
        return FilterDecision(
            forwardable=False,
            reason="auto reply",
            auto_reply=AUTO_REPLY_PREFIX + rule.response,
            content_class=content_class,
            strike_count=strike_count,
        )

    return FilterDecision(forwardable=True, content_class=content_class, strike_count=strike_count)
