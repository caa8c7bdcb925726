import itertools
import os
from unittest.mock import Mock

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["BOT_TOKEN"] = "test-token"
os.environ["ADMIN_GROUP_ID"] = "-1001234567890"
os.environ["ADMIN_IDS"] = "111"

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from relaybot.database import init_db  # noqa: E402
from relaybot.schemas.telegram import TelegramMessage  # noqa: E402
from relaybot.services.telegram_service import TelegramService  # noqa: E402

GROUP_ID = "-1001234567890"
PRIMARY_ADMIN_ID = 111
THREAD_MISSING = {"ok": False, "error_code": 400, "description": "Bad Request: message thread not found"}


def ok_result(message_id: int) -> dict:
    return {"ok": True, "result": {"message_id": message_id}}


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def telegram():
    """Transport double: every call succeeds with a fresh message id, topics count up from 500."""
    tg = Mock(spec=TelegramService)
    message_ids = itertools.count(1000)
    topic_ids = itertools.count(500)

    def sent(*args, **kwargs):
        return ok_result(next(message_ids))

    for name in (
        "send_message",
        "copy_message",
        "send_media",
        "edit_message",
        "edit_message_reply_markup",
        "pin_message",
        "edit_forum_topic",
        "answer_callback_query",
    ):
        getattr(tg, name).side_effect = sent
    tg.create_forum_topic.side_effect = lambda *args, **kwargs: str(next(topic_ids))
    return tg


@pytest.fixture
def make_message():
    """Build a TelegramMessage from raw Bot API fields."""
    counter = itertools.count(1)

    def build(chat_id=42, text=None, chat_type="private", sender_id=None, first_name="Alice", **fields) -> TelegramMessage:
        raw = {
            "message_id": fields.pop("message_id", next(counter)),
            "date": fields.pop("date", 1702000000),
            "chat": {"id": chat_id, "type": chat_type},
            "from": {"id": sender_id or chat_id, "is_bot": fields.pop("is_bot", False), "first_name": first_name},
            **fields,
        }
        if text is not None:
            raw["text"] = text
        return TelegramMessage(**raw)

    return build


def sent_texts(telegram) -> list[str]:
    return [c.kwargs.get("text") for c in telegram.send_message.call_args_list]
