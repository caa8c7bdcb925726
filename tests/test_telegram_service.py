from unittest.mock import MagicMock, patch

import httpx
import pytest

from conftest import THREAD_MISSING
from relaybot.services.telegram_service import (
    TelegramErrorKind,
    TelegramResponseError,
    TelegramService,
    classify_error,
    is_thread_missing,
    result_message_id,
    topic_jump_url,
)


@pytest.fixture
def http_client():
    with patch("relaybot.services.telegram_service.httpx.Client") as client_cls:
        client = MagicMock()
        client_cls.return_value.__enter__.return_value = client
        yield client


class TestErrorClassification:
    def test_success_has_no_kind(self):
        assert classify_error({"ok": True, "result": {}}) is None

    @pytest.mark.parametrize(
        "description",
        [
            "Bad Request: message thread not found",
            "Bad Request: TOPIC_DELETED",
            "Bad Request: TOPIC_ID_INVALID",
            "Bad Request: message_thread_id is invalid",
        ],
    )
    def test_thread_missing(self, description):
        assert is_thread_missing({"ok": False, "description": description})

    def test_permission_denied(self):
        assert classify_error({"ok": False, "error_code": 403, "description": "Forbidden"}) == (
            TelegramErrorKind.PERMISSION_DENIED
        )
        assert classify_error({"ok": False, "description": "Bad Request: not enough rights"}) == (
            TelegramErrorKind.PERMISSION_DENIED
        )

    def test_generic(self):
        assert classify_error({"ok": False, "description": "Bad Request: chat not found"}) == TelegramErrorKind.GENERIC

    def test_result_message_id(self):
        assert result_message_id({"ok": True, "result": {"message_id": 9}}) == 9
        assert result_message_id({"ok": True, "result": True}) is None
        assert result_message_id(THREAD_MISSING) is None


def test_topic_jump_url_strips_supergroup_prefix():
    assert topic_jump_url("-1001234567890", "77") == "https://t.me/c/1234567890/77"
    assert topic_jump_url("-555", "77") == "https://t.me/c/-555/77"


class TestTelegramService:
    def test_send_message_payload(self, http_client):
        http_client.post.return_value.json.return_value = {"ok": True, "result": {"message_id": 5}}

        result = TelegramService("token").send_message(chat_id="42", text="hi", message_thread_id="77")

        assert result["ok"]
        url, = http_client.post.call_args.args
        assert url == "https://api.telegram.org/bottoken/sendMessage"
        assert http_client.post.call_args.kwargs["json"] == {
            "chat_id": "42",
            "text": "hi",
            "parse_mode": "HTML",
            "message_thread_id": "77",
        }

    def test_plain_text_has_no_parse_mode(self, http_client):
        http_client.post.return_value.json.return_value = {"ok": True, "result": {"message_id": 5}}

        TelegramService("token").send_message(chat_id="42", text="<b>", parse_mode=None)

        assert "parse_mode" not in http_client.post.call_args.kwargs["json"]

    def test_sticker_has_no_caption(self, http_client):
        http_client.post.return_value.json.return_value = {"ok": True, "result": {"message_id": 5}}

        TelegramService("token").send_media("sticker", "42", "file", "ignored")

        assert http_client.post.call_args.args[0].endswith("/sendSticker")
        assert http_client.post.call_args.kwargs["json"] == {"chat_id": "42", "sticker": "file"}

    def test_create_forum_topic(self, http_client):
        http_client.post.return_value.json.return_value = {"ok": True, "result": {"message_thread_id": 77}}
        assert TelegramService("token").create_forum_topic("-100", "Alice | 42") == "77"

        http_client.post.return_value.json.return_value = {"ok": False, "description": "not enough rights"}
        assert TelegramService("token").create_forum_topic("-100", "Alice | 42") is None

    def test_transport_error_is_a_failed_result(self, http_client):
        http_client.post.side_effect = httpx.ConnectError("connection refused")

        result = TelegramService("token").send_message(chat_id="42", text="hi")

        assert result["ok"] is False
        assert "connection refused" in result["description"]

    def test_non_json_body_raises(self, http_client):
        response = http_client.post.return_value
        response.status_code = 502
        response.json.side_effect = ValueError("Expecting value")

        with pytest.raises(TelegramResponseError) as excinfo:
            TelegramService("token").send_message(chat_id="42", text="hi")

        assert excinfo.value.method == "sendMessage"
        assert excinfo.value.status_code == 502
