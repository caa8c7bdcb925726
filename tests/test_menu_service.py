import json

import pytest

from conftest import PRIMARY_ADMIN_ID, sent_texts
from relaybot.schemas.telegram import TelegramCallbackQuery
from relaybot.services import config_service
from relaybot.services.menu_service import (
    AwaitingInput,
    Idle,
    InputKind,
    MenuScreen,
    awaiting,
    decode_state,
    encode_state,
    handle_config_callback,
    handle_menu_input,
    load_menu_state,
    render_filter,
    save_menu_state,
)

OPERATOR = str(PRIMARY_ADMIN_ID)


def menu_query(data, sender_id=PRIMARY_ADMIN_ID, message_id=70):
    return TelegramCallbackQuery.model_validate(
        {
            "id": "q1",
            "from": {"id": sender_id, "is_bot": False, "first_name": "Op"},
            "message": {"message_id": message_id, "date": 0, "chat": {"id": sender_id, "type": "private"}},
            "data": data,
        }
    )


class TestMenuState:
    def test_awaiting_round_trip(self):
        state = awaiting(InputKind.BLOCK_THRESHOLD)
        assert state.return_menu == MenuScreen.KEYWORD
        assert decode_state(encode_state(state)) == state

    def test_idle_is_not_stored(self, db):
        save_menu_state(db, OPERATOR, awaiting(InputKind.WELCOME_MESSAGE))
        save_menu_state(db, OPERATOR, Idle())
        assert config_service.db_config_get(db, "admin_state:111") is None

    @pytest.mark.parametrize("raw", [None, "", "not json", '{"kind": "nope"}', "[]"])
    def test_unreadable_state_is_idle(self, raw):
        assert decode_state(raw) == Idle()


class TestConfigCallbacks:
    def test_edit_prompts_and_awaits_input(self, db, telegram):
        result = handle_config_callback(db, telegram, menu_query("config:edit:welcome_msg"))

        assert result.value == "edit"
        assert load_menu_state(db, OPERATOR) == AwaitingInput(InputKind.WELCOME_MESSAGE, MenuScreen.BASE)
        edit = telegram.edit_message.call_args.kwargs
        assert edit["message_id"] == 70
        assert "welcome message" in edit["text"]
        telegram.answer_callback_query.assert_called_once_with("q1", None)

    def test_navigation_clears_awaiting_state(self, db, telegram):
        save_menu_state(db, OPERATOR, awaiting(InputKind.VERIFICATION_QUESTION))

        handle_config_callback(db, telegram, menu_query("config:menu:base"))

        assert load_menu_state(db, OPERATOR) == Idle()

    def test_menu_edit_falls_back_to_new_message(self, db, telegram):
        telegram.edit_message.side_effect = [{"ok": False, "description": "Bad Request: message to edit not found"}]

        handle_config_callback(db, telegram, menu_query("config:menu:main"))

        assert "Bot configuration" in telegram.send_message.call_args.kwargs["text"]

    def test_toggle_filter(self, db, telegram):
        handle_config_callback(db, telegram, menu_query("config:toggle:enable_link_forwarding:false"))

        assert config_service.get_bool(db, "enable_link_forwarding") is False
        text, keyboard = render_filter(db)
        assert "Messages with links: ❌ blocked" in text
        buttons = [button for row in keyboard["inline_keyboard"] for button in row]
        assert {"text": "7. ❌ blocked", "callback_data": "config:toggle:enable_link_forwarding:true"} in buttons

    def test_unknown_toggle_key_rejected(self, db, telegram):
        result = handle_config_callback(db, telegram, menu_query("config:toggle:bot_token:true"))

        assert result.error_code == "unknown_action"
        assert config_service.db_config_get(db, "bot_token") is None

    def test_delete_rule_by_id(self, db, telegram):
        config_service.put_config(
            db,
            "keyword_responses",
            json.dumps(
                [
                    {"keywords": "price", "response": "a", "id": "1"},
                    {"keywords": "hours", "response": "b", "id": "2"},
                ]
            ),
        )

        handle_config_callback(db, telegram, menu_query("config:delete:keyword_responses:1"))

        rules = config_service.get_rules(db, "keyword_responses")
        assert [rule.id for rule in rules] == ["2"]
        telegram.answer_callback_query.assert_called_once_with("q1", "✅ Deleted")

    def test_clear_backup_group(self, db, telegram):
        config_service.put_config(db, "backup_group_id", "-100555")

        handle_config_callback(db, telegram, menu_query("config:edit:backup_group_id_clear"))

        assert config_service.get_config(db, "backup_group_id") == ""

    def test_secondary_operator_rejected(self, db, telegram):
        config_service.put_config(db, "authorized_admins", '["222"]')

        result = handle_config_callback(db, telegram, menu_query("config:edit:verif_a", sender_id=222))

        assert result.error_code == "forbidden"
        assert load_menu_state(db, "222") == Idle()
        assert telegram.answer_callback_query.call_args.kwargs["show_alert"] is True


class TestMenuInput:
    def test_value_stored_and_menu_shown(self, db, telegram):
        state = awaiting(InputKind.VERIFICATION_ANSWER)
        save_menu_state(db, OPERATOR, state)

        result = handle_menu_input(db, telegram, OPERATOR, " 8|27|29 ", state)

        assert result.value == "verif_a"
        assert config_service.db_config_get(db, "verif_a") == "8|27|29"
        assert load_menu_state(db, OPERATOR) == Idle()
        assert "Verification" in sent_texts(telegram)[-1]

    def test_cancel(self, db, telegram):
        state = awaiting(InputKind.WELCOME_MESSAGE)
        save_menu_state(db, OPERATOR, state)

        result = handle_menu_input(db, telegram, OPERATOR, "/cancel", state)

        assert result.value == "cancelled"
        assert config_service.db_config_get(db, "welcome_msg") is None
        assert load_menu_state(db, OPERATOR) == Idle()

    @pytest.mark.parametrize("text", ["zero", "0", "-3"])
    def test_invalid_threshold_keeps_waiting(self, db, telegram, text):
        state = awaiting(InputKind.BLOCK_THRESHOLD)
        save_menu_state(db, OPERATOR, state)

        result = handle_menu_input(db, telegram, OPERATOR, text, state)

        assert result.error_code == "invalid_input"
        assert config_service.db_config_get(db, "block_threshold") is None
        assert load_menu_state(db, OPERATOR) == state

    def test_add_block_keyword(self, db, telegram):
        config_service.put_config(db, "block_keywords", json.dumps(["spam"]))
        state = awaiting(InputKind.ADD_BLOCK_KEYWORD)

        handle_menu_input(db, telegram, OPERATOR, "casino|bet", state)

        stored = json.loads(config_service.db_config_get(db, "block_keywords"))
        assert stored[0] == {"keywords": "spam", "id": "spam"}
        assert stored[1]["keywords"] == "casino|bet"
        assert stored[1]["id"].isdigit()

    def test_invalid_regex_rejected(self, db, telegram):
        state = awaiting(InputKind.ADD_BLOCK_KEYWORD)

        result = handle_menu_input(db, telegram, OPERATOR, "(unclosed", state)

        assert result.error_code == "invalid_input"
        assert "regular expression" in sent_texts(telegram)[-1]

    def test_add_auto_reply(self, db, telegram):
        state = awaiting(InputKind.ADD_AUTO_REPLY)

        handle_menu_input(db, telegram, OPERATOR, "price|cost===See the pinned list", state)

        [rule] = config_service.get_rules(db, "keyword_responses")
        assert rule.pattern == "price|cost"
        assert rule.response == "See the pinned list"

    def test_authorized_admins_list(self, db, telegram):
        state = awaiting(InputKind.AUTHORIZED_ADMINS)

        handle_menu_input(db, telegram, OPERATOR, "222, @Helper ,", state)

        assert config_service.get_authorized_admins(db) == ["222", "@Helper"]
        assert config_service.is_admin_user(db, 999, "helper")
