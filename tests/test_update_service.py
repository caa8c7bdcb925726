from unittest.mock import Mock, patch

from sqlalchemy.orm import sessionmaker

from conftest import GROUP_ID, PRIMARY_ADMIN_ID, sent_texts
from relaybot.schemas.telegram import TelegramUpdate
from relaybot.services import config_service
from relaybot.services.menu_service import AwaitingInput, InputKind, awaiting, load_menu_state, save_menu_state
from relaybot.services.telegram_service import TelegramResponseError
from relaybot.services.update_service import START_HINT, dispatch_update, handle_private_message, process_update
from relaybot.services.user_service import get_or_create_user, get_user, update_user
from relaybot.services.verification_service import (
    ALREADY_VERIFIED_NOTICE,
    STAFF_BYPASS_NOTICE,
    VERIFIED_NOTICE,
    WRONG_ANSWER_NOTICE,
)


def private_update(text, user_id=42, update_id=1):
    return TelegramUpdate(
        update_id=update_id,
        message={
            "message_id": update_id,
            "date": 1702000000,
            "chat": {"id": user_id, "type": "private"},
            "from": {"id": user_id, "is_bot": False, "first_name": "Alice"},
            "text": text,
        },
    )


class TestVerification:
    def test_start_sends_welcome_and_question(self, db, telegram, make_message):
        result = handle_private_message(db, telegram, make_message(text="/start"))

        assert result.value == "pending_verification"
        assert get_user(db, "42").user_state == "pending_verification"
        assert sent_texts(telegram) == [
            config_service.DEFAULT_WELCOME_MESSAGE,
            config_service.DEFAULT_VERIFICATION_QUESTION,
        ]

    def test_answer_alternatives(self, db, telegram, make_message):
        config_service.put_config(db, "verif_a", "8|27|29")
        handle_private_message(db, telegram, make_message(text="/start"))

        wrong = handle_private_message(db, telegram, make_message(text="9"))
        assert wrong.error_code == "wrong_answer"
        assert get_user(db, "42").user_state == "pending_verification"
        assert sent_texts(telegram)[-1] == WRONG_ANSWER_NOTICE

        right = handle_private_message(db, telegram, make_message(text=" 27 "))
        assert right.value == "verified"
        assert get_user(db, "42").user_state == "verified"
        assert sent_texts(telegram)[-1] == VERIFIED_NOTICE

    def test_verified_user_start_only_gets_notice(self, db, telegram, make_message):
        user = get_or_create_user(db, "42")
        update_user(db, user, user_state="verified")

        handle_private_message(db, telegram, make_message(text="/start"))

        assert sent_texts(telegram) == [ALREADY_VERIFIED_NOTICE]

    def test_unknown_command_before_start_gets_hint(self, db, telegram, make_message):
        result = handle_private_message(db, telegram, make_message(text="/price"))

        assert result.value == "start_hint"
        assert sent_texts(telegram) == [START_HINT]

    def test_blocked_user_is_silent(self, db, telegram, make_message):
        user = get_or_create_user(db, "42")
        update_user(db, user, is_blocked=True)

        assert handle_private_message(db, telegram, make_message(text="/start")).value == "blocked"
        assert handle_private_message(db, telegram, make_message(text="hi")).value == "blocked"
        telegram.send_message.assert_not_called()


class TestOperators:
    def test_secondary_operator_skips_challenge(self, db, telegram, make_message):
        config_service.put_config(db, "authorized_admins", '["222"]')

        handle_private_message(db, telegram, make_message(chat_id=222, text="/start"))

        assert get_user(db, "222").user_state == "verified"
        assert sent_texts(telegram) == [STAFF_BYPASS_NOTICE]

    def test_secondary_operator_messages_are_relayed(self, db, telegram, make_message):
        config_service.put_config(db, "authorized_admins", '["222"]')

        result = handle_private_message(db, telegram, make_message(chat_id=222, text="testing"))

        assert result.ok
        assert result.value == get_user(db, "222").topic_id
        assert config_service.DEFAULT_VERIFICATION_QUESTION not in sent_texts(telegram)

    def test_primary_start_opens_menu(self, db, telegram, make_message):
        save_menu_state(db, PRIMARY_ADMIN_ID, awaiting(InputKind.WELCOME_MESSAGE))

        result = handle_private_message(db, telegram, make_message(chat_id=PRIMARY_ADMIN_ID, text="/start"))

        assert result.value == "main"
        assert "inline_keyboard" in telegram.send_message.call_args.kwargs["reply_markup"]
        assert not isinstance(load_menu_state(db, PRIMARY_ADMIN_ID), AwaitingInput)

    def test_primary_input_goes_to_menu(self, db, telegram, make_message):
        save_menu_state(db, PRIMARY_ADMIN_ID, awaiting(InputKind.WELCOME_MESSAGE))

        result = handle_private_message(db, telegram, make_message(chat_id=PRIMARY_ADMIN_ID, text="Hi there"))

        assert result.value == "welcome_msg"
        assert config_service.db_config_get(db, "welcome_msg") == "Hi there"
        telegram.copy_message.assert_not_called()


class TestDispatch:
    def test_unrelated_group_is_ignored(self, db, telegram):
        update = TelegramUpdate(
            update_id=1,
            message={"message_id": 1, "date": 0, "chat": {"id": -555, "type": "group"}, "text": "hi"},
        )
        assert dispatch_update(db, telegram, update).error_code == "ignored"

    def test_staff_group_message_is_outbound(self, db, telegram):
        user = get_or_create_user(db, "42")
        update_user(db, user, user_state="verified", topic_id="77")
        update = TelegramUpdate(
            update_id=1,
            message={
                "message_id": 300,
                "date": 0,
                "chat": {"id": int(GROUP_ID), "type": "supergroup"},
                "from": {"id": PRIMARY_ADMIN_ID, "is_bot": False, "first_name": "Op"},
                "message_thread_id": 77,
                "is_topic_message": True,
                "text": "hello",
            },
        )

        assert dispatch_update(db, telegram, update).value == "42"

    def test_empty_update_is_ignored(self, db, telegram):
        assert dispatch_update(db, telegram, TelegramUpdate(update_id=1)).error_code == "ignored"


class TestProcessUpdate:
    def test_commits_changes(self, engine, telegram):
        factory = sessionmaker(bind=engine, autoflush=False)

        result = process_update(private_update("/start"), session_factory=factory, telegram=telegram)

        assert result.ok
        check = factory()
        try:
            assert get_user(check, "42").user_state == "pending_verification"
        finally:
            check.close()

    def test_exception_is_swallowed_and_rolled_back(self, telegram):
        session = Mock()

        with patch("relaybot.services.update_service.dispatch_update", side_effect=RuntimeError("boom")):
            result = process_update(private_update("/start"), session_factory=lambda: session, telegram=telegram)

        assert result is None
        session.rollback.assert_called_once()
        session.commit.assert_not_called()
        session.close.assert_called_once()

    def test_failed_relay_still_commits_topic(self, engine, telegram):
        factory = sessionmaker(bind=engine, autoflush=False)
        setup = factory()
        user = get_or_create_user(setup, "42")
        update_user(setup, user, user_state="verified")
        setup.commit()
        setup.close()
        telegram.copy_message.side_effect = TelegramResponseError("copyMessage", 502)

        result = process_update(private_update("hello"), session_factory=factory, telegram=telegram)

        assert result.error_code == "relay_failed"
        check = factory()
        try:
            assert get_user(check, "42").topic_id == "500"
        finally:
            check.close()
