from sqlalchemy.orm import Session

from relaybot.logging_config import get_logger
from relaybot.models import User
from relaybot.services import config_service
from relaybot.services.result import FailureCode, Result
from relaybot.services.state_machine import (
    VerificationState,
    force_verified,
    is_correct_answer,
    parse_state,
    pass_challenge,
    start_challenge,
)
from relaybot.services.telegram_service import TelegramService
from relaybot.services.user_service import update_user

logger = get_logger("verification_service")

VERIFIED_NOTICE = "🎉 Verification passed! You can start chatting now."
WRONG_ANSWER_NOTICE = "🥺 Sorry, that is not the right answer. Please try again."
ALREADY_VERIFIED_NOTICE = "You are already verified. Just send your message."
STAFF_BYPASS_NOTICE = "You are an authorized staff member and skip verification. The menu is for primary operators only."


def _send(telegram: TelegramService, chat_id: str, text: str) -> dict:
    return telegram.send_message(chat_id=chat_id, text=text, parse_mode=None)


def handle_start(db: Session, telegram: TelegramService, user: User) -> Result[VerificationState]:
    """Send the welcome and the challenge; a new user starts owing an answer."""
    state = parse_state(user.user_state)
    welcome = config_service.get_config(db, "welcome_msg", config_service.DEFAULT_WELCOME_MESSAGE)

    if state == VerificationState.VERIFIED:
        _send(telegram, user.user_id, ALREADY_VERIFIED_NOTICE)
        return Result.success(state)

    question = config_service.get_config(db, "verif_q", config_service.DEFAULT_VERIFICATION_QUESTION)
    _send(telegram, user.user_id, welcome)
    _send(telegram, user.user_id, question)

    if state == VerificationState.NEW:
        state = start_challenge(state)
        update_user(db, user, user_state=state.value)
        logger.info(f"User {user.user_id} challenged")

    return Result.success(state)


def handle_verification(db: Session, telegram: TelegramService, user: User, answer: str) -> Result[VerificationState]:
    """Check an answer against the configured alternatives (e.g. "8|27|29")."""
    state = parse_state(user.user_state)
    expected = config_service.get_config(db, "verif_a", config_service.DEFAULT_VERIFICATION_ANSWER)

    if not is_correct_answer(answer, expected):
        _send(telegram, user.user_id, WRONG_ANSWER_NOTICE)
        return Result.failure("Wrong answer", FailureCode.WRONG_ANSWER)

    state = pass_challenge(state)
    update_user(db, user, user_state=state.value)
    _send(telegram, user.user_id, VERIFIED_NOTICE)
    logger.info(f"User {user.user_id} verified")
    return Result.success(state)


def apply_operator_bypass(db: Session, user: User) -> bool:
    """Force operators to verified. Returns True if the state changed."""
    state = parse_state(user.user_state)
    if state == VerificationState.VERIFIED:
        return False
    update_user(db, user, user_state=force_verified(state).value)
    logger.info(f"Operator {user.user_id} bypassed verification")
    return True
