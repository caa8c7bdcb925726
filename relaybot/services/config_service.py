"""Runtime configuration: config table, then environment, then hardcoded default."""

import json
import os
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from relaybot.config import settings
from relaybot.logging_config import get_logger
from relaybot.models import ConfigEntry

logger = get_logger("config_service")

DEFAULT_WELCOME_MESSAGE = "Welcome! Please pass a short check before chatting."
DEFAULT_VERIFICATION_QUESTION = (
    "Question: 1+1=?\n\n"
    "Hints:\n"
    "1. The correct answer is not “2”.\n"
    "2. The answer is in the bot description."
)
DEFAULT_VERIFICATION_ANSWER = "3"
DEFAULT_BLOCK_THRESHOLD = 5

AUTO_REPLY_KEY = "keyword_responses"
BLOCK_KEYWORDS_KEY = "block_keywords"
AUTHORIZED_ADMINS_KEY = "authorized_admins"
BACKUP_GROUP_KEY = "backup_group_id"
ADMIN_STATE_PREFIX = "admin_state:"

ENV_KEY_OVERRIDES = {
    "welcome_msg": "WELCOME_MESSAGE",
    "verif_q": "VERIFICATION_QUESTION",
    "verif_a": "VERIFICATION_ANSWER",
}


@dataclass
class Rule:
    """Auto-reply or block rule. Order in the stored list is evaluation order."""

    pattern: str
    id: str
    response: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"keywords": self.pattern, "id": self.id}
        if self.response is not None:
            data["response"] = self.response
        return data


def env_key_for(key: str) -> str:
    return ENV_KEY_OVERRIDES.get(key, key.upper())


def db_config_get(db: Session, key: str) -> Optional[str]:
    entry = db.query(ConfigEntry).filter(ConfigEntry.key == key).first()
    return entry.value if entry else None


def put_config(db: Session, key: str, value: str) -> None:
    entry = db.query(ConfigEntry).filter(ConfigEntry.key == key).first()
    if entry:
        entry.value = value
    else:
        db.add(ConfigEntry(key=key, value=value))
    db.flush()


def delete_config(db: Session, key: str) -> None:
    db.query(ConfigEntry).filter(ConfigEntry.key == key).delete()
    db.flush()


def get_config(db: Session, key: str, default: Optional[str] = None) -> Optional[str]:
    """Resolve key from the store, then the environment, then default. First hit wins."""
    value = db_config_get(db, key)
    if value is not None:
        return value

    env_value = os.environ.get(env_key_for(key))
    if env_value is not None:
        return env_value

    return default


def get_bool(db: Session, key: str, default: bool = True) -> bool:
    value = get_config(db, key, "true" if default else "false")
    return (value or "").strip().lower() == "true"


def get_int(db: Session, key: str, default: int) -> int:
    value = get_config(db, key, str(default))
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def get_json_list(db: Session, key: str) -> list:
    raw = get_config(db, key, "[]")
    try:
        data = json.loads(raw or "[]")
    except ValueError:
        logger.error(f"Failed to parse {key} as JSON list")
        return []
    return data if isinstance(data, list) else []


def _coerce_rule(item, index: int) -> Optional[Rule]:
    if isinstance(item, str):
        # Legacy block list entries are bare pattern strings
        return Rule(pattern=item, id=item) if item.strip() else None
    if isinstance(item, dict):
        pattern = str(item.get("keywords") or item.get("pattern") or "").strip()
        if not pattern:
            return None
        rule_id = str(item.get("id") or index)
        response = item.get("response")
        return Rule(pattern=pattern, id=rule_id, response=str(response) if response is not None else None)
    return None


def get_rules(db: Session, key: str) -> list[Rule]:
    rules = []
    for index, item in enumerate(get_json_list(db, key)):
        rule = _coerce_rule(item, index)
        if rule:
            rules.append(rule)
    return rules


def put_rules(db: Session, key: str, rules: list[Rule]) -> None:
    put_config(db, key, json.dumps([rule.to_dict() for rule in rules], ensure_ascii=False))


def get_authorized_admins(db: Session) -> list[str]:
    return [str(item).strip() for item in get_json_list(db, AUTHORIZED_ADMINS_KEY) if str(item).strip()]


def is_primary_admin(user_id) -> bool:
    return str(user_id) in settings.primary_admin_ids


def is_admin_user(db: Session, user_id, username: Optional[str] = None) -> bool:
    """Primary operators from settings or secondary staff (id or @username) from the config table."""
    if is_primary_admin(user_id):
        return True
    authorized = {item.lstrip("@").lower() for item in get_authorized_admins(db)}
    if str(user_id) in authorized:
        return True
    return bool(username) and username.lstrip("@").lower() in authorized
