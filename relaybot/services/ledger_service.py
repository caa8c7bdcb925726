from typing import Optional

from sqlalchemy.orm import Session

from relaybot.models import MessageRecord

# Staff replies live in the group's id space, user messages in the private chat's
STAFF_KEY_PREFIX = "t:"


def staff_message_key(message_id) -> str:
    return f"{STAFF_KEY_PREFIX}{message_id}"


def get_message(db: Session, user_id, message_id) -> Optional[MessageRecord]:
    return (
        db.query(MessageRecord)
        .filter(MessageRecord.user_id == str(user_id), MessageRecord.message_id == str(message_id))
        .first()
    )


def put_message(db: Session, user_id, message_id, text: str, date: Optional[int]) -> MessageRecord:
    """Store the latest known version of a message, replacing the previous one."""
    record = get_message(db, user_id, message_id)
    if record:
        record.text = text
        record.date = date
    else:
        record = MessageRecord(user_id=str(user_id), message_id=str(message_id), text=text, date=date)
        db.add(record)
    db.flush()
    return record
