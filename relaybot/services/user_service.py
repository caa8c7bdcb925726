from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from relaybot.logging_config import get_logger
from relaybot.models import User

logger = get_logger("user_service")


def get_user(db: Session, user_id: str) -> Optional[User]:
    return db.query(User).filter(User.user_id == str(user_id)).first()


def get_or_create_user(db: Session, user_id) -> User:
    """Insert-or-ignore then read, so concurrent first contacts end up on one row."""
    user_id = str(user_id)
    user = get_user(db, user_id)
    if user:
        return user

    try:
        with db.begin_nested():
            db.add(User(user_id=user_id, user_state="new", is_blocked=False, is_muted=False, block_count=0))
    except IntegrityError:
        logger.info(f"User {user_id} created concurrently, reading existing row")

    return get_user(db, user_id)


def update_user(db: Session, user: User, **fields) -> User:
    for key, value in fields.items():
        if not hasattr(User, key):
            raise AttributeError(f"Unknown user field: {key}")
        setattr(user, key, value)
    db.flush()
    return user


def find_user_by_topic(db: Session, topic_id) -> Optional[User]:
    if topic_id is None:
        return None
    return db.query(User).filter(User.topic_id == str(topic_id)).first()


def assign_topic(db: Session, user: User, topic_id: str, **fields) -> bool:
    """Compare-and-set the topic: only succeeds while the stored topic_id is still NULL.

    Returns False when another event already assigned a topic; the caller then
    adopts the stored one. ``user`` is refreshed either way.
    """
    values = {"topic_id": str(topic_id), **fields}
    updated = (
        db.query(User)
        .filter(User.user_id == user.user_id, User.topic_id.is_(None))
        .update(values, synchronize_session=False)
    )
    db.flush()
    db.refresh(user)
    return updated == 1


def clear_topic(db: Session, user: User, expected_topic_id: Optional[str] = None) -> None:
    """Drop a stale topic reference. With expected_topic_id, only clears that exact value."""
    query = db.query(User).filter(User.user_id == user.user_id)
    if expected_topic_id is not None:
        query = query.filter(User.topic_id == str(expected_topic_id))
    query.update({"topic_id": None, "info_card_message_id": None}, synchronize_session=False)
    db.flush()
    db.refresh(user)
