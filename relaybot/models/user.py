import json

from sqlalchemy import Boolean, Column, Integer, Text

from relaybot.database import Base


class User(Base):
    __tablename__ = "users"

    user_id = Column(Text, primary_key=True)
    user_state = Column(Text, nullable=False, default="new")  # new, pending_verification, verified
    is_blocked = Column(Boolean, nullable=False, default=False)
    is_muted = Column(Boolean, nullable=False, default=False)
    block_count = Column(Integer, nullable=False, default=0)
    topic_id = Column(Text, unique=True)
    user_info_json = Column(Text)
    info_card_message_id = Column(Text)
    block_log_message_id = Column(Text)
    profile_log_message_id = Column(Text)

    @property
    def user_info(self) -> dict:
        if not self.user_info_json:
            return {}
        try:
            data = json.loads(self.user_info_json)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    @user_info.setter
    def user_info(self, value: dict) -> None:
        self.user_info_json = json.dumps(value, ensure_ascii=False) if value else None

    @property
    def display_name(self) -> str:
        return self.user_info.get("name") or self.user_id
