from sqlalchemy import Column, Integer, Text

from relaybot.database import Base


class MessageRecord(Base):
    """Last known text of a relayed message, keyed by owner and message id."""

    __tablename__ = "messages"

    user_id = Column(Text, primary_key=True)
    message_id = Column(Text, primary_key=True)  # "t:<id>" for staff replies
    text = Column(Text)
    date = Column(Integer)  # unix seconds, send or last edit
