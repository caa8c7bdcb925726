from sqlalchemy import Column, Text

from relaybot.database import Base


class ConfigEntry(Base):
    __tablename__ = "config"

    key = Column(Text, primary_key=True)
    value = Column(Text)
