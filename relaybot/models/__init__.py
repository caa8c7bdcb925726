from relaybot.models.config_entry import ConfigEntry
from relaybot.models.message import MessageRecord
from relaybot.models.user import User

__all__ = [
    "ConfigEntry",
    "MessageRecord",
    "User",
]
