"""Client side of the protocol: key custody, session cache and API access."""

from .api import ApiError, ChatClient
from .keystore import FileKeyStore
from .session import ChatSession

__all__ = ["ApiError", "ChatClient", "ChatSession", "FileKeyStore"]
