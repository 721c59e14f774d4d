from .store import AuthStore
from .memory import InMemoryStore
from .database import DatabaseManager

__all__ = [
    "AuthStore",
    "InMemoryStore",
    "DatabaseManager",
]
