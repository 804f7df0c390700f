"""タグストアと分類器のアダプタ群."""

from .base_store import BaseTagStore
from .classifier import BaseClassifier, OpenAIChatClassifier
from .sqlite_store import SQLiteTagStore

__all__ = [
    "BaseTagStore",
    "SQLiteTagStore",
    "BaseClassifier",
    "OpenAIChatClassifier",
]
