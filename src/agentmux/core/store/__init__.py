"""Session history persistence."""

from agentmux.core.store.database import Database
from agentmux.core.store.history import (
    KIND_INPUT,
    KIND_OUTPUT,
    BufferedHistoryWriter,
    HistoryRecord,
    HistoryStore,
)

__all__ = [
    "KIND_INPUT",
    "KIND_OUTPUT",
    "BufferedHistoryWriter",
    "Database",
    "HistoryRecord",
    "HistoryStore",
]
