"""Session management for multi-turn Copilot conversations."""

from .locking import SessionLocks
from .parsing import ConversationIdParser, parse_conversation_id_from_output
from .state import (
    HistoryEntry,
    Session,
    SessionStats,
    generate_session_id,
    generate_workspace_id,
)
from .store import InMemorySessionBackend, SessionBackend, SessionStore

__all__ = [
    "ConversationIdParser",
    "HistoryEntry",
    "InMemorySessionBackend",
    "Session",
    "SessionBackend",
    "SessionLocks",
    "SessionStats",
    "SessionStore",
    "generate_session_id",
    "generate_workspace_id",
    "parse_conversation_id_from_output",
]
