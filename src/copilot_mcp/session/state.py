"""Session state for multi-turn Copilot conversations."""

import hashlib
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

WORKSPACE_ID_LENGTH = 12

Role = Literal["user", "assistant"]


def generate_workspace_id(working_dir: str, git_head: Optional[str] = None) -> str:
    """
    Fingerprint a working directory for implicit session lookup.

    Args:
        working_dir: Absolute working directory path
        git_head: Optional repository head reference to tell checkouts apart

    Returns:
        First 12 hex characters of the MD5 digest
    """
    source = f"{working_dir}:{git_head}" if git_head else str(working_dir)
    return hashlib.md5(source.encode("utf-8")).hexdigest()[:WORKSPACE_ID_LENGTH]


def generate_session_id() -> str:
    """Generate an opaque session ID, e.g. ``sess_18f3a2b4c5d_9f2c1a``."""
    return f"sess_{int(time.time() * 1000):x}_{secrets.token_hex(3)}"


@dataclass
class HistoryEntry:
    """One message of a session transcript."""

    role: Role
    content: str
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Session:
    """
    Conversation state bound to one workspace.

    Attributes:
        id: Opaque session identifier (never reused)
        workspace_id: Fingerprint of working_dir
        working_dir: Absolute path the session was created for
        model: AI model in effect for this session
        conversation_id: Continuation token parsed from CLI output
        history: Chronological transcript
        created_at: Creation time (UTC)
        last_activity_at: Last read or write touch (UTC)
    """

    id: str
    workspace_id: str
    working_dir: str
    created_at: datetime
    last_activity_at: datetime
    model: Optional[str] = None
    conversation_id: Optional[str] = None
    history: List[HistoryEntry] = field(default_factory=list)

    def touch(self, now: datetime) -> None:
        self.last_activity_at = now

    def is_expired(self, now: datetime, ttl) -> bool:
        return now - self.last_activity_at > ttl

    def to_dict(self, include_history: bool = False) -> Dict[str, Any]:
        """Serialize for MCP responses."""
        data = {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "working_dir": self.working_dir,
            "model": self.model,
            "conversation_id": self.conversation_id,
            "has_conversation_id": self.conversation_id is not None,
            "history_length": len(self.history),
            "created_at": self.created_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
        }
        if include_history:
            data["history"] = [entry.to_dict() for entry in self.history]
        return data


@dataclass
class SessionStats:
    active_count: int
    max_sessions: int
    ttl_hours: float
    sessions_with_resume: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_count": self.active_count,
            "max_sessions": self.max_sessions,
            "ttl_hours": self.ttl_hours,
            "sessions_with_resume": self.sessions_with_resume,
        }
