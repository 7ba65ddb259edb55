"""
Workspace-scoped session store.

Sessions live in memory only and are lost on restart. Lookup is by
explicit session ID or by the fingerprint of the working directory;
sessions expire after a period of inactivity and the least recently
active ones are evicted when the store is over capacity.
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from .locking import SessionLocks
from .parsing import ConversationIdParser
from .state import (
    HistoryEntry,
    Session,
    SessionStats,
    generate_session_id,
    generate_workspace_id,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)
DEFAULT_MAX_SESSIONS = 50
NEAR_CAPACITY_RATIO = 0.9

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionBackend(ABC):
    """Storage table behind a SessionStore."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    def put(self, session: Session) -> None:
        ...

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        ...

    @abstractmethod
    def list(self) -> List[Session]:
        """Return sessions in insertion order."""

    @abstractmethod
    def clear(self) -> int:
        ...


class InMemorySessionBackend(SessionBackend):
    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def put(self, session: Session) -> None:
        self._sessions[session.id] = session

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def list(self) -> List[Session]:
        return list(self._sessions.values())

    def clear(self) -> int:
        count = len(self._sessions)
        self._sessions.clear()
        return count


class SessionStore:
    """
    Multi-turn conversation state keyed by session ID and workspace.

    Args:
        backend: Storage table (defaults to an in-memory dict)
        ttl: Inactivity period after which a session expires
        max_sessions: Capacity; oldest-activity sessions are evicted beyond it
        clock: Returns the current time (timezone-aware); injectable for tests
        id_parser: Strategy used to extract conversation IDs from CLI output
    """

    def __init__(
        self,
        backend: Optional[SessionBackend] = None,
        *,
        ttl: timedelta = DEFAULT_TTL,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        clock: Optional[Clock] = None,
        id_parser: Optional[ConversationIdParser] = None,
    ):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.backend = backend if backend is not None else InMemorySessionBackend()
        self.ttl = ttl
        self.max_sessions = max_sessions
        self.clock = clock or _utcnow
        self.id_parser = id_parser or ConversationIdParser()
        self.locks = SessionLocks()
        self._lock = threading.RLock()

    def _now(self) -> datetime:
        return self.clock()

    def _is_live(self, session: Session, now: datetime) -> bool:
        return not session.is_expired(now, self.ttl)

    def _remove(self, session_id: str) -> bool:
        removed = self.backend.delete(session_id)
        if removed:
            self.locks.discard(session_id)
        return removed

    def cleanup(self) -> int:
        """
        Remove expired sessions, then evict down to capacity.

        Returns:
            Number of sessions removed
        """
        with self._lock:
            now = self._now()
            removed = 0

            for session in self.backend.list():
                if not self._is_live(session, now):
                    self._remove(session.id)
                    removed += 1
                    logger.debug(f"Removed expired session: {session.id}")

            sessions = self.backend.list()
            overflow = len(sessions) - self.max_sessions
            if overflow > 0:
                oldest_first = sorted(sessions, key=lambda s: s.last_activity_at)
                for session in oldest_first[:overflow]:
                    self._remove(session.id)
                    removed += 1
                    logger.debug(f"Evicted session to enforce limit: {session.id}")

            return removed

    def get_or_create_session(
        self,
        working_dir: Union[str, Path],
        session_id: Optional[str] = None,
        model: Optional[str] = None,
        git_head: Optional[str] = None,
    ) -> Session:
        """
        Return the session for an explicit ID or workspace, creating one if needed.

        Lookup order: live session with ``session_id``; first live session
        whose workspace fingerprint matches ``working_dir``; new session.
        """
        working_dir = str(working_dir)
        with self._lock:
            self.cleanup()
            now = self._now()

            if session_id:
                existing = self.backend.get(session_id)
                if existing is not None and self._is_live(existing, now):
                    existing.touch(now)
                    logger.debug(f"Resumed existing session: {session_id}")
                    return existing
                logger.debug(f"Session {session_id} not found or expired, falling back to workspace")

            workspace_id = generate_workspace_id(working_dir, git_head)
            for session in self.backend.list():
                if session.workspace_id == workspace_id and self._is_live(session, now):
                    session.touch(now)
                    if model and not session.model:
                        session.model = model
                    logger.debug(f"Found existing session for workspace: {session.id}")
                    return session

            session = Session(
                id=generate_session_id(),
                workspace_id=workspace_id,
                working_dir=working_dir,
                model=model,
                created_at=now,
                last_activity_at=now,
            )
            self.backend.put(session)
            logger.info(f"Created session {session.id} for workspace {workspace_id} ({working_dir})")
            self.cleanup()
            return session

    def save_session(self, session: Session) -> None:
        with self._lock:
            session.touch(self._now())
            self.backend.put(session)
            self.cleanup()

    def add_to_history(self, session_id: str, role: str, content: str) -> bool:
        """
        Append a message to a session transcript.

        Returns:
            False if the session does not exist
        """
        if role not in ("user", "assistant"):
            raise ValueError(f"Invalid role '{role}'. Must be 'user' or 'assistant'.")
        with self._lock:
            session = self.backend.get(session_id)
            if session is None:
                logger.debug(f"Cannot add {role} message, session not found: {session_id}")
                return False
            now = self._now()
            session.history.append(HistoryEntry(role=role, content=content, timestamp=now))
            session.touch(now)
            return True

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self.backend.get(session_id)
            if session is None:
                return None
            now = self._now()
            if not self._is_live(session, now):
                self._remove(session_id)
                return None
            session.touch(now)
            return session

    def get_session_by_workspace(
        self, working_dir: Union[str, Path], git_head: Optional[str] = None
    ) -> Optional[Session]:
        workspace_id = generate_workspace_id(str(working_dir), git_head)
        with self._lock:
            now = self._now()
            for session in self.backend.list():
                if session.workspace_id == workspace_id and self._is_live(session, now):
                    return session
            return None

    def get_all_sessions(self) -> List[Session]:
        with self._lock:
            self.cleanup()
            return self.backend.list()

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            existed = self._remove(session_id)
        if existed:
            logger.debug(f"Deleted session: {session_id}")
        return existed

    def clear_all(self) -> int:
        with self._lock:
            count = self.backend.clear()
            self.locks.clear()
        logger.debug(f"Cleared all {count} sessions")
        return count

    def set_conversation_id(self, session_id: str, conversation_id: str) -> bool:
        with self._lock:
            session = self.backend.get(session_id)
            if session is None:
                return False
            session.conversation_id = conversation_id
            session.touch(self._now())
        logger.debug(f"Set conversation ID for session {session_id}: {conversation_id}")
        return True

    def record_conversation_id(self, session_id: str, output: str) -> Optional[str]:
        """Parse a conversation ID from CLI output and store it on the session."""
        conversation_id = self.id_parser.parse(output)
        if conversation_id:
            self.set_conversation_id(session_id, conversation_id)
        return conversation_id

    def get_stats(self) -> SessionStats:
        sessions = self.get_all_sessions()
        return SessionStats(
            active_count=len(sessions),
            max_sessions=self.max_sessions,
            ttl_hours=self.ttl.total_seconds() / 3600,
            sessions_with_resume=sum(1 for s in sessions if s.conversation_id),
        )

    def is_near_capacity(self) -> bool:
        return self.get_stats().active_count >= self.max_sessions * NEAR_CAPACITY_RATIO

    def __len__(self) -> int:
        return len(self.get_all_sessions())
