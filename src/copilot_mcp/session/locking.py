"""Per-session critical sections for the in-memory session store.

Concurrent tool invocations may touch the same session from different
threads (fastmcp runs sync handlers in a worker pool). Compound
read-modify-write sequences on one session are serialized with a lock
keyed by session ID.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

logger = logging.getLogger(__name__)


class SessionLocks:
    """Registry of one reentrant lock per session ID."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def _lock_for(self, session_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[session_id] = lock
            return lock

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        """Hold the lock for session_id for the duration of the block.

        Example:
            >>> with locks.hold(session.id):
            ...     session.history.append(entry)
        """
        lock = self._lock_for(session_id)
        with lock:
            logger.debug(f"Session lock acquired for {session_id}")
            yield
        logger.debug(f"Session lock released for {session_id}")

    def discard(self, session_id: str) -> None:
        with self._guard:
            self._locks.pop(session_id, None)

    def clear(self) -> None:
        with self._guard:
            self._locks.clear()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
