"""
In-memory session store implementation.
Suitable for development and single-instance deployments.

Version: 1.0.0
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from copy import deepcopy
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List

from .session_store import SessionStore
from .validators import SessionMessage, SessionMetadata

logger = logging.getLogger(__name__)


class _SessionRecord:
    __slots__ = ("messages", "metadata")

    def __init__(self):
        self.messages: List[SessionMessage] = []
        self.metadata = SessionMetadata()


class InMemorySessionStore(SessionStore):
    """
    In-memory implementation of SessionStore.

    Features:
    - One write lock and one turn lock per session id
    - Oldest-first eviction at ``history_cap`` messages
    - Deep copy returns to prevent external mutations

    Limitations:
    - Sessions lost on restart
    - Not shared across multiple instances
    """

    def __init__(self, history_cap: int = 100):
        """
        Initialize in-memory session store.

        Args:
            history_cap: Maximum messages retained per session
        """
        if history_cap < 1:
            raise ValueError("history_cap must be at least 1")

        self.history_cap = history_cap
        self.sessions: Dict[str, _SessionRecord] = {}
        self._write_locks: Dict[str, asyncio.Lock] = {}
        self._turn_locks: Dict[str, asyncio.Lock] = {}

        logger.info(f"InMemorySessionStore initialized (history_cap={history_cap})")

    def _write_lock(self, session_id: str) -> asyncio.Lock:
        return self._write_locks.setdefault(session_id, asyncio.Lock())

    def _record(self, session_id: str) -> _SessionRecord:
        record = self.sessions.get(session_id)
        if record is None:
            record = _SessionRecord()
            self.sessions[session_id] = record
        return record

    async def append(self, session_id: str, message: SessionMessage) -> str:
        """Append a message, clamping its timestamp and trimming the log."""
        async with self._write_lock(session_id):
            record = self._record(session_id)
            stored = message.model_copy(deep=True)

            if record.messages and stored.timestamp < record.messages[-1].timestamp:
                stored.timestamp = record.messages[-1].timestamp

            record.messages.append(stored)

            overflow = len(record.messages) - self.history_cap
            if overflow > 0:
                del record.messages[:overflow]
                logger.debug(f"Trimmed {overflow} oldest messages from session {session_id}")

            record.metadata.last_activity = stored.timestamp

            logger.debug(
                f"Appended {stored.role} message to session {session_id}",
                extra={"session_id": session_id, "message_id": stored.id}
            )
            return stored.id

    async def history(self, session_id: str, limit: int = 50) -> List[SessionMessage]:
        if limit <= 0:
            return []

        async with self._write_lock(session_id):
            record = self.sessions.get(session_id)
            if record is None:
                return []
            return [m.model_copy(deep=True) for m in record.messages[-limit:]]

    async def get_metadata(self, session_id: str) -> SessionMetadata:
        async with self._write_lock(session_id):
            record = self.sessions.get(session_id)
            if record is None:
                return SessionMetadata()
            return record.metadata.model_copy(deep=True)

    async def update_metadata(
        self,
        session_id: str,
        partial: Dict[str, Any]
    ) -> SessionMetadata:
        async with self._write_lock(session_id):
            record = self._record(session_id)
            record.metadata = record.metadata.merged(deepcopy(partial), now=datetime.utcnow())

            logger.debug(
                f"Updated metadata for session {session_id} (fields: {list(partial.keys())})"
            )
            return record.metadata.model_copy(deep=True)

    @asynccontextmanager
    async def turn(self, session_id: str) -> AsyncIterator[None]:
        lock = self._turn_locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            yield

    async def get_stats(self) -> Dict[str, Any]:
        """Get session store statistics."""
        return {
            "store_type": "in_memory",
            "total_sessions": len(self.sessions),
            "total_messages": sum(len(r.messages) for r in self.sessions.values()),
            "history_cap": self.history_cap
        }


__all__ = ['InMemorySessionStore']
