"""
Abstract session store interface.
Defines the contract for per-session conversation persistence.

Version: 1.0.0

Guarantees every implementation provides:
- Append-only, time-monotonic message log per session
- History capped at ``history_cap`` messages (oldest dropped first)
- Single writer per session; sessions never contend with each other
- A ``turn`` section so one conversation turn runs exclusively
"""
from abc import ABC, abstractmethod
from typing import Any, AsyncContextManager, Dict, List

from .validators import SessionMessage, SessionMetadata


class SessionStore(ABC):
    """
    Abstract base class for session storage.

    Backend failures surface as
    :class:`~support_orchestrator.exceptions.SessionStoreUnavailableError`.
    """

    history_cap: int = 100

    @abstractmethod
    async def append(self, session_id: str, message: SessionMessage) -> str:
        """
        Append a message to the session log.

        Args:
            session_id: Session identifier
            message: Message to store

        Returns:
            Stored message id
        """
        pass

    @abstractmethod
    async def history(self, session_id: str, limit: int = 50) -> List[SessionMessage]:
        """
        Get the most recent messages, oldest first.

        Args:
            session_id: Session identifier
            limit: Maximum number of messages

        Returns:
            Up to ``limit`` messages; empty for unknown sessions
        """
        pass

    @abstractmethod
    async def get_metadata(self, session_id: str) -> SessionMetadata:
        """Get session metadata (defaults for unknown sessions)."""
        pass

    @abstractmethod
    async def update_metadata(
        self,
        session_id: str,
        partial: Dict[str, Any]
    ) -> SessionMetadata:
        """
        Merge ``partial`` into the session metadata atomically.

        Returns:
            Metadata after the merge
        """
        pass

    @abstractmethod
    def turn(self, session_id: str) -> AsyncContextManager[None]:
        """
        Exclusive section for one conversation turn.

        Concurrent turns on the same session are serialized in arrival
        order; turns on different sessions proceed in parallel.
        """
        pass

    async def ping(self) -> bool:
        """Check backend connectivity."""
        return True

    async def close(self) -> None:
        """Release backend resources."""
        return None

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform health check on session store.

        Returns:
            Dictionary with health status
        """
        try:
            healthy = await self.ping()
            return {"healthy": healthy, "store_type": type(self).__name__}
        except Exception as e:
            return {"healthy": False, "store_type": type(self).__name__, "error": str(e)}


__all__ = ['SessionStore', 'SessionMessage', 'SessionMetadata']
