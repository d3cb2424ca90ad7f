"""
Per-session conversation history and metadata.

Version: 1.0.0
"""
from typing import Dict, Type, Union

from ..config import SessionStoreType
from .distributed_lock import TurnLock
from .in_memory_session_store import InMemorySessionStore
from .redis_session_store import RedisSessionStore
from .session_store import SessionStore
from .validators import MessageRole, SessionMessage, SessionMetadata

STORE_CLASSES: Dict[SessionStoreType, Type[SessionStore]] = {
    SessionStoreType.IN_MEMORY: InMemorySessionStore,
    SessionStoreType.REDIS: RedisSessionStore
}


def create_session_store(
    store_type: Union[SessionStoreType, str] = SessionStoreType.IN_MEMORY,
    **kwargs
) -> SessionStore:
    """
    Build the session store named by ``store_type``.

    Example:
        store = create_session_store("redis", redis_url="redis://localhost:6379/0")

    Raises:
        ValueError: Unknown store type
    """
    try:
        store_class = STORE_CLASSES[SessionStoreType(store_type)]
    except ValueError:
        raise ValueError(f"Unknown store type: {store_type}")
    return store_class(**kwargs)


__all__ = [
    'SessionStore',
    'MessageRole',
    'SessionMessage',
    'SessionMetadata',
    'InMemorySessionStore',
    'RedisSessionStore',
    'TurnLock',
    'create_session_store'
]
