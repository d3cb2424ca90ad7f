"""
Session history in Redis, shared by every API instance.

Version: 1.0.0

Key layout (``prefix`` defaults to ``support:``):
- ``<prefix>session:<id>:messages``  LIST of message JSON, oldest first
- ``<prefix>session:<id>:meta``      STRING metadata JSON
- ``<prefix>session:<id>:activity``  STRING last activity ISO timestamp
- ``<prefix>session:<id>:lock``      turn lock token (TurnLock)
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, TypeVar

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import (
    RedisError,
    WatchError,
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError
)
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential
)

from ..exceptions import SessionStoreUnavailableError
from .distributed_lock import TurnLock
from .session_store import SessionStore
from .validators import SessionMessage, SessionMetadata

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RedisSessionStore(SessionStore):
    """
    SessionStore over Redis.

    Appends push and trim in one Lua call, metadata merges use WATCH/MULTI
    and turns are serialized across instances by TurnLock. Connection
    errors are retried with exponential backoff, then surface as
    SessionStoreUnavailableError.
    """

    # KEYS[1] messages list, KEYS[2] activity key
    # ARGV[1] message JSON, ARGV[2] cap, ARGV[3] activity timestamp
    APPEND_SCRIPT = """
    redis.call('RPUSH', KEYS[1], ARGV[1])
    redis.call('LTRIM', KEYS[1], -tonumber(ARGV[2]), -1)
    redis.call('SET', KEYS[2], ARGV[3])
    return redis.call('LLEN', KEYS[1])
    """

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "support:",
        history_cap: int = 100,
        max_connections: int = 50,
        socket_timeout: int = 5,
        socket_connect_timeout: int = 5,
        retry_attempts: int = 3,
        lock_timeout: int = 60,
        lock_wait_timeout: float = 300.0,
        lock_retry_attempts: Optional[int] = None,
        client: Optional[Redis] = None
    ):
        """
        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for all keys
            history_cap: Maximum messages retained per session
            max_connections: Pool size
            socket_timeout: Per-command timeout (seconds)
            socket_connect_timeout: Connect timeout (seconds)
            retry_attempts: Attempts for operations failing on connection errors
            lock_timeout: Turn lock TTL in seconds (renewed while held)
            lock_wait_timeout: Seconds a turn waits for the session's lock
            lock_retry_attempts: Optional cap on lock polls
            client: Pre-built client (tests)
        """
        if history_cap < 1:
            raise ValueError("history_cap must be at least 1")

        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.history_cap = history_cap
        self.retry_attempts = retry_attempts
        self.lock_timeout = lock_timeout
        self.lock_wait_timeout = lock_wait_timeout
        self.lock_retry_attempts = lock_retry_attempts

        if client is not None:
            self.pool = None
            self.client = client
        else:
            self.pool = redis.ConnectionPool.from_url(
                redis_url,
                max_connections=max_connections,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_connect_timeout,
                decode_responses=True,
                socket_keepalive=True
            )
            self.client = Redis(connection_pool=self.pool)

        self._append_script = self.client.register_script(self.APPEND_SCRIPT)

        logger.info(
            f"RedisSessionStore initialized "
            f"(url={redis_url}, prefix={key_prefix}, history_cap={history_cap})"
        )

    # ===========================
    # Helpers
    # ===========================

    def _messages_key(self, session_id: str) -> str:
        return f"{self.key_prefix}session:{session_id}:messages"

    def _meta_key(self, session_id: str) -> str:
        return f"{self.key_prefix}session:{session_id}:meta"

    def _activity_key(self, session_id: str) -> str:
        return f"{self.key_prefix}session:{session_id}:activity"

    def _lock_key(self, session_id: str) -> str:
        return f"{self.key_prefix}session:{session_id}:lock"

    async def _run(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run a Redis operation with retries, mapping failures to store errors."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retry_attempts),
                wait=wait_exponential(multiplier=0.1, min=0.1, max=2.0),
                retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True
            ):
                with attempt:
                    return await operation()
        except RedisError as e:
            logger.error(f"Redis error during {name}: {e}")
            raise SessionStoreUnavailableError(
                f"Session store unavailable during {name}",
                details={"operation": name}
            ) from e

    @staticmethod
    def _monotonic(messages: List[SessionMessage]) -> List[SessionMessage]:
        # List order is append order; clamp clock skew between writers
        latest: Optional[datetime] = None
        for message in messages:
            if latest is not None and message.timestamp < latest:
                message.timestamp = latest
            latest = message.timestamp
        return messages

    # ===========================
    # SessionStore API
    # ===========================

    async def append(self, session_id: str, message: SessionMessage) -> str:
        payload = message.to_json()
        activity = message.timestamp.isoformat()

        async def _append():
            return await self._append_script(
                keys=[self._messages_key(session_id), self._activity_key(session_id)],
                args=[payload, self.history_cap, activity]
            )

        length = await self._run("append", _append)
        logger.debug(
            f"Appended {message.role} message to session {session_id} (length={length})",
            extra={"session_id": session_id, "message_id": message.id}
        )
        return message.id

    async def history(self, session_id: str, limit: int = 50) -> List[SessionMessage]:
        if limit <= 0:
            return []

        async def _history():
            return await self.client.lrange(self._messages_key(session_id), -limit, -1)

        raw_messages = await self._run("history", _history)

        messages = []
        for raw in raw_messages:
            try:
                messages.append(SessionMessage.from_json(raw))
            except ValueError as e:
                logger.warning(f"Skipping corrupt message in session {session_id}: {e}")
        return self._monotonic(messages)

    async def get_metadata(self, session_id: str) -> SessionMetadata:
        async def _get():
            pipe = self.client.pipeline(transaction=False)
            pipe.get(self._meta_key(session_id))
            pipe.get(self._activity_key(session_id))
            return await pipe.execute()

        raw_meta, activity = await self._run("get_metadata", _get)

        metadata = SessionMetadata.from_json(raw_meta) if raw_meta else SessionMetadata()
        if activity:
            metadata.last_activity = datetime.fromisoformat(activity)
        return metadata

    async def update_metadata(
        self,
        session_id: str,
        partial: Dict[str, Any]
    ) -> SessionMetadata:
        key = self._meta_key(session_id)

        async def _update():
            while True:
                async with self.client.pipeline(transaction=True) as pipe:
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        current = SessionMetadata.from_json(raw) if raw else SessionMetadata()
                        updated = current.merged(partial)

                        pipe.multi()
                        pipe.set(key, updated.to_json())
                        await pipe.execute()
                        return updated
                    except WatchError:
                        logger.debug(f"Concurrent metadata update on {session_id}, retrying")
                        continue

        updated = await self._run("update_metadata", _update)
        logger.debug(
            f"Updated metadata for session {session_id} (fields: {list(partial.keys())})"
        )
        return updated

    @asynccontextmanager
    async def turn(self, session_id: str) -> AsyncIterator[None]:
        async with TurnLock(
            self.client,
            self._lock_key(session_id),
            ttl=self.lock_timeout,
            wait_timeout=self.lock_wait_timeout,
            attempts=self.lock_retry_attempts
        ):
            yield

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def delete(self, session_id: str) -> None:
        """Remove all keys for a session."""
        async def _delete():
            return await self.client.delete(
                self._messages_key(session_id),
                self._meta_key(session_id),
                self._activity_key(session_id)
            )

        await self._run("delete", _delete)

    async def close(self) -> None:
        """Close Redis connections."""
        await self.client.aclose()
        if self.pool is not None:
            await self.pool.disconnect()
        logger.info("✓ Redis session store closed")


__all__ = ['RedisSessionStore']
