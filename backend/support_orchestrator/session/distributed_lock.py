"""
Cross-instance turn lock for Redis-backed sessions.

Version: 1.0.0

Holding the lock makes an instance the single writer for one session.
Ownership is a random token stored under the lock key with a TTL. While
held, a background task keeps pushing the TTL forward, so a long turn
keeps its lock and a crashed holder only blocks the session until the
key expires.
"""
import asyncio
import logging
import uuid
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError
from tenacity import (
    AsyncRetrying,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_random_exponential
)

from ..exceptions import LockAcquisitionError

logger = logging.getLogger(__name__)

# Delete the key only while it still holds our token
RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

# Extend the TTL only while the key still holds our token
RENEW_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return 0
"""


class TurnLock:
    """
    Async context manager guarding one session's turn.

    Acquisition polls ``SET NX EX`` with jittered exponential backoff for
    up to ``wait_timeout`` seconds (and ``attempts`` polls, when given),
    then raises LockAcquisitionError. The order in which waiting
    instances get the lock is not defined.

    Every ``renew_interval`` seconds (default a third of ``ttl``) the
    holder resets the TTL. ``lost`` turns True if the key expired or was
    taken over despite renewal.
    """

    def __init__(
        self,
        client: Redis,
        key: str,
        ttl: int = 30,
        wait_timeout: float = 300.0,
        attempts: Optional[int] = None,
        wait_min: float = 0.02,
        wait_max: float = 0.5,
        renew_interval: Optional[float] = None
    ):
        self.client = client
        self.key = key
        self.ttl = ttl
        self.wait_timeout = wait_timeout
        self.attempts = attempts
        self.wait_min = wait_min
        self.wait_max = wait_max
        self.renew_interval = renew_interval or max(ttl / 3, 0.1)
        self.token: Optional[str] = None
        self.lost = False
        self._renewal: Optional[asyncio.Task] = None
        self._release_script = client.register_script(RELEASE_SCRIPT)
        self._renew_script = client.register_script(RENEW_SCRIPT)

    async def _try_set(self, token: str) -> bool:
        try:
            return bool(await self.client.set(self.key, token, nx=True, ex=self.ttl))
        except RedisError as e:
            raise LockAcquisitionError(
                f"Turn lock unavailable: {e}",
                details={"lock": self.key}
            ) from e

    async def acquire(self) -> None:
        """
        Raises:
            LockAcquisitionError: Lock still held when the wait budget ran out, or Redis failed
        """
        token = uuid.uuid4().hex
        stop = stop_after_delay(self.wait_timeout)
        if self.attempts:
            stop = stop | stop_after_attempt(self.attempts)

        retrying = AsyncRetrying(
            stop=stop,
            wait=wait_random_exponential(multiplier=self.wait_min, max=self.wait_max),
            retry=retry_if_result(lambda acquired: not acquired),
            retry_error_callback=lambda retry_state: False
        )

        if not await retrying(self._try_set, token):
            logger.warning(f"Turn lock {self.key} still held after waiting {self.wait_timeout}s")
            raise LockAcquisitionError(
                "Session is busy with another turn",
                details={"lock": self.key, "wait_timeout": self.wait_timeout}
            )

        self.token = token
        self.lost = False
        self._renewal = asyncio.create_task(self._keep_alive(token))
        logger.debug(f"Turn lock {self.key} acquired (ttl={self.ttl}s)")

    async def _keep_alive(self, token: str) -> None:
        while True:
            await asyncio.sleep(self.renew_interval)
            try:
                renewed = await self._renew_script(keys=[self.key], args=[token, self.ttl])
            except RedisError as e:
                logger.warning(f"Turn lock {self.key} renewal failed, retrying: {e}")
                continue

            if not renewed:
                self.lost = True
                logger.error(f"Turn lock {self.key} lost while the turn was still running")
                return

    async def _stop_renewal(self) -> None:
        if self._renewal is None:
            return
        task, self._renewal = self._renewal, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def release(self) -> None:
        await self._stop_renewal()
        if self.token is None:
            return
        token, self.token = self.token, None

        try:
            released = await self._release_script(keys=[self.key], args=[token])
        except RedisError as e:
            logger.warning(f"Turn lock {self.key} not released, expires in {self.ttl}s: {e}")
            return

        if not released:
            logger.warning(f"Turn lock {self.key} expired before release")

    async def __aenter__(self) -> "TurnLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.release()
        return False


__all__ = ['TurnLock', 'RELEASE_SCRIPT', 'RENEW_SCRIPT']
