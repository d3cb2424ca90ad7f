"""
Redis-backed approval store.

Version: 1.0.0

Key layout:
- ``<prefix>approval:<id>``               STRING request JSON
- ``<prefix>approval:pending:<session>``  STRING id of the session's pending request
- ``<prefix>approval:tenant:<tenant>``    SET of request ids
"""
import logging
from typing import List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from ..exceptions import ApprovalNotFoundError, SessionStoreUnavailableError
from .approval_store import ApprovalStore
from .models import ApprovalRequest, ApprovalStatus

logger = logging.getLogger(__name__)


class RedisApprovalStore(ApprovalStore):
    """
    Approval store shared across instances.

    Creation is a Lua script (pending pointer SET NX + record write), so two
    turns racing on the same session agree on a single request. Transitions
    use WATCH/MULTI so a terminal status is never overwritten.
    """

    # KEYS[1] pending pointer, KEYS[2] record key, KEYS[3] tenant index
    # ARGV[1] new id, ARGV[2] record JSON
    CREATE_SCRIPT = """
    local existing = redis.call('GET', KEYS[1])
    if existing then
        return existing
    end
    redis.call('SET', KEYS[1], ARGV[1])
    redis.call('SET', KEYS[2], ARGV[2])
    redis.call('SADD', KEYS[3], ARGV[1])
    return ARGV[1]
    """

    def __init__(self, client: Redis, key_prefix: str = "support:"):
        self.client = client
        self.key_prefix = key_prefix
        self._create_script = client.register_script(self.CREATE_SCRIPT)

    def _record_key(self, approval_id: str) -> str:
        return f"{self.key_prefix}approval:{approval_id}"

    def _pending_key(self, session_id: str) -> str:
        return f"{self.key_prefix}approval:pending:{session_id}"

    def _tenant_key(self, tenant_id: str) -> str:
        return f"{self.key_prefix}approval:tenant:{tenant_id}"

    def _unavailable(self, operation: str, error: Exception) -> SessionStoreUnavailableError:
        logger.error(f"Redis error during approval {operation}: {error}")
        return SessionStoreUnavailableError(
            f"Approval store unavailable during {operation}",
            details={"operation": operation}
        )

    async def create_pending(self, request: ApprovalRequest) -> ApprovalRequest:
        try:
            stored_id = await self._create_script(
                keys=[
                    self._pending_key(request.session_id),
                    self._record_key(request.id),
                    self._tenant_key(request.tenant_id)
                ],
                args=[request.id, request.to_json()]
            )
        except RedisError as e:
            raise self._unavailable("create", e) from e

        if stored_id != request.id:
            logger.debug(
                f"Session {request.session_id} already has pending approval {stored_id}"
            )
            return await self.get(stored_id)
        return request

    async def get(self, approval_id: str) -> ApprovalRequest:
        try:
            raw = await self.client.get(self._record_key(approval_id))
        except RedisError as e:
            raise self._unavailable("get", e) from e

        if not raw:
            raise ApprovalNotFoundError(
                f"Approval request {approval_id} not found",
                details={"approval_id": approval_id}
            )
        return ApprovalRequest.from_json(raw)

    async def transition(
        self,
        approval_id: str,
        status: ApprovalStatus,
        approver_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ApprovalRequest:
        key = self._record_key(approval_id)

        try:
            while True:
                async with self.client.pipeline(transaction=True) as pipe:
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        if not raw:
                            raise ApprovalNotFoundError(
                                f"Approval request {approval_id} not found",
                                details={"approval_id": approval_id}
                            )

                        current = ApprovalRequest.from_json(raw)
                        # Raises ApprovalStateError for terminal requests
                        updated = current.transitioned(
                            status, approver_id=approver_id, notes=notes
                        )

                        pending_key = self._pending_key(current.session_id)
                        pointer = await pipe.get(pending_key)

                        pipe.multi()
                        pipe.set(key, updated.to_json())
                        if pointer == approval_id:
                            pipe.delete(pending_key)
                        await pipe.execute()
                        return updated
                    except WatchError:
                        logger.debug(f"Concurrent transition on approval {approval_id}, retrying")
                        continue
        except RedisError as e:
            raise self._unavailable("transition", e) from e

    async def list_for_tenant(
        self,
        tenant_id: str,
        status: Optional[ApprovalStatus] = None
    ) -> List[ApprovalRequest]:
        try:
            ids = await self.client.smembers(self._tenant_key(tenant_id))
            if not ids:
                return []
            raw_records = await self.client.mget([self._record_key(i) for i in ids])
        except RedisError as e:
            raise self._unavailable("list", e) from e

        requests = [ApprovalRequest.from_json(raw) for raw in raw_records if raw]
        if status is not None:
            requests = [r for r in requests if r.status == status]
        return sorted(requests, key=lambda r: r.created_at, reverse=True)


__all__ = ['RedisApprovalStore']
