"""
Approval storage.
Abstract interface plus an in-memory implementation.

Version: 1.0.0
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ..exceptions import ApprovalNotFoundError
from .models import ApprovalRequest, ApprovalStatus

logger = logging.getLogger(__name__)


class ApprovalStore(ABC):
    """
    Abstract base class for approval persistence.

    At most one pending request exists per session; creating another
    returns the existing one.
    """

    @abstractmethod
    async def create_pending(self, request: ApprovalRequest) -> ApprovalRequest:
        """
        Store ``request`` unless the session already has a pending one.

        Returns:
            The stored request, or the session's existing pending request
        """
        pass

    @abstractmethod
    async def get(self, approval_id: str) -> ApprovalRequest:
        """
        Raises:
            ApprovalNotFoundError: If the id is unknown
        """
        pass

    @abstractmethod
    async def transition(
        self,
        approval_id: str,
        status: ApprovalStatus,
        approver_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ApprovalRequest:
        """
        Atomically move a pending request to a terminal status.

        Raises:
            ApprovalNotFoundError: If the id is unknown
            ApprovalStateError: If the request is already terminal
        """
        pass

    @abstractmethod
    async def list_for_tenant(
        self,
        tenant_id: str,
        status: Optional[ApprovalStatus] = None
    ) -> List[ApprovalRequest]:
        """List a tenant's requests, newest first."""
        pass

    async def close(self) -> None:
        return None


class InMemoryApprovalStore(ApprovalStore):
    """In-memory approvals guarded by a single asyncio lock."""

    def __init__(self):
        self.requests: Dict[str, ApprovalRequest] = {}
        self.pending_by_session: Dict[str, str] = {}
        self.lock = asyncio.Lock()

    async def create_pending(self, request: ApprovalRequest) -> ApprovalRequest:
        async with self.lock:
            existing_id = self.pending_by_session.get(request.session_id)
            if existing_id is not None:
                logger.debug(
                    f"Session {request.session_id} already has pending approval {existing_id}"
                )
                return self.requests[existing_id].model_copy(deep=True)

            self.requests[request.id] = request.model_copy(deep=True)
            self.pending_by_session[request.session_id] = request.id
            return request.model_copy(deep=True)

    async def get(self, approval_id: str) -> ApprovalRequest:
        async with self.lock:
            request = self.requests.get(approval_id)
            if request is None:
                raise ApprovalNotFoundError(
                    f"Approval request {approval_id} not found",
                    details={"approval_id": approval_id}
                )
            return request.model_copy(deep=True)

    async def transition(
        self,
        approval_id: str,
        status: ApprovalStatus,
        approver_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ApprovalRequest:
        async with self.lock:
            request = self.requests.get(approval_id)
            if request is None:
                raise ApprovalNotFoundError(
                    f"Approval request {approval_id} not found",
                    details={"approval_id": approval_id}
                )

            updated = request.transitioned(status, approver_id=approver_id, notes=notes)
            self.requests[approval_id] = updated

            if self.pending_by_session.get(updated.session_id) == approval_id:
                del self.pending_by_session[updated.session_id]

            return updated.model_copy(deep=True)

    async def list_for_tenant(
        self,
        tenant_id: str,
        status: Optional[ApprovalStatus] = None
    ) -> List[ApprovalRequest]:
        async with self.lock:
            matches = [
                r.model_copy(deep=True) for r in self.requests.values()
                if r.tenant_id == tenant_id and (status is None or r.status == status)
            ]
        return sorted(matches, key=lambda r: r.created_at, reverse=True)


__all__ = ['ApprovalStore', 'InMemoryApprovalStore']
