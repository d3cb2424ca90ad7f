"""
Approval request model and lifecycle rules.

Version: 1.0.0
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import ApprovalStateError


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"

    @property
    def is_terminal(self) -> bool:
        return self is not ApprovalStatus.PENDING


class ApprovalRequest(BaseModel):
    """
    A sensitive action awaiting human sign-off.

    Only ``pending`` may transition; approved/rejected/escalated are final.
    """
    model_config = ConfigDict(use_enum_values=False)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    session_id: str
    user_id: str = "anonymous"
    action: Dict[str, Any] = Field(default_factory=dict)
    status: ApprovalStatus = ApprovalStatus.PENDING
    priority: str = "normal"
    approver_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = None

    def transitioned(
        self,
        status: ApprovalStatus,
        approver_id: Optional[str] = None,
        notes: Optional[str] = None
    ) -> 'ApprovalRequest':
        """
        Return a copy moved to ``status``.

        Raises:
            ApprovalStateError: If the request is already terminal or
                ``status`` is pending
        """
        if self.status.is_terminal:
            raise ApprovalStateError(
                f"Approval {self.id} is already {self.status.value}",
                details={"approval_id": self.id, "status": self.status.value}
            )
        if not status.is_terminal:
            raise ApprovalStateError(
                f"Cannot move approval {self.id} back to pending",
                details={"approval_id": self.id}
            )

        now = datetime.utcnow()
        return self.model_copy(update={
            "status": status,
            "approver_id": approver_id,
            "notes": notes,
            "updated_at": now,
            "resolved_at": now
        })

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str) -> 'ApprovalRequest':
        return cls.model_validate_json(raw)


__all__ = ['ApprovalStatus', 'ApprovalRequest']
