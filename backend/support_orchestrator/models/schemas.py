"""
Pydantic schemas for request/response validation.
JSON bodies use camelCase; Python attributes stay snake_case.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for API models serialized with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Request Schemas

class ChatRequest(CamelModel):
    """
    Inbound chat message.

    Content checks (empty message, missing tenant) are made by the
    orchestrator so every chat failure is reported the same way.
    """
    message: Optional[str] = Field(default=None, max_length=4000)
    session_id: Optional[str] = Field(default=None, max_length=200)
    customer_id: Optional[str] = Field(default=None, max_length=200)
    tenant_id: Optional[str] = Field(default=None, max_length=200)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "message": "Where is my order ORD-123?",
                "sessionId": "5b0c2f8e-5d0e-4f57-9c55-2d2f8f1b7a11",
                "customerId": "ACC-123",
                "tenantId": "company-1"
            }
        }
    )


class ApprovalDecisionRequest(CamelModel):
    """Approver's decision on a pending approval request."""
    tenant_id: str = Field(..., min_length=1, max_length=100)
    approved: bool
    approver_id: str = Field(..., min_length=1, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=2000)
    escalate: bool = False


class FeedbackRequest(CamelModel):
    # Range is checked by the orchestrator (400 instead of 422)
    rating: int
    comment: Optional[str] = Field(default=None, max_length=2000)


# Response Schemas

class TicketState(CamelModel):
    id: str
    status: str
    approval_id: Optional[str] = None


class ChatResponse(CamelModel):
    """Reply to one chat message."""
    message: str
    session_id: str
    tools_used: List[str] = Field(default_factory=list)
    ticket: Optional[TicketState] = None
    escalated: bool = False

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "message": "Your order ORD-123 has shipped with FedEx.",
                "sessionId": "5b0c2f8e-5d0e-4f57-9c55-2d2f8f1b7a11",
                "toolsUsed": ["order_status"],
                "ticket": None,
                "escalated": False
            }
        }
    )


class ApprovalResponse(CamelModel):
    id: str
    tenant_id: str
    session_id: str
    user_id: str
    action: Dict[str, Any] = Field(default_factory=dict)
    status: str
    priority: str
    approver_id: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None


class HistoryMessage(CamelModel):
    id: str
    role: str
    content: str
    timestamp: datetime
    tools_used: List[str] = Field(default_factory=list)


class HistoryResponse(CamelModel):
    session_id: str
    messages: List[HistoryMessage] = Field(default_factory=list)
    escalated: bool = False


class HealthResponse(CamelModel):
    """Health check response."""
    status: str
    version: str
    timestamp: datetime
    services: Dict[str, str] = Field(default_factory=dict)
    circuit_breakers: Dict[str, Any] = Field(default_factory=dict)


__all__ = [
    'ChatRequest',
    'ChatResponse',
    'TicketState',
    'ApprovalDecisionRequest',
    'ApprovalResponse',
    'FeedbackRequest',
    'HistoryMessage',
    'HistoryResponse',
    'HealthResponse'
]
