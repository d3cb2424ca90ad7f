"""
Domain models shared by the retriever, tool layer and agents.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ===========================
# Knowledge
# ===========================

class KnowledgeHit(BaseModel):
    """A scored knowledge entry returned by similarity search."""
    id: str
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    score: float = 0.0


class InteractionHit(BaseModel):
    """A past customer interaction recalled from long-term memory."""
    id: str
    query: str = ""
    response: str = ""
    actions: Dict[str, Any] = Field(default_factory=dict)
    resolution: Optional[str] = None
    timestamp: Optional[str] = None
    score: float = 0.0


# ===========================
# Tools
# ===========================

class ToolCall(BaseModel):
    """A requested tool invocation."""
    name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


# ===========================
# Tickets
# ===========================

class TicketPriority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class Ticket(BaseModel):
    id: str = Field(default_factory=lambda: f"ticket-{uuid.uuid4()}")
    tenant_id: str
    customer_id: str = "anonymous"
    description: str
    priority: TicketPriority = TicketPriority.NORMAL
    created_at: datetime = Field(default_factory=datetime.utcnow)


class TicketAnalysis(BaseModel):
    """
    Structured reading of the generation service's ticket analysis.

    Missing fields fall back to conservative defaults; in particular a
    missing approval verdict means approval is required.
    """
    ticket_id: str
    category: str = "Uncategorized"
    suggested_actions: str = "No specific actions suggested"
    requires_approval: bool = True
    confidence: int = 50
    raw_text: str = ""

    @field_validator('confidence')
    @classmethod
    def clamp_confidence(cls, v: int) -> int:
        return max(0, min(100, v))


class ResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    PENDING_APPROVAL = "pending_approval"
    REUSED = "reused"


class Resolution(BaseModel):
    ticket_id: str
    status: ResolutionStatus
    message: str
    actions: Dict[str, Any] = Field(default_factory=dict)
    approval_id: Optional[str] = None


class SimilarResolution(BaseModel):
    """A previously resolved ticket close to the current one."""
    ticket_id: str
    description: str = ""
    resolution: str = ""
    actions: Dict[str, Any] = Field(default_factory=dict)
    score: float = 0.0


# ===========================
# FAQ
# ===========================

class FAQItem(BaseModel):
    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)
    category: str = "general"


class FAQMatch(BaseModel):
    question: str
    answer: str
    category: str = "general"
    score: float = 0.0


class FAQResult(BaseModel):
    has_relevant_info: bool
    response: Optional[str] = None
    reasoning: str = ""
    relevant_faqs: List[FAQMatch] = Field(default_factory=list)


__all__ = [
    'KnowledgeHit',
    'InteractionHit',
    'ToolCall',
    'TicketPriority',
    'Ticket',
    'TicketAnalysis',
    'ResolutionStatus',
    'Resolution',
    'SimilarResolution',
    'FAQItem',
    'FAQMatch',
    'FAQResult'
]
