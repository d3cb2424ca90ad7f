"""
Models package.
Domain models shared across components and the API request/response schemas.
"""

from .domain import (
    KnowledgeHit,
    InteractionHit,
    ToolCall,
    TicketPriority,
    Ticket,
    TicketAnalysis,
    ResolutionStatus,
    Resolution,
    SimilarResolution,
    FAQItem,
    FAQMatch,
    FAQResult
)
from .schemas import (
    ChatRequest,
    ChatResponse,
    TicketState,
    ApprovalDecisionRequest,
    ApprovalResponse,
    FeedbackRequest,
    HistoryMessage,
    HistoryResponse,
    HealthResponse
)

__all__ = [
    # Domain
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
    'FAQResult',

    # API schemas
    'ChatRequest',
    'ChatResponse',
    'TicketState',
    'ApprovalDecisionRequest',
    'ApprovalResponse',
    'FeedbackRequest',
    'HistoryMessage',
    'HistoryResponse',
    'HealthResponse',
]
