"""
Agents package.
Conversation orchestration and the policies it applies.
"""
from .escalation import EscalationEngine
from .fallback import FallbackResponder
from .faq_reasoner import FAQReasoner
from .ticket_resolver import TicketResolver
from .orchestrator import ConversationOrchestrator, TurnState

__all__ = [
    'EscalationEngine',
    'FallbackResponder',
    'FAQReasoner',
    'TicketResolver',
    'ConversationOrchestrator',
    'TurnState'
]
