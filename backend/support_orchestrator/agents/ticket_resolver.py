"""
Support ticket analysis and resolution.

Version: 1.0.0

Analysis asks the generation service for a fixed set of labelled lines
and reads them back with regular expressions. Every field has a default,
and a missing approval verdict means approval is required.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional

from ..config.policy_settings import PolicySettings, policy_settings as default_policy
from ..exceptions import GenerationError, KnowledgeStoreError
from ..models.domain import (
    Resolution,
    ResolutionStatus,
    SimilarResolution,
    Ticket,
    TicketAnalysis,
    TicketPriority,
    ToolCall
)
from ..services.generation_service import GenerationService
from ..services.knowledge_retriever import KnowledgeRetriever, ticket_namespace
from ..tools.registry import ToolContext, ToolRegistry
from ..tools.tool_invoker import ToolInvoker, extract_parameters
from ..utils.telemetry import track_ticket

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = """You are a customer support assistant analyzing a support ticket.

Ticket: {description}
Customer ID: {customer_id}
Priority: {priority}

Answer with exactly these four lines and nothing else:
Category: <account, billing, technical, product or another short label>
Actions: <the actions required to resolve the issue>
Approval: <yes if a human must approve before acting, otherwise no>
Confidence: <0-100>"""

RESOLUTION_PROMPT = """You are a customer support assistant resolving a ticket.
Based on the ticket and the actions taken, write the resolution message for the customer.

Ticket: {description}
Analysis: {analysis}
Actions Taken: {actions}

Explain clearly and briefly what was done to resolve the issue."""

PENDING_APPROVAL_MESSAGE = "Ticket resolution requires approval"

CATEGORY_PATTERN = re.compile(r"\bcategory\b:?\s*([^\n]+)", re.IGNORECASE)
ACTIONS_PATTERN = re.compile(r"\bactions\b:?\s*([^\n]+)", re.IGNORECASE)
APPROVAL_PATTERN = re.compile(r"\bapproval\b:?\s*\**\s*(yes|no)", re.IGNORECASE)
CONFIDENCE_PATTERN = re.compile(r"\bconfidence\b:?\s*\**\s*(\d+)", re.IGNORECASE)


def _clean(value: str) -> str:
    return value.strip().strip("*").strip()


def parse_analysis(ticket_id: str, text: str) -> TicketAnalysis:
    """Read labelled fields from analysis text, defaulting what is missing."""
    text = text or ""
    fields: Dict[str, Any] = {"ticket_id": ticket_id, "raw_text": text}

    category = CATEGORY_PATTERN.search(text)
    if category and _clean(category.group(1)):
        fields["category"] = _clean(category.group(1))

    actions = ACTIONS_PATTERN.search(text)
    if actions and _clean(actions.group(1)):
        fields["suggested_actions"] = _clean(actions.group(1))

    approval = APPROVAL_PATTERN.search(text)
    if approval:
        fields["requires_approval"] = approval.group(1).lower() == "yes"

    confidence = CONFIDENCE_PATTERN.search(text)
    if confidence:
        fields["confidence"] = int(confidence.group(1))

    return TicketAnalysis(**fields)


class TicketResolver:
    """Analyzes, resolves and remembers support tickets."""

    def __init__(
        self,
        generation_service: GenerationService,
        knowledge_retriever: KnowledgeRetriever,
        tool_invoker: ToolInvoker,
        policy: Optional[PolicySettings] = None
    ):
        self.generation_service = generation_service
        self.knowledge_retriever = knowledge_retriever
        self.tool_invoker = tool_invoker
        self.policy = policy or default_policy

    def determine_priority(self, message: str) -> TicketPriority:
        message_lower = (message or "").lower()
        if any(keyword in message_lower for keyword in self.policy.urgent_keywords):
            return TicketPriority.URGENT
        if any(keyword in message_lower for keyword in self.policy.high_priority_keywords):
            return TicketPriority.HIGH
        return TicketPriority.NORMAL

    async def analyze(self, ticket: Ticket, session_id: Optional[str] = None) -> TicketAnalysis:
        """
        Classify a ticket.

        Generation failures produce the default analysis (which requires
        approval) rather than an error.
        """
        prompt = ANALYSIS_PROMPT.format(
            description=ticket.description,
            customer_id=ticket.customer_id,
            priority=ticket.priority.value
        )

        try:
            text = await self.generation_service.generate(
                [{"role": "user", "content": prompt}],
                max_tokens=300,
                temperature=0.0,
                session_id=session_id
            )
        except GenerationError as e:
            logger.warning(
                f"Ticket analysis unavailable, using defaults: {e}",
                extra={"session_id": session_id, "ticket_id": ticket.id}
            )
            text = ""

        analysis = parse_analysis(ticket.id, text)
        logger.info(
            f"Ticket {ticket.id} analyzed: category={analysis.category}, "
            f"approval={analysis.requires_approval}, confidence={analysis.confidence}",
            extra={"session_id": session_id, "tenant_id": ticket.tenant_id}
        )
        return analysis

    def determine_tools(
        self,
        analysis: TicketAnalysis,
        ticket: Optional[Ticket] = None
    ) -> List[ToolCall]:
        """Tool calls for the analysis category; the first matching key wins."""
        category = analysis.category.lower()
        parameters = extract_parameters(ticket.description) if ticket else {}

        for key, tool_name in self.policy.category_tools.items():
            if key.lower() in category:
                return [ToolCall(name=tool_name, parameters=dict(parameters))]
        return []

    async def resolve(
        self,
        ticket: Ticket,
        analysis: TicketAnalysis,
        approved: bool,
        context: ToolContext,
        registry: ToolRegistry
    ) -> Resolution:
        """
        Resolve a ticket.

        Without approval, a ticket whose analysis requires it comes back
        ``pending_approval`` and no tool is run.
        """
        if analysis.requires_approval and not approved:
            track_ticket(ticket.tenant_id, ResolutionStatus.PENDING_APPROVAL.value)
            return Resolution(
                ticket_id=ticket.id,
                status=ResolutionStatus.PENDING_APPROVAL,
                message=PENDING_APPROVAL_MESSAGE
            )

        calls = [call for call in self.determine_tools(analysis, ticket) if call.name in registry]
        results = await self.tool_invoker.invoke_many(calls, context, registry)
        actions = {name: result.to_payload() for name, result in results.items()}

        prompt = RESOLUTION_PROMPT.format(
            description=ticket.description,
            analysis=analysis.raw_text or f"Category: {analysis.category}",
            actions=json.dumps(actions, default=str)
        )

        try:
            message = await self.generation_service.generate(
                [{"role": "user", "content": prompt}],
                session_id=context.session_id
            )
        except GenerationError as e:
            logger.warning(
                f"Resolution phrasing unavailable: {e}",
                extra={"session_id": context.session_id, "ticket_id": ticket.id}
            )
            message = (
                f"We have reviewed your {analysis.category.lower()} request. "
                f"Next steps: {analysis.suggested_actions}."
            )

        await self._store_resolution(ticket, analysis, actions, message)
        track_ticket(ticket.tenant_id, ResolutionStatus.RESOLVED.value)

        return Resolution(
            ticket_id=ticket.id,
            status=ResolutionStatus.RESOLVED,
            message=message,
            actions=actions
        )

    async def _store_resolution(
        self,
        ticket: Ticket,
        analysis: TicketAnalysis,
        actions: Dict[str, Any],
        message: str
    ) -> None:
        document = (
            f"Ticket ID: {ticket.id}\n"
            f"Customer ID: {ticket.customer_id}\n"
            f"Issue: {ticket.description}\n"
            f"Category: {analysis.category}\n"
            f"Actions Taken: {json.dumps(actions, default=str)}\n"
            f"Resolution: {message}"
        )
        metadata = {
            "type": "ticket-resolution",
            "ticket_id": ticket.id,
            "customer_id": ticket.customer_id,
            "category": analysis.category,
            "description": ticket.description,
            "resolution": message,
            "actions": actions,
            "tenant_id": ticket.tenant_id
        }

        try:
            await self.knowledge_retriever.store(document, metadata, ticket_namespace(ticket.tenant_id))
        except KnowledgeStoreError as e:
            logger.warning(f"Ticket resolution {ticket.id} not stored: {e.message}")

    async def find_similar(
        self,
        ticket: Ticket,
        tenant_id: Optional[str] = None,
        limit: int = 3
    ) -> List[SimilarResolution]:
        """Past resolutions closest to this ticket, best first."""
        hits = await self.knowledge_retriever.search(
            ticket.description,
            ticket_namespace(tenant_id or ticket.tenant_id),
            top_k=limit
        )

        similar = []
        for hit in hits:
            metadata = hit.metadata
            actions = metadata.get("actions")
            similar.append(SimilarResolution(
                ticket_id=str(metadata.get("ticket_id", hit.id)),
                description=str(metadata.get("description", "")),
                resolution=str(metadata.get("resolution") or hit.text),
                actions=actions if isinstance(actions, dict) else {},
                score=hit.score
            ))
        return similar


__all__ = ['TicketResolver', 'parse_analysis', 'PENDING_APPROVAL_MESSAGE']
