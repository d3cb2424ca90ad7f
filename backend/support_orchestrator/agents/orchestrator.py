"""
Conversation orchestrator.
Sequences escalation, ticket handling, retrieval, tools and generation for
one inbound customer message.

Version: 1.0.0

Each turn walks a fixed state sequence:

    RECEIVED -> HISTORY_LOADED -> CLASSIFIED -> [TICKET_PENDING | TOOLS_EXECUTED]
      -> CONTEXT_ASSEMBLED -> GENERATED -> PERSISTED -> RESPONDED

The whole turn runs inside the session's single-writer section. Every
collaborator failure degrades the turn instead of failing it; only request
validation and unknown tenants are reported to the caller as errors.
"""
import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config.policy_settings import PolicySettings, policy_settings as default_policy
from ..config.tenant_config import TenantConfig, TenantConfigSource
from ..exceptions import (
    GenerationError,
    KnowledgeStoreError,
    OrchestratorError,
    RequestValidationError
)
from ..models.domain import (
    FAQResult,
    InteractionHit,
    KnowledgeHit,
    Resolution,
    ResolutionStatus,
    Ticket
)
from ..models.schemas import ChatRequest, ChatResponse, TicketState
from ..services.generation_service import GenerationService
from ..services.knowledge_retriever import (
    KnowledgeRetriever,
    interaction_namespace,
    knowledge_namespace
)
from ..session.session_store import SessionStore
from ..session.validators import MessageRole, SessionMessage, SessionMetadata
from ..tools.base_tool import ToolResult
from ..tools.registry import ToolContext, ToolRegistry
from ..tools.tool_invoker import ToolInvoker
from ..utils.telemetry import (
    track_escalation,
    track_fallback,
    track_feedback,
    track_ticket,
    track_turn
)
from .escalation import REASON_APPROVAL_REQUIRED, EscalationEngine
from .fallback import FallbackResponder
from .faq_reasoner import FAQReasoner
from .ticket_resolver import TicketResolver

logger = logging.getLogger(__name__)

APOLOGY_MESSAGE = (
    "I apologize, but I'm experiencing technical difficulties. Please try again in a moment, "
    "or contact our support team directly if the issue persists."
)

APPROVAL_PENDING_MESSAGE = (
    "This request needs approval from a member of our team before we can proceed. "
    "Reference: {approval_id}"
)

TICKET_FOLLOWUP_MARKERS = ("ticket", "issue")


class TurnState(str, Enum):
    RECEIVED = "received"
    HISTORY_LOADED = "history_loaded"
    CLASSIFIED = "classified"
    TICKET_PENDING = "ticket_pending"
    TOOLS_EXECUTED = "tools_executed"
    CONTEXT_ASSEMBLED = "context_assembled"
    GENERATED = "generated"
    PERSISTED = "persisted"
    RESPONDED = "responded"


@dataclass
class Turn:
    """Working state of one turn."""
    message: str
    session_id: str
    customer_id: str
    tenant_config: TenantConfig
    registry: ToolRegistry
    tool_context: ToolContext
    received_at: datetime = field(default_factory=datetime.utcnow)
    trace: List[TurnState] = field(default_factory=list)
    history: List[SessionMessage] = field(default_factory=list)
    is_ticket: bool = False
    escalation_reasons: List[str] = field(default_factory=list)
    resolution: Optional[Resolution] = None
    faq_result: Optional[FAQResult] = None
    knowledge: List[KnowledgeHit] = field(default_factory=list)
    interactions: List[InteractionHit] = field(default_factory=list)
    tool_results: Dict[str, ToolResult] = field(default_factory=dict)

    @property
    def tenant_id(self) -> str:
        return self.tenant_config.tenant_id

    @property
    def log_extra(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "tenant_id": self.tenant_id,
            "request_id": self.tool_context.request_id
        }

    def advance(self, state: TurnState) -> None:
        self.trace.append(state)

    @property
    def tools_used(self) -> List[str]:
        names = list(self.resolution.actions) if self.resolution else []
        for name in self.tool_results:
            if name not in names:
                names.append(name)
        return names


class ConversationOrchestrator:
    """
    Top-level coordinator for customer conversations.

    Collaborators are injected; the orchestrator holds no per-session state
    of its own.
    """

    def __init__(
        self,
        session_store: SessionStore,
        tenant_source: TenantConfigSource,
        knowledge_retriever: KnowledgeRetriever,
        generation_service: GenerationService,
        tool_invoker: ToolInvoker,
        escalation_engine: EscalationEngine,
        ticket_resolver: TicketResolver,
        faq_reasoner: FAQReasoner,
        fallback: Optional[FallbackResponder] = None,
        policy: Optional[PolicySettings] = None
    ):
        self.session_store = session_store
        self.tenant_source = tenant_source
        self.knowledge_retriever = knowledge_retriever
        self.generation_service = generation_service
        self.tool_invoker = tool_invoker
        self.escalation_engine = escalation_engine
        self.ticket_resolver = ticket_resolver
        self.faq_reasoner = faq_reasoner
        self.policy = policy or default_policy
        self.fallback = fallback or FallbackResponder(self.policy)

        logger.info("ConversationOrchestrator initialized")

    # ===========================
    # Entry points
    # ===========================

    async def handle(
        self,
        request: ChatRequest,
        request_id: Optional[str] = None,
        trace: Optional[List[TurnState]] = None
    ) -> ChatResponse:
        """
        Process one customer message.

        Args:
            request: Inbound chat request
            request_id: Correlation id for logs and spans
            trace: If given, receives the states the turn passed through

        Raises:
            RequestValidationError: Missing message or tenant
            TenantNotFoundError: Unknown tenant
        """
        message = (request.message or "").strip()
        if not message:
            raise RequestValidationError("Message is required")
        if not request.tenant_id:
            raise RequestValidationError("tenantId is required")

        tenant_config = await self.tenant_source.get(request.tenant_id)

        session_id = request.session_id or str(uuid.uuid4())
        customer_id = request.customer_id or "anonymous"
        turn = Turn(
            message=message,
            session_id=session_id,
            customer_id=customer_id,
            tenant_config=tenant_config,
            registry=ToolRegistry.for_tenant(tenant_config),
            tool_context=ToolContext(
                tenant_id=tenant_config.tenant_id,
                user_id=customer_id,
                session_id=session_id,
                request_id=request_id
            ),
            trace=trace if trace is not None else []
        )
        turn.advance(TurnState.RECEIVED)
        start_time = time.time()

        try:
            async with self.session_store.turn(session_id):
                response = await self._run_turn(turn)
        except Exception as e:
            # Top boundary: the customer always gets a reply
            logger.error(f"Turn failed: {e}", exc_info=True, extra=turn.log_extra)
            track_turn(turn.tenant_id, "error", time.time() - start_time)
            return ChatResponse(message=APOLOGY_MESSAGE, session_id=session_id)

        turn.advance(TurnState.RESPONDED)
        track_turn(turn.tenant_id, "ticket" if turn.resolution else "chat", time.time() - start_time)
        logger.info(
            f"✓ Turn completed in {time.time() - start_time:.3f}s "
            f"(tools={response.tools_used}, ticket={response.ticket.status if response.ticket else None})",
            extra=turn.log_extra
        )
        return response

    async def record_feedback(
        self,
        session_id: str,
        rating: int,
        comment: Optional[str] = None
    ) -> SessionMetadata:
        """
        Attach a 1-5 rating to the session.

        Raises:
            RequestValidationError: Rating out of range
            SessionStoreUnavailableError: Storage unreachable
        """
        if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
            raise RequestValidationError(
                "Rating must be an integer between 1 and 5",
                details={"rating": rating}
            )

        async with self.session_store.turn(session_id):
            metadata = await self.session_store.get_metadata(session_id)
            feedback = list(metadata.extra.get("feedback") or [])
            feedback.append({
                "rating": rating,
                "comment": comment,
                "timestamp": datetime.utcnow().isoformat()
            })
            updated = await self.session_store.update_metadata(
                session_id,
                {"extra": {"feedback": feedback}}
            )

        track_feedback(rating)
        logger.info(f"Feedback recorded for session {session_id}: {rating}/5")
        return updated

    # ===========================
    # Turn pipeline
    # ===========================

    async def _run_turn(self, turn: Turn) -> ChatResponse:
        await self._load_history(turn)
        turn.advance(TurnState.HISTORY_LOADED)

        await self._classify(turn)
        turn.advance(TurnState.CLASSIFIED)

        if turn.is_ticket:
            await self._handle_ticket(turn)
        elif REASON_APPROVAL_REQUIRED in turn.escalation_reasons:
            await self._open_approval(turn, ticket=None)

        await self._gather_context(turn)

        if self._pending(turn):
            turn.advance(TurnState.TICKET_PENDING)
        else:
            await self._run_tools(turn)
            turn.advance(TurnState.TOOLS_EXECUTED)

        system_prompt = self.build_system_prompt(turn)
        turn.advance(TurnState.CONTEXT_ASSEMBLED)

        reply = await self._generate(turn, system_prompt)
        turn.advance(TurnState.GENERATED)

        await self._persist(turn, reply)
        turn.advance(TurnState.PERSISTED)

        ticket_state = None
        if turn.resolution is not None:
            ticket_state = TicketState(
                id=turn.resolution.ticket_id,
                status=turn.resolution.status.value,
                approval_id=turn.resolution.approval_id
            )

        return ChatResponse(
            message=reply,
            session_id=turn.session_id,
            tools_used=turn.tools_used,
            ticket=ticket_state,
            escalated=bool(turn.escalation_reasons)
        )

    @staticmethod
    def _pending(turn: Turn) -> bool:
        return (
            turn.resolution is not None
            and turn.resolution.status == ResolutionStatus.PENDING_APPROVAL
        )

    async def _load_history(self, turn: Turn) -> None:
        try:
            turn.history = await self.session_store.history(
                turn.session_id,
                limit=self.policy.history_window
            )
        except OrchestratorError as e:
            logger.warning(f"History unavailable, continuing without it: {e}", extra=turn.log_extra)
            turn.history = []

    def is_ticket_request(self, message: str, history: List[SessionMessage]) -> bool:
        message_lower = message.lower()
        if any(keyword in message_lower for keyword in self.policy.ticket_keywords):
            return True
        if len(message) > self.policy.ticket_min_length:
            return True

        window = self.policy.ticket_followup_window
        recent = history[-window:] if window > 0 else []
        return any(
            entry.role == MessageRole.ASSISTANT.value
            and any(marker in entry.content.lower() for marker in TICKET_FOLLOWUP_MARKERS)
            for entry in recent
        )

    async def _classify(self, turn: Turn) -> None:
        turn.is_ticket = self.is_ticket_request(turn.message, turn.history)

        session_context = {
            "history": [*turn.history, {"role": MessageRole.USER.value, "content": turn.message}],
            "approval_rules": turn.tenant_config.approval_rules
        }
        turn.escalation_reasons = self.escalation_engine.escalation_reasons(
            turn.message,
            session_context
        )

        if turn.escalation_reasons:
            for reason in turn.escalation_reasons:
                track_escalation(turn.tenant_id, reason)
            logger.info(f"Escalation triggered: {turn.escalation_reasons}", extra=turn.log_extra)

        partial: Dict[str, Any] = {}
        if turn.escalation_reasons:
            partial["escalated"] = True
            partial["escalation_reasons"] = turn.escalation_reasons
        if not turn.history:
            partial["tenant_id"] = turn.tenant_id
            partial["customer_id"] = turn.customer_id

        if partial:
            try:
                await self.session_store.update_metadata(turn.session_id, partial)
            except OrchestratorError as e:
                logger.warning(f"Session metadata not updated: {e}", extra=turn.log_extra)

    async def _handle_ticket(self, turn: Turn) -> None:
        ticket = Ticket(
            tenant_id=turn.tenant_id,
            customer_id=turn.customer_id,
            description=turn.message,
            priority=self.ticket_resolver.determine_priority(turn.message)
        )

        try:
            similar = await self.ticket_resolver.find_similar(ticket, turn.tenant_id)
            best = similar[0] if similar else None
            if best is not None and best.score > self.policy.ticket_reuse_threshold and best.resolution:
                turn.resolution = Resolution(
                    ticket_id=ticket.id,
                    status=ResolutionStatus.REUSED,
                    message=best.resolution,
                    actions=best.actions
                )
                track_ticket(turn.tenant_id, ResolutionStatus.REUSED.value)
                logger.info(
                    f"Reusing resolution of {best.ticket_id} (score={best.score:.2f})",
                    extra=turn.log_extra
                )
                return

            analysis = await self.ticket_resolver.analyze(ticket, session_id=turn.session_id)

            if analysis.requires_approval or REASON_APPROVAL_REQUIRED in turn.escalation_reasons:
                await self._open_approval(turn, ticket, analysis_summary={
                    "category": analysis.category,
                    "suggested_actions": analysis.suggested_actions,
                    "confidence": analysis.confidence
                })
                return

            turn.resolution = await self.ticket_resolver.resolve(
                ticket,
                analysis,
                True,
                turn.tool_context,
                turn.registry
            )

        except OrchestratorError as e:
            logger.warning(f"Ticket processing failed: {e}", extra=turn.log_extra)

    async def _open_approval(
        self,
        turn: Turn,
        ticket: Optional[Ticket],
        analysis_summary: Optional[Dict[str, Any]] = None
    ) -> None:
        if ticket is None:
            ticket = Ticket(
                tenant_id=turn.tenant_id,
                customer_id=turn.customer_id,
                description=turn.message,
                priority=self.ticket_resolver.determine_priority(turn.message)
            )

        action = {
            "type": "ticket_resolution" if turn.is_ticket else "sensitive_request",
            "summary": turn.message[:500],
            "ticket_id": ticket.id,
            "reasons": list(turn.escalation_reasons),
            **(analysis_summary or {})
        }

        try:
            approval = await self.escalation_engine.create_approval_request(
                action,
                turn.tenant_config,
                turn.customer_id,
                turn.session_id,
                priority=ticket.priority.value
            )
        except OrchestratorError as e:
            logger.warning(f"Approval request not created: {e}", extra=turn.log_extra)
            return

        ticket_id = approval.action.get("ticket_id", ticket.id)
        turn.resolution = Resolution(
            ticket_id=ticket_id,
            status=ResolutionStatus.PENDING_APPROVAL,
            message=APPROVAL_PENDING_MESSAGE.format(approval_id=approval.id),
            approval_id=approval.id
        )
        track_ticket(turn.tenant_id, ResolutionStatus.PENDING_APPROVAL.value)

    async def _gather_context(self, turn: Turn) -> None:
        resolved = turn.resolution is not None and turn.resolution.status in (
            ResolutionStatus.RESOLVED,
            ResolutionStatus.REUSED
        )

        async def no_faq() -> Optional[FAQResult]:
            return None

        async def no_interactions() -> List[InteractionHit]:
            return []

        namespace = turn.tenant_config.knowledge_namespace or knowledge_namespace(turn.tenant_id)
        recall_limit = self.policy.interaction_recall_limit

        turn.faq_result, turn.knowledge, turn.interactions = await asyncio.gather(
            no_faq() if resolved else self.faq_reasoner.reason(
                turn.message, turn.tenant_id, session_id=turn.session_id
            ),
            self.knowledge_retriever.search(turn.message, namespace, top_k=self.policy.knowledge_top_k),
            self.knowledge_retriever.recall_interactions(
                turn.customer_id,
                turn.message,
                interaction_namespace(turn.tenant_id),
                limit=recall_limit
            ) if recall_limit > 0 else no_interactions()
        )

    async def _run_tools(self, turn: Turn) -> None:
        calls = await self.tool_invoker.detect(turn.message, turn.registry, session_id=turn.session_id)
        if not calls:
            return
        turn.tool_results = await self.tool_invoker.invoke_many(calls, turn.tool_context, turn.registry)

    # ===========================
    # Prompt assembly
    # ===========================

    def build_system_prompt(self, turn: Turn) -> str:
        """
        Persona preamble followed by context blocks in fixed order: ticket
        status, FAQ, previous interactions, knowledge, tool results.
        """
        config = turn.tenant_config
        sections = [
            f"You are {config.agent_persona}, a customer support agent for "
            f"{config.branding.company_name}.\n\n"
            f"{config.branding.description}\n\n"
            f"Please respond in a {config.tone_descriptor} tone.\n\n"
            f"{config.greeting or 'How can I help you today?'}\n\n"
            "Keep responses concise and helpful. If you don't have specific information, "
            "acknowledge this and offer to help in other ways."
        ]

        if turn.resolution is not None:
            sections.append(f"=== TICKET STATUS ===\n{turn.resolution.message}")

        faq = turn.faq_result
        if faq is not None and faq.has_relevant_info and faq.relevant_faqs:
            top = faq.relevant_faqs[0]
            sections.append(f"=== RELEVANT FAQ ===\nQ: {top.question}\nA: {top.answer}")

        if turn.interactions:
            lines = [
                f"Customer: {hit.query}\nAgent: {hit.response[:self.policy.tool_result_max_chars]}"
                for hit in turn.interactions
            ]
            sections.append("=== PREVIOUS INTERACTIONS ===\n" + "\n\n".join(lines))

        knowledge = "\n\n".join(hit.text for hit in turn.knowledge if hit.text).strip()
        if knowledge:
            limit = self.policy.knowledge_max_chars
            if len(knowledge) > limit:
                knowledge = knowledge[:limit] + "..."
            sections.append(f"=== KNOWLEDGE BASE ===\n{knowledge}")

        tool_lines = [
            f"{name}: {json.dumps(result.to_payload(), default=str)[:self.policy.tool_result_max_chars]}"
            for name, result in turn.tool_results.items()
            if result.success
        ]
        if tool_lines:
            sections.append("=== SYSTEM INFORMATION ===\n" + "\n".join(tool_lines))

        return "\n\n".join(sections)

    # ===========================
    # Generation and persistence
    # ===========================

    async def _generate(self, turn: Turn, system_prompt: str) -> str:
        messages = [{"role": "system", "content": system_prompt}]
        messages.extend(
            {"role": str(entry.role), "content": entry.content}
            for entry in turn.history[-self.policy.history_window:]
        )
        messages.append({"role": MessageRole.USER.value, "content": turn.message})

        try:
            return await self.generation_service.generate(messages, session_id=turn.session_id)
        except GenerationError as e:
            reply, kind = self.fallback.respond(
                turn.message,
                turn.tenant_config,
                faq_result=turn.faq_result,
                resolution=turn.resolution
            )
            track_fallback(turn.tenant_id, kind)
            logger.warning(f"Generation failed, using {kind} fallback: {e}", extra=turn.log_extra)
            return reply

    async def _persist(self, turn: Turn, reply: str) -> None:
        try:
            await self.session_store.append(turn.session_id, SessionMessage(
                role=MessageRole.USER,
                content=turn.message,
                timestamp=turn.received_at
            ))
            await self.session_store.append(turn.session_id, SessionMessage(
                role=MessageRole.ASSISTANT,
                content=reply,
                tools_used=turn.tools_used
            ))
        except OrchestratorError as e:
            logger.warning(f"Turn not saved to session history: {e}", extra=turn.log_extra)

        actions = {name: result.to_payload() for name, result in turn.tool_results.items()}
        try:
            await self.knowledge_retriever.store_interaction(
                turn.customer_id,
                turn.message,
                reply,
                actions,
                turn.resolution.message if turn.resolution else None,
                turn.tenant_id
            )
        except KnowledgeStoreError as e:
            logger.warning(f"Interaction not stored: {e.message}", extra=turn.log_extra)


__all__ = ['ConversationOrchestrator', 'TurnState', 'APOLOGY_MESSAGE']
