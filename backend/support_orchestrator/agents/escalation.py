"""
Escalation and approval policy.

Version: 1.0.0

Decides when a conversation needs a human and which requests need
sign-off before any action is taken, and owns the approval lifecycle
(create, decide, list). Keyword lists and thresholds come from
PolicySettings.
"""
import logging
import re
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..approvals.approval_store import ApprovalStore
from ..approvals.models import ApprovalRequest, ApprovalStatus
from ..approvals.notifier import ApprovalNotifier
from ..config import Settings, settings as default_settings
from ..config.policy_settings import PolicySettings, policy_settings as default_policy
from ..config.tenant_config import TenantConfig
from ..exceptions import ApprovalNotFoundError
from ..utils.telemetry import track_approval

logger = logging.getLogger(__name__)

# Escalation reason identifiers
REASON_HUMAN_REQUEST = "human_request"
REASON_MESSAGE_LENGTH = "message_length"
REASON_MULTIPLE_QUESTIONS = "multiple_questions"
REASON_FRUSTRATION = "frustration"
REASON_APPROVAL_REQUIRED = "approval_required"


@lru_cache(maxsize=512)
def _compile_rule(pattern: str) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        logger.warning(f"Skipping invalid approval rule {pattern!r}: {e}")
        return None


@lru_cache(maxsize=64)
def _phrase_pattern(phrases: Tuple[str, ...]) -> Optional[re.Pattern]:
    """Whole-word alternation of ``phrases``, or None when empty."""
    escaped = [re.escape(phrase.lower()) for phrase in phrases if phrase]
    if not escaped:
        return None
    return re.compile(r"\b(?:" + "|".join(escaped) + r")\b")


def _role_and_content(message: Any):
    if isinstance(message, dict):
        role = message.get("role")
        content = message.get("content", "")
    else:
        role = getattr(message, "role", None)
        content = getattr(message, "content", "")
    return str(getattr(role, "value", role)), content or ""


class EscalationEngine:
    """
    Escalation heuristics plus the approval workflow.

    ``session_context`` is a mapping that may carry ``history`` (recent
    session messages, oldest first, as SessionMessage objects or
    ``{"role", "content"}`` dicts) and ``approval_rules`` (tenant regexes).
    """

    def __init__(
        self,
        approval_store: ApprovalStore,
        notifier: Optional[ApprovalNotifier] = None,
        policy: Optional[PolicySettings] = None,
        settings: Optional[Settings] = None
    ):
        self.approval_store = approval_store
        self.notifier = notifier
        self.policy = policy or default_policy
        self.settings = settings or default_settings

    # ===========================
    # Policy
    # ===========================

    def requires_approval(self, message: str, tenant_rules: Optional[Iterable[str]] = None) -> bool:
        """
        True when the message asks for a high-risk action.

        High-risk keywords are checked first, then tenant rules in the
        order supplied; the first matching rule wins.
        """
        if not message:
            return False

        message_lower = message.lower()
        if any(keyword in message_lower for keyword in self.policy.approval_keywords):
            return True

        for rule in tenant_rules or ():
            pattern = _compile_rule(rule)
            if pattern is not None and pattern.search(message_lower):
                logger.debug(f"Tenant approval rule matched: {rule!r}")
                return True

        return False

    def _shows_frustration(self, history: List[Any]) -> bool:
        recent = history[-self.policy.frustration_window:]
        user_messages = [
            content.lower()
            for role, content in map(_role_and_content, recent)
            if role == "user"
        ]
        if len(user_messages) < self.policy.frustration_user_turn_threshold:
            return False
        return any(
            keyword in content
            for content in user_messages
            for keyword in self.policy.frustration_keywords
        )

    def escalation_reasons(
        self,
        message: str,
        session_context: Optional[Dict[str, Any]] = None
    ) -> List[str]:
        """Every escalation trigger the message sets off, in check order."""
        context = session_context or {}
        message = message or ""
        message_lower = message.lower()
        reasons = []

        human_request = _phrase_pattern(tuple(self.policy.escalation_keywords))
        if human_request is not None and human_request.search(message_lower):
            reasons.append(REASON_HUMAN_REQUEST)

        if len(message) > self.policy.escalation_max_message_length:
            reasons.append(REASON_MESSAGE_LENGTH)

        if message.count("?") >= self.policy.escalation_question_mark_threshold:
            reasons.append(REASON_MULTIPLE_QUESTIONS)

        if self._shows_frustration(list(context.get("history") or [])):
            reasons.append(REASON_FRUSTRATION)

        if self.requires_approval(message, context.get("approval_rules")):
            reasons.append(REASON_APPROVAL_REQUIRED)

        return reasons

    def should_escalate(
        self,
        message: str,
        session_context: Optional[Dict[str, Any]] = None
    ) -> bool:
        return bool(self.escalation_reasons(message, session_context))

    # ===========================
    # Approval workflow
    # ===========================

    async def create_approval_request(
        self,
        action: Dict[str, Any],
        tenant_config: TenantConfig,
        user_id: str,
        session_id: str,
        priority: str = "normal"
    ) -> ApprovalRequest:
        """
        Open an approval request for ``action``.

        Idempotent per session: while the session has a pending request,
        that request is returned and no notification is sent.
        """
        candidate = ApprovalRequest(
            tenant_id=tenant_config.tenant_id,
            session_id=session_id,
            user_id=user_id or "anonymous",
            action=dict(action),
            priority=priority
        )
        stored = await self.approval_store.create_pending(candidate)

        if stored.id != candidate.id:
            logger.info(
                f"Reusing pending approval {stored.id}",
                extra={"session_id": session_id, "tenant_id": tenant_config.tenant_id}
            )
            return stored

        track_approval(tenant_config.tenant_id, ApprovalStatus.PENDING.value)
        logger.info(
            f"✓ Approval request {stored.id} created ({action.get('type', 'action')})",
            extra={"session_id": session_id, "tenant_id": tenant_config.tenant_id}
        )

        webhook_url = tenant_config.approval_webhook_url or self.settings.approval_webhook_url
        if self.notifier is not None and webhook_url:
            await self.notifier.notify(stored, webhook_url)

        return stored

    async def decide(
        self,
        approval_id: str,
        approved: bool,
        notes: Optional[str] = None,
        approver_id: Optional[str] = None,
        escalate: bool = False,
        tenant_id: Optional[str] = None
    ) -> ApprovalRequest:
        """
        Resolve a pending request.

        With ``tenant_id`` set, requests of other tenants are reported
        as unknown.

        Raises:
            ApprovalNotFoundError: If the id is unknown to the tenant
            ApprovalStateError: If the request was already resolved
        """
        if escalate:
            status = ApprovalStatus.ESCALATED
        else:
            status = ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED

        if tenant_id is not None:
            await self.get_approval(approval_id, tenant_id)

        request = await self.approval_store.transition(
            approval_id,
            status,
            approver_id=approver_id,
            notes=notes
        )

        track_approval(request.tenant_id, status.value)
        logger.info(
            f"✓ Approval {approval_id} {status.value} by {approver_id or 'unknown'}",
            extra={"session_id": request.session_id, "tenant_id": request.tenant_id}
        )
        return request

    async def get_approval(self, approval_id: str, tenant_id: Optional[str] = None) -> ApprovalRequest:
        request = await self.approval_store.get(approval_id)
        if tenant_id is not None and request.tenant_id != tenant_id:
            logger.warning(
                f"Approval {approval_id} requested by another tenant",
                extra={"tenant_id": tenant_id}
            )
            raise ApprovalNotFoundError(
                f"Approval request {approval_id} not found",
                details={"approval_id": approval_id}
            )
        return request

    async def list_pending(self, tenant_id: str) -> List[ApprovalRequest]:
        return await self.approval_store.list_for_tenant(tenant_id, status=ApprovalStatus.PENDING)


__all__ = [
    'EscalationEngine',
    'REASON_HUMAN_REQUEST',
    'REASON_MESSAGE_LENGTH',
    'REASON_MULTIPLE_QUESTIONS',
    'REASON_FRUSTRATION',
    'REASON_APPROVAL_REQUIRED'
]
