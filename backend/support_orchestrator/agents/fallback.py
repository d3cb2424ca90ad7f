"""
Canned replies used when the generation service cannot answer.
"""
import re
from typing import Optional, Tuple

from ..config.policy_settings import PolicySettings, policy_settings as default_policy
from ..config.tenant_config import TenantConfig
from ..models.domain import FAQResult, Resolution

GENERIC_REPLY = (
    "Thank you for your message. I'm here to help! "
    "Could you please provide more details about what you need assistance with?"
)


class FallbackResponder:
    """
    Keyword-based replies, tried in order: ticket resolution, FAQ answer,
    greeting, capability question, generic.
    """

    def __init__(self, policy: Optional[PolicySettings] = None):
        self.policy = policy or default_policy

    def _mentions(self, message: str, keywords) -> bool:
        return any(
            re.search(rf"\b{re.escape(keyword)}\b", message) for keyword in keywords
        )

    def respond(
        self,
        message: str,
        tenant_config: TenantConfig,
        faq_result: Optional[FAQResult] = None,
        resolution: Optional[Resolution] = None
    ) -> Tuple[str, str]:
        """
        Returns:
            ``(reply, kind)`` where kind names the rule that produced it
        """
        if resolution is not None and resolution.message:
            return resolution.message, "ticket"

        if faq_result is not None and faq_result.has_relevant_info and faq_result.relevant_faqs:
            return f"Based on our FAQ: {faq_result.relevant_faqs[0].answer}", "faq"

        message_lower = (message or "").lower()

        if self._mentions(message_lower, self.policy.greeting_keywords):
            agent = tenant_config.agent_persona or "your support assistant"
            return f"Hello! I'm {agent}. How can I help you today?", "greeting"

        if self._mentions(message_lower, self.policy.capability_keywords):
            company = tenant_config.branding.company_name or "our"
            return (
                f"I'm here to help you with {company} products and services. "
                "I can answer questions, help resolve issues, and provide information "
                "about our offerings. What specific assistance do you need?"
            ), "capability"

        return GENERIC_REPLY, "generic"


__all__ = ['FallbackResponder', 'GENERIC_REPLY']
