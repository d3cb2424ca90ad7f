"""
FAQ training and reasoning.
Questions and answers are stored as separate entries in the tenant's FAQ
namespace so a query can match either side.
"""
import logging
from typing import Any, Dict, List, Optional

from ..config.policy_settings import PolicySettings, policy_settings as default_policy
from ..exceptions import GenerationError
from ..models.domain import FAQItem, FAQMatch, FAQResult
from ..services.generation_service import GenerationService
from ..services.knowledge_retriever import KnowledgeRetriever, faq_namespace

logger = logging.getLogger(__name__)

REASONING_PROMPT = """You are a customer support assistant. Use the FAQ entries below to answer the customer.

Customer Question: {query}

Relevant FAQs:
{faqs}

Check whether these entries actually address the question. If they do, answer using
their information. If they do not, say that you do not have that specific information."""


class FAQReasoner:
    """Stores tenant FAQs and reasons over the closest entries."""

    def __init__(
        self,
        knowledge_retriever: KnowledgeRetriever,
        generation_service: GenerationService,
        policy: Optional[PolicySettings] = None
    ):
        self.knowledge_retriever = knowledge_retriever
        self.generation_service = generation_service
        self.policy = policy or default_policy

    async def train(self, faq_items: List[FAQItem], tenant_id: str) -> Dict[str, Any]:
        """
        Store FAQ items.

        Raises:
            KnowledgeStoreError: If a write fails; earlier items stay stored
        """
        namespace = faq_namespace(tenant_id)
        results = []

        for item in faq_items:
            question_id = await self.knowledge_retriever.store(
                item.question,
                {"type": "faq-question", "answer": item.answer, "category": item.category},
                namespace
            )
            answer_id = await self.knowledge_retriever.store(
                item.answer,
                {"type": "faq-answer", "question": item.question, "category": item.category},
                namespace
            )
            results.append({
                "question": item.question,
                "question_id": question_id,
                "answer_id": answer_id
            })

        logger.info(f"✓ Trained {len(faq_items)} FAQ items for tenant {tenant_id}")
        return {
            "success": True,
            "message": f"Successfully trained with {len(faq_items)} FAQ items",
            "results": results
        }

    async def relevant_faqs(self, query: str, tenant_id: str, limit: int = 5) -> List[FAQMatch]:
        hits = await self.knowledge_retriever.search(query, faq_namespace(tenant_id), top_k=limit)

        matches = []
        for hit in hits:
            metadata = hit.metadata
            if metadata.get("type") == "faq-question":
                question, answer = hit.text, metadata.get("answer", "")
            else:
                question, answer = metadata.get("question", ""), hit.text
            matches.append(FAQMatch(
                question=str(question),
                answer=str(answer),
                category=str(metadata.get("category", "general")),
                score=hit.score
            ))
        return matches

    async def reason(
        self,
        query: str,
        tenant_id: str,
        session_id: Optional[str] = None
    ) -> FAQResult:
        """
        Answer ``query`` from the tenant's FAQs.

        When the generation service fails, the matches are still returned
        with no composed response.
        """
        faqs = await self.relevant_faqs(query, tenant_id, limit=self.policy.faq_limit)
        if not faqs:
            return FAQResult(
                has_relevant_info=False,
                reasoning="No relevant FAQ information found"
            )

        faq_context = "\n\n".join(
            f"FAQ {index}:\nQ: {faq.question}\nA: {faq.answer}"
            for index, faq in enumerate(faqs, start=1)
        )
        reasoning = (
            f"Based on {len(faqs)} relevant FAQs with highest match score of "
            f"{max(faq.score for faq in faqs):.2f}"
        )

        try:
            response = await self.generation_service.generate(
                [{"role": "user", "content": REASONING_PROMPT.format(query=query, faqs=faq_context)}],
                session_id=session_id
            )
        except GenerationError as e:
            logger.warning(f"FAQ reasoning unavailable: {e}", extra={"session_id": session_id})
            response = None

        return FAQResult(
            has_relevant_info=True,
            response=response,
            reasoning=reasoning,
            relevant_faqs=faqs
        )


__all__ = ['FAQReasoner']
