"""
Seed sample knowledge and FAQs for development and testing.

Usage:
    python -m support_orchestrator.seed_data [tenant_id ...]

Without arguments every sample tenant is seeded.
"""
import asyncio
import logging
import sys
from typing import Any, Dict, List

from .agents.faq_reasoner import FAQReasoner
from .config import settings
from .config.tenant_config import sample_tenant_configs
from .exceptions import KnowledgeStoreError
from .models.domain import FAQItem
from .services.knowledge_retriever import KnowledgeRetriever, knowledge_namespace

logger = logging.getLogger(__name__)

# Sample knowledge base documents
SAMPLE_DOCUMENTS = [
    # Policies
    "Return Policy: Customers can return items within 30 days of purchase for a full refund. "
    "Items must be in original condition with tags attached.",
    "Shipping Policy: Standard shipping takes 3-5 business days and costs $9.99. Free shipping on orders over $50.",
    "Privacy Policy: We protect your personal data and never share it with third parties without consent.",

    # Product Information
    "Premium membership benefits: Free shipping on all orders, priority customer support, "
    "exclusive discounts, early access to sales.",
    "Technical support: Available 24/7 via chat. Phone support available Monday-Friday 9AM-6PM EST.",

    # Troubleshooting
    "Login issues: Clear your browser cache, try a different browser, or reset your password if you've forgotten it.",
    "Payment failures: Check card details, ensure sufficient funds, try a different payment method, or contact your bank.",
    "Delivery delays: Check tracking information, verify shipping address, contact carrier directly for updates.",
]

SAMPLE_FAQS = [
    FAQItem(
        question="How do I reset my password?",
        answer="Click 'Forgot Password' on the login page, enter your email, and follow the instructions sent to your inbox.",
        category="account"
    ),
    FAQItem(
        question="How can I track my order?",
        answer="Use your order number on our tracking page or ask this assistant with your ORD- number.",
        category="orders"
    ),
    FAQItem(
        question="Which payment methods do you accept?",
        answer="We accept Visa, Mastercard, American Express, PayPal, Apple Pay, and Google Pay.",
        category="billing"
    ),
]


def document_metadata(document: str) -> Dict[str, Any]:
    lowered = document.lower()
    if lowered.startswith("return"):
        return {"category": "policy", "type": "return"}
    if lowered.startswith("shipping"):
        return {"category": "policy", "type": "shipping"}
    return {"category": "faq", "type": "general"}


async def seed_tenant(
    tenant_id: str,
    knowledge_retriever: KnowledgeRetriever,
    faq_reasoner: FAQReasoner
) -> Dict[str, Any]:
    """
    Store the sample documents and FAQs for one tenant.

    Returns:
        Counts of stored documents and FAQ items
    """
    logger.info(f"Seeding knowledge base for {tenant_id}...")
    results = await knowledge_retriever.batch_import(
        [
            {"text": document, "metadata": {**document_metadata(document), "tenant_id": tenant_id}}
            for document in SAMPLE_DOCUMENTS
        ],
        knowledge_namespace(tenant_id)
    )
    documents_added = sum(1 for result in results if result["success"])

    faqs_added = 0
    try:
        summary = await faq_reasoner.train(SAMPLE_FAQS, tenant_id)
        faqs_added = len(summary["results"])
    except KnowledgeStoreError as e:
        logger.error(f"Error seeding FAQs for {tenant_id}: {e.message}")

    logger.info(f"✓ {tenant_id}: {documents_added} documents, {faqs_added} FAQ items")
    return {"tenant_id": tenant_id, "documents": documents_added, "faqs": faqs_added}


async def main(tenant_ids: List[str]) -> None:
    """Main seeding function."""
    from .main import build_components, close_components

    logger.info("=" * 50)
    logger.info("Starting data seeding...")
    logger.info("=" * 50)

    components = await build_components(settings)
    try:
        for tenant_id in tenant_ids or sorted(sample_tenant_configs()):
            await seed_tenant(
                tenant_id,
                components["knowledge_retriever"],
                components["faq_reasoner"]
            )
    finally:
        await close_components(components)

    logger.info("=" * 50)
    logger.info("Data seeding completed!")
    logger.info("=" * 50)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main(sys.argv[1:]))
