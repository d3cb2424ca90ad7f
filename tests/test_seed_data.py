"""
Tests for the sample data seeder.
"""
import pytest

from support_orchestrator.agents import FAQReasoner
from support_orchestrator.seed_data import SAMPLE_DOCUMENTS, SAMPLE_FAQS, document_metadata, seed_tenant
from support_orchestrator.services.knowledge_retriever import faq_namespace, knowledge_namespace

from conftest import ScriptedGenerationService


@pytest.mark.unit
def test_document_metadata():
    assert document_metadata("Return Policy: ...") == {"category": "policy", "type": "return"}
    assert document_metadata("Shipping Policy: ...") == {"category": "policy", "type": "shipping"}
    assert document_metadata("Login issues: ...")["type"] == "general"


@pytest.mark.unit
async def test_seed_tenant(knowledge_retriever, vector_index, policy):
    faq_reasoner = FAQReasoner(knowledge_retriever, ScriptedGenerationService(), policy=policy)

    summary = await seed_tenant("company-1", knowledge_retriever, faq_reasoner)

    assert summary == {
        "tenant_id": "company-1",
        "documents": len(SAMPLE_DOCUMENTS),
        "faqs": len(SAMPLE_FAQS)
    }
    assert len(vector_index.namespaces[knowledge_namespace("company-1")]) == len(SAMPLE_DOCUMENTS)
    assert len(vector_index.namespaces[faq_namespace("company-1")]) == 2 * len(SAMPLE_FAQS)

    (hit,) = await knowledge_retriever.search("return items within 30 days", knowledge_namespace("company-1"), top_k=1)
    assert hit.metadata["type"] == "return"


@pytest.mark.unit
async def test_seed_tenant_reports_store_outage(knowledge_retriever, embedding_service, policy):
    faq_reasoner = FAQReasoner(knowledge_retriever, ScriptedGenerationService(), policy=policy)
    embedding_service.fail = True

    summary = await seed_tenant("company-1", knowledge_retriever, faq_reasoner)

    assert summary["documents"] == 0
    assert summary["faqs"] == 0
