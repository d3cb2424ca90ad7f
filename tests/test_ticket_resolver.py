"""
Tests for ticket analysis, resolution and similar-ticket lookup.
"""
import pytest

from support_orchestrator.agents.ticket_resolver import (
    PENDING_APPROVAL_MESSAGE,
    TicketResolver,
    parse_analysis
)
from support_orchestrator.config.tenant_config import sample_tenant_configs
from support_orchestrator.models.domain import (
    ResolutionStatus,
    Ticket,
    TicketAnalysis,
    TicketPriority
)
from support_orchestrator.services.knowledge_retriever import ticket_namespace
from support_orchestrator.tools import ToolContext, ToolInvoker, ToolRegistry

from conftest import ScriptedGenerationService

ACCOUNT_ANALYSIS = "Category: Account\nActions: Look up account\nApproval: No\nConfidence: 90"


@pytest.fixture
def tenant():
    return sample_tenant_configs()["company-1"]


@pytest.fixture
def registry(tenant):
    return ToolRegistry.for_tenant(tenant)


@pytest.fixture
def context():
    return ToolContext(tenant_id="company-1", user_id="cust-1", session_id="s1")


def make_resolver(generation, knowledge_retriever, policy):
    return TicketResolver(generation, knowledge_retriever, ToolInvoker(policy=policy), policy=policy)


def ticket(description: str = "I have a problem with my account ACC-123") -> Ticket:
    return Ticket(tenant_id="company-1", customer_id="cust-1", description=description)


# ===========================
# Analysis parsing
# ===========================

@pytest.mark.unit
def test_parse_analysis_reads_all_fields():
    analysis = parse_analysis("t1", ACCOUNT_ANALYSIS)

    assert analysis.category == "Account"
    assert analysis.suggested_actions == "Look up account"
    assert analysis.requires_approval is False
    assert analysis.confidence == 90


@pytest.mark.unit
def test_parse_analysis_tolerates_markdown():
    analysis = parse_analysis("t1", "**Category:** Billing\n**Approval:** Yes\n**Confidence:** 140")

    assert analysis.category == "Billing"
    assert analysis.requires_approval is True
    assert analysis.confidence == 100


@pytest.mark.unit
@pytest.mark.parametrize("text", ["", "I could not classify this ticket."])
def test_parse_analysis_defaults(text):
    analysis = parse_analysis("t1", text)

    assert analysis == TicketAnalysis(ticket_id="t1", raw_text=text)
    assert analysis.requires_approval is True
    assert analysis.confidence == 50


# ===========================
# Priority and tool selection
# ===========================

@pytest.mark.unit
@pytest.mark.parametrize("message,expected", [
    ("URGENT: site is down", TicketPriority.URGENT),
    ("this is a serious issue", TicketPriority.HIGH),
    ("small question about my bill", TicketPriority.NORMAL)
])
def test_determine_priority(knowledge_retriever, policy, message, expected):
    resolver = make_resolver(ScriptedGenerationService(), knowledge_retriever, policy)

    assert resolver.determine_priority(message) == expected


@pytest.mark.unit
def test_determine_tools_from_category(knowledge_retriever, policy):
    resolver = make_resolver(ScriptedGenerationService(), knowledge_retriever, policy)

    (call,) = resolver.determine_tools(parse_analysis("t1", "Category: Billing dispute"), ticket())

    assert call.name == "billing_check"
    assert call.parameters["accountId"] == "ACC-123"
    assert resolver.determine_tools(parse_analysis("t1", "Category: Shipping")) == []


@pytest.mark.unit
async def test_analyze_falls_back_to_defaults_when_generation_fails(knowledge_retriever, policy):
    resolver = make_resolver(ScriptedGenerationService(), knowledge_retriever, policy)

    analysis = await resolver.analyze(ticket())

    assert analysis.category == "Uncategorized"
    assert analysis.requires_approval is True


# ===========================
# Resolution
# ===========================

@pytest.mark.unit
async def test_resolution_waits_for_approval(knowledge_retriever, policy, context, registry, vector_index):
    generation = ScriptedGenerationService(lambda messages: "unused")
    resolver = make_resolver(generation, knowledge_retriever, policy)
    analysis = parse_analysis("t1", "Category: Account\nApproval: Yes")

    resolution = await resolver.resolve(ticket(), analysis, False, context, registry)

    assert resolution.status == ResolutionStatus.PENDING_APPROVAL
    assert resolution.message == PENDING_APPROVAL_MESSAGE
    assert resolution.actions == {}
    assert generation.calls == []
    assert ticket_namespace("company-1") not in vector_index.namespaces


@pytest.mark.unit
async def test_resolution_runs_category_tool_and_is_remembered(
    knowledge_retriever, policy, context, registry
):
    generation = ScriptedGenerationService(lambda messages: "We verified your account details.")
    resolver = make_resolver(generation, knowledge_retriever, policy)
    current = ticket()
    analysis = parse_analysis(current.id, ACCOUNT_ANALYSIS)

    resolution = await resolver.resolve(current, analysis, False, context, registry)

    assert resolution.status == ResolutionStatus.RESOLVED
    assert resolution.message == "We verified your account details."
    assert resolution.actions["account_lookup"]["name"] == "John Doe"
    assert "resolving a ticket" in generation.calls[0][0]["content"]

    (similar,) = await resolver.find_similar(ticket("problem with account ACC-123"))
    assert similar.ticket_id == current.id
    assert similar.resolution == "We verified your account details."
    assert similar.actions["account_lookup"]["accountId"] == "ACC-123"


@pytest.mark.unit
async def test_approved_ticket_resolves_despite_analysis(knowledge_retriever, policy, context, registry):
    resolver = make_resolver(ScriptedGenerationService(lambda m: "Refund issued."), knowledge_retriever, policy)
    analysis = parse_analysis("t1", "Category: Billing\nApproval: Yes")

    resolution = await resolver.resolve(ticket(), analysis, True, context, registry)

    assert resolution.status == ResolutionStatus.RESOLVED
    assert "billing_check" in resolution.actions


@pytest.mark.unit
async def test_resolution_message_fallback(knowledge_retriever, policy, context, registry):
    resolver = make_resolver(ScriptedGenerationService(), knowledge_retriever, policy)
    analysis = parse_analysis("t1", ACCOUNT_ANALYSIS)

    resolution = await resolver.resolve(ticket(), analysis, False, context, registry)

    assert resolution.status == ResolutionStatus.RESOLVED
    assert resolution.message == "We have reviewed your account request. Next steps: Look up account."


@pytest.mark.unit
async def test_failed_tool_is_reported_not_raised(knowledge_retriever, policy, context, registry):
    resolver = make_resolver(ScriptedGenerationService(lambda m: "Checked."), knowledge_retriever, policy)
    analysis = parse_analysis("t1", ACCOUNT_ANALYSIS)

    resolution = await resolver.resolve(ticket("problem with account ACC-999"), analysis, False, context, registry)

    assert resolution.status == ResolutionStatus.RESOLVED
    assert "ACC-999 not found" in resolution.actions["account_lookup"]["error"]


@pytest.mark.unit
async def test_store_failure_does_not_fail_resolution(
    knowledge_retriever, embedding_service, policy, context, registry
):
    resolver = make_resolver(ScriptedGenerationService(lambda m: "Done."), knowledge_retriever, policy)
    embedding_service.fail = True

    resolution = await resolver.resolve(ticket(), parse_analysis("t1", ACCOUNT_ANALYSIS), False, context, registry)

    assert resolution.status == ResolutionStatus.RESOLVED


@pytest.mark.unit
async def test_find_similar_on_empty_history(knowledge_retriever, policy):
    resolver = make_resolver(ScriptedGenerationService(), knowledge_retriever, policy)

    assert await resolver.find_similar(ticket()) == []
