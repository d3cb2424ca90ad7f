"""
Tests for escalation heuristics, approval gating and the approval workflow.
"""
import pytest

from support_orchestrator.agents.escalation import (
    REASON_APPROVAL_REQUIRED,
    REASON_FRUSTRATION,
    REASON_HUMAN_REQUEST,
    REASON_MESSAGE_LENGTH,
    REASON_MULTIPLE_QUESTIONS,
    EscalationEngine
)
from support_orchestrator.approvals import ApprovalStatus, InMemoryApprovalStore
from support_orchestrator.exceptions import ApprovalNotFoundError, ApprovalStateError
from support_orchestrator.session import MessageRole, SessionMessage

from conftest import RecordingNotifier


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(policy, test_settings, notifier):
    return EscalationEngine(
        InMemoryApprovalStore(),
        notifier=notifier,
        policy=policy,
        settings=test_settings
    )


def turns(*contents):
    """Alternating user/assistant history starting with the user."""
    roles = ["user", "assistant"]
    return [{"role": roles[i % 2], "content": c} for i, c in enumerate(contents)]


# ===========================
# Escalation reasons
# ===========================

@pytest.mark.unit
def test_plain_message_does_not_escalate(engine):
    assert engine.escalation_reasons("Where is my parcel?") == []
    assert engine.should_escalate("Where is my parcel?") is False


@pytest.mark.unit
def test_human_request(engine):
    reasons = engine.escalation_reasons("Can I speak to agent please")

    assert reasons == [REASON_HUMAN_REQUEST]


@pytest.mark.unit
@pytest.mark.parametrize("message", [
    "I want to speak to a human",
    "Can I talk to a person?",
    "let me talk to a real human",
    "Connect me with a representative"
])
def test_asking_for_a_person_escalates(engine, message):
    assert engine.should_escalate(message, {}) is True
    assert engine.escalation_reasons(message) == [REASON_HUMAN_REQUEST]


@pytest.mark.unit
def test_human_mentioned_inside_a_word_does_not_escalate(engine):
    assert engine.escalation_reasons("Do you ship to Humansdorp?") == []


@pytest.mark.unit
def test_message_length_boundary(engine):
    assert engine.escalation_reasons("a" * 200) == []
    assert engine.escalation_reasons("a" * 201) == [REASON_MESSAGE_LENGTH]


@pytest.mark.unit
def test_multiple_questions(engine):
    assert engine.escalation_reasons("Why? How?") == []
    assert engine.escalation_reasons("Why? How? When?") == [REASON_MULTIPLE_QUESTIONS]


@pytest.mark.unit
def test_frustration_needs_three_user_turns(engine):
    two_turns = {"history": turns("this is not working", "Sorry to hear that", "still bad")}
    three_turns = {"history": turns(
        "this is not working", "Sorry to hear that",
        "still bad", "Let me check",
        "anything else?"
    )}

    assert REASON_FRUSTRATION not in engine.escalation_reasons("ok", two_turns)
    assert engine.escalation_reasons("ok", three_turns) == [REASON_FRUSTRATION]


@pytest.mark.unit
def test_frustration_accepts_session_messages(engine):
    history = [
        SessionMessage(role=MessageRole.USER, content="I am frustrated"),
        SessionMessage(role=MessageRole.USER, content="hello?"),
        SessionMessage(role=MessageRole.USER, content="anyone")
    ]

    assert engine.escalation_reasons("ok", {"history": history}) == [REASON_FRUSTRATION]


@pytest.mark.unit
def test_frustration_only_looks_at_recent_window(engine):
    old_frustration = turns("this is wrong") + turns(*(["fine", "ok"] * 4))

    assert REASON_FRUSTRATION not in engine.escalation_reasons("ok", {"history": old_frustration})


@pytest.mark.unit
def test_reasons_are_deterministic_and_ordered(engine):
    message = "I want a refund, let me talk to agent. Why? How? When?"
    context = {"history": turns("hi")}

    first = engine.escalation_reasons(message, context)
    second = engine.escalation_reasons(message, context)

    assert first == second == [
        REASON_HUMAN_REQUEST,
        REASON_MULTIPLE_QUESTIONS,
        REASON_APPROVAL_REQUIRED
    ]


# ===========================
# Approval gating
# ===========================

@pytest.mark.unit
def test_high_risk_keywords_require_approval(engine):
    assert engine.requires_approval("I need a REFUND for order 123") is True
    assert engine.requires_approval("please delete my account") is True
    assert engine.requires_approval("what are your opening hours") is False
    assert engine.requires_approval("") is False


@pytest.mark.unit
def test_tenant_rules(engine):
    rules = [r"\bexchange\b.*\bwithout receipt\b"]

    assert engine.requires_approval("Can I EXCHANGE this without receipt?", rules) is True
    assert engine.requires_approval("Can I exchange this?", rules) is False


@pytest.mark.unit
def test_invalid_tenant_rule_is_skipped(engine):
    rules = ["([unclosed", r"\bvoucher\b"]

    assert engine.requires_approval("apply my voucher", rules) is True
    assert engine.requires_approval("hello", rules) is False


@pytest.mark.unit
def test_tenant_rules_feed_escalation_reasons(engine):
    context = {"approval_rules": [r"\bvoucher\b"]}

    assert engine.escalation_reasons("apply my voucher", context) == [REASON_APPROVAL_REQUIRED]


# ===========================
# Approval workflow
# ===========================

@pytest.mark.unit
async def test_create_approval_is_idempotent_per_session(engine, make_tenant, notifier):
    tenant = make_tenant(approval_webhook_url="https://hooks.acme.test/approvals")

    first = await engine.create_approval_request({"type": "refund"}, tenant, "cust-1", "s1")
    second = await engine.create_approval_request({"type": "refund"}, tenant, "cust-1", "s1")

    assert first.id == second.id
    assert first.status == ApprovalStatus.PENDING
    assert await engine.get_approval(first.id) == second
    assert len(await engine.list_pending("acme")) == 1
    assert len(notifier.sent) == 1
    assert notifier.sent[0][1] == "https://hooks.acme.test/approvals"


@pytest.mark.unit
async def test_no_notification_without_webhook(engine, make_tenant, notifier):
    await engine.create_approval_request({"type": "refund"}, make_tenant(), "cust-1", "s1")

    assert notifier.sent == []


@pytest.mark.unit
async def test_decide_approve_and_reject(engine, make_tenant):
    tenant = make_tenant()
    first = await engine.create_approval_request({"type": "refund"}, tenant, "c", "s1")
    second = await engine.create_approval_request({"type": "refund"}, tenant, "c", "s2")

    approved = await engine.decide(first.id, True, notes="ok", approver_id="mgr-1")
    rejected = await engine.decide(second.id, False, approver_id="mgr-1")

    assert approved.status == ApprovalStatus.APPROVED
    assert approved.approver_id == "mgr-1"
    assert approved.notes == "ok"
    assert approved.resolved_at is not None
    assert rejected.status == ApprovalStatus.REJECTED
    assert await engine.list_pending("acme") == []


@pytest.mark.unit
async def test_decide_escalate(engine, make_tenant):
    request = await engine.create_approval_request({"type": "refund"}, make_tenant(), "c", "s1")

    escalated = await engine.decide(request.id, False, escalate=True, approver_id="mgr-1")

    assert escalated.status == ApprovalStatus.ESCALATED


@pytest.mark.unit
async def test_terminal_approvals_cannot_change(engine, make_tenant):
    request = await engine.create_approval_request({"type": "refund"}, make_tenant(), "c", "s1")
    await engine.decide(request.id, True, approver_id="mgr-1")

    with pytest.raises(ApprovalStateError) as exc_info:
        await engine.decide(request.id, False, approver_id="mgr-2")

    assert exc_info.value.status_code == 409
    assert (await engine.get_approval(request.id)).status == ApprovalStatus.APPROVED


@pytest.mark.unit
async def test_unknown_approval(engine):
    with pytest.raises(ApprovalNotFoundError):
        await engine.decide("missing", True)
    with pytest.raises(ApprovalNotFoundError):
        await engine.get_approval("missing")


@pytest.mark.unit
async def test_approvals_hidden_from_other_tenants(engine, make_tenant):
    request = await engine.create_approval_request({"type": "refund"}, make_tenant(), "c", "s1")

    with pytest.raises(ApprovalNotFoundError):
        await engine.get_approval(request.id, tenant_id="other")
    with pytest.raises(ApprovalNotFoundError):
        await engine.decide(request.id, True, approver_id="mgr-1", tenant_id="other")

    assert (await engine.get_approval(request.id, tenant_id="acme")).status == ApprovalStatus.PENDING
    decided = await engine.decide(request.id, True, approver_id="mgr-1", tenant_id="acme")
    assert decided.status == ApprovalStatus.APPROVED


@pytest.mark.unit
async def test_new_request_after_decision(engine, make_tenant):
    tenant = make_tenant()
    first = await engine.create_approval_request({"type": "refund"}, tenant, "c", "s1")
    await engine.decide(first.id, True, approver_id="mgr-1")

    second = await engine.create_approval_request({"type": "refund"}, tenant, "c", "s1")

    assert second.id != first.id
    assert second.status == ApprovalStatus.PENDING
