"""
HTTP API tests.
The app is created with a component factory that wires the in-memory
system, so no external service is needed.
"""
import pytest
from fastapi.testclient import TestClient

from support_orchestrator.config import Settings
from support_orchestrator.main import create_app
from support_orchestrator.tools.tool_call_wrapper import get_circuit_breaker


@pytest.fixture
def system(build_system):
    return build_system()


@pytest.fixture
def client(system, test_settings):
    async def factory(app_settings):
        return vars(system)

    with TestClient(create_app(test_settings, component_factory=factory)) as test_client:
        yield test_client


def post_chat(client, message, session_id="s1", tenant_id="company-1", **extra):
    body = {"message": message, "sessionId": session_id, "tenantId": tenant_id, **extra}
    return client.post("/api/chat", json={k: v for k, v in body.items() if v is not None})


# ===========================
# Chat
# ===========================

@pytest.mark.integration
def test_chat_greeting(client):
    response = post_chat(client, "hello", customerId="cust-1")

    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Hello! I'm SupportBot. How can I help you today?"
    assert data["sessionId"] == "s1"
    assert data["toolsUsed"] == []
    assert data["ticket"] is None
    assert data["escalated"] is False


@pytest.mark.integration
def test_chat_requires_message(client):
    response = post_chat(client, None)

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


@pytest.mark.integration
def test_chat_rejects_oversized_message(client):
    response = post_chat(client, "x" * 5000)

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


@pytest.mark.integration
def test_chat_unknown_tenant(client):
    response = post_chat(client, "hello", tenant_id="nobody")

    assert response.status_code == 404
    assert response.json()["error"] == "tenant_not_found"


@pytest.mark.integration
def test_request_id_is_echoed(client):
    response = client.post(
        "/api/chat",
        json={"message": "hello"},
        headers={"X-Request-ID": "req-42"}
    )

    assert response.headers["X-Request-ID"] == "req-42"
    assert response.json()["request_id"] == "req-42"
    assert "X-Process-Time" in response.headers


# ===========================
# Approvals
# ===========================

@pytest.mark.integration
def test_approval_flow(client):
    chat = post_chat(client, "I need a refund for order ORD-123").json()
    assert chat["ticket"]["status"] == "pending_approval"
    approval_id = chat["ticket"]["approvalId"]

    listed = client.get("/api/approvals", params={"tenantId": "company-1"})
    assert listed.status_code == 200
    assert [a["id"] for a in listed.json()] == [approval_id]
    assert listed.json()[0]["status"] == "pending"
    assert listed.json()[0]["sessionId"] == "s1"

    decided = client.post(
        f"/api/approvals/{approval_id}/decision",
        json={"tenantId": "company-1", "approved": True, "approverId": "mgr-1", "notes": "goodwill refund"}
    )
    assert decided.status_code == 200
    assert decided.json()["status"] == "approved"
    assert decided.json()["approverId"] == "mgr-1"
    assert decided.json()["resolvedAt"] is not None

    repeated = client.post(
        f"/api/approvals/{approval_id}/decision",
        json={"tenantId": "company-1", "approved": False, "approverId": "mgr-2"}
    )
    assert repeated.status_code == 409
    assert repeated.json()["error"] == "approval_state_error"

    fetched = client.get(f"/api/approvals/{approval_id}", params={"tenantId": "company-1"})
    assert fetched.json()["status"] == "approved"
    assert client.get("/api/approvals", params={"tenantId": "company-1"}).json() == []


@pytest.mark.integration
def test_unknown_approval(client):
    assert client.get("/api/approvals/missing", params={"tenantId": "company-1"}).status_code == 404

    response = client.post(
        "/api/approvals/missing/decision",
        json={"tenantId": "company-1", "approved": True, "approverId": "mgr-1"}
    )

    assert response.status_code == 404
    assert response.json()["error"] == "approval_not_found"


@pytest.mark.integration
def test_approval_requests_need_tenant_and_approver(client):
    assert client.get("/api/approvals").status_code == 400
    assert client.get("/api/approvals/any").status_code == 400
    assert client.post("/api/approvals/any/decision", json={"approved": True}).status_code == 400
    assert client.post(
        "/api/approvals/any/decision",
        json={"approved": True, "approverId": "mgr-1"}
    ).status_code == 400


@pytest.mark.integration
def test_approvals_are_scoped_to_their_tenant(client):
    approval_id = post_chat(client, "I need a refund for order ORD-123").json()["ticket"]["approvalId"]

    fetched = client.get(f"/api/approvals/{approval_id}", params={"tenantId": "company-2"})
    decided = client.post(
        f"/api/approvals/{approval_id}/decision",
        json={"tenantId": "company-2", "approved": True, "approverId": "mgr-9"}
    )

    assert fetched.status_code == 404
    assert decided.status_code == 404
    assert decided.json()["error"] == "approval_not_found"
    pending = client.get("/api/approvals", params={"tenantId": "company-1"}).json()
    assert [a["id"] for a in pending] == [approval_id]
    assert pending[0]["status"] == "pending"


# ===========================
# Sessions
# ===========================

@pytest.mark.integration
def test_history(client):
    post_chat(client, "hello")

    response = client.get("/api/sessions/s1/history")

    assert response.status_code == 200
    data = response.json()
    assert data["sessionId"] == "s1"
    assert [m["role"] for m in data["messages"]] == ["user", "assistant"]
    assert data["messages"][1]["toolsUsed"] == []
    assert data["escalated"] is False


@pytest.mark.integration
def test_history_of_unknown_session(client):
    response = client.get("/api/sessions/nobody/history", params={"limit": 5})

    assert response.status_code == 200
    assert response.json()["messages"] == []


@pytest.mark.integration
def test_feedback(client, system):
    rejected = client.post("/api/sessions/s1/feedback", json={"rating": 9})
    accepted = client.post("/api/sessions/s1/feedback", json={"rating": 4, "comment": "helpful"})

    assert rejected.status_code == 400
    assert rejected.json()["error"] == "validation_error"
    assert accepted.status_code == 200
    assert accepted.json() == {"success": True, "sessionId": "s1", "feedbackCount": 1}


# ===========================
# Health
# ===========================

@pytest.mark.integration
def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["services"] == {"session_store": "healthy", "orchestrator": "healthy"}


@pytest.mark.integration
def test_health_degraded_by_open_circuit(client):
    breaker = get_circuit_breaker("tool:company-1:order_status")
    breaker.open()

    assert client.get("/health").json()["status"] == "degraded"


@pytest.mark.integration
def test_health_reports_closed_breakers(client):
    get_circuit_breaker("generation")

    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["circuitBreakers"]["generation"] == {"state": "closed", "fail_counter": 0}


@pytest.mark.integration
def test_liveness(client):
    response = client.get("/health/live")

    assert response.status_code == 200
    assert response.json()["status"] == "alive"


@pytest.mark.integration
def test_missing_components(test_settings):
    async def empty_factory(app_settings):
        return {}

    with TestClient(create_app(test_settings, component_factory=empty_factory)) as client:
        chat = post_chat(client, "hello")
        health = client.get("/health").json()

    assert chat.status_code == 503
    assert health["status"] == "degraded"
    assert health["services"]["session_store"] == "not_initialized"


@pytest.mark.integration
def test_metrics_endpoint(system):
    async def factory(app_settings):
        return vars(system)

    app = create_app(Settings(environment="testing", enable_telemetry=True), component_factory=factory)
    with TestClient(app) as client:
        post_chat(client, "hello")
        response = client.get("/metrics")

    assert response.status_code == 200
    assert "conversation_turns_total" in response.text
