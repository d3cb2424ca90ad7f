"""
Pytest configuration and shared fixtures for testing.
Provides fake embedding/generation services, tenant builders and a fully
wired orchestrator running on in-memory stores.
"""
import hashlib
import math
import os
import re
import uuid
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest

# Set testing environment before importing the package
os.environ["ENVIRONMENT"] = "testing"
os.environ["ENABLE_TELEMETRY"] = "false"
os.environ["SESSION_STORE_TYPE"] = "in_memory"

import redis.asyncio as redis
from redis.exceptions import RedisError

from support_orchestrator.agents import (
    ConversationOrchestrator,
    EscalationEngine,
    FAQReasoner,
    FallbackResponder,
    TicketResolver
)
from support_orchestrator.approvals import InMemoryApprovalStore
from support_orchestrator.config import Settings
from support_orchestrator.config.policy_settings import PolicySettings
from support_orchestrator.config.tenant_config import (
    Branding,
    InMemoryTenantConfigSource,
    InProcessExecution,
    TenantConfig,
    ToolDefinition,
    sample_tenant_configs
)
from support_orchestrator.exceptions import GenerationError
from support_orchestrator.services.knowledge_retriever import KnowledgeRetriever
from support_orchestrator.services.vector_index import InMemoryVectorIndex
from support_orchestrator.session import InMemorySessionStore
from support_orchestrator.tools import ToolInvoker
from support_orchestrator.tools.tool_call_wrapper import reset_circuit_breakers

TEST_REDIS_URL = os.environ.get("TEST_REDIS_URL", "redis://localhost:6379/15")


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "integration: tests wiring several components")
    config.addinivalue_line("markers", "requires_redis: tests needing a running Redis server")


# ===========================
# Fake Collaborators
# ===========================

def bag_of_words(text: str, dimensions: int = 128) -> List[float]:
    """Deterministic hashed term-count vector."""
    vector = [0.0] * dimensions
    for token in re.findall(r"[a-z0-9]+", (text or "").lower()):
        index = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % dimensions
        vector[index] += 1.0
    norm = math.sqrt(sum(v * v for v in vector))
    return [v / norm for v in vector] if norm else vector


class FakeEmbeddingService:
    """Embeds text locally; ``fail`` makes every call raise."""

    def __init__(self):
        self.fail = False
        self.calls = 0

    async def embed(self, text: str) -> List[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.calls += 1
        if self.fail:
            raise RuntimeError("embedding backend down")
        return [bag_of_words(text) for text in texts]

    async def close(self) -> None:
        return None


class ScriptedGenerationService:
    """
    Generation service driven by a responder function.

    Without a responder every call raises GenerationError, which is how the
    tests simulate a generation outage.
    """

    def __init__(self, responder: Optional[Callable[[List[Dict[str, str]]], str]] = None):
        self.responder = responder
        self.calls: List[List[Dict[str, str]]] = []

    async def generate(self, messages, max_tokens=None, temperature=None, session_id=None) -> str:
        self.calls.append(messages)
        if self.responder is None:
            raise GenerationError("Generation service offline")
        return self.responder(messages)

    async def close(self) -> None:
        return None


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def notify(self, request, webhook_url) -> bool:
        self.sent.append((request, webhook_url))
        return True

    async def close(self) -> None:
        return None


def last_user_content(messages: List[Dict[str, str]]) -> str:
    return messages[-1]["content"] if messages else ""


# ===========================
# Fixtures
# ===========================

@pytest.fixture(autouse=True)
def clean_circuit_breakers():
    """Circuit breakers are process-wide; start every test closed."""
    reset_circuit_breakers()
    yield
    reset_circuit_breakers()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        environment="testing",
        enable_telemetry=False,
        tool_timeout=2.0,
        circuit_breaker_fail_max=5,
        circuit_breaker_reset_seconds=60
    )


@pytest.fixture
def policy() -> PolicySettings:
    return PolicySettings()


@pytest.fixture
def make_tenant() -> Callable[..., TenantConfig]:
    """Build a tenant config; tools default to in-process handlers by name."""
    def _make(tenant_id: str = "acme", tools: Optional[List[str]] = None, **overrides) -> TenantConfig:
        data: Dict[str, Any] = {
            "tenant_id": tenant_id,
            "agent_persona": "Ava",
            "branding": Branding(company_name="Acme", description="Acme makes everything."),
            "tool_definitions": [
                ToolDefinition(
                    name=name,
                    description=f"{name} tool",
                    execution=InProcessExecution(handler_id=name)
                )
                for name in (tools or [])
            ]
        }
        data.update(overrides)
        return TenantConfig(**data)

    return _make


@pytest.fixture
def embedding_service() -> FakeEmbeddingService:
    return FakeEmbeddingService()


@pytest.fixture
def vector_index() -> InMemoryVectorIndex:
    return InMemoryVectorIndex()


@pytest.fixture
def knowledge_retriever(embedding_service, vector_index) -> KnowledgeRetriever:
    return KnowledgeRetriever(embedding_service, vector_index)


@pytest.fixture
def build_system(test_settings, policy, embedding_service, vector_index):
    """
    Factory wiring every component around in-memory stores.

    Usage: system = build_system(generation=ScriptedGenerationService(...))
    """
    def _build(
        generation: Optional[ScriptedGenerationService] = None,
        tenants: Optional[Dict[str, TenantConfig]] = None,
        session_store=None,
        handlers=None,
        notifier=None
    ) -> SimpleNamespace:
        generation = generation or ScriptedGenerationService()
        session_store = session_store or InMemorySessionStore(history_cap=test_settings.session_history_cap)
        approval_store = InMemoryApprovalStore()
        tenant_source = InMemoryTenantConfigSource(tenants or sample_tenant_configs())
        retriever = KnowledgeRetriever(embedding_service, vector_index)
        tool_invoker = ToolInvoker(
            generation_service=generation,
            handlers=handlers,
            settings=test_settings,
            policy=policy
        )
        escalation_engine = EscalationEngine(
            approval_store,
            notifier=notifier,
            policy=policy,
            settings=test_settings
        )
        ticket_resolver = TicketResolver(generation, retriever, tool_invoker, policy=policy)
        faq_reasoner = FAQReasoner(retriever, generation, policy=policy)
        orchestrator = ConversationOrchestrator(
            session_store=session_store,
            tenant_source=tenant_source,
            knowledge_retriever=retriever,
            generation_service=generation,
            tool_invoker=tool_invoker,
            escalation_engine=escalation_engine,
            ticket_resolver=ticket_resolver,
            faq_reasoner=faq_reasoner,
            fallback=FallbackResponder(policy),
            policy=policy
        )
        return SimpleNamespace(
            session_store=session_store,
            approval_store=approval_store,
            tenant_source=tenant_source,
            embedding_service=embedding_service,
            vector_index=vector_index,
            knowledge_retriever=retriever,
            generation_service=generation,
            tool_invoker=tool_invoker,
            escalation_engine=escalation_engine,
            ticket_resolver=ticket_resolver,
            faq_reasoner=faq_reasoner,
            orchestrator=orchestrator
        )

    return _build


@pytest.fixture
async def redis_client():
    """Redis client on the test database; skips when no server answers."""
    client = redis.from_url(TEST_REDIS_URL, decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError):
        await client.aclose()
        pytest.skip("Redis not running")

    yield client

    await client.aclose()


@pytest.fixture
def redis_prefix() -> str:
    return f"test:{uuid.uuid4().hex[:8]}:"
