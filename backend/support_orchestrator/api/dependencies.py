"""
FastAPI dependencies resolving the components built at startup.
"""
from fastapi import HTTPException, Request

from ..agents.escalation import EscalationEngine
from ..agents.orchestrator import ConversationOrchestrator
from ..session.session_store import SessionStore


def _component(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return component


def get_orchestrator(request: Request) -> ConversationOrchestrator:
    return _component(request, "orchestrator")


def get_escalation_engine(request: Request) -> EscalationEngine:
    return _component(request, "escalation_engine")


def get_session_store(request: Request) -> SessionStore:
    return _component(request, "session_store")


def get_request_id(request: Request) -> str:
    """Request id assigned by RequestIDMiddleware."""
    return getattr(request.state, "request_id", None) or "unknown"


__all__ = [
    'get_orchestrator',
    'get_escalation_engine',
    'get_session_store',
    'get_request_id'
]
