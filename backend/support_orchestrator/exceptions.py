"""
Exception hierarchy for the orchestration engine.

Every error carries an ``error_code`` and an HTTP ``status_code`` so the API
layer can map it without inspecting types. ``retryable`` marks failures a
caller may try again (store outages, timeouts).

Version: 1.0.0
"""
from typing import Any, Dict, Optional


class OrchestratorError(Exception):
    """Base exception for all engine errors."""

    error_code = "orchestrator_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API error bodies."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }


class RequestValidationError(OrchestratorError):
    """Malformed inbound request (missing message, bad rating, ...)."""
    error_code = "validation_error"
    status_code = 400


class TenantNotFoundError(OrchestratorError):
    """No configuration exists for the tenant."""
    error_code = "tenant_not_found"
    status_code = 404


class ApprovalNotFoundError(OrchestratorError):
    """Approval request id is unknown."""
    error_code = "approval_not_found"
    status_code = 404


class ApprovalStateError(OrchestratorError):
    """Transition attempted from a terminal approval state."""
    error_code = "approval_state_error"
    status_code = 409


class SessionStoreUnavailableError(OrchestratorError):
    """Session storage backend could not be reached."""
    error_code = "session_store_unavailable"
    status_code = 503
    retryable = True


class LockAcquisitionError(OrchestratorError):
    """Per-session turn lock could not be acquired in time."""
    error_code = "lock_acquisition_error"
    status_code = 503
    retryable = True


class KnowledgeStoreError(OrchestratorError):
    """Embedding or vector index write failed."""
    error_code = "knowledge_store_error"
    status_code = 502
    retryable = True


class GenerationError(OrchestratorError):
    """Language generation call failed or timed out."""
    error_code = "generation_error"
    status_code = 502
    retryable = True


class ToolExecutionError(OrchestratorError):
    """A tool invocation failed."""
    error_code = "tool_execution_error"
    status_code = 502


__all__ = [
    'OrchestratorError',
    'RequestValidationError',
    'TenantNotFoundError',
    'ApprovalNotFoundError',
    'ApprovalStateError',
    'SessionStoreUnavailableError',
    'LockAcquisitionError',
    'KnowledgeStoreError',
    'GenerationError',
    'ToolExecutionError'
]
