"""
Outcome of one tool invocation.

Version: 1.0.0

Invocations never raise to the orchestrator; in-process handlers and
webhooks alike are reported through ToolResult.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ToolStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class ErrorCode(str, Enum):
    """Why an invocation failed."""
    NOT_FOUND_ERROR = "not_found_error"
    VALIDATION_ERROR = "validation_error"
    EXECUTION_ERROR = "execution_error"
    TIMEOUT_ERROR = "timeout_error"
    API_ERROR = "api_error"
    NETWORK_ERROR = "network_error"
    CIRCUIT_BREAKER_ERROR = "circuit_breaker_error"

    @property
    def is_retryable(self) -> bool:
        """Transient failures a later turn may not hit again."""
        return self in (
            ErrorCode.TIMEOUT_ERROR,
            ErrorCode.NETWORK_ERROR,
            ErrorCode.CIRCUIT_BREAKER_ERROR
        )


@dataclass
class ToolResult:
    """
    Tool outcome.

    ``data`` is the tool's JSON object on success. On failure ``error``
    holds a message fit for the prompt and ``error_code`` classifies it;
    the code is mirrored into ``metadata`` for logs and metrics.
    """
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    status: ToolStatus = ToolStatus.SUCCESS
    error_code: Optional[ErrorCode] = None

    def __post_init__(self):
        if not self.success:
            self.status = ToolStatus.ERROR
        if self.error_code is not None:
            self.metadata.setdefault("error_code", self.error_code.value)

    @classmethod
    def success_result(cls, data: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None) -> "ToolResult":
        return cls(success=True, data=data, metadata=dict(metadata or {}))

    @classmethod
    def error_result(
        cls,
        error: str,
        metadata: Optional[Dict[str, Any]] = None,
        error_code: Optional[ErrorCode] = None
    ) -> "ToolResult":
        return cls(
            success=False,
            error=error,
            metadata=dict(metadata or {}),
            error_code=error_code or ErrorCode.EXECUTION_ERROR
        )

    def to_payload(self) -> Dict[str, Any]:
        """What the prompt and stored actions see: the data, or ``{"error": ...}``."""
        if self.success:
            return dict(self.data)
        return {"error": self.error or "Tool execution failed"}

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "success": self.success,
            "status": self.status.value,
            "data": self.data,
            "error": self.error,
            "metadata": self.metadata
        }
        if self.error_code is not None:
            result["error_code"] = self.error_code.value
        return result


__all__ = ['ToolStatus', 'ErrorCode', 'ToolResult']
