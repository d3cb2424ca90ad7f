"""
Tool registries.

- HandlerRegistry: process-wide table of in-process handler functions,
  filled once at startup by ``register`` decorators.
- ToolRegistry: per-tenant view of the tool definitions a tenant exposes.

Version: 1.0.0
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config.tenant_config import InProcessExecution, TenantConfig, ToolDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolContext:
    """Caller context passed to every tool invocation."""
    tenant_id: str
    user_id: str = "anonymous"
    session_id: Optional[str] = None
    request_id: Optional[str] = None


ToolHandler = Callable[[Dict[str, Any], TenantConfig, ToolContext], Awaitable[Dict[str, Any]]]


class HandlerRegistry:
    """
    Registry of in-process tool handlers keyed by handler id.

    Tenant configuration references handlers by id only; code is never
    loaded from configuration.
    """

    def __init__(self):
        self._handlers: Dict[str, ToolHandler] = {}

    def register(self, handler_id: str) -> Callable[[ToolHandler], ToolHandler]:
        """
        Decorator registering ``handler_id``.

        Example:
            @handler_registry.register("order_status")
            async def order_status(params, tenant_config, context):
                ...
        """
        def decorator(func: ToolHandler) -> ToolHandler:
            if handler_id in self._handlers:
                logger.warning(f"Overwriting existing tool handler: {handler_id}")
            self._handlers[handler_id] = func
            logger.debug(f"Registered tool handler: {handler_id}")
            return func

        return decorator

    def get(self, handler_id: str) -> Optional[ToolHandler]:
        return self._handlers.get(handler_id)

    def __contains__(self, handler_id: str) -> bool:
        return handler_id in self._handlers

    def list_handlers(self) -> List[str]:
        return sorted(self._handlers)


handler_registry = HandlerRegistry()


class ToolRegistry:
    """
    The tools one tenant exposes, keyed by name.

    Holds references to the tenant's (immutable) definitions.
    """

    def __init__(self, tenant_config: TenantConfig):
        self.tenant_config = tenant_config
        self._tools: Dict[str, ToolDefinition] = {
            definition.name: definition for definition in tenant_config.tool_definitions
        }

    @classmethod
    def for_tenant(cls, tenant_config: TenantConfig) -> 'ToolRegistry':
        return cls(tenant_config)

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def schemas(self) -> List[Dict[str, Any]]:
        """Tool descriptions in OpenAI function-calling format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": definition.name,
                    "description": definition.description,
                    "parameters": definition.parameters or {"type": "object", "properties": {}}
                }
            }
            for definition in self._tools.values()
        ]

    def validate(self, handlers: HandlerRegistry) -> List[str]:
        """
        List configuration problems (in-process tools with unknown handlers).

        Returns:
            List of warnings
        """
        warnings = []
        for definition in self._tools.values():
            execution = definition.execution
            if isinstance(execution, InProcessExecution) and execution.handler_id not in handlers:
                warnings.append(
                    f"Tool '{definition.name}' references unknown handler '{execution.handler_id}'"
                )
        return warnings


__all__ = ['ToolContext', 'ToolHandler', 'HandlerRegistry', 'handler_registry', 'ToolRegistry']
