"""
Tenant tools: definitions, in-process handlers and the invoker.

Importing the package registers the built-in handlers.
"""
from . import handlers  # noqa: F401
from .base_tool import ErrorCode, ToolResult, ToolStatus
from .registry import HandlerRegistry, ToolContext, ToolRegistry, handler_registry
from .tool_invoker import ToolInvoker

__all__ = [
    'ErrorCode',
    'HandlerRegistry',
    'ToolContext',
    'ToolInvoker',
    'ToolRegistry',
    'ToolResult',
    'ToolStatus',
    'handler_registry'
]
