"""
Tool detection and invocation.

Version: 1.0.0

Detection runs a keyword map first and falls back to the generation
service as an intent classifier. Invocation dispatches on the tool's
execution mode; every invocation is isolated and yields a ToolResult,
never an exception.
"""
import asyncio
import json
import logging
import re
import time
from typing import Any, Dict, List, Optional

import aiohttp

from ..config import Settings, settings as default_settings
from ..config.policy_settings import PolicySettings, policy_settings as default_policy
from ..config.tenant_config import InProcessExecution, ToolDefinition, WebhookExecution
from ..exceptions import GenerationError, ToolExecutionError
from ..models.domain import ToolCall
from ..utils.telemetry import track_tool_usage
from .base_tool import ErrorCode, ToolResult
from .registry import HandlerRegistry, ToolContext, ToolRegistry, handler_registry
from .tool_call_wrapper import (
    CircuitBreakerConfig,
    CircuitOpenError,
    ExternalCallTimeoutError,
    call_with_resilience,
    external_call_context
)

logger = logging.getLogger(__name__)

# Identifiers copied from the message into keyword-detected calls
ID_PATTERNS = {
    "orderId": re.compile(r"\b(ORD-\d+)\b", re.IGNORECASE),
    "accountId": re.compile(r"\b(ACC-\d+)\b", re.IGNORECASE),
    "productId": re.compile(r"\b(PROD-\d+)\b", re.IGNORECASE)
}

CLASSIFIER_PROMPT = """You decide which support tools are needed to answer a customer message.

Available tools:
{tools}

Customer message: "{message}"

Reply with JSON only, in exactly this shape:
{{"tools": [{{"name": "<tool name>", "parameters": {{}}}}]}}
Use an empty list when no tool is needed. Only use tool names from the list above."""


def extract_parameters(message: str) -> Dict[str, Any]:
    """Default parameters for a keyword-detected call."""
    parameters: Dict[str, Any] = {"query": message}
    for key, pattern in ID_PATTERNS.items():
        match = pattern.search(message)
        if match:
            parameters[key] = match.group(1).upper()
    return parameters


def parse_classifier_output(text: str, available: List[str]) -> List[ToolCall]:
    """
    Read ``{"tools": [...]}`` from classifier output.

    Anything unparseable, or naming tools outside ``available``, yields
    no call.
    """
    match = re.search(r"\{.*\}", text or "", re.DOTALL)
    if not match:
        return []

    try:
        payload = json.loads(match.group(0))
    except ValueError:
        logger.debug("Tool classifier returned malformed JSON")
        return []

    entries = payload.get("tools") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        return []

    calls = []
    seen = set()
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        name = entry.get("name")
        parameters = entry.get("parameters")
        if name not in available or name in seen:
            continue
        seen.add(name)
        calls.append(ToolCall(
            name=name,
            parameters=parameters if isinstance(parameters, dict) else {}
        ))
    return calls


class ToolInvoker:
    """
    Detects and executes tenant tools.

    Webhook calls run under a per-tool circuit breaker
    (``tool:<tenant>:<tool>``) with the tool timeout; in-process handlers
    run under the same timeout.
    """

    def __init__(
        self,
        generation_service=None,
        handlers: Optional[HandlerRegistry] = None,
        settings: Optional[Settings] = None,
        policy: Optional[PolicySettings] = None,
        http_session: Optional[aiohttp.ClientSession] = None
    ):
        """
        Initialize tool invoker.

        Args:
            generation_service: Used as intent classifier; keyword detection only when None
            handlers: In-process handler registry (defaults to the global one)
            settings: Application settings
            policy: Keyword map for detection
            http_session: Shared aiohttp session for webhooks
        """
        self.generation_service = generation_service
        self.handlers = handlers or handler_registry
        self.settings = settings or default_settings
        self.policy = policy or default_policy
        self.timeout = self.settings.tool_timeout
        self.breaker_config = CircuitBreakerConfig(
            fail_max=self.settings.circuit_breaker_fail_max,
            reset_timeout=self.settings.circuit_breaker_reset_seconds
        )
        self._session = http_session
        self._owns_session = http_session is None

    # ===========================
    # Detection
    # ===========================

    def detect_by_keywords(self, message: str, registry: ToolRegistry) -> List[ToolCall]:
        message_lower = message.lower()
        calls = []
        for tool_name, keywords in self.policy.tool_keywords.items():
            if tool_name not in registry:
                continue
            if any(keyword in message_lower for keyword in keywords):
                calls.append(ToolCall(name=tool_name, parameters=extract_parameters(message)))
        return calls

    async def detect(
        self,
        message: str,
        registry: ToolRegistry,
        session_id: Optional[str] = None
    ) -> List[ToolCall]:
        """
        Decide which tools the message needs.

        Returns:
            Tool calls restricted to the tenant's tools; empty when nothing applies
        """
        if not message or len(registry) == 0:
            return []

        calls = self.detect_by_keywords(message, registry)
        if calls or self.generation_service is None:
            return calls

        tool_lines = "\n".join(
            f"- {definition['function']['name']}: {definition['function']['description']}"
            for definition in registry.schemas()
        )
        prompt = CLASSIFIER_PROMPT.format(tools=tool_lines, message=message)

        try:
            text = await self.generation_service.generate(
                [{"role": "user", "content": prompt}],
                max_tokens=256,
                temperature=0.0,
                session_id=session_id
            )
        except GenerationError as e:
            logger.warning(f"Tool classifier unavailable: {e}", extra={"session_id": session_id})
            return []

        calls = parse_classifier_output(text, registry.names)
        if calls:
            logger.info(
                f"Classifier selected tools: {[call.name for call in calls]}",
                extra={"session_id": session_id}
            )
        return calls

    # ===========================
    # Invocation
    # ===========================

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Accept": "application/json"}
            )
            self._owns_session = True
        return self._session

    async def _post_webhook(
        self,
        definition: ToolDefinition,
        execution: WebhookExecution,
        params: Dict[str, Any],
        context: ToolContext,
        api_key: Optional[str]
    ) -> Dict[str, Any]:
        token = execution.credentials_ref or api_key or ""
        headers = {
            "Content-Type": "application/json",
            "X-Tenant-Id": context.tenant_id,
            "X-User-Id": context.user_id,
            "Authorization": f"Bearer {token}"
        }
        body = {
            "tool": definition.name,
            "params": params,
            "userId": context.user_id,
            "sessionId": context.session_id
        }

        session = await self._get_session()
        async with session.post(execution.url, json=body, headers=headers) as response:
            if response.status < 200 or response.status >= 300:
                raise ToolExecutionError(
                    f"HTTP {response.status}: {response.reason}",
                    details={"tool": definition.name, "status": response.status}
                )
            try:
                data = await response.json(content_type=None)
            except ValueError as e:
                raise ToolExecutionError(
                    f"Malformed response from tool webhook: {e}",
                    details={"tool": definition.name}
                )

        if isinstance(data, dict):
            return data
        return {"result": data}

    async def _run_in_process(
        self,
        definition: ToolDefinition,
        execution: InProcessExecution,
        params: Dict[str, Any],
        context: ToolContext,
        registry: ToolRegistry
    ) -> Dict[str, Any]:
        handler = self.handlers.get(execution.handler_id)
        if handler is None:
            raise ToolExecutionError(
                f"Tool execution method not defined for '{definition.name}'",
                details={"handler_id": execution.handler_id}
            )

        async with external_call_context(
            definition.name,
            "invoke",
            request_id=context.request_id,
            session_id=context.session_id,
            mode="in_process"
        ):
            try:
                return await asyncio.wait_for(
                    handler(params, registry.tenant_config, context),
                    timeout=self.timeout
                )
            except asyncio.TimeoutError:
                raise ExternalCallTimeoutError(
                    f"Tool '{definition.name}' timed out after {self.timeout}s"
                )

    async def invoke(
        self,
        name: str,
        params: Dict[str, Any],
        context: ToolContext,
        registry: ToolRegistry
    ) -> ToolResult:
        """
        Execute one tool.

        Never raises; failures come back as error results.
        """
        definition = registry.get(name)
        if definition is None:
            return ToolResult.error_result(
                error=f"Tool '{name}' not found",
                metadata={"tool": name},
                error_code=ErrorCode.NOT_FOUND_ERROR
            )

        execution = definition.execution
        metadata = {"tool": name, "mode": execution.mode}
        start_time = time.time()

        try:
            if isinstance(execution, WebhookExecution):
                data = await call_with_resilience(
                    name,
                    "invoke",
                    self._post_webhook,
                    definition,
                    execution,
                    params,
                    context,
                    registry.tenant_config.api_key_ref,
                    timeout=self.timeout,
                    breaker_name=f"tool:{context.tenant_id}:{name}",
                    breaker_config=self.breaker_config,
                    request_id=context.request_id,
                    session_id=context.session_id
                )
            else:
                data = await self._run_in_process(definition, execution, params, context, registry)

            metadata["duration"] = time.time() - start_time
            result = ToolResult.success_result(data=data, metadata=metadata)

        except ToolExecutionError as e:
            result = ToolResult.error_result(
                error=f"Tool execution failed: {e.message}",
                metadata=metadata,
                error_code=ErrorCode.EXECUTION_ERROR
            )
        except ExternalCallTimeoutError as e:
            result = ToolResult.error_result(
                error=str(e),
                metadata=metadata,
                error_code=ErrorCode.TIMEOUT_ERROR
            )
        except CircuitOpenError as e:
            result = ToolResult.error_result(
                error=str(e),
                metadata=metadata,
                error_code=ErrorCode.CIRCUIT_BREAKER_ERROR
            )
        except aiohttp.ClientError as e:
            result = ToolResult.error_result(
                error=f"Tool execution failed: {e}",
                metadata=metadata,
                error_code=ErrorCode.NETWORK_ERROR
            )
        except Exception as e:
            # Isolation boundary: a broken handler only fails its own call
            logger.error(
                f"Unexpected error in tool '{name}': {e}",
                exc_info=True,
                extra={"session_id": context.session_id, "tenant_id": context.tenant_id}
            )
            result = ToolResult.error_result(
                error=f"Tool execution failed: {e}",
                metadata=metadata,
                error_code=ErrorCode.EXECUTION_ERROR
            )

        track_tool_usage(name, execution.mode, result.success)
        if not result.success:
            logger.warning(
                f"Tool '{name}' failed: {result.error}",
                extra={"session_id": context.session_id, "tenant_id": context.tenant_id}
            )
        return result

    async def invoke_many(
        self,
        calls: List[ToolCall],
        context: ToolContext,
        registry: ToolRegistry
    ) -> Dict[str, ToolResult]:
        """
        Execute calls concurrently.

        Returns:
            Mapping of tool name to result; the first call wins on duplicate names
        """
        unique: Dict[str, ToolCall] = {}
        for call in calls:
            unique.setdefault(call.name, call)

        if not unique:
            return {}

        results = await asyncio.gather(*(
            self.invoke(call.name, call.parameters, context, registry)
            for call in unique.values()
        ))
        return dict(zip(unique.keys(), results))

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


__all__ = ['ToolInvoker', 'extract_parameters', 'parse_classifier_output']
