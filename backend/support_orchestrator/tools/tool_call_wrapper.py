"""
Resilience for outbound calls: tool webhooks, generation and embeddings.

Version: 1.0.0

Every call runs inside an OpenTelemetry span and, when asked, under a
deadline and a tenacity retry loop. One aiobreaker circuit exists per
dependency name; while it is open, calls fail fast with CircuitOpenError.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, TypeVar

from aiobreaker import CircuitBreaker, CircuitBreakerError
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

T = TypeVar('T')


class ExternalCallError(Exception):
    """Failure raised by the resilience layer itself."""
    pass


class ExternalCallTimeoutError(ExternalCallError):
    pass


class CircuitOpenError(ExternalCallError):
    pass


# ===========================
# Circuit Breakers
# ===========================

@dataclass
class CircuitBreakerConfig:
    """
    fail_max: consecutive failures that open the circuit
    reset_timeout: seconds an open circuit waits before a half-open trial
    exclude: exception types that never count as failures
    """
    fail_max: int = 5
    reset_timeout: int = 60
    exclude: Tuple[Type[BaseException], ...] = ()


_breakers: Dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    name: str,
    config: Optional[CircuitBreakerConfig] = None
) -> CircuitBreaker:
    """
    Breaker for ``name`` (``tool:<tenant>:<tool>``, ``generation``, ...).

    ``config`` only matters the first time a name is seen.
    """
    breaker = _breakers.get(name)
    if breaker is not None:
        return breaker

    config = config or CircuitBreakerConfig()
    breaker = CircuitBreaker(
        fail_max=config.fail_max,
        timeout_duration=timedelta(seconds=config.reset_timeout),
        exclude=list(config.exclude),
        name=name
    )
    _breakers[name] = breaker
    logger.info(
        f"✓ Circuit breaker '{name}' ready "
        f"(fail_max={config.fail_max}, reset_timeout={config.reset_timeout}s)"
    )
    return breaker


def reset_circuit_breakers() -> None:
    """Forget every breaker; each name starts closed again on next use."""
    _breakers.clear()
    logger.info("Circuit breakers cleared")


def get_circuit_breaker_metrics() -> Dict[str, Any]:
    """``{name: {"state": "closed"|"open"|"half-open", "fail_counter": n}}``"""
    return {
        name: {
            "state": breaker_state(breaker),
            "fail_counter": breaker.fail_counter
        }
        for name, breaker in _breakers.items()
    }


def breaker_state(breaker: CircuitBreaker) -> str:
    # CircuitBreakerState members hold state classes as values; only the name is serializable
    return breaker.current_state.name.lower().replace("_", "-")


# ===========================
# Retries
# ===========================

@dataclass
class RetryConfig:
    """
    Exponential backoff for transient failures.

    ``max_attempts`` of 1 disables retrying; only ``retry_exceptions``
    trigger another attempt, anything else propagates at once.
    """
    max_attempts: int = 3
    wait_multiplier: float = 0.5
    wait_min: float = 0.5
    wait_max: float = 5.0
    retry_exceptions: Tuple[Type[BaseException], ...] = (ExternalCallTimeoutError,)

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.wait_multiplier,
                min=self.wait_min,
                max=self.wait_max
            ),
            retry=retry_if_exception_type(self.retry_exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )


# ===========================
# Telemetry
# ===========================

@asynccontextmanager
async def external_call_context(
    component: str,
    operation: str,
    request_id: Optional[str] = None,
    session_id: Optional[str] = None,
    **attributes
):
    """
    Span named ``<component>.<operation>`` plus start/finish logging.

    Extra keyword arguments become ``call.<key>`` span attributes.
    Exceptions are recorded on the span and re-raised.

    Example:
        async with external_call_context("order_status", "invoke", mode="webhook") as span:
            span.set_attribute("http.status_code", 200)
    """
    span_name = f"{component}.{operation}"
    log_extra = {
        "component": component,
        "operation": operation,
        "request_id": request_id,
        "session_id": session_id
    }
    started = time.perf_counter()
    logger.debug(f"→ {span_name}", extra=log_extra)

    with tracer.start_as_current_span(span_name) as span:
        span.set_attribute("call.component", component)
        span.set_attribute("call.operation", operation)
        if request_id:
            span.set_attribute("request.id", request_id)
        if session_id:
            span.set_attribute("session.id", session_id)
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"call.{key}", str(value))

        try:
            yield span
        except Exception as e:
            elapsed = time.perf_counter() - started
            logger.warning(
                f"✗ {span_name} failed after {elapsed:.3f}s: {e}",
                extra={**log_extra, "duration_seconds": elapsed, "error_type": type(e).__name__}
            )
            span.set_status(Status(StatusCode.ERROR, description=str(e)))
            raise

        elapsed = time.perf_counter() - started
        logger.info(
            f"✓ {span_name} ({elapsed:.3f}s)",
            extra={**log_extra, "duration_seconds": elapsed}
        )
        span.set_status(Status(StatusCode.OK))


async def call_with_resilience(
    component: str,
    operation: str,
    func: Callable[..., Awaitable[T]],
    *args,
    timeout: Optional[float] = None,
    retry_config: Optional[RetryConfig] = None,
    breaker_name: Optional[str] = None,
    breaker_config: Optional[CircuitBreakerConfig] = None,
    request_id: Optional[str] = None,
    session_id: Optional[str] = None,
    **kwargs
) -> T:
    """
    Await ``func(*args, **kwargs)`` behind breaker, retries and deadline.

    The breaker wraps the whole retry loop, so one exhausted loop counts
    as a single failure.

    Raises:
        ExternalCallTimeoutError: Last attempt exceeded ``timeout``
        CircuitOpenError: Breaker is open
    """
    breaker = get_circuit_breaker(breaker_name or component, breaker_config)

    async def attempt() -> T:
        if not timeout:
            return await func(*args, **kwargs)
        try:
            return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)
        except asyncio.TimeoutError:
            raise ExternalCallTimeoutError(f"{component}.{operation} timed out after {timeout}s")

    async def attempts() -> T:
        if retry_config is None or retry_config.max_attempts <= 1:
            return await attempt()
        async for retry_attempt in retry_config.retrying():
            with retry_attempt:
                return await attempt()

    async with external_call_context(
        component,
        operation,
        request_id=request_id,
        session_id=session_id
    ) as span:
        try:
            return await breaker.call_async(attempts)
        except CircuitBreakerError as e:
            span.set_attribute("call.circuit_open", True)
            logger.warning(
                f"Circuit '{breaker.name}' open, skipping {component}.{operation}",
                extra={"component": component, "operation": operation}
            )
            raise CircuitOpenError(f"Service temporarily unavailable: {component}") from e


__all__ = [
    'ExternalCallError',
    'ExternalCallTimeoutError',
    'CircuitOpenError',
    'CircuitBreakerConfig',
    'get_circuit_breaker',
    'reset_circuit_breakers',
    'get_circuit_breaker_metrics',
    'breaker_state',
    'RetryConfig',
    'external_call_context',
    'call_with_resilience'
]
