"""
Prometheus metrics for HTTP traffic and conversation outcomes.

Version: 1.0.0
"""
import logging
import time

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)

# HTTP
http_requests = Counter(
    'http_requests_total',
    'Requests served, by route template',
    ['method', 'endpoint', 'status']
)

http_latency = Histogram(
    'http_request_duration_seconds',
    'Request handling time',
    ['method', 'endpoint']
)

# Conversations
conversation_turns = Counter(
    'conversation_turns_total',
    'Conversation turns handled',
    ['tenant_id', 'outcome']
)

turn_duration = Histogram(
    'conversation_turn_duration_seconds',
    'End-to-end turn latency',
    ['tenant_id']
)

tool_invocations = Counter(
    'tool_invocations_total',
    'Tool invocation outcomes',
    ['tool_name', 'mode', 'success']
)

ticket_outcomes = Counter(
    'ticket_outcomes_total',
    'Ticket path outcomes',
    ['tenant_id', 'status']
)

escalations = Counter(
    'escalations_total',
    'Conversations flagged for human support',
    ['tenant_id', 'reason']
)

approvals = Counter(
    'approval_requests_total',
    'Approval requests created and decided',
    ['tenant_id', 'status']
)

fallback_replies = Counter(
    'fallback_replies_total',
    'Replies produced without the generation service',
    ['tenant_id', 'kind']
)

feedback_ratings = Histogram(
    'feedback_rating',
    'Customer feedback ratings',
    buckets=(1, 2, 3, 4, 5)
)


def setup_telemetry(app: FastAPI) -> None:
    """Mount ``/metrics`` and count every HTTP request."""

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.middleware("http")
    async def observe_request(request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        # Route template keeps label cardinality bounded
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        http_requests.labels(request.method, endpoint, response.status_code).inc()
        http_latency.labels(request.method, endpoint).observe(elapsed)
        return response

    logger.info("✓ Prometheus metrics enabled at /metrics")


def track_turn(tenant_id: str, outcome: str, duration: float) -> None:
    conversation_turns.labels(tenant_id=tenant_id, outcome=outcome).inc()
    turn_duration.labels(tenant_id=tenant_id).observe(duration)


def track_tool_usage(tool_name: str, mode: str, success: bool = True) -> None:
    tool_invocations.labels(tool_name=tool_name, mode=mode, success=str(success).lower()).inc()


def track_ticket(tenant_id: str, status: str) -> None:
    ticket_outcomes.labels(tenant_id=tenant_id, status=status).inc()


def track_escalation(tenant_id: str, reason: str) -> None:
    escalations.labels(tenant_id=tenant_id, reason=reason).inc()


def track_approval(tenant_id: str, status: str) -> None:
    approvals.labels(tenant_id=tenant_id, status=status).inc()


def track_fallback(tenant_id: str, kind: str) -> None:
    fallback_replies.labels(tenant_id=tenant_id, kind=kind).inc()


def track_feedback(rating: int) -> None:
    feedback_ratings.observe(rating)


__all__ = [
    'setup_telemetry',
    'track_turn',
    'track_tool_usage',
    'track_ticket',
    'track_escalation',
    'track_approval',
    'track_fallback',
    'track_feedback'
]
