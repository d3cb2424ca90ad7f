"""
Health check API routes.
"""
import logging
from datetime import datetime

from fastapi import APIRouter, Request

from ... import __version__
from ...models.schemas import HealthResponse
from ...tools.tool_call_wrapper import get_circuit_breaker_metrics

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Readiness of the session store plus circuit breaker states.

    Returns:
        ``healthy`` or ``degraded``; always HTTP 200
    """
    services = {}
    overall_status = "healthy"

    session_store = getattr(request.app.state, "session_store", None)
    if session_store is None:
        services["session_store"] = "not_initialized"
        overall_status = "degraded"
    else:
        health = await session_store.health_check()
        if health.get("healthy"):
            services["session_store"] = "healthy"
        else:
            logger.warning(f"Session store health: {health}")
            services["session_store"] = "unhealthy"
            overall_status = "degraded"

    services["orchestrator"] = (
        "healthy" if getattr(request.app.state, "orchestrator", None) is not None
        else "not_initialized"
    )
    if services["orchestrator"] != "healthy":
        overall_status = "degraded"

    breakers = get_circuit_breaker_metrics()
    if any(state["state"] == "open" for state in breakers.values()):
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        timestamp=datetime.utcnow(),
        version=__version__,
        services=services,
        circuit_breakers=breakers
    )


@router.get("/live")
async def liveness_check():
    """
    Simple liveness check.

    Returns:
        Basic alive status
    """
    return {"status": "alive", "timestamp": datetime.utcnow().isoformat()}
