"""
FastAPI application entry point.
Builds the orchestration components at startup and exposes the HTTP API.

Version: 1.0.0
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError as FastAPIValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .agents import (
    ConversationOrchestrator,
    EscalationEngine,
    FAQReasoner,
    FallbackResponder,
    TicketResolver
)
from .api.routes import approvals, chat, health, sessions
from .approvals import ApprovalNotifier, InMemoryApprovalStore, RedisApprovalStore
from .config import SessionStoreType, Settings, settings as default_settings
from .config.policy_settings import policy_settings
from .config.tenant_config import (
    CachedTenantConfigSource,
    FileTenantConfigSource,
    InMemoryTenantConfigSource,
    sample_tenant_configs
)
from .exceptions import OrchestratorError
from .services import (
    ChromaVectorIndex,
    EmbeddingService,
    GenerationService,
    KnowledgeRetriever
)
from .session import create_session_store
from .tools import ToolInvoker, ToolRegistry, handler_registry
from .utils.middleware import ErrorHandlingMiddleware, RequestIDMiddleware, TimingMiddleware
from .utils.telemetry import setup_telemetry

logging.basicConfig(
    level=getattr(logging, default_settings.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

ComponentFactory = Callable[[Settings], Awaitable[Dict[str, Any]]]

# Closed on shutdown in this order
SHUTDOWN_ORDER = [
    "tool_invoker",
    "notifier",
    "generation_service",
    "embedding_service",
    "vector_index",
    "tenant_source",
    "approval_store",
    "session_store"
]


async def build_components(app_settings: Settings) -> Dict[str, Any]:
    """
    Wire the production components from settings.

    Returns:
        Mapping of component name to instance; stored on ``app.state``
    """
    if app_settings.session_store_type == SessionStoreType.REDIS:
        session_store = create_session_store(
            "redis",
            redis_url=app_settings.redis_url,
            key_prefix=app_settings.redis_key_prefix,
            history_cap=app_settings.session_history_cap,
            max_connections=app_settings.redis_max_connections,
            socket_timeout=app_settings.redis_socket_timeout,
            retry_attempts=app_settings.redis_retry_attempts,
            lock_timeout=app_settings.session_lock_timeout_seconds,
            lock_wait_timeout=app_settings.session_lock_wait_seconds,
            lock_retry_attempts=app_settings.session_lock_retry_attempts
        )
        approval_store = RedisApprovalStore(
            session_store.client,
            key_prefix=app_settings.redis_key_prefix
        )
    else:
        session_store = create_session_store(
            "in_memory",
            history_cap=app_settings.session_history_cap
        )
        approval_store = InMemoryApprovalStore()
    logger.info(f"✓ Session store: {type(session_store).__name__}")

    if app_settings.tenant_config_dir:
        tenant_source = CachedTenantConfigSource(
            FileTenantConfigSource(app_settings.tenant_config_dir),
            ttl=app_settings.tenant_config_cache_ttl
        )
    else:
        logger.warning("No tenant_config_dir set, serving sample tenants")
        samples = sample_tenant_configs()
        for config in samples.values():
            for warning in ToolRegistry.for_tenant(config).validate(handler_registry):
                logger.warning(warning)
        tenant_source = InMemoryTenantConfigSource(samples)

    embedding_service = EmbeddingService(settings=app_settings)
    vector_index = ChromaVectorIndex(
        persist_directory=None if app_settings.chroma_host else app_settings.chroma_persist_directory,
        host=app_settings.chroma_host,
        port=app_settings.chroma_port,
        timeout=app_settings.vector_timeout
    )
    knowledge_retriever = KnowledgeRetriever(embedding_service, vector_index)
    generation_service = GenerationService(settings=app_settings)
    tool_invoker = ToolInvoker(
        generation_service=generation_service,
        settings=app_settings,
        policy=policy_settings
    )
    notifier = ApprovalNotifier(timeout=app_settings.notification_timeout)
    escalation_engine = EscalationEngine(
        approval_store,
        notifier=notifier,
        policy=policy_settings,
        settings=app_settings
    )
    ticket_resolver = TicketResolver(
        generation_service,
        knowledge_retriever,
        tool_invoker,
        policy=policy_settings
    )
    faq_reasoner = FAQReasoner(knowledge_retriever, generation_service, policy=policy_settings)

    orchestrator = ConversationOrchestrator(
        session_store=session_store,
        tenant_source=tenant_source,
        knowledge_retriever=knowledge_retriever,
        generation_service=generation_service,
        tool_invoker=tool_invoker,
        escalation_engine=escalation_engine,
        ticket_resolver=ticket_resolver,
        faq_reasoner=faq_reasoner,
        fallback=FallbackResponder(policy_settings),
        policy=policy_settings
    )

    return {
        "session_store": session_store,
        "approval_store": approval_store,
        "tenant_source": tenant_source,
        "embedding_service": embedding_service,
        "vector_index": vector_index,
        "knowledge_retriever": knowledge_retriever,
        "generation_service": generation_service,
        "tool_invoker": tool_invoker,
        "notifier": notifier,
        "escalation_engine": escalation_engine,
        "ticket_resolver": ticket_resolver,
        "faq_reasoner": faq_reasoner,
        "orchestrator": orchestrator
    }


async def close_components(components: Dict[str, Any]) -> None:
    for name in SHUTDOWN_ORDER:
        component = components.get(name)
        if component is None:
            continue
        try:
            await component.close()
            logger.info(f"✓ Closed {name}")
        except Exception as e:
            logger.error(f"Error closing {name}: {e}")


def _error_body(request: Request, error: str, message: str, **extra) -> Dict[str, Any]:
    return {
        "error": error,
        "message": message,
        "request_id": getattr(request.state, "request_id", "unknown"),
        **extra
    }


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(OrchestratorError)
    async def orchestrator_error_handler(request: Request, exc: OrchestratorError) -> JSONResponse:
        level = logging.ERROR if exc.status_code >= 500 else logging.INFO
        logger.log(
            level,
            f"{exc.error_code}: {exc.message}",
            extra={"request_id": getattr(request.state, "request_id", None)}
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, exc.error_code, exc.message)
        )

    @app.exception_handler(FastAPIValidationError)
    async def validation_error_handler(request: Request, exc: FastAPIValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content=_error_body(
                request,
                "validation_error",
                "Invalid request",
                details=jsonable_encoder(exc.errors())
            )
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request, "http_error", str(exc.detail)),
            headers=getattr(exc, "headers", None)
        )


def create_app(
    app_settings: Optional[Settings] = None,
    component_factory: ComponentFactory = build_components
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        app_settings: Settings (defaults to the environment)
        component_factory: Builds the components at startup
    """
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info(f"Starting {app_settings.app_name} v{__version__}")
        logger.info(f"Environment: {app_settings.environment}")
        logger.info("=" * 60)

        components = await component_factory(app_settings)
        for name, component in components.items():
            setattr(app.state, name, component)

        logger.info("=" * 60)
        logger.info("✓ Application started successfully")
        logger.info("=" * 60)

        yield

        logger.info("Shutting down application...")
        await close_components(components)
        logger.info("✓ Application shutdown complete")

    app = FastAPI(
        title=app_settings.app_name,
        version=__version__,
        description="Multi-tenant conversational support with ticket resolution, approvals and tools",
        lifespan=lifespan,
        docs_url="/docs" if app_settings.debug else None,
        redoc_url=None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=app_settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"]
    )

    # Applied in reverse: request id is set before errors are handled
    app.add_middleware(ErrorHandlingMiddleware, debug=app_settings.debug)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(TimingMiddleware)

    if app_settings.enable_telemetry:
        setup_telemetry(app)

    register_exception_handlers(app)

    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(chat.router, prefix=app_settings.api_prefix, tags=["Chat"])
    app.include_router(approvals.router, prefix=app_settings.api_prefix, tags=["Approvals"])
    app.include_router(sessions.router, prefix=app_settings.api_prefix, tags=["Sessions"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "support_orchestrator.main:app",
        host=default_settings.api_host,
        port=default_settings.api_port,
        reload=default_settings.debug,
        log_level=default_settings.log_level.lower()
    )
