from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from api.middleware.exception_handlers import register_exception_handlers
from api.middleware.request_context import RequestContextMiddleware
from api.routes import router as api_router
from api.services.turn_registry import ActiveTurns
from core.constants import get_settings
from integrations.model_gateway import OpenAIModelGateway
from tools import build_default_registry
from utils.client_factory import create_http_client, create_openai_client_from_settings
from utils.db_utils import check_pool_health, create_database_pool, graceful_pool_close
from utils.logger import configure_uvicorn_logging, logger

# Settings are loaded via Pydantic Settings with environment-specific file support
# (.env, .env.{APP_ENV}, .env.local)
settings = get_settings()

if settings.debug:
    from core.constants import _get_env_files

    logger.info(f"Env files: {[f.name for f in _get_env_files()]}")
    logger.info(
        f"Settings: app_env={settings.app_env}, provider={settings.api_provider}, "
        f"db_pool=[{settings.db_pool_min_size},{settings.db_pool_max_size}], max_steps={settings.max_steps}"
    )

# Configure uvicorn logging at module level to ensure workers use it
configure_uvicorn_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown with graceful handling."""
    # Model client gets the long streaming read timeout; tools share a second client
    model_http_client = create_http_client(read_timeout=settings.http_read_timeout)
    openai_client = create_openai_client_from_settings(settings, http_client=model_http_client)
    app.state.model_gateway = OpenAIModelGateway(openai_client, temperature=settings.model_temperature)
    app.state.http_client = create_http_client(read_timeout=settings.search_timeout)
    app.state.tool_registry = build_default_registry()
    app.state.active_turns = ActiveTurns()
    logger.info(f"Model gateway ready ({settings.api_provider}), tools: {app.state.tool_registry.names}")

    app.state.db_pool = await create_database_pool(
        dsn=settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout,
        connection_timeout=settings.db_connection_timeout,
    )

    # Verify database connectivity
    health = await check_pool_health(app.state.db_pool)
    if not health["healthy"]:
        logger.error("Database health check failed during startup")
        raise RuntimeError("Database connection failed")
    logger.info(f"Database pool healthy: {health}")

    try:
        yield
    finally:
        logger.info("Initiating graceful shutdown sequence")

        # Phase 1: Cancel in-flight turns; each writes its terminal frame
        await app.state.active_turns.graceful_shutdown(timeout=settings.shutdown_timeout)

        # Phase 2: Close outbound clients
        await app.state.http_client.aclose()
        await openai_client.close()

        # Phase 3: Gracefully close database pool
        await graceful_pool_close(app.state.db_pool, timeout=settings.shutdown_timeout)


app = FastAPI(
    title="Quill Chat API",
    description="""
## Quill Chat API

Streaming chat with tool calling: weather lookup, document drafting and
editing, writing suggestions, and web search.

### Streaming
`POST /api/chat` answers with `application/x-ndjson`, one frame per line:
`{"seq", "stream", "type", "content"}`. Every response ends with a frame on
the `turn` stream of type `finish`.

### Authentication
Endpoints other than health checks and the model list require a JWT Bearer token.
""",
    version=settings.app_version,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Health", "description": "Health check endpoints for monitoring and orchestration"},
        {"name": "Chat", "description": "Streaming chat turns"},
        {"name": "Documents", "description": "Documents and suggestions created by tools"},
        {"name": "Configuration", "description": "Model catalog"},
    ],
)

# Register global exception handlers for consistent error responses
register_exception_handlers(app)

# Request context middleware (adds request ID tracking)
app.add_middleware(RequestContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")


@app.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        reload_dirs=["src"],
        log_config=None,
    )
