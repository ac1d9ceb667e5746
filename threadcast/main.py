"""Threadcast API application: lifespan wiring, error envelopes and entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from threadcast.comments.repository import (
    CassandraCommentRepository,
    CommentRepository,
    InMemoryCommentRepository,
)
from threadcast.comments.router import router as comments_router
from threadcast.comments.service import CommentService
from threadcast.config import Settings, get_settings
from threadcast.core.context import get_request_id
from threadcast.core.database import init_async_cassandra, shutdown_async_cassandra
from threadcast.core.logging import configure_structlog, get_logger
from threadcast.core.middleware import RequestContextMiddleware
from threadcast.core.redis import init_redis, shutdown_redis
from threadcast.directory import CassandraDirectory, Directory, InMemoryDirectory
from threadcast.health.router import router as health_router
from threadcast.realtime.broadcaster import (
    Broadcaster,
    LocalBroadcaster,
    RedisBroadcaster,
)
from threadcast.realtime.websocket_router import router as comments_ws_router


# Logging is configured at import so module loggers render consistently
settings = get_settings()
configure_structlog(settings, log_dir=Path(settings.log_dir))

logger = get_logger(__name__)


async def init_storage(
    settings: Settings,
) -> tuple[CommentRepository, Directory] | None:
    """Build the comment repository and directory for the configured backend.

    Returns None when Cassandra is configured but unreachable; comment
    routes then answer 503.
    """
    if settings.storage_backend == "memory":
        logger.info("storage_initialized", backend="memory")
        return InMemoryCommentRepository(), InMemoryDirectory()

    try:
        session = await init_async_cassandra()
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )
        return None

    logger.info("storage_initialized", backend="cassandra")
    return (
        CassandraCommentRepository(session, settings.cassandra_keyspace),
        CassandraDirectory(session, settings.cassandra_keyspace),
    )


async def init_broadcaster(settings: Settings) -> Broadcaster:
    """Redis fan-out when configured and reachable, in-process otherwise."""
    if settings.realtime_backend == "redis":
        try:
            redis_client = await init_redis()
        except Exception as e:
            logger.warning(
                "redis_init_skipped",
                error=str(e),
                message="Falling back to in-process realtime fan-out",
            )
        else:
            logger.info("broadcaster_initialized", backend="redis")
            return RedisBroadcaster(redis_client, settings.realtime_queue_size)

    logger.info("broadcaster_initialized", backend="local")
    return LocalBroadcaster(settings.realtime_queue_size)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Wire storage, fan-out and the comment service onto app.state."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    broadcaster = await init_broadcaster(settings)
    app.state.broadcaster = broadcaster
    app.state.comment_service = None
    app.state.directory = None

    storage = await init_storage(settings)
    if storage is not None:
        repository, directory = storage
        app.state.directory = directory
        app.state.comment_service = CommentService(
            repository,
            directory,
            broadcaster,
            max_length=settings.comment_max_length,
            dedupe_reports=settings.comment_dedupe_reports,
            search_scan_limit=settings.comment_search_scan_limit,
        )
        logger.info("comment_service_initialized")

    yield

    # Shutdown
    logger.info("shutting_down_application")
    if app.state.comment_service is not None:
        await app.state.comment_service.mentions.drain()
    await broadcaster.close()
    await shutdown_redis()
    if settings.storage_backend == "cassandra":
        await shutdown_async_cassandra()


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None) or get_request_id()


def _error_response(
    request: Request,
    status_code: int,
    message: str,
    *,
    headers: dict[str, str] | None = None,
    **extra,
) -> ORJSONResponse:
    """JSON error envelope shared by every handler."""
    body = {
        "error": True,
        "message": message,
        "status_code": status_code,
        "request_id": _request_id(request),
        **extra,
    }
    return ORJSONResponse(status_code=status_code, content=body, headers=headers)


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> ORJSONResponse:
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=str(exc.detail),
        path=request.url.path,
        method=request.method,
    )
    # 5xx details are never echoed to callers
    message = (
        str(exc.detail)
        if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
        else "Internal server error"
    )
    return _error_response(
        request, exc.status_code, message, headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> ORJSONResponse:
    errors = exc.errors()
    logger.warning(
        "validation_error",
        errors=errors,
        path=request.url.path,
        method=request.method,
    )
    details = [
        {
            "field": ".".join(str(loc) for loc in err.get("loc", [])),
            "message": err.get("msg", "Invalid value"),
        }
        for err in errors
    ]
    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        details=details,
    )


async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> ORJSONResponse:
    logger.exception(
        "unhandled_exception",
        error_type=type(exc).__name__,
        error_message=str(exc),
        path=request.url.path,
        method=request.method,
    )
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred. Please try again later.",
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


def create_app() -> FastAPI:
    """Application factory used by uvicorn and the test client."""
    settings = get_settings()
    expose_docs = settings.is_development

    # debug stays off so Starlette never renders tracebacks in responses
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Threaded comments with realtime updates",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if expose_docs else None,
        redoc_url="/redoc" if expose_docs else None,
        openapi_url="/openapi.json" if expose_docs else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )
    # Added last so it wraps CORS and sees every request
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    register_exception_handlers(app)

    for router in (health_router, comments_router, comments_ws_router):
        app.include_router(router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        return {
            "message": "Threadcast API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "threadcast.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
        ws_ping_interval=settings.realtime_ping_interval,
    )
