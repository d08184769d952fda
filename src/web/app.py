"""
FastAPI app for the ClearTrack connection service.

Routes:
- /api/connections : client link, practitioner roster, link checks
- /api/intake      : code requests, invites, questionnaire, decisions, applications
- /api/admin       : practitioner status, application review, fraud sweep
- /health          : liveness, readiness and dependency status

Start-up configures logging, validates security settings, prepares the
Record Store schema, connects the Redis-backed local cache, registers the
linking services and starts the periodic reconciliation loop. When services
are already registered (tests, embedding) start-up leaves them alone.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cache.local_cache import LocalCache
from cache.redis_client import close_redis_client, get_redis_client
from config.logging_config import configure_logging, request_id_var
from config.settings import Settings, get_settings, validate_startup_security
from core.service_registry import services
from database.async_engine import close_database, init_database
from domain.event_bus import LoggingEventHandler, get_event_bus
from linking.errors import LinkingError
from linking.services import (
    LINKING_SERVICES,
    build_linking_services,
    register_linking_services,
)

from web.common import (
    format_error_response,
    generate_request_id,
    get_request_id,
    linking_error_response,
)
from web.routers import admin_router, connections_router, health_router, intake_router

logger = logging.getLogger(__name__)


def _validate_security(settings: Settings) -> None:
    if settings.is_production:
        # In production, fail fast if security is misconfigured
        validate_startup_security(settings, exit_on_failure=True)
        logger.info("[SECURITY] Production security validation PASSED")
        return

    errors = settings.validate_production_security()
    if errors:
        logger.warning(
            f"[SECURITY] Development mode - {len(errors)} security settings "
            "would fail in production. Set APP_ENVIRONMENT=production to enforce."
        )


async def _connect_local_cache(settings: Settings) -> Optional[LocalCache]:
    if not settings.enable_cache:
        logger.info("Local cache disabled (APP_ENABLE_CACHE=false)")
        return None

    try:
        redis_client = await get_redis_client()
    except Exception as e:
        logger.warning(f"Local cache unavailable, continuing without it: {e}")
        return None
    return LocalCache(redis_client, device_id=settings.linking.device_id)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)
    _validate_security(settings)

    owns_services = not services.has(LINKING_SERVICES)
    stop_event = asyncio.Event()
    reconcile_task = None

    if owns_services:
        await init_database()
        cache = await _connect_local_cache(settings)
        linking = build_linking_services(cache=cache, settings=settings)
        register_linking_services(linking)
        get_event_bus().subscribe_all(LoggingEventHandler().handle)

        if linking.reconciler is not None:
            reconcile_task = asyncio.create_task(
                linking.reconciler.run_periodic(settings.linking.reconcile_interval, stop_event)
            )

    logger.info(f"{settings.name} {settings.version} started ({settings.environment})")
    try:
        yield
    finally:
        if reconcile_task is not None:
            stop_event.set()
            await reconcile_task
        if owns_services:
            services.unregister(LINKING_SERVICES)
            await close_redis_client()
            await close_database()
        logger.info(f"{settings.name} stopped")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application."""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.name,
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(LinkingError)
    async def linking_error_handler(request: Request, exc: LinkingError):
        return linking_error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors with readable field paths."""
        errors = []
        for error in exc.errors():
            field = " -> ".join(str(loc) for loc in error["loc"])
            errors.append(f"{field}: {error['msg']}")

        return JSONResponse(
            status_code=422,
            content=format_error_response(
                "Invalid request data",
                code="invalid_input",
                details={"validation_errors": errors},
                request_id=get_request_id(request),
            ),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Catch-all handler for unexpected exceptions."""
        logger.exception(f"Unexpected error: {exc}")
        return JSONResponse(
            status_code=500,
            content=format_error_response(
                "An unexpected error occurred",
                code="internal_error",
                details={"type": type(exc).__name__},
                request_id=get_request_id(request),
            ),
        )

    app.include_router(connections_router)
    app.include_router(intake_router)
    app.include_router(admin_router)
    app.include_router(health_router)

    return app


app = create_app()
