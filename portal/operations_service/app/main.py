from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from portal.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    configure_logging,
    dispose_engines,
    get_session_factory,
    resolve_database_url,
    shutdown_tracing,
)

from .api.auth import router as auth_router
from .api.collections import router as collections_router
from .api.customers import router as customers_router
from .api.deliveries import router as deliveries_router
from .api.health import router as health_router
from .api.products import router as products_router
from .api.users import router as users_router
from .api.waitlist import router as waitlist_router
from .api.workorders import router as workorders_router
from .services import WorkorderEngine

SERVICE_NAME = "Operations Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./operations_service.db"


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = str(first.get("msg", "Invalid value"))
    return f"{location}: {message}" if location else message


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": {"kind": "ValidationError", "message": _describe_validation_error(exc)}},
    )


def create_app(settings: ServiceSettings | None = None) -> FastAPI:
    """Create the Operations Service FastAPI application."""

    resolved_settings = settings or ServiceSettings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.session_factory = session_factory
        app.state.workorder_engine = WorkorderEngine(
            session_factory,
            business_timezone=resolved_settings.business_timezone,
        )
        try:
            yield
        finally:
            app.state.session_factory = None  # type: ignore[assignment]
            app.state.workorder_engine = None
            await dispose_engines()
            shutdown_tracing()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.include_router(health_router)
    app.include_router(workorders_router)
    app.include_router(deliveries_router)
    app.include_router(collections_router)
    app.include_router(customers_router)
    app.include_router(products_router)
    app.include_router(waitlist_router)
    app.include_router(users_router)
    app.include_router(auth_router)
    return app


app = create_app()
