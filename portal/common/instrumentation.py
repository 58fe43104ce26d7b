from typing import Any, cast

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from .config import ServiceSettings
from .tracing import configure_tracing

_UNMETERED_HANDLERS = ["/health", "/metrics"]


def instrument_app(app: FastAPI, settings: ServiceSettings) -> None:
    """Expose Prometheus metrics when enabled and remember the settings on the app."""

    if settings.enable_metrics:
        Instrumentator(
            should_group_status_codes=False,
            excluded_handlers=_UNMETERED_HANDLERS,
        ).instrument(app).expose(app, include_in_schema=False)

    state = cast(Any, app.state)
    state.settings = settings


def build_app(settings: ServiceSettings, **extra_kwargs: Any) -> FastAPI:
    """Create a FastAPI instance with portal metadata and instrumentation."""

    app = FastAPI(title=settings.app_name, version="0.1.0", **extra_kwargs)
    instrument_app(app, settings)
    configure_tracing(app, settings)
    return app
