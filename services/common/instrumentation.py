from typing import Any, cast

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from .config import ServiceSettings
from .tracing import configure_tracing

# Probe and scrape traffic is not part of the request metrics.
_UNMEASURED_HANDLERS = ["/health", "/metrics"]


def instrument_app(app: FastAPI, settings: ServiceSettings) -> None:
    """Attach the Prometheus exporter when metrics are enabled and remember the settings."""

    if settings.enable_metrics:
        instrumentator = Instrumentator(
            should_group_status_codes=False,
            excluded_handlers=_UNMEASURED_HANDLERS,
        )
        instrumentator.instrument(app).expose(app, include_in_schema=False)

    state = cast(Any, app.state)
    state.settings = settings


def build_app(settings: ServiceSettings, **extra_kwargs: Any) -> FastAPI:
    """Create a FastAPI instance with service metadata, metrics and tracing."""

    app = FastAPI(
        title=settings.app_name,
        version=settings.service_version,
        **extra_kwargs,
    )
    instrument_app(app, settings)
    configure_tracing(app, settings)
    return app
