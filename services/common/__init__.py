"""Shared plumbing for the store service: settings, database sessions, logging and telemetry."""

from .config import DEFAULT_APP_NAME, ServiceSettings, get_settings
from .database import (
    create_engine,
    dispose_engines,
    ensure_schema,
    get_session_factory,
    lifespan_session,
    resolve_database_url,
    resolve_elevated_database_url,
)
from .instrumentation import build_app, instrument_app
from .logging import configure_logging
from .tracing import get_tracer

__all__ = [
    "DEFAULT_APP_NAME",
    "ServiceSettings",
    "build_app",
    "configure_logging",
    "create_engine",
    "dispose_engines",
    "ensure_schema",
    "get_session_factory",
    "get_settings",
    "get_tracer",
    "instrument_app",
    "lifespan_session",
    "resolve_database_url",
    "resolve_elevated_database_url",
]
