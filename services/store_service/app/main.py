from contextlib import asynccontextmanager

from fastapi import FastAPI
from httpx import AsyncClient

from services.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    configure_logging,
    dispose_engines,
    ensure_schema,
    get_session_factory,
    resolve_database_url,
    resolve_elevated_database_url,
)

from .api.health import router as health_router
from .api.inventory import router as inventory_router
from .api.orders import router as orders_router
from .api.recommendations import router as recommendations_router
from .api.reports import router as reports_router
from .api.stock import router as stock_router
from .auth import IdentityVerifier, RemoteIdentityVerifier
from .models import Base
from .recommendations import RecommendationClient, RecommendationClientProtocol

SERVICE_NAME = "Store Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./store_service.db"


def create_app(
    settings: ServiceSettings | None = None,
    *,
    identity_verifier: IdentityVerifier | None = None,
    recommendation_client: RecommendationClientProtocol | None = None,
) -> FastAPI:
    """Create the Store Service FastAPI application."""

    resolved_settings = settings or ServiceSettings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    session_factory = get_session_factory(resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL))
    elevated_database_url = resolve_elevated_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    elevated_session_factory = get_session_factory(elevated_database_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        remote_verifier: RemoteIdentityVerifier | None = None
        remote_generator: RecommendationClient | None = None
        app.state.session_factory = session_factory
        app.state.elevated_session_factory = elevated_session_factory
        try:
            if resolved_settings.create_schema_on_startup:
                await ensure_schema(elevated_database_url, Base.metadata)
            if identity_verifier is not None:
                app.state.identity_verifier = identity_verifier
            else:
                remote_verifier = RemoteIdentityVerifier(
                    client=AsyncClient(timeout=resolved_settings.auth_timeout_seconds),
                    base_url=resolved_settings.auth_service_url,
                    api_key=resolved_settings.auth_api_key,
                )
                app.state.identity_verifier = remote_verifier
            if recommendation_client is not None:
                app.state.recommendation_client = recommendation_client
            else:
                remote_generator = RecommendationClient(
                    client=AsyncClient(timeout=resolved_settings.recommendation_timeout_seconds),
                    api_url=resolved_settings.recommendation_api_url,
                    api_key=resolved_settings.recommendation_api_key,
                    model=resolved_settings.recommendation_model,
                    temperature=resolved_settings.recommendation_temperature,
                    max_tokens=resolved_settings.recommendation_max_tokens,
                )
                app.state.recommendation_client = remote_generator
            yield
        finally:
            app.state.session_factory = None  # type: ignore[assignment]
            app.state.elevated_session_factory = None  # type: ignore[assignment]
            app.state.identity_verifier = None
            app.state.recommendation_client = None
            if remote_verifier is not None:
                await remote_verifier.close()
            if remote_generator is not None:
                await remote_generator.close()
            await dispose_engines()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.include_router(health_router)
    app.include_router(inventory_router)
    app.include_router(stock_router)
    app.include_router(orders_router)
    app.include_router(reports_router)
    app.include_router(recommendations_router)
    return app


app = create_app()
