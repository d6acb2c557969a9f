"""Dependency helpers for the store service."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import cast

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import lifespan_session

from .auth import CallerIdentity, IdentityVerifier, resolve_caller
from .errors import ExternalServiceError, PartialOrderError, StoreError, http_status_for
from .ledger import InventoryLedger
from .recommendations import RecommendationClientProtocol
from .repository import InventoryRepository, OrderRepository


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield a session bound to the restricted credentials."""

    session_factory: async_sessionmaker[AsyncSession] = request.app.state.session_factory
    async with lifespan_session(session_factory) as session:
        yield session


async def get_elevated_session(request: Request) -> AsyncIterator[AsyncSession]:
    """Yield a session bound to the elevated credentials."""

    session_factory: async_sessionmaker[AsyncSession] = request.app.state.elevated_session_factory
    async with lifespan_session(session_factory) as session:
        yield session


def get_elevated_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.elevated_session_factory


def get_inventory_repository(session: AsyncSession = Depends(get_session)) -> InventoryRepository:
    return InventoryRepository(session)


def get_order_repository(session: AsyncSession = Depends(get_session)) -> OrderRepository:
    return OrderRepository(session)


def get_ledger(
    request: Request,
    repository: InventoryRepository = Depends(get_inventory_repository),
) -> InventoryLedger:
    settings = request.app.state.settings
    return InventoryLedger(
        repository,
        max_attempts=settings.decrement_max_attempts,
        backoff_seconds=settings.decrement_backoff_seconds,
    )


def get_identity_verifier(request: Request) -> IdentityVerifier:
    verifier = getattr(request.app.state, "identity_verifier", None)
    if verifier is None or not hasattr(verifier, "verify"):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Identity verification is not configured",
        )
    return cast(IdentityVerifier, verifier)


def get_recommendation_client(request: Request) -> RecommendationClientProtocol | None:
    client = getattr(request.app.state, "recommendation_client", None)
    if client is None or not hasattr(client, "complete"):
        return None
    return cast(RecommendationClientProtocol, client)


async def get_optional_caller(
    authorization: str | None = Header(default=None),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
    repository: OrderRepository = Depends(get_order_repository),
) -> CallerIdentity | None:
    try:
        return await resolve_caller(verifier, repository, authorization)
    except ExternalServiceError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc


async def get_caller(caller: CallerIdentity | None = Depends(get_optional_caller)) -> CallerIdentity:
    if caller is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return caller


def require_roles(*roles: str) -> Callable[..., Awaitable[CallerIdentity]]:
    allowed = frozenset(roles)

    async def _dependency(caller: CallerIdentity = Depends(get_caller)) -> CallerIdentity:
        if caller.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return caller

    return _dependency


def as_http_exception(exc: StoreError) -> HTTPException:
    detail: object = exc.message
    if isinstance(exc, PartialOrderError):
        detail = {"message": exc.message, "orderId": exc.order_id, "retrySafe": exc.retry_safe}
    return HTTPException(status_code=http_status_for(exc), detail=detail)
