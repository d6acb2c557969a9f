"""Recommendation generation endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import CallerIdentity
from ..dependencies import get_elevated_session, get_optional_caller, get_recommendation_client
from ..errors import ExternalServiceError, ValidationError
from ..recommendations import ContextBuilder, RecommendationClientProtocol, RecommendationService, parse_role
from ..repository import InventoryRepository, OrderRepository
from ..schemas import RecommendationRequest

router = APIRouter(prefix="/recommendations", tags=["recommendations"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("")
async def recommend(
    payload: RecommendationRequest,
    request: Request,
    caller: CallerIdentity | None = Depends(get_optional_caller),
    client: RecommendationClientProtocol | None = Depends(get_recommendation_client),
    session: AsyncSession = Depends(get_elevated_session),
):
    if caller is None:
        return _error(status.HTTP_401_UNAUTHORIZED, "Unauthorized")
    try:
        role = parse_role(payload.role)
    except ValidationError as exc:
        return _error(status.HTTP_400_BAD_REQUEST, exc.message)
    if payload.user_id is not None and payload.user_id != caller.user_id:
        return _error(status.HTTP_403_FORBIDDEN, "Forbidden")
    if role == "owner" and not caller.is_manager:
        return _error(status.HTTP_403_FORBIDDEN, "Forbidden")
    if client is None:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Recommendation service is not configured")

    settings = request.app.state.settings
    builder = ContextBuilder(
        OrderRepository(session),
        InventoryRepository(session),
        max_chars=settings.recommendation_context_max_chars,
    )
    try:
        recommendations = await RecommendationService(builder, client).recommend(role, caller.user_id)
    except ExternalServiceError as exc:
        return _error(status.HTTP_502_BAD_GATEWAY, exc.message)

    return {
        "recommendations": [item.model_dump() for item in recommendations],
        "role": role,
    }
