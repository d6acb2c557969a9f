"""Caller identity resolution.

Authentication itself is external: a bearer token is exchanged for a user id
with the identity service, and the caller's role is read from ``profiles``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from .errors import ExternalServiceError
from .repository import OrderRepository

logger = logging.getLogger(__name__)

ROLES = ("owner", "staff", "client", "unknown")
STORE_MANAGERS = frozenset({"owner", "staff"})


@dataclass(slots=True, frozen=True)
class CallerIdentity:
    user_id: str
    role: str = "unknown"

    @property
    def is_manager(self) -> bool:
        return self.role in STORE_MANAGERS


class IdentityVerifier(Protocol):
    async def verify(self, token: str) -> str | None:
        """Return the user id behind ``token`` or ``None`` when it is not valid."""
        ...


def _normalize_base(url: str | None) -> str | None:
    if not url:
        return None
    return url.rstrip("/")


class RemoteIdentityVerifier:
    """Resolves bearer tokens through the identity service's user endpoint."""

    def __init__(self, *, client: httpx.AsyncClient, base_url: str | None, api_key: str | None) -> None:
        self._client = client
        self._base_url = _normalize_base(base_url)
        self._api_key = api_key

    async def close(self) -> None:
        await self._client.aclose()

    async def verify(self, token: str) -> str | None:
        if not token or self._base_url is None:
            return None
        headers = {"Authorization": f"Bearer {token}"}
        if self._api_key:
            headers["apikey"] = self._api_key
        try:
            response = await self._client.get(f"{self._base_url}/auth/v1/user", headers=headers)
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"identity service unreachable: {exc.__class__.__name__}") from exc
        if response.status_code in (401, 403):
            return None
        if response.status_code >= 400:
            raise ExternalServiceError(f"identity service returned {response.status_code}")
        try:
            user_id = response.json().get("id")
        except (ValueError, AttributeError):
            logger.warning("Identity service returned an unexpected payload")
            return None
        return str(user_id) if user_id else None


def extract_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def resolve_caller(
    verifier: IdentityVerifier,
    repository: OrderRepository,
    authorization: str | None,
) -> CallerIdentity | None:
    token = extract_bearer(authorization)
    if token is None:
        return None
    user_id = await verifier.verify(token)
    if user_id is None:
        return None
    profile = await repository.get_profile(user_id)
    role = profile.role if profile is not None and profile.role in ROLES else "unknown"
    return CallerIdentity(user_id=user_id, role=role)
