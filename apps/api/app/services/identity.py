"""Caller identity lookup against the external profile API."""
from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from ..core.errors import Unauthenticated
from ..core.logging import mask_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CallerIdentity:
    user_id: str
    name: str
    token: str


def _user_id_from_token(token: str) -> str:
    """Tokens look like ``1711|secret``; the prefix is the user id."""

    user_id, _, _ = token.partition("|")
    return user_id.strip()


def _display_name(profile: dict, fallback: str = "User") -> str:
    client_profile = profile.get("client_profile") or {}
    first = (client_profile.get("first_name") or "").strip()
    last = (client_profile.get("last_name") or "").strip()
    if first and last:
        return f"{first} {last}"
    return first or last or fallback


class IdentityClient:
    """Resolve a caller token to a stable user id and display name."""

    def __init__(
        self,
        *,
        profile_base_url: str = "",
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = profile_base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def resolve(self, token: str | None) -> CallerIdentity:
        if not token:
            raise Unauthenticated("Provide X-API-TOKEN header or Authorization Bearer token")

        if not self._base_url:
            user_id = _user_id_from_token(token)
            if not user_id:
                raise Unauthenticated("Invalid token")
            return CallerIdentity(user_id=user_id, name="User", token=token)

        try:
            response = await self._client.get(
                f"{self._base_url}/client/profile",
                headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            logger.warning("Profile lookup failed for %s: %s", mask_token(token), exc)
            raise Unauthenticated() from exc

        if response.is_error:
            logger.warning("Profile lookup for %s returned %s", mask_token(token), response.status_code)
            raise Unauthenticated()

        try:
            profile = response.json()
        except ValueError as exc:
            raise Unauthenticated() from exc

        payload = profile.get("data", profile) if isinstance(profile, dict) else {}
        user_id = payload.get("uuid") if isinstance(payload, dict) else None
        if not user_id:
            raise Unauthenticated("Profile has no stable user id")
        return CallerIdentity(user_id=str(user_id), name=_display_name(payload), token=token)
