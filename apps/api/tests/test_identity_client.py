"""Tests for caller identity resolution."""
from __future__ import annotations

import httpx
import pytest

from app.core.errors import Unauthenticated
from app.services.identity import IdentityClient


@pytest.mark.asyncio
async def test_token_prefix_is_user_id_without_profile_api() -> None:
    identity = await IdentityClient().resolve("1711|s3cr3t")

    assert identity.user_id == "1711"
    assert identity.token == "1711|s3cr3t"


@pytest.mark.asyncio
async def test_missing_or_malformed_token_is_rejected() -> None:
    client = IdentityClient()

    with pytest.raises(Unauthenticated):
        await client.resolve(None)
    with pytest.raises(Unauthenticated):
        await client.resolve("|only-secret")


@pytest.mark.asyncio
async def test_profile_api_supplies_uuid_and_name() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/client/profile"
        assert request.headers["Authorization"] == "Bearer 9|abc"
        return httpx.Response(
            200,
            json={
                "data": {
                    "uuid": "3f8a-uuid",
                    "client_profile": {"first_name": "Anna", "last_name": "Nowak"},
                }
            },
        )

    client = IdentityClient(
        profile_base_url="https://profiles.test/api",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    identity = await client.resolve("9|abc")

    assert identity.user_id == "3f8a-uuid"
    assert identity.name == "Anna Nowak"


@pytest.mark.asyncio
async def test_profile_rejection_is_unauthenticated() -> None:
    client = IdentityClient(
        profile_base_url="https://profiles.test/api",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(401))),
    )

    with pytest.raises(Unauthenticated):
        await client.resolve("9|abc")
