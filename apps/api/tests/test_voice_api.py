"""HTTP tests for the voice and admin routers."""
from __future__ import annotations

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app import deps
from app.main import app, install_services
from app.services.identity import IdentityClient
from app.services.provider import VoiceProviderClient

USER = {"X-API-TOKEN": "42|secret"}
OTHER_USER = {"Authorization": "Bearer 77|secret"}
START_BODY = {"agentId": "agent_1", "conversationId": "conv-1", "clientType": "web"}


class Upstream:
    def __init__(self) -> None:
        self.status_code = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="provider error")
        return httpx.Response(200, json={"token": "tok-1"})


@pytest.fixture
def upstream() -> Upstream:
    return Upstream()


@pytest_asyncio.fixture
async def client(test_settings, cache, session_factory, clock, upstream, monkeypatch):
    monkeypatch.setattr(deps.settings, "admin_api_key", "admin-secret")
    provider = VoiceProviderClient(
        api_key="test-key",
        base_url="https://provider.test/v1",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(upstream)),
    )
    identity = IdentityClient()
    install_services(
        app,
        config=test_settings,
        cache=cache,
        session_factory=session_factory,
        provider=provider,
        identity=identity,
        clock=clock,
    )
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http
    await identity.aclose()


async def _start(client: AsyncClient, headers=USER, body=START_BODY) -> dict:
    response = await client.post("/api/voice/conversations/start", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_agents_listing(client: AsyncClient) -> None:
    listing = await client.get("/api/voice/agents")
    single = await client.get("/api/voice/agents/agent_2")
    missing = await client.get("/api/voice/agents/agent_404")

    assert listing.json()["success"] is True
    assert len(listing.json()["data"]) == 5
    assert single.json()["data"]["specialization"] == "diet_consultation"
    assert missing.status_code == 404
    assert missing.json() == {"error": "agent_not_found", "message": "Agent agent_404 not found", "code": 404}


@pytest.mark.asyncio
async def test_conversation_round_trip(client: AsyncClient, clock) -> None:
    data = await _start(client)
    session_id = data["session_id"]

    assert data["conversation_data"]["token"] == "tok-1"
    assert data["conversation_data"]["connection_type"] == "webrtc"
    assert data["session"]["status"] == "starting"

    connected = await client.post(
        f"/api/voice/conversations/{session_id}/connected",
        json={"providerConversationId": "el-conv-9"},
        headers=USER,
    )
    assert connected.status_code == 200
    status = await client.get(f"/api/voice/conversations/{session_id}/status", headers=USER)
    assert status.json()["data"]["status"] == "active"

    active = await client.get("/api/voice/sessions/active", headers=USER)
    assert active.json()["data"]["total"] == 1

    clock.advance(42)
    ended = await client.post(f"/api/voice/conversations/{session_id}/end", headers=USER)
    body = ended.json()["data"]
    assert body["session"]["status"] == "ended"
    assert body["session"]["duration"] == 42
    assert body["usage"]["total_duration"] == 42
    assert body["usage"]["remaining_time"] == 558

    again = await client.post(f"/api/voice/conversations/{session_id}/end", headers=USER)
    assert again.status_code == 404
    assert again.json()["error"] == "session_not_found"

    usage = await client.get("/api/voice/sessions/usage", headers=USER)
    assert usage.json()["data"]["session_count"] == 1


@pytest.mark.asyncio
async def test_provider_failure_closes_session(client: AsyncClient, upstream: Upstream) -> None:
    upstream.status_code = 502

    response = await client.post("/api/voice/conversations/start", json=START_BODY, headers=USER)

    assert response.status_code == 503
    assert response.json()["error"] == "provider_unavailable"
    active = await client.get("/api/voice/sessions/active", headers=USER)
    assert active.json()["data"]["total"] == 0


@pytest.mark.asyncio
async def test_start_rejections(client: AsyncClient) -> None:
    unauthenticated = await client.post("/api/voice/conversations/start", json=START_BODY)
    unknown_agent = await client.post(
        "/api/voice/conversations/start",
        json={**START_BODY, "agentId": "agent_404"},
        headers=USER,
    )

    assert unauthenticated.status_code == 401
    assert unauthenticated.json()["error"] == "unauthenticated"
    assert unknown_agent.status_code == 404
    assert unknown_agent.json()["error"] == "agent_not_found"


@pytest.mark.asyncio
async def test_quota_exhaustion_returns_429(client: AsyncClient, clock) -> None:
    data = await _start(client)
    clock.advance(600)
    await client.post(f"/api/voice/conversations/{data['session_id']}/end", headers=USER)

    response = await client.post(
        "/api/voice/conversations/start",
        json={**START_BODY, "conversationId": "conv-2"},
        headers=USER,
    )

    assert response.status_code == 429
    assert response.json()["error"] == "quota_exceeded"


@pytest.mark.asyncio
async def test_foreign_and_unknown_sessions(client: AsyncClient) -> None:
    data = await _start(client)

    foreign = await client.post(f"/api/voice/conversations/{data['session_id']}/end", headers=OTHER_USER)
    unknown = await client.get("/api/voice/conversations/voice_0_missing/status", headers=USER)

    assert foreign.status_code == 403
    assert foreign.json()["error"] == "access_denied"
    assert unknown.status_code == 404
    assert unknown.json()["error"] == "session_not_found"


@pytest.mark.asyncio
async def test_user_context_hides_caller_token(client: AsyncClient) -> None:
    await _start(client)

    response = await client.get("/api/voice/tools/user-context/conv-1")
    missing = await client.get("/api/voice/tools/user-context/conv-unknown")

    assert response.json()["data"] == {"user_name": "User", "user_uuid": "42", "conversation_id": "conv-1"}
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_voice_health_reports_provider_and_sessions(client: AsyncClient) -> None:
    await _start(client)

    response = await client.get("/api/voice/health")

    data = response.json()["data"]
    assert data["status"] == "healthy"
    assert data["sessions"]["active_sessions"] == 1


@pytest.mark.asyncio
async def test_admin_routes_require_key(client: AsyncClient) -> None:
    missing = await client.get("/api/voice/admin/sessions")
    wrong = await client.get("/api/voice/admin/sessions", headers={"X-Admin-Key": "nope"})

    assert missing.status_code == 401
    assert wrong.status_code == 403


@pytest.mark.asyncio
async def test_admin_disabled_without_configured_key(client: AsyncClient, monkeypatch) -> None:
    monkeypatch.setattr(deps.settings, "admin_api_key", "")

    response = await client.get("/api/voice/admin/sessions", headers={"X-Admin-Key": "anything"})

    assert response.status_code == 503
    assert response.json()["error"] == "admin_disabled"


@pytest.mark.asyncio
async def test_admin_list_debug_and_end_all(client: AsyncClient) -> None:
    await _start(client)
    await _start(client, headers=OTHER_USER, body={**START_BODY, "conversationId": "conv-2"})
    admin = {"Authorization": "Bearer admin-secret"}

    listing = await client.get("/api/voice/admin/sessions", headers=admin)
    debug = await client.get("/api/voice/admin/sessions/debug", headers=admin)
    ended = await client.post("/api/voice/admin/sessions/end", headers=admin)
    after = await client.get("/api/voice/admin/sessions", headers=admin)

    assert listing.json()["data"]["total"] == 2
    assert debug.json()["data"]["active_count"] == 2
    assert ended.json()["data"]["ended"] == 2
    assert after.json()["data"]["total"] == 0


@pytest.mark.asyncio
async def test_provider_error_survives_failed_cleanup(client: AsyncClient, upstream: Upstream, monkeypatch) -> None:
    upstream.status_code = 502

    async def broken_end_session(*args, **kwargs):
        raise RuntimeError("cache unavailable")

    monkeypatch.setattr(app.state.session_manager, "end_session", broken_end_session)

    response = await client.post("/api/voice/conversations/start", json=START_BODY, headers=USER)

    assert response.status_code == 503
    assert response.json()["error"] == "provider_unavailable"
