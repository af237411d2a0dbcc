import pytest
from httpx import ASGITransport, AsyncClient

from callrelay.core.config import Settings
from callrelay.main import app


@pytest.mark.asyncio
async def test_health_endpoint() -> None:
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_index_greeting() -> None:
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/")

    assert response.status_code == 200
    assert response.text == "Hello from the backend server!"


@pytest.mark.asyncio
async def test_rtc_config_lists_ice_servers() -> None:
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/api/rtc/config")

    assert response.status_code == 200
    servers = response.json()["iceServers"]
    assert servers and "stun:stun.l.google.com:19302" in servers[0]["urls"]


@pytest.mark.asyncio
async def test_presence_for_unknown_user_is_offline() -> None:
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        presence = await client.get("/api/presence/nobody@example.com")
        room = await client.get("/api/rooms/empty-room/participants")

    assert presence.json() == {"user_id": "nobody@example.com", "online": False}
    assert room.json() == {"room_id": "empty-room", "participants": []}


def test_ice_servers_accept_comma_separated_env(monkeypatch) -> None:
    monkeypatch.setenv("ICE_SERVERS", "stun:a.example.org:3478, turn:b.example.org:3478")

    settings = Settings()

    assert settings.ice_servers == ["stun:a.example.org:3478", "turn:b.example.org:3478"]
