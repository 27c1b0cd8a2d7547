import pytest
from httpx import ASGITransport, AsyncClient

from callroom.main import app
from callroom.routers import rtc as rtc_router
from callroom.services.signaling import SignalingManager, SignalingConnection


@pytest.mark.asyncio
async def test_health_endpoint() -> None:
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/api/health")
        head = await client.head("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert head.status_code == 200


@pytest.mark.asyncio
async def test_robots_and_favicon() -> None:
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        robots = await client.get("/robots.txt")
        favicon = await client.get("/favicon.ico")

    assert robots.status_code == 200
    assert "User-agent" in robots.text
    assert favicon.status_code == 200
    assert favicon.headers.get("content-type") == "image/png"


@pytest.mark.asyncio
async def test_ice_servers_lists_configured_stun_urls(monkeypatch) -> None:
    monkeypatch.setattr(rtc_router.settings, "stun_servers", ["stun:one.example:3478", "stun:two.example:3478"])
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/api/rtc/ice-servers")

    assert response.status_code == 200
    assert response.json() == {
        "iceServers": [{"urls": ["stun:one.example:3478"]}, {"urls": ["stun:two.example:3478"]}]
    }


@pytest.mark.asyncio
async def test_presence_reflects_the_signaling_directory(monkeypatch) -> None:
    manager = SignalingManager()
    monkeypatch.setattr(rtc_router, "signaling_manager", manager)
    await manager.connect(SignalingConnection("c1", lambda message: None))
    await manager.join_user("c1", "alice")
    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/api/rtc/presence")

    assert response.status_code == 200
    assert response.json() == {"users": {"alice": {"username": "alice", "id": "c1"}}, "count": 1}
