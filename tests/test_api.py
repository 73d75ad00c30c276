"""Tests for the HTTP API."""

import pytest
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from starlette.websockets import WebSocketDisconnect

from feedwatch.config import Settings
from feedwatch.core.kv_store import MemoryKeyValueStore
from feedwatch.main import app as fastapi_app
from feedwatch.runtime import build_runtime


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["monitor"] == "idle"


@pytest.mark.asyncio
async def test_list_posts_empty(client: AsyncClient):
    response = await client.get("/api/posts")
    assert response.status_code == 200
    data = response.json()
    assert data["posts"] == []
    assert data["is_first_fetch"] is True
    assert data["last_fetch_instant"] is None


@pytest.mark.asyncio
async def test_list_posts_newest_first(client: AsyncClient, runtime, make_post):
    await runtime.store.merge([make_post(1), make_post(2)])

    response = await client.get("/api/posts")
    data = response.json()
    assert [p["content"] for p in data["posts"]] == ["post number 2", "post number 1"]
    assert data["last_fetch_instant"] == make_post(2).sortable_instant
    assert data["is_first_fetch"] is False


@pytest.mark.asyncio
async def test_clear_posts(client: AsyncClient, runtime, make_post):
    await runtime.store.merge([make_post(1)])

    response = await client.delete("/api/posts")
    assert response.status_code == 204

    state = await runtime.store.get_state()
    assert state.posts == []
    assert state.is_first_fetch is True


@pytest.mark.asyncio
async def test_monitor_status(client: AsyncClient):
    response = await client.get("/api/monitor/status")
    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "idle"
    assert data["target_tab_id"] is None
    assert data["poll_interval_seconds"] == 3600


@pytest.mark.asyncio
async def test_fetch_opens_feed_tab(client: AsyncClient, tab_host):
    response = await client.post("/api/monitor/fetch")
    assert response.status_code == 202
    assert response.json()["target_tab_id"] == 1
    assert tab_host.created == ["https://x.com/home"]


@pytest.mark.asyncio
async def test_stop(client: AsyncClient):
    response = await client.post("/api/monitor/stop")
    assert response.status_code == 200
    assert response.json()["state"] == "idle"


@pytest.mark.asyncio
async def test_send_fetch_message(client: AsyncClient, tab_host):
    response = await client.post("/api/monitor/messages", json={"type": "FETCH_REQUEST"})
    assert response.status_code == 202
    assert tab_host.created == ["https://x.com/home"]


@pytest.mark.asyncio
async def test_send_unknown_message(client: AsyncClient):
    response = await client.post("/api/monitor/messages", json={"type": "SELF_DESTRUCT"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_send_malformed_message(client: AsyncClient):
    response = await client.post("/api/monitor/messages", json={"type": "SCRAPE_ERROR", "tab_id": "x"})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_send_internal_message_rejected(client: AsyncClient):
    response = await client.post(
        "/api/monitor/messages", json={"type": "DATA_RESPONSE", "payload": [], "new_count": 0}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unavailable_before_startup():
    fastapi_app.state.runtime = None
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.get("/api/posts")
    assert response.status_code == 503


def test_event_stream_over_websocket(tab_host):
    runtime = build_runtime(
        Settings(poll_interval_seconds=3600, redis_url=""),
        tab_host=tab_host,
        kv_store=MemoryKeyValueStore(),
    )
    runtime.start()
    fastapi_app.state.runtime = runtime
    try:
        with TestClient(fastapi_app).websocket_connect("/api/monitor/events") as ws:
            ws.send_text("not json")
            ws.send_json({"type": "DATA_RESPONSE"})
            ws.send_json({"type": "STOP_REQUEST"})
            message = ws.receive_json()
    finally:
        fastapi_app.state.runtime = None

    assert message["type"] == "MONITOR_STOPPED"
    assert message["reason"] == "Stopped by request"


def test_event_stream_unavailable_before_startup():
    fastapi_app.state.runtime = None
    with pytest.raises(WebSocketDisconnect):
        with TestClient(fastapi_app).websocket_connect("/api/monitor/events"):
            pass


@pytest.mark.asyncio
async def test_fetch_without_monitor_listener(client: AsyncClient, runtime):
    runtime.bus.unregister("FETCH_REQUEST")

    response = await client.post("/api/monitor/fetch")

    assert response.status_code == 503
    assert "FETCH_REQUEST" in response.json()["detail"]
