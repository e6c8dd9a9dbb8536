from __future__ import annotations

import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from link_errors import StreamClosed, TransportError
from transport import AiohttpTransport

HEALTH = {"status": "healthy", "service": "elixir-backend", "version": "1.2.3"}


async def health(request: web.Request) -> web.Response:
    return web.json_response(HEALTH)


async def toggle(request: web.Request) -> web.Response:
    return web.json_response({"success": True, "data": {"ac_state": True}, "message": "AC toggled"})


async def setpoint(request: web.Request) -> web.Response:
    body = await request.json()
    return web.json_response({"success": True, "data": {"pressure_setpoint": body["setpoint"]}})


async def garbled(request: web.Request) -> web.Response:
    return web.Response(body=b'\xff\xfe{"success": true}', content_type="application/json")


async def status_stream(request: web.Request) -> web.WebSocketResponse:
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    for value in (False, True):
        await ws.send_str(json.dumps({"type": "status_update", "data": {"control_panel": {"ac_state": value}}}))
    await ws.close()
    return ws


@pytest.fixture
async def server():
    app = web.Application()
    app.router.add_get("/health", health)
    app.router.add_post("/api/control/ac/toggle", toggle)
    app.router.add_post("/api/pressure/setpoint", setpoint)
    app.router.add_post("/api/control/intercom/toggle", garbled)
    app.router.add_get("/ws/system-status", status_stream)
    test_server = TestServer(app)
    await test_server.start_server()
    yield test_server
    await test_server.close()


@pytest.fixture
async def transport():
    http = AiohttpTransport(connect_timeout=1)
    yield http
    await http.close()


async def test_get_json(server, transport) -> None:
    status, payload = await transport.get_json(str(server.make_url("/health")), timeout=1)

    assert status == 200
    assert payload == HEALTH


async def test_non_json_body_decodes_to_none(server, transport) -> None:
    status, payload = await transport.get_json(str(server.make_url("/missing")), timeout=1)

    assert status == 404
    assert payload is None


async def test_post_json_sends_body(server, transport) -> None:
    status, payload = await transport.post_json(str(server.make_url("/api/pressure/setpoint")),
                                                {"setpoint": 1.5}, timeout=1)

    assert status == 200
    assert payload["data"]["pressure_setpoint"] == 1.5


async def test_post_without_body(server, transport) -> None:
    status, payload = await transport.post_json(str(server.make_url("/api/control/ac/toggle")), timeout=1)

    assert status == 200
    assert payload["success"] is True


async def test_undecodable_body_decodes_to_none(server, transport) -> None:
    status, payload = await transport.post_json(str(server.make_url("/api/control/intercom/toggle")), timeout=1)

    assert status == 200
    assert payload is None


async def test_connection_refused_raises_transport_error(transport) -> None:
    with pytest.raises(TransportError) as exc_info:
        await transport.get_json("http://127.0.0.1:1/health", timeout=1)

    assert exc_info.value.url == "http://127.0.0.1:1/health"


async def test_stream_yields_frames_then_reports_close(server, transport) -> None:
    url = str(server.make_url("/ws/system-status")).replace("http://", "ws://", 1)
    frames = []

    with pytest.raises(StreamClosed):
        async with transport.open_stream(url, timeout=1) as stream:
            async for frame in stream:
                frames.append(json.loads(frame))

    assert [f["data"]["control_panel"]["ac_state"] for f in frames] == [False, True]


async def test_stream_handshake_failure(server, transport) -> None:
    url = str(server.make_url("/health")).replace("http://", "ws://", 1)

    with pytest.raises(TransportError):
        async with transport.open_stream(url, timeout=1):
            pass
