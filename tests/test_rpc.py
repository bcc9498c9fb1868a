import asyncio
import contextlib

import aiohttp
import pytest
from aiohttp import test_utils, web

from rpcgate.config import parse_service_config
from rpcgate.context import create_context
from rpcgate.rpc import backend_ws_url, build_target_url, create_app, start_rpc_gateway


async def _echo(request: web.Request) -> web.Response:
    body = await request.read()
    return web.json_response(
        {
            "path": request.path_qs,
            "method": request.method,
            "body": body.decode(),
            "host": request.headers.get("Host"),
        }
    )


async def _slow(request: web.Request) -> web.Response:
    await asyncio.sleep(3)
    return web.Response(text="late")


async def _ws_echo(request: web.Request) -> web.WebSocketResponse:
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    async for msg in ws:
        if msg.type is aiohttp.WSMsgType.TEXT:
            await ws.send_str(msg.data)
        elif msg.type is aiohttp.WSMsgType.BINARY:
            await ws.send_bytes(msg.data)
    return ws


def _backend_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/ws", _ws_echo)
    app.router.add_route("*", "/slow", _slow)
    app.router.add_route("*", "/{tail:.*}", _echo)
    return app


@contextlib.asynccontextmanager
async def _serving(app):
    server = test_utils.TestServer(app, host="127.0.0.1")
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


def _context(tmp_path, proxy_url, *, allow=("127.0.0.1/32",), listen="127.0.0.1:0", **rpc):
    config = parse_service_config(
        {
            "rpc": {"listen_addr": listen, "proxy_to_url": proxy_url, **rpc},
            "firewall": {"allow_ips": list(allow)},
        }
    )
    return create_context(config, tmp_path / "data")


@contextlib.asynccontextmanager
async def _gateway(ctx):
    client = test_utils.TestClient(test_utils.TestServer(create_app(ctx), host="127.0.0.1"))
    async with client:
        yield client


def test_build_target_url_strips_trailing_slash():
    assert build_target_url("http://127.0.0.1:8545/", "/rpc?x=1") == "http://127.0.0.1:8545/rpc?x=1"


def test_build_target_url_empty_path_uses_root():
    assert build_target_url("http://node:8545", "") == "http://node:8545/"


def test_build_target_url_rejects_bad_url():
    with pytest.raises(ValueError):
        build_target_url("http://[::1", "/")


def test_backend_ws_url_secure_scheme():
    assert backend_ws_url("https://node.example.com/rpc") == "wss://node.example.com/rpc"


def test_backend_ws_url_keeps_port_and_defaults_path():
    assert backend_ws_url("http://node:9944") == "ws://node:9944/"


@pytest.mark.asyncio
async def test_proxies_http_request(tmp_path):
    async with _serving(_backend_app()) as backend:
        ctx = _context(tmp_path, str(backend.make_url("/")))
        async with _gateway(ctx) as client:
            resp = await client.post("/rpc?a=1", data=b'{"jsonrpc":"2.0"}')
            assert resp.status == 200
            data = await resp.json()
    assert data["path"] == "/rpc?a=1"
    assert data["method"] == "POST"
    assert data["body"] == '{"jsonrpc":"2.0"}'
    assert data["host"] == f"127.0.0.1:{backend.port}"


@pytest.mark.asyncio
async def test_denied_ip_gets_forbidden(tmp_path):
    async with _serving(_backend_app()) as backend:
        ctx = _context(tmp_path, str(backend.make_url("/")), allow=("10.0.0.0/8",))
        async with _gateway(ctx) as client:
            resp = await client.get("/")
            assert resp.status == 403
            assert await resp.text() == "Access Denied"


@pytest.mark.asyncio
async def test_backend_down_gives_service_unavailable(tmp_path):
    port = test_utils.unused_port()
    ctx = _context(tmp_path, f"http://127.0.0.1:{port}")
    async with _gateway(ctx) as client:
        resp = await client.get("/")
        assert resp.status == 503
        assert (await resp.text()).startswith("Proxy error:")


@pytest.mark.asyncio
async def test_cors_preflight_answered(tmp_path):
    ctx = _context(tmp_path, "http://127.0.0.1:1", allow=())
    async with _gateway(ctx) as client:
        resp = await client.options(
            "/",
            headers={"Origin": "http://app.example.com", "Access-Control-Request-Method": "POST"},
        )
        assert resp.status == 200
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert "POST" in resp.headers["Access-Control-Allow-Methods"]


@pytest.mark.asyncio
async def test_body_over_limit_rejected(tmp_path):
    async with _serving(_backend_app()) as backend:
        ctx = _context(tmp_path, str(backend.make_url("/")), max_body_size_bytes=16)
        async with _gateway(ctx) as client:
            resp = await client.post("/", data=b"x" * 64)
            assert resp.status == 413


@pytest.mark.asyncio
async def test_slow_backend_times_out(tmp_path):
    async with _serving(_backend_app()) as backend:
        ctx = _context(tmp_path, str(backend.make_url("/")), request_timeout_secs=1)
        async with _gateway(ctx) as client:
            resp = await client.get("/slow")
            assert resp.status == 408


@pytest.mark.asyncio
async def test_websocket_round_trip(tmp_path):
    async with _serving(_backend_app()) as backend:
        ctx = _context(tmp_path, str(backend.make_url("/ws")))
        async with _gateway(ctx) as client:
            ws = await client.ws_connect("/anything")
            await ws.send_str("ping-text")
            assert await ws.receive_str(timeout=5) == "ping-text"
            await ws.send_bytes(b"\x01\x02")
            assert await ws.receive_bytes(timeout=5) == b"\x01\x02"
            await ws.close()


@pytest.mark.asyncio
async def test_start_rpc_gateway_serves(tmp_path):
    async with _serving(_backend_app()) as backend:
        port = test_utils.unused_port()
        ctx = _context(tmp_path, str(backend.make_url("/")), listen=f"127.0.0.1:{port}")
        task = asyncio.create_task(start_rpc_gateway(ctx))
        try:
            data = None
            async with aiohttp.ClientSession() as session:
                for _ in range(100):
                    try:
                        async with session.get(f"http://127.0.0.1:{port}/check") as resp:
                            data = await resp.json()
                            break
                    except aiohttp.ClientConnectorError:
                        await asyncio.sleep(0.05)
            assert data is not None and data["path"] == "/check"
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task