"""HTTP and WebSocket gateway that forwards allowed clients to the backend node."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from urllib.parse import urlsplit

import aiohttp
from aiohttp import WSCloseCode, WSMsgType, web

from rpcgate.context import SecureRpcContext

log = logging.getLogger(__name__)

_CTX = web.AppKey("ctx", SecureRpcContext)
_SESSION = web.AppKey("session", aiohttp.ClientSession)

_REQUEST_DROP = frozenset({"host", "content-length", "transfer-encoding", "connection"})
_RESPONSE_DROP = frozenset({"content-length", "transfer-encoding", "connection"})
_ALLOWED_METHODS = "GET,POST,OPTIONS"
_SECURE_SCHEMES = frozenset({"https", "wss"})


def build_target_url(proxy_url: str, path_and_query: str) -> str:
    """Join the backend base URL with a request's path and query.

    Raises ValueError when the result is not a valid URL.
    """
    target = proxy_url.rstrip("/") + (path_and_query or "/")
    parts = urlsplit(target)
    parts.port  # noqa: B018 - validates the port
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"invalid target URI: {target!r}")
    return target


def backend_ws_url(proxy_url: str) -> str:
    """The WebSocket URL of the backend node derived from its HTTP URL."""
    parts = urlsplit(proxy_url)
    host = parts.hostname or "localhost"
    if ":" in host:
        host = f"[{host}]"
    scheme = "wss" if parts.scheme.lower() in _SECURE_SCHEMES else "ws"
    netloc = f"{host}:{parts.port}" if parts.port is not None else host
    return f"{scheme}://{netloc}{parts.path or '/'}"


def _is_preflight(request: web.Request) -> bool:
    return (
        request.method == "OPTIONS"
        and "Origin" in request.headers
        and "Access-Control-Request-Method" in request.headers
    )


@web.middleware
async def _cors(request: web.Request, handler) -> web.StreamResponse:
    if _is_preflight(request):
        return web.Response(
            status=200,
            headers={
                "Access-Control-Allow-Origin": "*",
                "Access-Control-Allow-Methods": _ALLOWED_METHODS,
                "Access-Control-Allow-Headers": "*",
            },
        )
    response = await handler(request)
    if "Origin" in request.headers and not response.prepared:
        response.headers["Access-Control-Allow-Origin"] = "*"
    return response


async def _client_session(app: web.Application) -> AsyncIterator[None]:
    session = aiohttp.ClientSession(auto_decompress=False)
    app[_SESSION] = session
    yield
    await session.close()


async def _rpc_handler(request: web.Request) -> web.StreamResponse:
    ctx = request.app[_CTX]
    remote = request.remote
    log.debug("Received %s %s from %s", request.method, request.raw_path, remote)
    try:
        allowed = remote is not None and await ctx.firewall.is_allowed(remote)
    except ValueError:
        allowed = False
    if not allowed:
        log.warning("Blocked request from %s due to firewall rules", remote)
        return web.Response(status=403, text="Access Denied")

    if "Upgrade" in request.headers and "Connection" in request.headers:
        client_ws = web.WebSocketResponse()
        if client_ws.can_prepare(request).ok:
            log.debug("Handling WebSocket upgrade request from %s", remote)
            return await _handle_websocket(request, client_ws)

    timeout = ctx.config.rpc.request_timeout_secs
    try:
        return await asyncio.wait_for(_proxy_http(request), timeout)
    except TimeoutError:
        log.warning("Request from %s timed out after %s seconds", remote, timeout)
        return web.Response(status=408, text="Request timed out")


async def _proxy_http(request: web.Request) -> web.Response:
    ctx = request.app[_CTX]
    try:
        target = build_target_url(ctx.config.rpc.proxy_to_url, request.raw_path)
    except ValueError as exc:
        log.error("Failed to parse target URI: %s", exc)
        return web.Response(status=400, text="Invalid target URI")

    try:
        body = await request.read()
    except web.HTTPRequestEntityTooLarge:
        return web.Response(status=413, text="Request body too large")
    except (aiohttp.ClientError, ConnectionError) as exc:
        log.error("Failed to read request body: %s", exc)
        return web.Response(status=500, text="Failed to read request body")

    headers = [(k, v) for k, v in request.headers.items() if k.lower() not in _REQUEST_DROP]
    session = request.app[_SESSION]
    try:
        async with session.request(
            request.method, target, headers=headers, data=body, allow_redirects=False
        ) as upstream:
            payload = await upstream.read()
            response_headers = [
                (k, v) for k, v in upstream.headers.items() if k.lower() not in _RESPONSE_DROP
            ]
            return web.Response(status=upstream.status, body=payload, headers=response_headers)
    except (aiohttp.ClientError, OSError) as exc:
        log.error("Failed to proxy request to %s: %s", target, exc)
        return web.Response(status=503, text=f"Proxy error: {exc}")


async def _client_to_backend(client, backend, client_addr) -> None:
    try:
        async for msg in client:
            if msg.type is WSMsgType.TEXT:
                await backend.send_str(msg.data)
            elif msg.type is WSMsgType.BINARY:
                await backend.send_bytes(msg.data)
            elif msg.type is WSMsgType.ERROR:
                log.warning("Error receiving message from client %s: %s", client_addr, client.exception())
                break
    except (ConnectionError, RuntimeError) as exc:
        log.warning("Failed sending message to backend for %s: %s", client_addr, exc)
    await backend.close()
    log.debug("Client-to-backend forwarding for %s finished", client_addr)


async def _backend_to_client(backend, client, client_addr) -> None:
    try:
        async for msg in backend:
            if msg.type is WSMsgType.TEXT:
                await client.send_str(msg.data)
            elif msg.type is WSMsgType.BINARY:
                await client.send_bytes(msg.data)
            elif msg.type is WSMsgType.ERROR:
                log.warning("Error receiving message from backend for %s", client_addr)
                await client.close(code=WSCloseCode.INTERNAL_ERROR, message=b"Backend error")
                return
    except (ConnectionError, RuntimeError) as exc:
        log.warning("Failed sending message to client %s: %s", client_addr, exc)
        return
    await client.close(code=backend.close_code or WSCloseCode.OK)
    log.debug("Backend-to-client forwarding for %s finished", client_addr)


async def _handle_websocket(
    request: web.Request, client_ws: web.WebSocketResponse
) -> web.WebSocketResponse:
    ctx = request.app[_CTX]
    client_addr = request.remote
    target = backend_ws_url(ctx.config.rpc.proxy_to_url)
    await client_ws.prepare(request)
    session = request.app[_SESSION]
    try:
        backend = await session.ws_connect(target)
    except aiohttp.WSServerHandshakeError as exc:
        log.error("WebSocket handshake with backend %s failed: %s", target, exc)
        await client_ws.close(code=WSCloseCode.INTERNAL_ERROR, message=b"Backend handshake failed")
        return client_ws
    except (aiohttp.ClientError, OSError) as exc:
        log.error("Failed to connect to backend WebSocket server %s: %s", target, exc)
        await client_ws.close(code=WSCloseCode.INTERNAL_ERROR, message=b"Backend connection failed")
        return client_ws

    log.debug("Backend WebSocket connection established for %s", client_addr)
    forwarders = {
        asyncio.create_task(_client_to_backend(client_ws, backend, client_addr)),
        asyncio.create_task(_backend_to_client(backend, client_ws, client_addr)),
    }
    try:
        _, pending = await asyncio.wait(forwarders, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
    finally:
        await backend.close()
    log.info("WebSocket connection for %s closed", client_addr)
    return client_ws


def create_app(ctx: SecureRpcContext) -> web.Application:
    """Build the gateway application for a service context."""
    app = web.Application(
        client_max_size=ctx.config.rpc.max_body_size_bytes,
        middlewares=[_cors],
    )
    app[_CTX] = ctx
    app.cleanup_ctx.append(_client_session)
    app.router.add_route("*", "/{tail:.*}", _rpc_handler)
    return app


async def start_rpc_gateway(ctx: SecureRpcContext) -> None:
    """Serve the gateway on the configured address until cancelled."""
    host, port = ctx.config.rpc.listen_addr
    log.info("Starting RPC gateway on %s:%s proxying to %s", host, port, ctx.config.rpc.proxy_to_url)
    runner = web.AppRunner(create_app(ctx))
    await runner.setup()
    try:
        site = web.TCPSite(runner, host, port)
        await site.start()
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()