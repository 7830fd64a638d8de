"""TerminalProxy - same-origin relay in front of the broker.

Pages served over https cannot open ``ws://host:3223`` directly, so the
page talks to ``/ws/terminal`` on its own origin and this proxy forwards
every frame to the broker unchanged. Text frames stay text, binary frames
stay binary, and a close on either side closes the other.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

import aiohttp
from aiohttp import WSCloseCode, WSMsgType, web

from ptybroker.server.ports import bind_with_fallback

logger = logging.getLogger(__name__)

WebSocket = web.WebSocketResponse | aiohttp.ClientWebSocketResponse

# Codes that may not appear in a close frame
_RESERVED_CLOSE_CODES = {1004, 1005, 1006, 1015}


def relayable_close_code(code: int | None, fallback: int = WSCloseCode.BAD_GATEWAY) -> int:
    """Close code to forward to the other side of the relay."""
    if code is None or code in _RESERVED_CLOSE_CODES:
        return fallback
    if 1000 <= code <= 1014 or 3000 <= code <= 4999:
        return code
    return fallback


@dataclass
class TerminalProxy:
    """Relay browser WebSockets to the terminal broker.

    Example:
        >>> proxy = TerminalProxy("ws://127.0.0.1:3223", port=8080)
        >>> await proxy.serve()  # browser connects to ws://host:8080/ws/terminal
    """

    upstream_url: str
    host: str = "127.0.0.1"
    port: int = 8080
    port_attempts: int = 50
    _runner: web.AppRunner | None = None
    _client: aiohttp.ClientSession | None = None
    _bound_port: int | None = None
    _relays: int = 0
    _shutdown_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def bound_port(self) -> int:
        if self._bound_port is None:
            raise RuntimeError("Proxy is not listening")
        return self._bound_port

    @property
    def active_relays(self) -> int:
        return self._relays

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ws/terminal", self.handle)
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self) -> None:
        self._client = aiohttp.ClientSession()
        self._runner = web.AppRunner(self.make_app())
        await self._runner.setup()
        _, self._bound_port = await bind_with_fallback(
            self._runner, self.host, self.port, self.port_attempts
        )
        logger.info(
            "Terminal proxy listening on %s:%s -> %s",
            self.host,
            self._bound_port,
            self.upstream_url,
        )

    async def serve(self) -> None:
        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def stop(self) -> None:
        self._shutdown_event.set()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def handle(self, request: web.Request) -> web.StreamResponse:
        """Handle GET /ws/terminal: open the upstream, then relay."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        client = self._client
        owns_client = client is None
        if client is None:
            # Mounted into a foreign application without start()
            client = aiohttp.ClientSession()

        try:
            try:
                upstream = await client.ws_connect(self.upstream_url)
            except (aiohttp.ClientError, OSError) as e:
                logger.error("Upstream %s unreachable: %s", self.upstream_url, e)
                await ws.close(code=WSCloseCode.BAD_GATEWAY, message=b"upstream unreachable")
                return ws

            self._relays += 1
            logger.info("Relay opened for %s", request.remote or "unknown")
            try:
                await self._relay(ws, upstream)
            finally:
                self._relays -= 1
                logger.info("Relay closed for %s", request.remote or "unknown")
        finally:
            if owns_client:
                await client.close()

        return ws

    async def _relay(self, browser: web.WebSocketResponse, upstream: aiohttp.ClientWebSocketResponse) -> None:
        to_upstream = asyncio.create_task(self._pipe(browser, upstream))
        to_browser = asyncio.create_task(self._pipe(upstream, browser))
        try:
            done, _ = await asyncio.wait({to_upstream, to_browser}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            to_upstream.cancel()
            to_browser.cancel()
            await upstream.close(code=WSCloseCode.GOING_AWAY)
            raise

        if to_browser in done:
            code, reason = to_browser.result()
            await browser.close(code=relayable_close_code(code), message=reason.encode())
            await upstream.close()
        else:
            code, reason = to_upstream.result()
            await upstream.close(code=relayable_close_code(code, WSCloseCode.OK), message=reason.encode())
            await browser.close()

        for task in (to_upstream, to_browser):
            if not task.done():
                task.cancel()
        await asyncio.gather(to_upstream, to_browser, return_exceptions=True)

    async def _pipe(self, source: WebSocket, dest: WebSocket) -> tuple[int | None, str]:
        """Forward frames until ``source`` closes. Returns its close code and reason."""
        while True:
            msg = await source.receive()
            try:
                if msg.type == WSMsgType.TEXT:
                    await dest.send_str(msg.data)
                elif msg.type == WSMsgType.BINARY:
                    await dest.send_bytes(msg.data)
                elif msg.type == WSMsgType.CLOSE:
                    return msg.data, msg.extra or ""
                elif msg.type in (WSMsgType.CLOSING, WSMsgType.CLOSED):
                    return source.close_code, ""
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("Relay error: %s", source.exception())
                    return None, ""
            except ConnectionResetError:
                return dest.close_code, ""

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok", "upstream": self.upstream_url, "relays": self._relays})
