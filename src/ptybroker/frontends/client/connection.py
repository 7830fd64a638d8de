"""TerminalConnection - one client WebSocket to a broker session.

Owns the socket and its render surface. Teardown goes through dispose(),
which is guarded: however many times it is called (UI frameworks may
unmount the same component twice), the server sees exactly one close
request, and nothing is written to the surface afterwards.
"""

from __future__ import annotations

import asyncio
import logging

import aiohttp
from aiohttp import WSCloseCode, WSMsgType

from ptybroker.core.errors import ConnectionNotOpenError
from ptybroker.core.protocol import encode_resize
from ptybroker.core.types import clamp_dimensions
from ptybroker.frontends.client.surface import RenderSurface

logger = logging.getLogger(__name__)

CONNECTED_BANNER = "\r\n\x1b[32mConnected to terminal\x1b[0m\r\n"
DISPOSE_REASON = "component_unmount"


def disconnect_notice(code: int | None, reason: str) -> str:
    """Inline diagnostic shown when the server side goes away."""
    return f"\r\n\x1b[31mConnection closed (Code: {code}, Reason: {reason})\x1b[0m\r\n"


class TerminalConnection:
    """Client side of one terminal session.

    Example:
        >>> conn = TerminalConnection("ws://127.0.0.1:3223", BufferSurface())
        >>> await conn.open()
        >>> await conn.send_input("ls\\n")
        >>> await conn.dispose()
    """

    def __init__(
        self,
        url: str,
        surface: RenderSurface,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.url = url
        self.surface = surface
        self._session = session
        self._owns_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._generation = 0
        self._disposed = False
        self._close_requests = 0
        self.close_code: int | None = None
        self.close_reason: str = ""

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed and not self._disposed

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def close_requests(self) -> int:
        """Close frames this connection has initiated (at most one)."""
        return self._close_requests

    async def open(self) -> None:
        """Connect, greet, send the initial size and start reading.

        Raises:
            ConnectionNotOpenError: If the connection was already disposed.
            aiohttp.ClientError: If the server cannot be reached.
        """
        if self._disposed:
            raise ConnectionNotOpenError("Connection has been disposed")
        if self._ws is not None:
            raise RuntimeError("Connection already open")

        self._generation += 1
        generation = self._generation

        if self._session is None:
            self._session = aiohttp.ClientSession()

        ws = await self._session.ws_connect(self.url)

        if self._disposed or generation != self._generation:
            # Torn down while the handshake was in flight
            await self._request_close(ws)
            return

        self._ws = ws
        logger.debug("Connected to %s (generation=%d)", self.url, generation)
        self.surface.write(CONNECTED_BANNER)
        await self.send_resize()
        self._reader_task = asyncio.create_task(self._read_loop(ws, generation))

    async def send_input(self, data: bytes | str) -> bool:
        """Send keystrokes as a binary frame. No-op unless open."""
        if not self.is_open:
            return False
        assert self._ws is not None
        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        try:
            await self._ws.send_bytes(payload)
        except ConnectionResetError:
            return False
        return True

    async def send_resize(self) -> tuple[int, int] | None:
        """Fit the surface and send its floor-clamped size. No-op unless open.

        Returns:
            The (cols, rows) sent, or None if nothing was sent.
        """
        if not self.is_open or self.surface.disposed:
            return None
        assert self._ws is not None
        cols, rows = clamp_dimensions(*self.surface.fit())
        try:
            await self._ws.send_str(encode_resize(cols, rows))
        except ConnectionResetError:
            return None
        return cols, rows

    async def wait_closed(self) -> None:
        """Wait until the reader has seen the socket close."""
        if self._reader_task is not None:
            await asyncio.gather(self._reader_task, return_exceptions=True)

    async def dispose(self) -> bool:
        """Deliberate teardown. Idempotent and silent.

        Returns:
            True for the call that actually tore the connection down.
        """
        if self._disposed:
            return False
        self._disposed = True

        ws, self._ws = self._ws, None
        if ws is not None:
            await self._request_close(ws)

        if self._reader_task is not None:
            await asyncio.gather(self._reader_task, return_exceptions=True)

        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

        self.surface.dispose()
        logger.debug("Disposed connection to %s", self.url)
        return True

    async def _request_close(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        if ws.closed:
            return
        self._close_requests += 1
        try:
            await ws.close(code=WSCloseCode.OK, message=DISPOSE_REASON.encode())
        except ConnectionResetError:
            pass

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse, generation: int) -> None:
        """Copy server output to the surface until the socket closes."""
        reason = ""
        while True:
            msg = await ws.receive()
            if msg.type in (WSMsgType.BINARY, WSMsgType.TEXT):
                if self._disposed or generation != self._generation:
                    continue  # late data for a torn-down surface
                self.surface.write(msg.data)
            elif msg.type == WSMsgType.CLOSE:
                reason = msg.extra or ""
                break
            elif msg.type in (WSMsgType.CLOSING, WSMsgType.CLOSED):
                break
            elif msg.type == WSMsgType.ERROR:
                logger.warning("Terminal connection error: %s", ws.exception())
                break

        self.close_code = ws.close_code
        self.close_reason = reason

        if self._disposed or generation != self._generation:
            return

        logger.warning("Terminal connection closed: code=%s reason=%s", self.close_code, reason)
        if not self.surface.disposed:
            self.surface.write(disconnect_notice(self.close_code, reason))
