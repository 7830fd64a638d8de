"""Session - one connection bound to one PTY process.

The session owns both ends and guarantees neither outlives the other:
whichever side ends first (connection close or process exit) starts
closing, and closing tears down the other side.

State machine:

    CONNECTING --spawn ok--> ACTIVE --close()--> CLOSING --> CLOSED
    CONNECTING --spawn failed------------------------------> CLOSED

Closing dispatches the termination signal to the process and closes the
connection. It does not wait for the process to die; the backend reaps it
asynchronously and ``backend.wait()`` confirms it is gone.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from aiohttp import WSCloseCode, WSMsgType, web

from ptybroker.core.errors import SpawnError
from ptybroker.core.protocol import Resize, decode_frame
from ptybroker.core.pty.backend import Backend, BackendConfig
from ptybroker.core.pty.pty_backend import PTYBackend
from ptybroker.core.types import Dimensions, ExitStatus, SessionState

logger = logging.getLogger(__name__)

CLOSE_CONNECTION_CLOSED = "connection_closed"
CLOSE_PROCESS_EXITED = "process_exited"
CLOSE_SPAWN_FAILED = "spawn_failed"
CLOSE_REGISTRY_SHUTDOWN = "registry_shutdown"


@dataclass
class Session:
    """A WebSocket connection paired with its shell process.

    Both the connection and the backend are exclusively owned. Nothing here
    is shared with other sessions, so no locking is needed.

    Example:
        >>> session = Session(ws=ws, backend=PTYBackend(["/bin/zsh"]))
        >>> if await session.start():
        ...     await session.run()  # returns once the connection is gone
    """

    ws: web.WebSocketResponse
    backend: Backend
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: SessionState = SessionState.CONNECTING
    dimensions: Dimensions = field(default_factory=Dimensions)
    close_reason: str | None = None
    exit_status: ExitStatus | None = None
    _closed: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @classmethod
    async def open(
        cls,
        ws: web.WebSocketResponse,
        command: list[str],
        config: BackendConfig | None = None,
    ) -> Session:
        """Create a session on a PTY backend and spawn the shell.

        The returned session is ACTIVE, or CLOSED if the spawn failed.

        Example:
            >>> session = await Session.open(ws, ["/bin/bash"])
            >>> await session.run()
        """
        session = cls(ws=ws, backend=PTYBackend(command, config))
        await session.start()
        return session

    @property
    def pid(self) -> int | None:
        return self.backend.pid

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    async def start(self) -> bool:
        """Spawn the process and go ACTIVE.

        A spawn failure is contained here: it is logged, the connection is
        closed with 1011 and the session ends CLOSED without ever being
        ACTIVE.

        Returns:
            True if the session is ACTIVE.
        """
        if self.state is not SessionState.CONNECTING:
            raise RuntimeError(f"Session {self.id} already started")

        self.backend.on_data(self._forward_output)
        self.backend.on_exit(self._on_process_exit)

        try:
            await self.backend.start()
        except SpawnError as e:
            logger.error("Spawn failed: %s", e, extra={"session_id": self.id})
            self.close_reason = CLOSE_SPAWN_FAILED
            await self._close_connection(WSCloseCode.INTERNAL_ERROR, b"spawn failed")
            self._mark_closed()
            return False

        self.state = SessionState.ACTIVE
        logger.info(
            "Session active (pid=%s)",
            self.backend.pid,
            extra={"session_id": self.id},
        )
        return True

    async def run(self) -> None:
        """Relay inbound frames until the connection ends, then close."""
        if self.state is not SessionState.ACTIVE:
            return

        try:
            async for msg in self.ws:
                if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                    await self.handle_frame(msg.data)
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(
                        "Connection error: %s",
                        self.ws.exception(),
                        extra={"session_id": self.id},
                    )
                    break
        finally:
            await self.close(CLOSE_CONNECTION_CLOSED)

    async def handle_frame(self, payload: bytes | str) -> None:
        """Route one inbound frame to resize or write, in arrival order."""
        if self.state is not SessionState.ACTIVE:
            return

        frame = decode_frame(payload)
        if isinstance(frame, Resize):
            cols, rows = await self.backend.resize(frame.cols, frame.rows)
            self.dimensions = Dimensions(cols=cols, rows=rows)
            logger.debug("Resized to %sx%s", cols, rows, extra={"session_id": self.id})
        else:
            logger.debug("Input: %d bytes", len(frame.data), extra={"session_id": self.id})
            await self.backend.write(frame.data)

    async def close(self, reason: str = CLOSE_CONNECTION_CLOSED) -> None:
        """Tear down both sides. Idempotent.

        Only the first call does work: it signals the process, then closes
        the connection. Later calls return immediately.
        """
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return

        self.state = SessionState.CLOSING
        self.close_reason = reason
        logger.info("Session closing (%s)", reason, extra={"session_id": self.id})

        self.backend.kill()

        if reason == CLOSE_REGISTRY_SHUTDOWN:
            await self._close_connection(WSCloseCode.GOING_AWAY, b"server shutdown")
        else:
            await self._close_connection(WSCloseCode.OK, reason.encode())

        self._mark_closed()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pid": self.pid,
            "state": self.state.name,
            "cols": self.dimensions.cols,
            "rows": self.dimensions.rows,
            "close_reason": self.close_reason,
        }

    async def _forward_output(self, chunk: bytes) -> None:
        if self.state is not SessionState.ACTIVE or self.ws.closed:
            return
        try:
            await self.ws.send_bytes(chunk)
        except ConnectionResetError as e:
            # The receive loop sees the disconnect and closes the session
            logger.debug("Dropped %d output bytes: %s", len(chunk), e, extra={"session_id": self.id})

    async def _on_process_exit(self, status: ExitStatus) -> None:
        self.exit_status = status
        await self.close(CLOSE_PROCESS_EXITED)

    async def _close_connection(self, code: int, message: bytes) -> None:
        if self.ws.closed:
            return
        try:
            await self.ws.close(code=code, message=message)
        except ConnectionResetError:
            pass

    def _mark_closed(self) -> None:
        self.state = SessionState.CLOSED
        self._closed.set()
        logger.info("Session closed", extra={"session_id": self.id})
