"""SessionRegistry - The listener that owns every live session.

Each accepted WebSocket connection gets a fresh Session running the
configured shell in the user's home directory. The registry keeps the
sessions in a dict keyed by session id, touched only on accept and close,
and shuts them all down together.

Routes:
    GET /             Terminal WebSocket
    GET /ws/terminal  Terminal WebSocket (same-origin proxy path)
    GET /health       {"status": "ok", "sessions": N}
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from aiohttp import WSCloseCode, web

from ptybroker.core.config import BrokerConfig
from ptybroker.core.pty import Backend, BackendConfig, PTYBackend
from ptybroker.core.session import CLOSE_REGISTRY_SHUTDOWN, Session
from ptybroker.server.ports import bind_with_fallback

logger = logging.getLogger(__name__)

TERMINAL_PATH = "/ws/terminal"

BackendFactory = Callable[[BrokerConfig], Backend]


def default_backend_factory(config: BrokerConfig) -> Backend:
    """A PTY running ``config.shell`` with the configured environment."""
    return PTYBackend(
        [config.shell],
        BackendConfig(
            cwd=config.cwd,
            env=dict(config.env),
            locale=config.locale,
            term=config.term,
            colorterm=config.colorterm,
            kill_grace=config.kill_grace,
        ),
    )


@dataclass
class SessionRegistry:
    """Accepts terminal connections and owns the resulting sessions.

    Example:
        >>> registry = SessionRegistry(BrokerConfig(port=3223))
        >>> await registry.start()
        >>> print(registry.url)  # ws://127.0.0.1:3223 (or the next free port)
        >>> ...
        >>> await registry.shutdown()
    """

    config: BrokerConfig = field(default_factory=BrokerConfig)
    backend_factory: BackendFactory = default_backend_factory
    _sessions: dict[str, Session] = field(default_factory=dict)
    _app: web.Application | None = None
    _runner: web.AppRunner | None = None
    _site: web.TCPSite | None = None
    _port: int | None = None
    _accepting: bool = False
    _shutdown_event: asyncio.Event = field(default_factory=asyncio.Event)
    _stopped: bool = False

    @property
    def port(self) -> int:
        """Port actually bound."""
        if self._port is None:
            raise RuntimeError("Registry is not listening")
        return self._port

    @property
    def port_substituted(self) -> bool:
        """Whether the preferred port was busy and another one was used."""
        return self._port is not None and self.config.port not in (0, self._port)

    @property
    def url(self) -> str:
        return f"ws://{self.config.host}:{self.port}"

    @property
    def is_listening(self) -> bool:
        return self._site is not None

    async def start(self) -> None:
        """Build the application and bind the listener.

        Raises:
            PortUnavailableError: If no port in the fallback range is free.
        """
        if self._runner is not None:
            raise RuntimeError("Registry already started")

        self._app = web.Application()
        self._app.router.add_get("/", self._handle_terminal)
        self._app.router.add_get(TERMINAL_PATH, self._handle_terminal)
        self._app.router.add_get("/health", self._handle_health)

        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        try:
            self._site, self._port = await bind_with_fallback(
                self._runner,
                self.config.host,
                self.config.port,
                self.config.port_attempts,
            )
        except BaseException:
            await self._runner.cleanup()
            self._runner = None
            raise

        self._accepting = True
        logger.info(
            "Session registry listening on %s:%s (shell=%s)",
            self.config.host,
            self._port,
            self.config.shell,
        )

    async def serve(self) -> None:
        """Start, then block until shutdown is requested."""
        await self.start()
        await self.serve_until_shutdown()

    async def serve_until_shutdown(self) -> None:
        """Block until shutdown is requested, then shut down."""
        try:
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()

    def request_shutdown(self) -> None:
        """Ask a running serve() to shut down. Safe from signal handlers."""
        self._shutdown_event.set()

    async def shutdown(self) -> None:
        """Close every session, confirm their processes are gone, stop listening."""
        if self._stopped:
            return
        self._stopped = True
        self._accepting = False
        self._shutdown_event.set()

        sessions = list(self._sessions.values())
        if sessions:
            logger.info("Closing %d session(s)", len(sessions))
        await asyncio.gather(
            *(session.close(CLOSE_REGISTRY_SHUTDOWN) for session in sessions),
            return_exceptions=True,
        )
        grace = self.config.kill_grace + 1.0
        await asyncio.gather(
            *(session.backend.stop(timeout=grace) for session in sessions),
            return_exceptions=True,
        )

        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        self._site = None
        logger.info("Session registry stopped")

    def session_count(self) -> int:
        return len(self._sessions)

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get_session(self, session_id: str) -> Session:
        """Get a live session by id.

        Raises:
            ValueError: If no such session is live.
        """
        session = self._sessions.get(session_id)
        if session is None:
            raise ValueError(f"Session not found: {session_id}")
        return session

    def list_session_ids(self) -> list[str]:
        return list(self._sessions.keys())

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    async def _handle_terminal(self, request: web.Request) -> web.StreamResponse:
        """Handle a terminal WebSocket: one connection, one session."""
        ws = web.WebSocketResponse()
        if not ws.can_prepare(request).ok:
            return web.json_response({"error": "WebSocket upgrade required"}, status=426)
        await ws.prepare(request)

        client_addr = request.remote or "unknown"

        if not self._accepting:
            await ws.close(code=WSCloseCode.GOING_AWAY, message=b"server shutdown")
            return ws

        limit = self.config.max_sessions
        if limit and len(self._sessions) >= limit:
            logger.warning(
                "Refusing connection from %s: %d session(s) open, limit is %d",
                client_addr,
                len(self._sessions),
                limit,
            )
            await ws.close(code=WSCloseCode.TRY_AGAIN_LATER, message=b"session limit reached")
            return ws

        session = Session(ws=ws, backend=self.backend_factory(self.config))
        self._sessions[session.id] = session
        logger.info(
            "Connection from %s (session=%s, open=%d)",
            client_addr,
            session.id,
            len(self._sessions),
        )

        try:
            if await session.start():
                await session.run()
        finally:
            self._sessions.pop(session.id, None)
            logger.debug("Session %s removed (open=%d)", session.id, len(self._sessions))

        return ws

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Handle GET /health."""
        body: dict[str, Any] = {"status": "ok", "sessions": len(self._sessions)}
        return web.json_response(body)
