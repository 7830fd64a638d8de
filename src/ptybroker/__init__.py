"""ptybroker - Interactive PTY session broker.

Lets a browser-based terminal emulator (or any WebSocket client) drive a
real interactive shell on the host over a persistent WebSocket.

Layers:
    core/       Process supervision, wire codec, session lifecycle
    server/     Session registry listener and terminal proxy
    frontends/  Client tab manager and CLI

Key Concepts:
    Backend:    Owns exactly one PTY-backed shell process
    Session:    Binds one connection to one backend
    Registry:   Accepts connections and owns the live sessions
    Tab:        Client-side owner of one connection

Quick Start (server):
    >>> from ptybroker.core.config import BrokerConfig
    >>> from ptybroker.server import SessionRegistry
    >>>
    >>> registry = SessionRegistry(BrokerConfig(port=3223))
    >>> await registry.serve()

Quick Start (client):
    >>> from ptybroker.frontends.client import BufferSurface, TabManager
    >>>
    >>> tabs = TabManager(url="ws://127.0.0.1:3223", surface_factory=BufferSurface)
    >>> tab = await tabs.create_tab()
    >>> await tab.connection.send_input("echo hello\\n")
"""

from ptybroker.__version__ import __version__
from ptybroker.core import (
    BackendConfig,
    BrokerConfig,
    ExitStatus,
    PTYBackend,
    RawInput,
    Resize,
    Session,
    SessionState,
    decode_frame,
)

__all__ = [
    "__version__",
    "BackendConfig",
    "BrokerConfig",
    "ExitStatus",
    "PTYBackend",
    "RawInput",
    "Resize",
    "Session",
    "SessionState",
    "decode_frame",
]
