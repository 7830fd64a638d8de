"""Client side: terminal tabs connected to a broker.

Classes:
    TabManager: Ordered tabs, one active, each owning a connection.
    TerminalConnection: One WebSocket plus its render surface.
    BufferSurface: In-memory render surface.
    ConsoleSurface: Render surface on the local terminal.

Example:
    >>> from ptybroker.frontends.client import BufferSurface, TabManager, resolve_terminal_url
    >>>
    >>> tabs = TabManager(url=resolve_terminal_url(), surface_factory=BufferSurface)
    >>> tab = await tabs.create_tab()
"""

from ptybroker.frontends.client.connection import TerminalConnection, disconnect_notice
from ptybroker.frontends.client.surface import (
    BufferSurface,
    ConsoleSurface,
    RenderSurface,
    extract_titles,
)
from ptybroker.frontends.client.tabs import Tab, TabManager
from ptybroker.frontends.client.urls import resolve_terminal_url, resolve_ws_override

__all__ = [
    "BufferSurface",
    "ConsoleSurface",
    "RenderSurface",
    "Tab",
    "TabManager",
    "TerminalConnection",
    "disconnect_notice",
    "extract_titles",
    "resolve_terminal_url",
    "resolve_ws_override",
]
