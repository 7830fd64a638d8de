"""TabManager - a set of independent terminal tabs, one of them active.

Each tab exclusively owns its connection (and, through it, one remote
session and shell). Closing a tab disposes its connection; closing the
last tab leaves an empty manager, which is a normal state.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass

import aiohttp

from ptybroker.frontends.client.connection import TerminalConnection
from ptybroker.frontends.client.surface import RenderSurface

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Terminal"

UrlSource = str | Callable[[], str]
SurfaceFactory = Callable[[], RenderSurface]


@dataclass
class Tab:
    """One terminal tab."""

    id: str
    connection: TerminalConnection
    title: str = DEFAULT_TITLE
    active: bool = False

    @property
    def surface(self) -> RenderSurface:
        return self.connection.surface


class TabManager:
    """Owns an ordered collection of tabs with at most one active.

    Example:
        >>> tabs = TabManager(url=resolve_terminal_url, surface_factory=BufferSurface)
        >>> first = await tabs.create_tab()
        >>> second = await tabs.create_tab()  # now active
        >>> await tabs.close_tab(second.id)   # first becomes active again
        >>> await tabs.close_all()
    """

    def __init__(
        self,
        url: UrlSource,
        surface_factory: SurfaceFactory,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            url: Broker URL, or a callable resolving it at tab creation.
            surface_factory: Creates the render surface for each new tab.
            session: Shared aiohttp session. Each connection opens its own
                when omitted.
        """
        self._url = url
        self._surface_factory = surface_factory
        self._session = session
        self._tabs: dict[str, Tab] = {}
        self._ids = itertools.count(1)

    @property
    def tabs(self) -> list[Tab]:
        """Tabs in creation order."""
        return list(self._tabs.values())

    @property
    def active_tab(self) -> Tab | None:
        for tab in self._tabs.values():
            if tab.active:
                return tab
        return None

    @property
    def is_empty(self) -> bool:
        return not self._tabs

    def __len__(self) -> int:
        return len(self._tabs)

    def get_tab(self, tab_id: str) -> Tab:
        tab = self._tabs.get(tab_id)
        if tab is None:
            raise ValueError(f"Tab not found: {tab_id}")
        return tab

    def resolve_url(self) -> str:
        return self._url() if callable(self._url) else self._url

    async def create_tab(self) -> Tab:
        """Open a new connection in a new tab and make it active.

        Raises:
            aiohttp.ClientError: If the broker cannot be reached. No tab is
                added in that case.
        """
        tab_id = str(next(self._ids))
        surface = self._surface_factory()
        connection = TerminalConnection(self.resolve_url(), surface, session=self._session)
        tab = Tab(id=tab_id, connection=connection)
        surface.set_title_listener(lambda title: self._set_title(tab_id, title))

        try:
            await connection.open()
        except BaseException:
            await connection.dispose()
            raise

        self._tabs[tab_id] = tab
        logger.debug("Created tab %s (%d open)", tab_id, len(self._tabs))
        await self.activate(tab_id)
        return tab

    async def close_tab(self, tab_id: str) -> bool:
        """Close a tab and dispose its connection.

        If the tab was active, the most recently created remaining tab
        becomes active. Closing an unknown or already-closed tab is a no-op.

        Returns:
            True if a tab was closed.
        """
        tab = self._tabs.pop(tab_id, None)
        if tab is None:
            return False

        was_active = tab.active
        tab.active = False
        await tab.connection.dispose()
        logger.debug("Closed tab %s (%d open)", tab_id, len(self._tabs))

        if was_active and self._tabs:
            last_id = next(reversed(self._tabs))
            await self.activate(last_id)
        return True

    async def activate(self, tab_id: str) -> Tab:
        """Make a tab the active one, refit it and send its size.

        Raises:
            ValueError: If the tab does not exist.
        """
        target = self.get_tab(tab_id)
        for tab in self._tabs.values():
            tab.active = tab is target
        await target.connection.send_resize()
        return target

    async def container_resized(self) -> int:
        """Refit every visible tab and send fresh sizes.

        Returns:
            Number of resize messages sent.
        """
        sent = 0
        for tab in self.tabs:
            if tab.active and await tab.connection.send_resize() is not None:
                sent += 1
        return sent

    async def close_all(self) -> None:
        """Dispose every tab (parent unmount)."""
        tabs = list(self._tabs.values())
        self._tabs.clear()
        await asyncio.gather(*(tab.connection.dispose() for tab in tabs), return_exceptions=True)

    def _set_title(self, tab_id: str, title: str) -> None:
        tab = self._tabs.get(tab_id)
        if tab is not None:
            tab.title = title or DEFAULT_TITLE
