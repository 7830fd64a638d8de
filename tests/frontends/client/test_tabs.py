"""Tests for TabManager."""

from __future__ import annotations

import aiohttp
import pytest

from ptybroker.frontends.client import BufferSurface, TabManager
from ptybroker.frontends.client.tabs import DEFAULT_TITLE
from ptybroker.server.registry import SessionRegistry


@pytest.fixture
async def fake_registry(broker_config, backend_cls):
    backends = []

    def factory(config):
        backend = backend_cls()
        backends.append(backend)
        return backend

    reg = SessionRegistry(broker_config, backend_factory=factory)
    await reg.start()
    try:
        yield reg, backends
    finally:
        await reg.shutdown()


@pytest.fixture
async def tabs(fake_registry):
    reg, _ = fake_registry
    manager = TabManager(url=reg.url, surface_factory=BufferSurface)
    try:
        yield manager
    finally:
        await manager.close_all()


class TestTabLifecycle:
    """Create, activate and close."""

    @pytest.mark.asyncio
    async def test_starts_empty(self, tabs):
        assert tabs.is_empty
        assert tabs.active_tab is None
        assert len(tabs) == 0

    @pytest.mark.asyncio
    async def test_create_tab_becomes_active(self, tabs, fake_registry, eventually):
        reg, _ = fake_registry
        first = await tabs.create_tab()
        second = await tabs.create_tab()

        assert [t.id for t in tabs.tabs] == [first.id, second.id]
        assert first.id != second.id
        assert tabs.active_tab is second
        assert not first.active
        assert first.title == DEFAULT_TITLE
        assert await eventually(lambda: reg.session_count() == 2)

    @pytest.mark.asyncio
    async def test_each_tab_owns_a_session(self, tabs, fake_registry, eventually):
        reg, backends = fake_registry
        first = await tabs.create_tab()
        second = await tabs.create_tab()
        assert await eventually(lambda: len(backends) == 2)

        await first.connection.send_input("one")
        await second.connection.send_input("two")

        assert await eventually(lambda: sorted(b.writes for b in backends) == [[b"one"], [b"two"]])

    @pytest.mark.asyncio
    async def test_close_active_activates_most_recent(self, tabs):
        first = await tabs.create_tab()
        second = await tabs.create_tab()
        third = await tabs.create_tab()

        await tabs.activate(first.id)
        assert await tabs.close_tab(first.id) is True

        assert tabs.active_tab is third
        assert [t.id for t in tabs.tabs] == [second.id, third.id]

    @pytest.mark.asyncio
    async def test_close_inactive_keeps_active(self, tabs):
        first = await tabs.create_tab()
        second = await tabs.create_tab()

        await tabs.close_tab(first.id)

        assert tabs.active_tab is second

    @pytest.mark.asyncio
    async def test_close_last_tab_leaves_empty_state(self, tabs, fake_registry, eventually):
        reg, backends = fake_registry
        only = await tabs.create_tab()

        assert await tabs.close_tab(only.id) is True

        assert tabs.is_empty
        assert tabs.active_tab is None
        assert only.connection.disposed
        assert await eventually(lambda: reg.session_count() == 0)
        assert backends[0].kills_dispatched == 1

    @pytest.mark.asyncio
    async def test_close_tab_twice(self, tabs, fake_registry, eventually):
        """Duplicate teardown of one tab sends one termination."""
        _, backends = fake_registry
        tab = await tabs.create_tab()

        assert await tabs.close_tab(tab.id) is True
        assert await tabs.close_tab(tab.id) is False
        await tab.connection.dispose()

        assert tab.connection.close_requests == 1
        assert await eventually(lambda: backends[0].kill_calls >= 1)
        assert backends[0].kills_dispatched == 1
        assert "Connection closed" not in tab.surface.text

    @pytest.mark.asyncio
    async def test_activate_unknown_tab(self, tabs):
        with pytest.raises(ValueError, match="Tab not found"):
            await tabs.activate("nope")

    @pytest.mark.asyncio
    async def test_failed_create_adds_no_tab(self):
        manager = TabManager(url="ws://127.0.0.1:1", surface_factory=BufferSurface)
        with pytest.raises(aiohttp.ClientError):
            await manager.create_tab()
        assert manager.is_empty

    @pytest.mark.asyncio
    async def test_close_all(self, tabs, fake_registry, eventually):
        reg, _ = fake_registry
        created = [await tabs.create_tab() for _ in range(3)]

        await tabs.close_all()

        assert tabs.is_empty
        assert all(t.connection.disposed for t in created)
        assert await eventually(lambda: reg.session_count() == 0)

    @pytest.mark.asyncio
    async def test_url_callable_resolved_per_tab(self, fake_registry):
        reg, _ = fake_registry
        calls = []

        def resolve() -> str:
            calls.append(1)
            return reg.url

        manager = TabManager(url=resolve, surface_factory=BufferSurface)
        try:
            await manager.create_tab()
            await manager.create_tab()
        finally:
            await manager.close_all()
        assert len(calls) == 2


class TestTabResize:
    """Activation and container resize send fresh sizes."""

    @pytest.mark.asyncio
    async def test_activation_sends_resize(self, tabs, fake_registry, eventually):
        _, backends = fake_registry
        first = await tabs.create_tab()
        await tabs.create_tab()
        assert await eventually(lambda: len(backends) == 2 and backends[0].resizes)
        before = len(backends[0].resizes)

        first.surface.resize_container(90, 33)
        await tabs.activate(first.id)

        assert await eventually(lambda: len(backends[0].resizes) > before)
        assert backends[0].resizes[-1] == (90, 33)

    @pytest.mark.asyncio
    async def test_container_resize_refits_visible_tab(self, tabs, fake_registry, eventually):
        _, backends = fake_registry
        first = await tabs.create_tab()
        second = await tabs.create_tab()
        assert await eventually(lambda: len(backends) == 2 and backends[1].resizes)
        hidden_before = list(backends[0].resizes)

        second.surface.resize_container(200, 60)
        first.surface.resize_container(201, 61)
        assert await tabs.container_resized() == 1

        assert await eventually(lambda: backends[1].resizes[-1] == (200, 60))
        assert backends[0].resizes == hidden_before

    @pytest.mark.asyncio
    async def test_container_resize_clamps(self, tabs, fake_registry, eventually):
        _, backends = fake_registry
        tab = await tabs.create_tab()
        tab.surface.resize_container(2, 2)

        await tabs.container_resized()

        assert await eventually(lambda: backends[0].resizes[-1] == (10, 10))


class TestTabTitle:
    @pytest.mark.asyncio
    async def test_title_from_escape_sequence(self, tabs, fake_registry, eventually):
        _, backends = fake_registry
        tab = await tabs.create_tab()
        assert await eventually(lambda: backends)

        await backends[0].emit(b"\x1b]0;user@devbox: ~/src\x07$ ")

        assert await eventually(lambda: tab.title == "user@devbox: ~/src")

    @pytest.mark.asyncio
    async def test_empty_title_resets_to_default(self, tabs, fake_registry, eventually):
        _, backends = fake_registry
        tab = await tabs.create_tab()
        assert await eventually(lambda: backends)

        await backends[0].emit(b"\x1b]2;build\x07")
        assert await eventually(lambda: tab.title == "build")
        await backends[0].emit(b"\x1b]2;\x07")
        assert await eventually(lambda: tab.title == DEFAULT_TITLE)
