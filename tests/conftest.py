"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import inspect
import os
import shutil
from types import SimpleNamespace

import pytest
from aiohttp import WSMsgType

from ptybroker.core.config import BrokerConfig
from ptybroker.core.errors import SpawnError
from ptybroker.core.pty.backend import Backend, DataCallback, ExitCallback
from ptybroker.core.types import ExitStatus, clamp_dimensions
from ptybroker.server.registry import SessionRegistry

# A shell that exists everywhere and has no startup files to slow it down
TEST_SHELL = shutil.which("sh") or "/bin/sh"


class FakeBackend(Backend):
    """In-memory backend that records what the session asked of it."""

    def __init__(self, fail_spawn: bool = False) -> None:
        self.fail_spawn = fail_spawn
        self.started = False
        self.writes: list[bytes] = []
        self.resizes: list[tuple[int, int]] = []
        self.kill_calls = 0
        self.kills_dispatched = 0
        self._exited: asyncio.Future[ExitStatus] | None = None
        self._data_callbacks: list[DataCallback] = []
        self._exit_callbacks: list[ExitCallback] = []

    @property
    def pid(self) -> int | None:
        return 4242 if self.started else None

    @property
    def is_running(self) -> bool:
        return self.started and self._exited is not None and not self._exited.done()

    @property
    def exited(self) -> asyncio.Future[ExitStatus]:
        if self._exited is None:
            raise RuntimeError("PTY not started")
        return self._exited

    async def start(self) -> None:
        if self.fail_spawn:
            raise SpawnError("Shell not found or not executable: /nonexistent", ["/nonexistent"])
        self.started = True
        self._exited = asyncio.get_running_loop().create_future()

    async def write(self, data: bytes | str) -> None:
        self.writes.append(data.encode() if isinstance(data, str) else bytes(data))

    async def resize(self, cols: int, rows: int) -> tuple[int, int]:
        size = clamp_dimensions(cols, rows)
        self.resizes.append(size)
        return size

    def kill(self) -> bool:
        self.kill_calls += 1
        if not self.started or self.kills_dispatched or self._exited.done():
            return False
        self.kills_dispatched += 1
        return True

    def on_data(self, callback: DataCallback) -> None:
        self._data_callbacks.append(callback)

    def on_exit(self, callback: ExitCallback) -> None:
        self._exit_callbacks.append(callback)

    async def emit(self, chunk: bytes) -> None:
        """Simulate process output."""
        for callback in self._data_callbacks:
            result = callback(chunk)
            if inspect.isawaitable(result):
                await result

    async def finish(self, status: ExitStatus | None = None) -> None:
        """Simulate the process exiting and being reaped."""
        status = status or ExitStatus(exit_code=0)
        self._exited.set_result(status)
        for callback in self._exit_callbacks:
            result = callback(status)
            if inspect.isawaitable(result):
                await result


class FakeWebSocket:
    """Stands in for a server-side WebSocketResponse."""

    def __init__(self) -> None:
        self.sent: list[bytes] = []
        self.close_calls: list[tuple[int, bytes]] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    def feed(self, data: bytes | str) -> None:
        msg_type = WSMsgType.TEXT if isinstance(data, str) else WSMsgType.BINARY
        self._inbox.put_nowait(SimpleNamespace(type=msg_type, data=data, extra=None))

    def feed_close(self) -> None:
        self._inbox.put_nowait(None)

    async def send_bytes(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        self.sent.append(data)

    async def close(self, *, code: int = 1000, message: bytes = b"") -> bool:
        if self.closed:
            return False
        self.closed = True
        self.close_calls.append((code, message))
        self._inbox.put_nowait(None)
        return True

    def exception(self) -> BaseException | None:
        return None

    @property
    def close_code(self) -> int | None:
        return self.close_calls[0][0] if self.close_calls else None

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self):
        msg = await self._inbox.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


def process_gone(pid: int) -> bool:
    """True once pid has been reaped.

    kill(pid, 0) still succeeds on a zombie, so this is only true when the
    process is neither running nor waiting to be reaped.
    """
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    return False


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.05) -> bool:
    """Poll predicate until it is true or the timeout elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def gone():
    """Predicate: has this pid been reaped."""
    return process_gone


@pytest.fixture
def eventually():
    """Async poll helper: ``assert await eventually(lambda: ...)``."""
    return wait_until


@pytest.fixture
def backend_cls() -> type[FakeBackend]:
    return FakeBackend


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def fake_ws() -> FakeWebSocket:
    return FakeWebSocket()


@pytest.fixture
def broker_config(tmp_path) -> BrokerConfig:
    """Config for a throwaway broker on an OS-assigned port."""
    return BrokerConfig(
        host="127.0.0.1",
        port=0,
        shell=TEST_SHELL,
        cwd=str(tmp_path),
        env={"PS1": "$ ", "ENV": ""},
        kill_grace=0.5,
    )


@pytest.fixture
async def registry(broker_config):
    """A running SessionRegistry, shut down after the test."""
    reg = SessionRegistry(broker_config)
    await reg.start()
    try:
        yield reg
    finally:
        await reg.shutdown()
