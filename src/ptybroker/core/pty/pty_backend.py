"""PTY Backend - Direct pseudo-terminal process supervision.

Spawns the shell with pty.fork() and drives the master side from the event
loop: reads wait on add_reader, partial writes wait on add_writer, and the
child is reaped by polling waitpid so no zombie outlives the backend.
"""

from __future__ import annotations

import asyncio
import fcntl
import inspect
import logging
import os
import pty
import signal
import struct
import termios
from collections.abc import AsyncIterator

from ptybroker.core.config import home_directory
from ptybroker.core.errors import SpawnError
from ptybroker.core.pty.backend import Backend, BackendConfig, DataCallback, ExitCallback
from ptybroker.core.pty.environment import build_env, resolve_executable
from ptybroker.core.types import ExitStatus, clamp_dimensions

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536
REAP_POLL_INTERVAL = 0.05
# Bound on how long exit notification waits for buffered output to drain
DRAIN_TIMEOUT = 0.5


class PTYBackend(Backend):
    """Direct PTY backend using pty.fork().

    Example:
        >>> backend = PTYBackend(["/bin/bash"], BackendConfig(cwd="/tmp"))
        >>> backend.on_data(lambda chunk: print(chunk))
        >>> await backend.start()
        >>> await backend.write("echo hello\\n")
        >>> backend.kill()
        >>> status = await backend.wait()
    """

    def __init__(self, command: list[str], config: BackendConfig | None = None) -> None:
        """Initialize PTY backend.

        Args:
            command: Command and arguments to run (e.g., ["/bin/zsh"]).
            config: Backend configuration options.
        """
        self._command = list(command)
        self._config = config or BackendConfig()
        self._cols, self._rows = clamp_dimensions(self._config.cols, self._config.rows)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._master_fd: int | None = None
        self._pid: int | None = None
        self._running = False
        self._kill_sent = False
        self._exited: asyncio.Future[ExitStatus] | None = None
        self._data_callbacks: list[DataCallback] = []
        self._exit_callbacks: list[ExitCallback] = []
        self._pump_task: asyncio.Task[None] | None = None
        self._reap_task: asyncio.Task[None] | None = None
        self._escalation: asyncio.TimerHandle | None = None

    @property
    def pid(self) -> int | None:
        """Process ID of the child process."""
        return self._pid

    @property
    def is_running(self) -> bool:
        """Whether the process is currently running."""
        return self._running

    @property
    def config(self) -> BackendConfig:
        """Backend configuration."""
        return self._config

    @property
    def command(self) -> list[str]:
        return list(self._command)

    @property
    def size(self) -> tuple[int, int]:
        """Last applied (cols, rows)."""
        return self._cols, self._rows

    @property
    def exited(self) -> asyncio.Future[ExitStatus]:
        if self._exited is None:
            raise RuntimeError("PTY not started")
        return self._exited

    def on_data(self, callback: DataCallback) -> None:
        self._data_callbacks.append(callback)

    def on_exit(self, callback: ExitCallback) -> None:
        self._exit_callbacks.append(callback)

    async def start(self) -> None:
        """Start the PTY process.

        The shell and working directory are validated before forking so
        that a bad configuration surfaces here instead of as a child that
        exits immediately.

        Raises:
            RuntimeError: If already started.
            SpawnError: If the process fails to start.
        """
        if self._pid is not None:
            raise RuntimeError("PTY already started")

        cwd = self._config.cwd or home_directory()
        if not os.path.isdir(cwd):
            raise SpawnError(f"Working directory does not exist: {cwd}", self._command)

        env = build_env(
            self._config.env,
            term=self._config.term,
            colorterm=self._config.colorterm,
            locale=self._config.locale,
        )
        executable = resolve_executable(self._command, env)

        self._loop = asyncio.get_running_loop()
        try:
            pid, master_fd = pty.fork()
        except OSError as e:
            raise SpawnError(f"Failed to fork PTY: {e}", self._command) from e

        if pid == 0:
            # Child: never returns into the event loop
            try:
                os.chdir(cwd)
                os.execvpe(executable, self._command, env)
            except OSError as e:
                os.write(2, f"ptybroker: exec {executable} failed: {e}\r\n".encode())
            finally:
                os._exit(127)

        self._pid = pid
        self._master_fd = master_fd
        self._running = True
        self._exited = self._loop.create_future()

        self._set_winsize(self._cols, self._rows)

        flags = fcntl.fcntl(master_fd, fcntl.F_GETFL)
        fcntl.fcntl(master_fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)

        self._pump_task = asyncio.create_task(self._pump(), name=f"pty-pump-{pid}")
        self._reap_task = asyncio.create_task(self._reap(), name=f"pty-reap-{pid}")

        logger.info(
            "Spawned %s (pid=%s, cwd=%s, size=%sx%s)",
            executable,
            pid,
            cwd,
            self._cols,
            self._rows,
        )

    async def write(self, data: bytes | str) -> None:
        """Write data to PTY stdin.

        Partial writes on the non-blocking fd are completed by waiting for
        writability, so input order is preserved.

        Raises:
            RuntimeError: If PTY was never started.
        """
        if self._exited is None:
            raise RuntimeError("PTY not started")

        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        view = memoryview(payload)

        while view:
            fd = self._master_fd
            if fd is None or not self._running:
                logger.debug("Dropped %d input bytes, pid=%s has exited", len(view), self._pid)
                return
            try:
                written = os.write(fd, view)
            except BlockingIOError:
                await self._wait_fd(fd, writable=True)
                continue
            except OSError as e:
                logger.warning("PTY write failed (pid=%s): %s", self._pid, e)
                return
            view = view[written:]

    async def resize(self, cols: int, rows: int) -> tuple[int, int]:
        """Resize the PTY window, raising each dimension to the floor first.

        Returns:
            The (cols, rows) actually applied.
        """
        cols, rows = clamp_dimensions(cols, rows)
        self._cols, self._rows = cols, rows
        if self._master_fd is None:
            return cols, rows
        try:
            self._set_winsize(cols, rows)
        except (OSError, struct.error) as e:
            logger.warning("PTY resize to %sx%s failed (pid=%s): %s", cols, rows, self._pid, e)
        return cols, rows

    def kill(self) -> bool:
        """Send SIGHUP now and SIGKILL after ``kill_grace`` if still alive.

        Interactive shells ignore SIGTERM, so hangup is the polite signal.
        Safe to call any number of times, before or after exit.
        """
        if self._pid is None or self._kill_sent:
            return False
        if self._exited is not None and self._exited.done():
            return False

        self._kill_sent = True
        self._signal(signal.SIGHUP)
        if self._loop is not None:
            self._escalation = self._loop.call_later(self._config.kill_grace, self._force_kill)
        logger.debug("Sent SIGHUP to pid=%s", self._pid)
        return True

    async def read_stream(self, chunk_size: int = READ_CHUNK_SIZE) -> AsyncIterator[bytes]:
        """Stream output chunks as they arrive, until EOF.

        Yields:
            Raw bytes as produced by the PTY.

        Raises:
            RuntimeError: If PTY is not started.
        """
        if self._master_fd is None:
            raise RuntimeError("PTY not started")

        while True:
            fd = self._master_fd
            if fd is None:
                break
            try:
                data = os.read(fd, chunk_size)
            except BlockingIOError:
                await self._wait_fd(fd)
                continue
            except OSError:
                # EIO: the slave side is closed, the child is gone
                break
            if not data:
                break
            yield data

    async def _pump(self) -> None:
        """Deliver output to data callbacks in production order.

        Async callbacks are awaited before the next read, so a slow consumer
        applies backpressure to the PTY instead of growing a buffer.
        """
        async for chunk in self.read_stream():
            for callback in list(self._data_callbacks):
                try:
                    result = callback(chunk)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception("Data callback failed (pid=%s)", self._pid)

    async def _reap(self) -> None:
        """Poll for child exit, then drain output, release the fd and notify."""
        assert self._pid is not None and self._exited is not None

        while True:
            try:
                pid, wait_status = os.waitpid(self._pid, os.WNOHANG)
            except ChildProcessError:
                status = ExitStatus()
                break
            if pid != 0:
                status = ExitStatus.from_wait_status(wait_status)
                break
            await asyncio.sleep(REAP_POLL_INTERVAL)

        self._running = False
        if self._escalation is not None:
            self._escalation.cancel()
            self._escalation = None

        if self._pump_task is not None and not self._pump_task.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._pump_task), DRAIN_TIMEOUT)
            except TimeoutError:
                self._pump_task.cancel()

        self._close_fd()

        logger.info(
            "Process exited (pid=%s, code=%s, signal=%s)",
            self._pid,
            status.exit_code,
            status.signal,
        )

        if not self._exited.done():
            self._exited.set_result(status)

        for callback in list(self._exit_callbacks):
            try:
                result = callback(status)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Exit callback failed (pid=%s)", self._pid)

    def _force_kill(self) -> None:
        self._escalation = None
        if self._exited is not None and self._exited.done():
            return
        logger.warning("pid=%s ignored SIGHUP, sending SIGKILL", self._pid)
        self._signal(signal.SIGKILL)

    def _signal(self, signum: int) -> None:
        if self._pid is None:
            return
        try:
            os.kill(self._pid, signum)
        except ProcessLookupError:
            pass  # Already gone, the reaper will notice

    def _close_fd(self) -> None:
        fd, self._master_fd = self._master_fd, None
        if fd is None:
            return
        if self._loop is not None:
            self._loop.remove_reader(fd)
            self._loop.remove_writer(fd)
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
        try:
            os.close(fd)
        except OSError:
            pass

    async def _wait_fd(self, fd: int, writable: bool = False) -> None:
        """Wait until fd is readable (or writable) via the event loop."""
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()

        def _ready() -> None:
            if not waiter.done():
                waiter.set_result(None)

        if writable:
            loop.add_writer(fd, _ready)
        else:
            loop.add_reader(fd, _ready)
        try:
            await waiter
        finally:
            if self._master_fd == fd:
                if writable:
                    loop.remove_writer(fd)
                else:
                    loop.remove_reader(fd)

    def _set_winsize(self, cols: int, rows: int) -> None:
        """Set the terminal window size (TIOCSWINSZ takes rows first)."""
        if self._master_fd is not None:
            winsize = struct.pack("HHHH", rows, cols, 0, 0)
            fcntl.ioctl(self._master_fd, termios.TIOCSWINSZ, winsize)
