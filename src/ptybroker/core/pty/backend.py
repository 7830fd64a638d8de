"""Backend protocol for terminal process supervision.

A backend owns exactly one interactive process and exposes it as a byte
stream plus resize, kill and exit notification. Sessions only talk to this
interface, so tests can substitute an in-memory backend.

Available backends:
    - PTYBackend: Direct PTY using pty.fork() (default)
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from ptybroker.core.types import DEFAULT_COLS, DEFAULT_ROWS, ExitStatus

DataCallback = Callable[[bytes], Awaitable[None] | None]
ExitCallback = Callable[[ExitStatus], Awaitable[None] | None]


@dataclass
class BackendConfig:
    """Configuration for backends.

    Attributes:
        rows: Initial terminal height in rows.
        cols: Initial terminal width in columns.
        env: Additional environment variables.
        cwd: Working directory (default: the invoking user's home).
        locale: Explicit locale override for LANG.
        term: TERM value for the child.
        colorterm: COLORTERM value for the child.
        kill_grace: Seconds between SIGHUP and SIGKILL after kill().
    """

    rows: int = DEFAULT_ROWS
    cols: int = DEFAULT_COLS
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    locale: str | None = None
    term: str = "xterm-256color"
    colorterm: str = "truecolor"
    kill_grace: float = 1.0


class Backend(ABC):
    """Abstract base class for process backends.

    Write, resize and kill are best-effort: they never raise because the
    process went away underneath them. Only start() fails loudly.
    """

    @property
    @abstractmethod
    def pid(self) -> int | None:
        """Process ID of the child, or None before start."""
        ...

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Whether the process has been started and not yet reaped."""
        ...

    @property
    @abstractmethod
    def exited(self) -> asyncio.Future[ExitStatus]:
        """Future resolved with the exit status once the child is reaped.

        Raises:
            RuntimeError: If the backend was never started.
        """
        ...

    @abstractmethod
    async def start(self) -> None:
        """Spawn the process.

        Raises:
            SpawnError: If the process cannot be created.
        """
        ...

    @abstractmethod
    async def write(self, data: bytes | str) -> None:
        """Write input to the process. Failures are logged, not raised."""
        ...

    @abstractmethod
    async def resize(self, cols: int, rows: int) -> tuple[int, int]:
        """Resize the terminal, floor-clamped. Returns the applied size."""
        ...

    @abstractmethod
    def kill(self) -> bool:
        """Signal the process to terminate. Idempotent.

        Returns:
            True if this call dispatched the termination signal.
        """
        ...

    @abstractmethod
    def on_data(self, callback: DataCallback) -> None:
        """Register a callback for output chunks."""
        ...

    @abstractmethod
    def on_exit(self, callback: ExitCallback) -> None:
        """Register a callback for process exit."""
        ...

    async def wait(self) -> ExitStatus:
        """Wait for the process to be reaped."""
        return await asyncio.shield(self.exited)

    async def stop(self, timeout: float | None = None) -> ExitStatus | None:
        """Kill and wait (bounded) for the process to be reaped.

        Returns:
            The exit status, or None if the backend was never started or
            the process outlived the timeout.
        """
        try:
            exited = self.exited
        except RuntimeError:
            return None
        self.kill()
        try:
            return await asyncio.wait_for(asyncio.shield(exited), timeout)
        except TimeoutError:
            return None
