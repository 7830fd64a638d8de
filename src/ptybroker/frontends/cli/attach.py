"""``ptybroker attach`` - drive a broker shell from the local terminal.

Puts stdin in raw mode, forwards keystrokes as input frames, renders output
through a ConsoleSurface, and turns SIGWINCH into resize messages.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import sys
import termios
import tty
from collections.abc import Iterator

from ptybroker.frontends.client import ConsoleSurface, TabManager

DETACH_KEY = b"\x1d"  # Ctrl+]


@contextlib.contextmanager
def raw_terminal(fd: int) -> Iterator[None]:
    """Raw mode on a tty for the duration of the block."""
    if not os.isatty(fd):
        yield
        return
    saved = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


async def run_attach(url: str) -> int:
    """Attach until the remote side closes or the user detaches.

    Returns:
        Process exit code.
    """
    loop = asyncio.get_running_loop()
    tabs = TabManager(url=url, surface_factory=ConsoleSurface)
    stdin_fd = sys.stdin.fileno()
    detached = asyncio.Event()
    keystrokes: asyncio.Queue[bytes] = asyncio.Queue()

    tab = await tabs.create_tab()
    connection = tab.connection

    def on_stdin() -> None:
        try:
            data = os.read(stdin_fd, 4096)
        except OSError:
            data = b""
        if not data or DETACH_KEY in data:
            detached.set()
            return
        keystrokes.put_nowait(data)

    def on_winch() -> None:
        loop.create_task(tabs.container_resized())

    async def forward_input() -> None:
        while True:
            data = await keystrokes.get()
            await connection.send_input(data)

    with raw_terminal(stdin_fd):
        loop.add_reader(stdin_fd, on_stdin)
        loop.add_signal_handler(signal.SIGWINCH, on_winch)
        forwarder = asyncio.create_task(forward_input())
        closed = asyncio.create_task(connection.wait_closed())
        detach = asyncio.create_task(detached.wait())
        try:
            await asyncio.wait({closed, detach}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            loop.remove_reader(stdin_fd)
            loop.remove_signal_handler(signal.SIGWINCH)
            for task in (forwarder, closed, detach):
                task.cancel()
            await asyncio.gather(forwarder, closed, detach, return_exceptions=True)
            was_detached = detached.is_set()
            await tabs.close_all()

    if was_detached:
        sys.stderr.write("\r\nDetached.\r\n")
        return 0
    return 0 if connection.close_code in (None, 1000) else 1
