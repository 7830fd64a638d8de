"""Render surfaces - where a tab's terminal output ends up.

A surface stands in for the terminal emulator widget: it accepts output
bytes, reports its character-grid size when asked to fit its container,
and reports title changes requested by the shell (OSC 0/2 sequences).
"""

from __future__ import annotations

import re
import shutil
import sys
from collections.abc import Callable
from typing import BinaryIO, Protocol, runtime_checkable

from ptybroker.core.types import DEFAULT_COLS, DEFAULT_ROWS

TitleListener = Callable[[str], None]

# ESC ] 0 ; title BEL  (or ST terminated); 2 sets the title only
_TITLE_RE = re.compile(rb"\x1b\][02];([^\x07\x1b]*)(?:\x07|\x1b\\)")


def extract_titles(data: bytes) -> list[str]:
    """Window titles set by escape sequences in a chunk of output.

    Example:
        >>> extract_titles(b"\\x1b]0;user@host: ~\\x07$ ")
        ['user@host: ~']
    """
    return [m.group(1).decode("utf-8", errors="replace") for m in _TITLE_RE.finditer(data)]


@runtime_checkable
class RenderSurface(Protocol):
    """What a terminal connection needs from its display."""

    @property
    def disposed(self) -> bool: ...

    def write(self, data: bytes | str) -> None: ...

    def fit(self) -> tuple[int, int]:
        """Resize to the container and return (cols, rows)."""
        ...

    def dispose(self) -> None: ...

    def set_title_listener(self, listener: TitleListener | None) -> None: ...


class _TitleTracking:
    """Title listener plumbing shared by the concrete surfaces."""

    _title_listener: TitleListener | None = None

    def set_title_listener(self, listener: TitleListener | None) -> None:
        self._title_listener = listener

    def _scan_titles(self, data: bytes) -> None:
        if self._title_listener is None or b"\x1b]" not in data:
            return
        for title in extract_titles(data):
            self._title_listener(title)


class BufferSurface(_TitleTracking):
    """In-memory surface for headless clients and tests.

    The container size is whatever ``cols``/``rows`` are set to; fit()
    simply reports it.
    """

    def __init__(self, cols: int = DEFAULT_COLS, rows: int = DEFAULT_ROWS) -> None:
        self.cols = cols
        self.rows = rows
        self.buffer = bytearray()
        self.fit_calls = 0
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def text(self) -> str:
        return self.buffer.decode("utf-8", errors="replace")

    def write(self, data: bytes | str) -> None:
        if self._disposed:
            raise RuntimeError("write to disposed surface")
        chunk = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        self.buffer.extend(chunk)
        self._scan_titles(chunk)

    def fit(self) -> tuple[int, int]:
        self.fit_calls += 1
        return self.cols, self.rows

    def resize_container(self, cols: int, rows: int) -> None:
        self.cols = cols
        self.rows = rows

    def clear(self) -> None:
        self.buffer.clear()

    def dispose(self) -> None:
        self._disposed = True
        self._title_listener = None


class ConsoleSurface(_TitleTracking):
    """Surface backed by the local terminal (used by ``ptybroker attach``)."""

    def __init__(self, stream: BinaryIO | None = None) -> None:
        self._stream = stream if stream is not None else sys.stdout.buffer
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def write(self, data: bytes | str) -> None:
        if self._disposed:
            return
        chunk = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        self._stream.write(chunk)
        self._stream.flush()
        self._scan_titles(chunk)

    def fit(self) -> tuple[int, int]:
        size = shutil.get_terminal_size((DEFAULT_COLS, DEFAULT_ROWS))
        return size.columns, size.lines

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._title_listener = None
        self._stream.flush()
