"""Pure data types for ptybroker.core.

Simple dataclasses and enums shared by the backend, the codec, the session
and the client. No I/O happens here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

# Terminal sizes below these crash some shells (0x0 in particular)
MIN_COLS = 10
MIN_ROWS = 10
# winsize fields are unsigned shorts
MAX_DIMENSION = 65535

DEFAULT_COLS = 80
DEFAULT_ROWS = 24


def clamp_dimensions(
    cols: int,
    rows: int,
    min_cols: int = MIN_COLS,
    min_rows: int = MIN_ROWS,
) -> tuple[int, int]:
    """Raise each dimension to its floor and cap it at MAX_DIMENSION. Never rejects.

    Example:
        >>> clamp_dimensions(1, 1)
        (10, 10)
        >>> clamp_dimensions(120, 30)
        (120, 30)
        >>> clamp_dimensions(70000, 30)
        (65535, 30)
    """
    cols = min(max(int(cols), min_cols), MAX_DIMENSION)
    rows = min(max(int(rows), min_rows), MAX_DIMENSION)
    return cols, rows


class SessionState(Enum):
    """Session lifecycle states.

    CONNECTING -> ACTIVE -> CLOSING -> CLOSED, and CONNECTING -> CLOSED when
    the spawn fails. CLOSED is terminal.
    """

    CONNECTING = auto()  # Connection accepted, process not yet spawned
    ACTIVE = auto()  # Relaying in both directions
    CLOSING = auto()  # Teardown started
    CLOSED = auto()  # Terminal state


@dataclass(frozen=True)
class Dimensions:
    """Terminal size in character cells."""

    cols: int = DEFAULT_COLS
    rows: int = DEFAULT_ROWS

    def clamped(self) -> Dimensions:
        cols, rows = clamp_dimensions(self.cols, self.rows)
        return Dimensions(cols=cols, rows=rows)

    def __str__(self) -> str:
        return f"{self.cols}x{self.rows}"


@dataclass(frozen=True)
class ExitStatus:
    """How a child process ended.

    Attributes:
        exit_code: Exit code if the process exited normally.
        signal: Signal number if the process was killed by a signal.
    """

    exit_code: int | None = None
    signal: int | None = None

    @classmethod
    def from_wait_status(cls, status: int) -> ExitStatus:
        """Decode a raw ``os.waitpid`` status."""
        if os.WIFEXITED(status):
            return cls(exit_code=os.WEXITSTATUS(status))
        if os.WIFSIGNALED(status):
            return cls(signal=os.WTERMSIG(status))
        return cls()

    @property
    def killed_by_signal(self) -> bool:
        return self.signal is not None

    def to_dict(self) -> dict[str, Any]:
        return {"exit_code": self.exit_code, "signal": self.signal}
