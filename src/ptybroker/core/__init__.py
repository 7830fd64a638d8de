"""Core building blocks: process supervision, wire codec, sessions.

Nothing in core listens on a socket. The server layer accepts connections
and hands each one to a Session.
"""

from ptybroker.core.config import BrokerConfig
from ptybroker.core.errors import (
    BrokerError,
    ConnectionNotOpenError,
    PortUnavailableError,
    SpawnError,
)
from ptybroker.core.protocol import RawInput, Resize, decode_frame, encode_resize
from ptybroker.core.pty import Backend, BackendConfig, PTYBackend
from ptybroker.core.session import Session
from ptybroker.core.types import (
    MAX_DIMENSION,
    MIN_COLS,
    MIN_ROWS,
    Dimensions,
    ExitStatus,
    SessionState,
    clamp_dimensions,
)

__all__ = [
    "MAX_DIMENSION",
    "MIN_COLS",
    "MIN_ROWS",
    "Backend",
    "BackendConfig",
    "BrokerConfig",
    "BrokerError",
    "ConnectionNotOpenError",
    "Dimensions",
    "ExitStatus",
    "PTYBackend",
    "PortUnavailableError",
    "RawInput",
    "Resize",
    "Session",
    "SessionState",
    "SpawnError",
    "clamp_dimensions",
    "decode_frame",
    "encode_resize",
]
