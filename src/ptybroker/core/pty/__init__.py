"""Process supervision for PTY-backed shells.

Backends:
    PTYBackend: Direct pseudo-terminal using pty.fork() (default)

Classes:
    Backend: Abstract base class for backends
    BackendConfig: Configuration for backends

Example:
    >>> from ptybroker.core.pty import PTYBackend, BackendConfig
    >>>
    >>> backend = PTYBackend(["/bin/bash"], BackendConfig(cwd="/project"))
    >>> backend.on_data(handle_chunk)
    >>> await backend.start()
    >>> await backend.resize(120, 30)
    >>> await backend.stop()
"""

from ptybroker.core.pty.backend import Backend, BackendConfig
from ptybroker.core.pty.environment import build_env, resolve_executable, resolve_locale
from ptybroker.core.pty.pty_backend import PTYBackend

__all__ = [
    "Backend",
    "BackendConfig",
    "PTYBackend",
    "build_env",
    "resolve_executable",
    "resolve_locale",
]
