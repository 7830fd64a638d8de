"""Broker configuration.

All settings come from PTYBROKER_* environment variables, optionally loaded
from a ``.env`` file, and can be overridden field by field from the CLI.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3223
DEFAULT_TERM = "xterm-256color"
DEFAULT_COLORTERM = "truecolor"
DEFAULT_PORT_ATTEMPTS = 50
DEFAULT_KILL_GRACE = 1.0

_SHELL_CANDIDATES = ("/bin/zsh", "/bin/bash", "/bin/sh")


def default_shell() -> str:
    """Pick the shell every session runs.

    ``$SHELL`` first, then the first installed of zsh, bash and sh.
    """
    shell = os.environ.get("SHELL")
    if shell and shutil.which(shell):
        return shell
    for candidate in _SHELL_CANDIDATES:
        if os.path.exists(candidate):
            return candidate
    return "sh"


def home_directory() -> str:
    """Working directory for spawned shells: the invoking user's home."""
    return os.environ.get("HOME") or str(Path.home())


def load_env_file(path: str | os.PathLike[str] | None = None) -> bool:
    """Load a ``.env`` file into the process environment.

    Existing variables are not overridden. Without a path, ``.env`` in the
    current directory is used if present.

    Returns:
        True if a file was loaded.
    """
    from dotenv import load_dotenv

    env_path = Path(path) if path else Path.cwd() / ".env"
    if not env_path.is_file():
        return False
    return load_dotenv(env_path, override=False)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass
class BrokerConfig:
    """Configuration for the session registry and the shells it spawns.

    Attributes:
        host: Interface to listen on.
        port: Preferred port. The next free port is used if it is busy.
        shell: Shell command spawned for every session.
        cwd: Working directory for shells (default: home directory).
        term: TERM value exported to shells.
        colorterm: COLORTERM value exported to shells.
        locale: Explicit locale override (LANG) for shells.
        max_sessions: Concurrent session cap, 0 for unbounded.
        port_attempts: How many consecutive ports to try before giving up.
        kill_grace: Seconds between SIGHUP and SIGKILL on close.
        env: Extra environment variables for shells.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    shell: str = field(default_factory=default_shell)
    cwd: str = field(default_factory=home_directory)
    term: str = DEFAULT_TERM
    colorterm: str = DEFAULT_COLORTERM
    locale: str | None = None
    max_sessions: int = 0
    port_attempts: int = DEFAULT_PORT_ATTEMPTS
    kill_grace: float = DEFAULT_KILL_GRACE
    env: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port must be between 0 and 65535, got {self.port}")
        if self.max_sessions < 0:
            raise ValueError("max_sessions must be >= 0")
        if self.port_attempts < 1:
            raise ValueError("port_attempts must be >= 1")
        if self.kill_grace < 0:
            raise ValueError("kill_grace must be >= 0")

    @classmethod
    def from_env(cls, env_file: str | None = None, **overrides: Any) -> BrokerConfig:
        """Build a config from PTYBROKER_* variables.

        Args:
            env_file: Optional ``.env`` file to load first.
            **overrides: Field values that win over the environment.
                ``None`` values are ignored so CLI options can be passed
                straight through.

        Raises:
            ValueError: If a numeric variable does not parse.
        """
        load_env_file(env_file)

        values: dict[str, Any] = {
            "host": os.environ.get("PTYBROKER_HOST") or DEFAULT_HOST,
            "port": _env_int("PTYBROKER_PORT", DEFAULT_PORT),
            "shell": os.environ.get("PTYBROKER_SHELL") or default_shell(),
            "term": os.environ.get("PTYBROKER_TERM") or DEFAULT_TERM,
            "colorterm": os.environ.get("PTYBROKER_COLORTERM") or DEFAULT_COLORTERM,
            "locale": os.environ.get("PTYBROKER_LOCALE") or None,
            "max_sessions": _env_int("PTYBROKER_MAX_SESSIONS", 0),
            "port_attempts": _env_int("PTYBROKER_PORT_ATTEMPTS", DEFAULT_PORT_ATTEMPTS),
            "kill_grace": _env_float("PTYBROKER_KILL_GRACE", DEFAULT_KILL_GRACE),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> BrokerConfig:
        """Copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
