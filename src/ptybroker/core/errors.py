"""Broker exception types.

Only conditions that callers must act on are exceptions. Write and resize
failures on a live PTY are logged and swallowed by the backend, and a frame
that fails to parse as a control message is simply raw input.
"""

from __future__ import annotations


class BrokerError(Exception):
    """Base class for ptybroker errors."""

    pass


class SpawnError(BrokerError):
    """The shell process could not be created.

    Fatal to the one session that attempted the spawn, never to the registry.
    """

    def __init__(self, message: str, command: list[str] | None = None) -> None:
        super().__init__(message)
        self.command = command or []


class PortUnavailableError(BrokerError):
    """No free port was found while searching upward from the preferred one."""

    def __init__(self, preferred: int, attempts: int) -> None:
        super().__init__(
            f"No free port in range {preferred}-{preferred + attempts - 1} "
            f"({attempts} attempts)"
        )
        self.preferred = preferred
        self.attempts = attempts


class ConnectionNotOpenError(BrokerError):
    """A client connection was used before open() or after disposal."""

    pass
