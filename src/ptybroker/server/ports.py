"""Listener binding with upward port fallback.

When the preferred port is taken the broker moves to the next one instead
of failing, and says so loudly. It never touches whatever holds the port.
"""

from __future__ import annotations

import errno
import logging

from aiohttp import web

from ptybroker.core.errors import PortUnavailableError

logger = logging.getLogger(__name__)

MAX_PORT = 65535


def bound_port(runner: web.AppRunner) -> int:
    """Port the runner's site actually listens on (resolves port 0)."""
    addresses = runner.addresses
    if not addresses:
        raise RuntimeError("Runner is not listening")
    port: int = addresses[-1][1]
    return port


async def bind_with_fallback(
    runner: web.AppRunner,
    host: str,
    preferred: int,
    max_attempts: int = 50,
) -> tuple[web.TCPSite, int]:
    """Start a TCPSite on ``preferred`` or the next free port above it.

    Args:
        runner: An AppRunner that has already been set up.
        host: Interface to bind.
        preferred: First port to try. Port 0 asks the OS for any free port.
        max_attempts: Consecutive ports to try before giving up.

    Returns:
        The started site and the port it is bound to.

    Raises:
        PortUnavailableError: If every port in the range is in use.
        OSError: For bind failures other than "address in use".
    """
    if preferred == 0:
        site = web.TCPSite(runner, host, 0)
        await site.start()
        return site, bound_port(runner)

    last_error: OSError | None = None
    for port in range(preferred, min(preferred + max_attempts, MAX_PORT + 1)):
        site = web.TCPSite(runner, host, port)
        try:
            await site.start()
        except OSError as e:
            await site.stop()
            if e.errno != errno.EADDRINUSE:
                raise
            logger.warning("Port %s is already in use, trying %s", port, port + 1)
            last_error = e
            continue

        if port != preferred:
            logger.warning(
                "Preferred port %s was busy, listening on %s instead",
                preferred,
                port,
            )
        return site, port

    raise PortUnavailableError(preferred, max_attempts) from last_error
