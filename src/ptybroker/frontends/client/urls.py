"""Resolve the broker WebSocket URL for a page.

Rules, in order:
    1. PTYBROKER_WS_URL override. ``ws://``/``wss://`` is used as is,
       ``//host`` gets the page scheme, ``/path`` is joined to the page
       host, a bare ``host[:port]`` gets the page scheme.
    2. PTYBROKER_WS_MODE=proxy: same-origin ``/ws/terminal``.
    3. PTYBROKER_WS_MODE=direct: page hostname on PTYBROKER_WS_PORT.
    4. Otherwise https pages use the proxy path and http pages go direct.

Without a page (CLI, scripts) the page is taken to be ``http://localhost``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from urllib.parse import urlsplit

from ptybroker.core.config import DEFAULT_PORT

PROXY_PATH = "/ws/terminal"


def resolve_ws_override(raw: str, scheme: str, host: str) -> str:
    """Expand a partial override into a full WebSocket URL.

    Example:
        >>> resolve_ws_override("/ws/terminal", "wss:", "example.com")
        'wss://example.com/ws/terminal'
    """
    if not raw:
        return ""
    if raw.startswith(("ws://", "wss://")):
        return raw
    if raw.startswith("//"):
        return f"{scheme}{raw}"
    if raw.startswith("/"):
        return f"{scheme}//{host}{raw}"
    return f"{scheme}//{raw}"


def resolve_terminal_url(
    page_url: str | None = None,
    override: str | None = None,
    mode: str | None = None,
    port: int | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Pick the WebSocket URL a terminal tab should connect to.

    Args:
        page_url: URL of the page hosting the terminal, if any.
        override: Explicit URL (default: PTYBROKER_WS_URL).
        mode: "proxy" or "direct" (default: PTYBROKER_WS_MODE).
        port: Broker port for direct mode (default: PTYBROKER_WS_PORT or 3223).
        environ: Environment to read defaults from.
    """
    environ = os.environ if environ is None else environ
    override = override if override is not None else environ.get("PTYBROKER_WS_URL", "")
    mode = (mode if mode is not None else environ.get("PTYBROKER_WS_MODE", "")).lower()
    port = port if port is not None else (environ.get("PTYBROKER_WS_PORT") or DEFAULT_PORT)

    if page_url:
        page = urlsplit(page_url)
        secure = page.scheme == "https"
        host = page.netloc
        hostname = page.hostname or "localhost"
    else:
        secure = False
        host = hostname = "localhost"
    scheme = "wss:" if secure else "ws:"

    if override:
        return resolve_ws_override(override, scheme, host)
    if mode == "proxy":
        return f"{scheme}//{host}{PROXY_PATH}"
    if mode == "direct":
        return f"{scheme}//{hostname}:{port}"

    if secure:
        return f"{scheme}//{host}{PROXY_PATH}"
    return f"{scheme}//{hostname}:{port}"
