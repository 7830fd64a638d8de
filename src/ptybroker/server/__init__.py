"""Server - the network side of the broker.

Classes:
    SessionRegistry: Accepts terminal WebSockets and owns their sessions.
    TerminalProxy: Same-origin relay in front of a registry.

Example:
    >>> from ptybroker.core.config import BrokerConfig
    >>> from ptybroker.server import SessionRegistry
    >>>
    >>> registry = SessionRegistry(BrokerConfig.from_env())
    >>> await registry.serve()
"""

from ptybroker.server.ports import bind_with_fallback
from ptybroker.server.proxy import TerminalProxy
from ptybroker.server.registry import TERMINAL_PATH, SessionRegistry, default_backend_factory

__all__ = [
    "TERMINAL_PATH",
    "SessionRegistry",
    "TerminalProxy",
    "bind_with_fallback",
    "default_backend_factory",
]
