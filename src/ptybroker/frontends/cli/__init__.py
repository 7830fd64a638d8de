"""CLI frontend for ptybroker.

Commands:
    ptybroker serve     Run the session broker
    ptybroker attach    Use a broker shell from this terminal
    ptybroker proxy     Relay /ws/terminal to a broker

Example:
    $ ptybroker serve --port 3223
    $ ptybroker attach ws://127.0.0.1:3223
"""

from ptybroker.frontends.cli.main import main

__all__ = ["main"]
