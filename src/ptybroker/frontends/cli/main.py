"""CLI entry point."""

from __future__ import annotations

import asyncio
import os
import signal as sig
import sys

import rich_click as click

from ptybroker.core.config import BrokerConfig, load_env_file
from ptybroker.core.errors import PortUnavailableError
from ptybroker.core.logging_config import configure_logging

# Configure rich-click styling
click.rich_click.USE_RICH_MARKUP = True
click.rich_click.USE_MARKDOWN = True
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.ERRORS_SUGGESTION = "Try running '--help' for more information."
click.rich_click.ERRORS_EPILOGUE = ""
click.rich_click.MAX_WIDTH = 100


def main() -> None:
    """Main entry point for the CLI."""
    cli()


@click.group()
@click.version_option(package_name="ptybroker")
@click.option("--env-file", default=None, help="Load settings from this .env file")
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
@click.pass_context
def cli(ctx: click.Context, env_file: str | None, log_level: str | None) -> None:
    """ptybroker - Interactive shells over WebSocket.

    **Commands:**

        ptybroker serve     Run the session broker

        ptybroker attach    Use a broker session from this terminal

        ptybroker proxy     Relay /ws/terminal to a broker

    Settings are read from PTYBROKER_* environment variables and an
    optional `.env` file. Command options win over both.
    """
    load_env_file(env_file)
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level


def _install_shutdown_handlers(request_shutdown) -> None:
    """Route SIGINT/SIGTERM to a graceful shutdown; a second signal exits."""
    loop = asyncio.get_running_loop()
    shutdown_count = [0]

    def handle_shutdown(sig_name: str) -> None:
        shutdown_count[0] += 1
        if shutdown_count[0] == 1:
            click.echo(f"\nReceived {sig_name}, shutting down gracefully...")
            click.echo("(Press Ctrl+C again to force quit)")
            request_shutdown()
        else:
            click.echo("\nForce quitting...")
            os._exit(1)

    loop.add_signal_handler(sig.SIGTERM, lambda: handle_shutdown("SIGTERM"))
    loop.add_signal_handler(sig.SIGINT, lambda: handle_shutdown("SIGINT"))


@cli.command()
@click.option("--host", default=None, help="Interface to listen on (default: 127.0.0.1)")
@click.option("--port", type=int, default=None, help="Preferred port (default: 3223)")
@click.option("--shell", default=None, help="Shell for every session (default: $SHELL)")
@click.option("--cwd", default=None, help="Working directory for shells (default: home)")
@click.option("--max-sessions", type=int, default=None, help="Concurrent session cap, 0 = none")
@click.option("--port-attempts", type=int, default=None, help="Ports to try when busy")
@click.pass_context
def serve(
    ctx: click.Context,
    host: str | None,
    port: int | None,
    shell: str | None,
    cwd: str | None,
    max_sessions: int | None,
    port_attempts: int | None,
) -> None:
    """Run the session broker.

    Every WebSocket connection gets its own shell. If the port is busy
    the next free one is used and a warning is printed.

    **Examples:**

        ptybroker serve

        ptybroker serve --port 4000 --shell /bin/bash

        ptybroker serve --host 0.0.0.0 --max-sessions 8
    """
    from ptybroker.server import SessionRegistry

    try:
        config = BrokerConfig.from_env(
            host=host,
            port=port,
            shell=shell,
            cwd=cwd,
            max_sessions=max_sessions,
            port_attempts=port_attempts,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e

    configure_logging(level=ctx.obj.get("log_level"))

    registry = SessionRegistry(config)

    async def run() -> None:
        _install_shutdown_handlers(registry.request_shutdown)
        await registry.start()

        if registry.port_substituted:
            click.secho(
                f"Warning: port {config.port} is in use, listening on {registry.port} instead",
                fg="yellow",
                err=True,
            )
        click.echo(f"Terminal broker listening on {registry.url}")
        click.echo(f"Shell: {config.shell}  (Ctrl+C to stop)")

        try:
            await registry.serve_until_shutdown()
        finally:
            click.echo("All sessions closed.")

    try:
        asyncio.run(run())
    except PortUnavailableError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)


@cli.command()
@click.argument("url", required=False)
@click.option("--page", default=None, help="Page URL to resolve the broker address against")
@click.pass_context
def attach(ctx: click.Context, url: str | None, page: str | None) -> None:
    """Use a broker shell from this terminal.

    URL defaults to PTYBROKER_WS_URL, then ws://localhost:3223. Press
    **Ctrl+]** to detach.

    **Examples:**

        ptybroker attach

        ptybroker attach ws://devbox:3223
    """
    from ptybroker.frontends.cli.attach import run_attach
    from ptybroker.frontends.client import resolve_terminal_url

    # Log lines would corrupt the raw-mode screen
    configure_logging(level=ctx.obj.get("log_level") or "WARNING")

    target = url or resolve_terminal_url(page_url=page)
    sys.exit(asyncio.run(run_attach(target)))


@cli.command()
@click.option("--upstream", required=True, help="Broker URL, e.g. ws://127.0.0.1:3223")
@click.option("--host", default="127.0.0.1", help="Interface to listen on")
@click.option("--port", type=int, default=8080, help="Preferred port")
@click.pass_context
def proxy(ctx: click.Context, upstream: str, host: str, port: int) -> None:
    """Relay same-origin /ws/terminal connections to a broker.

    **Example:**

        ptybroker proxy --upstream ws://127.0.0.1:3223 --port 8080
    """
    from ptybroker.server import TerminalProxy

    configure_logging(level=ctx.obj.get("log_level"))

    relay = TerminalProxy(upstream_url=upstream, host=host, port=port)

    async def run() -> None:
        _install_shutdown_handlers(relay.request_shutdown)
        await relay.serve()

    try:
        asyncio.run(run())
    except PortUnavailableError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)
