"""Child environment for spawned shells."""

from __future__ import annotations

import os
import shutil
import sys
from collections.abc import Mapping

from ptybroker.core.errors import SpawnError


def default_locale(platform: str | None = None) -> str:
    """UTF-8 locale that exists out of the box on the platform."""
    platform = platform or sys.platform
    return "en_US.UTF-8" if platform == "darwin" else "C.UTF-8"


def resolve_locale(
    override: str | None = None,
    environ: Mapping[str, str] | None = None,
    platform: str | None = None,
) -> str:
    """Resolve LANG for a shell so it never starts in a broken locale.

    Fallback chain: explicit override, then LC_ALL, then LANG, then the
    platform default. Empty values count as unset.

    Example:
        >>> resolve_locale("de_DE.UTF-8", {"LANG": "C"})
        'de_DE.UTF-8'
        >>> resolve_locale(None, {}, platform="linux")
        'C.UTF-8'
    """
    environ = os.environ if environ is None else environ
    for candidate in (override, environ.get("LC_ALL"), environ.get("LANG")):
        if candidate:
            return candidate
    return default_locale(platform)


def build_env(
    extra: Mapping[str, str] | None = None,
    term: str = "xterm-256color",
    colorterm: str = "truecolor",
    locale: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Environment for the child: inherited vars plus terminal settings."""
    env = dict(os.environ if environ is None else environ)
    if extra:
        env.update(extra)
    env["TERM"] = term
    env["COLORTERM"] = colorterm
    env["LANG"] = resolve_locale(locale, env)
    return env


def resolve_executable(command: list[str], env: Mapping[str, str] | None = None) -> str:
    """Find the program to exec, checked before forking.

    Raises:
        SpawnError: If the command is empty or not an executable.
    """
    if not command or not command[0]:
        raise SpawnError("No shell command configured", command)

    program = command[0]
    search_path = (env or os.environ).get("PATH")
    found = shutil.which(program, path=search_path)
    if found is None:
        raise SpawnError(f"Shell not found or not executable: {program}", command)
    return found
