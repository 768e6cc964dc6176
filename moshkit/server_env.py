"""Environment handling for the session server: bind address, timeouts, shell and child env."""

from __future__ import annotations

import os
import pwd
import re
import sys
from typing import Mapping, NamedTuple, Optional, Sequence

__all__ = [
    "DEFAULT_SHELL",
    "ResolvedCommand",
    "ssh_connection_ip",
    "parse_timeout_env",
    "login_shell",
    "resolve_command",
    "child_environment",
]

DEFAULT_SHELL = "/bin/sh"
_IPV6_PREFIX = "::ffff:"
_LEADING_INT = re.compile(r"[ \t\n\v\f\r]*([+-]?[0-9]+)")


class ResolvedCommand(NamedTuple):
    """The program the server runs, its argv, and whether to show the motd."""

    path: str
    argv: list[str]
    with_motd: bool


def _warn(text: str) -> None:
    print(text, file=sys.stderr)


def ssh_connection_ip(value: Optional[str]) -> str:
    """Local interface address from an SSH_CONNECTION value, or "" to bind to any."""
    if value is None:
        _warn("Warning: SSH_CONNECTION not found; binding to any interface.")
        return ""
    parts = value.split()
    if len(parts) < 3:
        _warn("Warning: Could not parse SSH_CONNECTION; binding to any interface.")
        return ""
    local_ip = parts[2]
    if len(local_ip) > len(_IPV6_PREFIX) and local_ip[: len(_IPV6_PREFIX)].lower() == _IPV6_PREFIX:
        return local_ip[len(_IPV6_PREFIX):]
    return local_ip


def parse_timeout_env(name: str, value: Optional[str]) -> int:
    """Seconds from a timeout variable; unset or empty is 0, negative is ignored as 0.

    A value with trailing junk is reported, but its leading number is kept.
    """
    if not value:
        return 0
    match = _LEADING_INT.match(value)
    number = int(match.group(1)) if match else 0
    if match is None or match.end() != len(value):
        _warn(f"{name} not a valid integer, ignoring")
        return number
    if number < 0:
        _warn(f"{name} is negative, ignoring")
        return 0
    return number


def login_shell(shell: str) -> tuple[str, str]:
    """(path, argv0) for running ``shell`` as a login shell; empty means the Bourne shell."""
    path = shell or DEFAULT_SHELL
    name = path.rsplit("/", 1)[-1]
    return path, "-" + name


def resolve_command(
    command_argv: Optional[Sequence[str]], environ: Mapping[str, str]
) -> ResolvedCommand:
    """The command to run: the given argv, or the user's login shell with the motd."""
    if command_argv:
        argv = list(command_argv)
        return ResolvedCommand(argv[0], argv, False)
    shell = environ.get("SHELL")
    if shell is None:
        try:
            shell = pwd.getpwuid(os.getuid()).pw_shell
        except KeyError as exc:
            raise OSError("getpwuid: no password entry for this user") from exc
    path, argv0 = login_shell(shell)
    return ResolvedCommand(path, [argv0], True)


def child_environment(environ: Mapping[str, str], colors: int) -> dict[str, str]:
    """Environment for the child: TERM by colour count, UTF-8 line drawing, no STY."""
    env = dict(environ)
    env["TERM"] = "xterm-256color" if colors == 256 else "xterm"
    env["NCURSES_NO_UTF8_ACS"] = "1"
    env.pop("STY", None)
    return env