"""Command-line parsing for the session server."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

from .netutil import parse_port_range

__all__ = [
    "PACKAGE_STRING",
    "UsageError",
    "ServerOptions",
    "parse_server_args",
    "server_usage",
    "version_text",
]

PACKAGE_STRING = "moshkit 0.1.0"

_OPTSTRING = "@:i:p:c:svl:"
_IPV6_PREFIX = "::ffff:"
_INTEGER = re.compile(r"[+-]?[0-9]+")


class UsageError(Exception):
    """The command line cannot be used; the message explains why."""

    exit_status = 1


@dataclass
class ServerOptions:
    """What the server was asked to do."""

    desired_ip: Optional[str] = None
    desired_port: Optional[str] = None
    command_argv: Optional[list[str]] = None
    colors: int = 0
    verbose: int = 0
    locale_vars: list[str] = field(default_factory=list)
    show: Optional[str] = None
    warnings: list[str] = field(default_factory=list)


def server_usage(argv0: str) -> str:
    """The one-line usage message."""
    return (
        f"Usage: {argv0} new [-s] [-v] [-i LOCALADDR] [-p PORT[:PORT2]] "
        "[-c COLORS] [-l NAME=VALUE] [-- COMMAND...]\n"
    )


def version_text(program: str) -> str:
    """The version banner for ``program``."""
    return f"{program} ({PACKAGE_STRING})\n"


def _ssh_ip(environ: Mapping[str, str], warnings: list[str]) -> Optional[str]:
    value = environ.get("SSH_CONNECTION")
    if value is None:
        warnings.append("Warning: SSH_CONNECTION not found; binding to any interface.")
        return None
    parts = value.split()
    if len(parts) < 3:
        warnings.append("Warning: Could not parse SSH_CONNECTION; binding to any interface.")
        return None
    local_ip = parts[2]
    if len(local_ip) > len(_IPV6_PREFIX) and local_ip[: len(_IPV6_PREFIX)].lower() == _IPV6_PREFIX:
        return local_ip[len(_IPV6_PREFIX):]
    return local_ip or None


def _parse_colors(argv0: str, optarg: str) -> int:
    if not _INTEGER.fullmatch(optarg):
        raise UsageError(f"{argv0}: Bad number of colors ({optarg})")
    return int(optarg)


def _parse_new_syntax(
    argv0: str, args: Sequence[str], environ: Mapping[str, str], opts: ServerOptions
) -> None:
    """Scan options anywhere among ``args``; non-options are skipped."""
    takes_arg = {ch for ch, nxt in zip(_OPTSTRING, _OPTSTRING[1:] + " ") if ch != ":" and nxt == ":"}
    known = set(_OPTSTRING) - {":"}
    pending = iter(args)
    for arg in pending:
        if arg == "--":
            break
        if not arg.startswith("-") or arg == "-":
            continue
        pos = 1
        while pos < len(arg):
            opt = arg[pos]
            pos += 1
            optarg: Optional[str] = None
            if opt not in known:
                opts.warnings.append(f"{argv0}: invalid option -- '{opt}'")
                opts.warnings.append(server_usage(argv0).rstrip("\n"))
                continue
            if opt in takes_arg:
                if pos < len(arg):
                    optarg = arg[pos:]
                else:
                    optarg = next(pending, None)
                    if optarg is None:
                        opts.warnings.append(f"{argv0}: option requires an argument -- '{opt}'")
                        opts.warnings.append(server_usage(argv0).rstrip("\n"))
                        break
                pos = len(arg)

            if opt == "i":
                opts.desired_ip = optarg
            elif opt == "p":
                opts.desired_port = optarg
            elif opt == "s":
                opts.desired_ip = _ssh_ip(environ, opts.warnings)
            elif opt == "c":
                opts.colors = _parse_colors(argv0, optarg)
            elif opt == "v":
                opts.verbose += 1
            elif opt == "l":
                opts.locale_vars.append(optarg)
            # "@" only eats its argument


def parse_server_args(argv: Sequence[str], environ: Mapping[str, str]) -> ServerOptions:
    """Parse a full argv (program name first); raise UsageError when unusable."""
    if not argv:
        raise UsageError("empty argument list")
    argv0 = argv[0]
    args = list(argv)
    opts = ServerOptions()

    for index in range(1, len(args)):
        arg = args[index]
        if arg in ("--help", "-h"):
            opts.show = "help"
            return opts
        if arg == "--version":
            opts.show = "version"
            return opts
        if arg == "--":
            if index != len(args) - 1:
                opts.command_argv = args[index + 1:]
            args = args[:index]
            break

    if len(args) >= 2 and args[1] == "new":
        _parse_new_syntax(argv0, args[2:], environ, opts)
    elif len(args) == 1:
        pass
    elif len(args) == 2:
        opts.desired_ip = args[1]
    elif len(args) == 3:
        opts.desired_ip = args[1]
        opts.desired_port = args[2]
    else:
        raise UsageError(server_usage(argv0).rstrip("\n"))

    if opts.desired_port is not None:
        try:
            parse_port_range(opts.desired_port)
        except ValueError as exc:
            raise UsageError(f"{argv0}: Bad UDP port range ({opts.desired_port})") from exc

    return opts