"""Login-time niceties for the session server: motd, home directory, detached sessions."""

from __future__ import annotations

import os
import pwd
import sys
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterable, MutableMapping, Optional

__all__ = [
    "UtmpEntry",
    "print_motd",
    "motd_hushed",
    "chdir_homedir",
    "device_exists",
    "unattached_sessions",
    "format_unattached_warning",
]

_CHUNK = 256


@dataclass(frozen=True)
class UtmpEntry:
    """The parts of a login-accounting record that matter here."""

    user: str
    host: str
    line: str
    user_process: bool = True


def print_motd(filename: str, out: Optional[BinaryIO] = None) -> bool:
    """Copy ``filename`` to ``out`` (standard output by default); False if it cannot be opened."""
    try:
        motd = open(filename, "rb")
    except OSError:
        return False
    target = out if out is not None else sys.stdout.buffer
    with motd:
        for chunk in iter(lambda: motd.read(_CHUNK), b""):
            if target.write(chunk) == 0:
                break
    return True


def motd_hushed(directory: str = ".") -> bool:
    """Whether ``directory`` holds a .hushlogin file."""
    try:
        os.lstat(os.path.join(directory, ".hushlogin"))
    except OSError:
        return False
    return True


def chdir_homedir(environ: Optional[MutableMapping[str, str]] = None) -> Optional[str]:
    """Change to the home directory and set PWD; return it, or None if it is unknown."""
    env = os.environ if environ is None else environ
    home = env.get("HOME")
    if home is None:
        try:
            home = pwd.getpwuid(os.getuid()).pw_dir
        except KeyError:
            print("getpwuid: no password entry for this user", file=sys.stderr)
            return None
    try:
        os.chdir(home)
    except OSError as exc:
        print(f"chdir: {exc.strerror}", file=sys.stderr)
    env["PWD"] = home
    return home


def device_exists(line: str) -> bool:
    """Whether the terminal device /dev/``line`` exists."""
    try:
        os.lstat("/dev/" + line)
    except OSError:
        return False
    return True


def unattached_sessions(
    entries: Iterable[UtmpEntry],
    username: str,
    ignore_entry: str,
    device_exists: Callable[[str], bool] = device_exists,
) -> list[str]:
    """Host fields of this user's detached sessions, other than ``ignore_entry``."""
    return [
        entry.host
        for entry in entries
        if entry.user_process
        and entry.user == username
        and entry.host.startswith("mosh ")
        and entry.host.endswith("]")
        and entry.host != ignore_entry
        and device_exists(entry.line)
    ]


def format_unattached_warning(sessions: list[str]) -> str:
    """The warning shown at login about detached sessions, or "" if there are none."""
    if not sessions:
        return ""
    if len(sessions) == 1:
        return (
            "\033[37;44mMosh: You have a detached Mosh session on this server "
            f"({sessions[0]}).\033[m\n\n"
        )
    pid_string = "".join(f"        - {session}\n" for session in sessions)
    return (
        f"\033[37;44mMosh: You have {len(sessions)} detached Mosh sessions on this server, "
        f"with PIDs:\n{pid_string}\033[m\n"
    )