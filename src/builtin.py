"""Commands interpreted inside the shell process (no fork)."""
from __future__ import annotations

import os
from typing import TYPE_CHECKING, Callable, Dict, Optional

from nodes import EXIT_FAILURE, EXIT_SUCCESS, SHELL_EXIT, LeafCommand, diag
from redirect import redirected

if TYPE_CHECKING:
    from ops import ShellSession

PATH_MAX = 4096

Builtin = Callable[[LeafCommand, "ShellSession"], int]


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


def change_dir(target: Optional[str], session: ShellSession) -> int:
    if target is None:
        return EXIT_SUCCESS

    if target.startswith("/"):
        path = target
    else:
        try:
            cwd = os.getcwd()
        except OSError as e:
            diag(f"cd: {e}")
            return EXIT_FAILURE
        path = cwd + "/" + target
        if len(path) >= PATH_MAX:
            diag(f"cd: path too long: {target}")
            return EXIT_FAILURE

    try:
        old = os.getcwd()
    except OSError:
        old = None
    try:
        os.chdir(path)
    except OSError as e:
        diag(f"cd: {target}: {e.strerror or e}")
        return EXIT_FAILURE

    if old is not None:
        session.env["OLDPWD"] = old
    session.env["PWD"] = path
    return EXIT_SUCCESS


def builtin_cd(cmd: LeafCommand, session: ShellSession) -> int:
    try:
        with redirected(cmd):
            return change_dir(cmd.args[0] if cmd.args else None, session)
    except OSError as e:
        diag(f"cd: {e}")
        return EXIT_FAILURE


def builtin_exit(cmd: LeafCommand, session: ShellSession) -> int:
    # redirections on exit/quit are ignored
    return SHELL_EXIT


def builtin_pwd(cmd: LeafCommand, session: ShellSession) -> int:
    try:
        with redirected(cmd):
            _write_all(1, os.fsencode(os.getcwd()) + b"\n")
    except OSError as e:
        diag(f"pwd: {e}")
        return EXIT_FAILURE
    return EXIT_SUCCESS


def assign(cmd: LeafCommand, session: ShellSession) -> int:
    """Install ``NAME=VALUE`` (the whole verb) into the session environment."""
    name, _, value = cmd.verb.partition("=")
    if not name or "\0" in cmd.verb:
        diag(f"invalid assignment: {cmd.verb}")
        return EXIT_FAILURE
    session.env[name] = value
    return EXIT_SUCCESS


BUILTINS: Dict[str, Builtin] = {
    "cd": builtin_cd,
    "exit": builtin_exit,
    "quit": builtin_exit,
    "pwd": builtin_pwd,
}


def lookup(verb: str) -> Optional[Builtin]:
    """Return the in-process handler for ``verb``, or None for external programs.

    Named builtins win over assignments; anything containing ``=`` is an
    assignment and never a program name.
    """
    handler = BUILTINS.get(verb)
    if handler is not None:
        return handler
    if "=" in verb:
        return assign
    return None
