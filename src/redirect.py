"""Standard-stream redirection for one leaf command.

All of this operates on raw descriptors 0/1/2 so that forked programs and
in-process builtins see exactly the same wiring.
"""
from __future__ import annotations

import os
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

from nodes import IOFlags, LeafCommand

STD_FDS = (0, 1, 2)
CREATE_MODE = 0o644


def flush_std_streams() -> None:
    for stream in (sys.stdout, sys.stderr):
        try:
            stream.flush()
        except (OSError, ValueError):
            # closed or detached stream
            continue


def _open_output(path: str, append: bool) -> int:
    flags = os.O_WRONLY | os.O_CREAT | (os.O_APPEND if append else os.O_TRUNC)
    return os.open(path, flags, CREATE_MODE)


def open_redirections(cmd: LeafCommand) -> None:
    """Rewire descriptors 0/1/2 of the calling process according to ``cmd``.

    Raises ``OSError`` when a target cannot be opened or duplicated; whatever
    was rewired before the failure stays rewired.
    """
    flush_std_streams()

    if cmd.stdin is not None:
        in_fd = os.open(cmd.stdin, os.O_RDONLY)
        try:
            os.dup2(in_fd, 0)
        finally:
            os.close(in_fd)

    out_fd: Optional[int] = None
    err_fd: Optional[int] = None
    try:
        if cmd.stdout is not None:
            out_fd = _open_output(cmd.stdout, bool(cmd.io_flags & IOFlags.OUT_APPEND))
        if cmd.stderr is not None:
            if cmd.stderr == cmd.stdout:
                # one open file description, one shared offset
                err_fd = out_fd
            else:
                err_fd = _open_output(cmd.stderr, bool(cmd.io_flags & IOFlags.ERR_APPEND))

        if out_fd is not None:
            os.dup2(out_fd, 1)
        if err_fd is not None:
            os.dup2(err_fd, 2)
    finally:
        if out_fd is not None:
            os.close(out_fd)
        if err_fd is not None and err_fd != out_fd:
            os.close(err_fd)


@contextmanager
def saved_std_fds() -> Iterator[None]:
    """Save descriptors 0/1/2 and put them back on exit, whatever happens inside."""
    flush_std_streams()
    saved = {fd: os.dup(fd) for fd in STD_FDS}
    try:
        yield
    finally:
        flush_std_streams()
        for fd, copy in saved.items():
            try:
                os.dup2(copy, fd)
            finally:
                os.close(copy)


@contextmanager
def redirected(cmd: LeafCommand) -> Iterator[None]:
    """Apply ``cmd``'s redirections for the duration of the block only."""
    if not cmd.has_redirections():
        yield
        return
    with saved_std_fds():
        open_redirections(cmd)
        yield
