"""Command tree data model for minish.

The external front end (see ``syntax.py``) hands the engine a tree of
``CommandNode`` objects.  Leaves carry a ``LeafCommand``; inner nodes carry an
``Operator`` and exactly two children.
"""
from __future__ import annotations

import enum
import os
import signal
import sys
from dataclasses import dataclass, field
from typing import List, Optional

PROG = "minish"

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127
# Reserved status: the interpreter must stop reading further trees.
# Outside 0..255 so no real process can report it.
SHELL_EXIT = -100


def diag(message: str) -> None:
    sys.stderr.write(f"{PROG}: {message}\n")
    sys.stderr.flush()


class Operator(enum.Enum):
    NONE = "none"
    SEQUENTIAL = ";"
    PARALLEL = "&"
    PIPE = "|"
    COND_ON_ZERO = "&&"
    COND_ON_NONZERO = "||"


class IOFlags(enum.IntFlag):
    REGULAR = 0
    OUT_APPEND = 1
    ERR_APPEND = 2


@dataclass
class LeafCommand:
    """A single program invocation or builtin call, already expanded."""

    verb: str
    args: List[str] = field(default_factory=list)
    stdin: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    io_flags: IOFlags = IOFlags.REGULAR

    def argv(self) -> List[str]:
        # argv[0] is the program name
        return [self.verb, *self.args]

    def has_redirections(self) -> bool:
        return any(t is not None for t in (self.stdin, self.stdout, self.stderr))


class CommandNode:
    """Tagged union: a leaf (``Operator.NONE``) or an operator with two children."""

    __slots__ = ("op", "leaf", "left", "right")

    def __init__(
        self,
        op: Operator,
        leaf: Optional[LeafCommand] = None,
        left: Optional["CommandNode"] = None,
        right: Optional["CommandNode"] = None,
    ) -> None:
        if op is Operator.NONE:
            if leaf is None or left is not None or right is not None:
                raise ValueError("a leaf node holds exactly one command and no children")
        elif leaf is not None or left is None or right is None:
            raise ValueError(f"operator node {op.value!r} needs two children and no command")
        self.op = op
        self.leaf = leaf
        self.left = left
        self.right = right

    @classmethod
    def simple(cls, verb: str, *args: str, **redirs) -> "CommandNode":
        return cls(Operator.NONE, leaf=LeafCommand(verb, list(args), **redirs))

    @classmethod
    def join(cls, op: Operator, left: "CommandNode", right: "CommandNode") -> "CommandNode":
        return cls(op, left=left, right=right)

    def __repr__(self) -> str:
        if self.op is Operator.NONE:
            return f"CommandNode({self.leaf!r})"
        return f"CommandNode({self.op.name}, {self.left!r}, {self.right!r})"


def exit_code_for(status: int) -> int:
    """Map an engine status onto a process exit code for a forked child.

    ``SHELL_EXIT`` inside a child ends only that child, cleanly.
    """
    if status == SHELL_EXIT:
        return EXIT_SUCCESS
    if 0 <= status <= 255:
        return status
    return EXIT_FAILURE


def status_from_wait(wait_status: int) -> int:
    """Translate a raw ``waitpid`` status into an engine status."""
    code = os.waitstatus_to_exitcode(wait_status)
    if code < 0:
        # killed by a signal
        return 128 + abs(code)
    return code


def signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"
