from __future__ import annotations

import os
import shlex
import signal
import sys
from typing import Callable, Dict, List, NoReturn, Optional

import builtin
from nodes import (
    EXIT_FAILURE,
    EXIT_NOT_EXECUTABLE,
    EXIT_NOT_FOUND,
    EXIT_SUCCESS,
    SHELL_EXIT,
    CommandNode,
    LeafCommand,
    Operator,
    diag,
    exit_code_for,
    signal_name,
    status_from_wait,
)
from redirect import flush_std_streams, open_redirections


class ShellSession:
    """Holds session-wide shell context: the environment table and settings.

    The environment lives here rather than in ``os.environ`` so that an
    assignment only affects this session and the programs it starts.
    """

    def __init__(self, inherit_env: bool = True, trace: bool = False) -> None:
        self.env: Dict[str, str] = dict(os.environ) if inherit_env else {}
        self.trace: bool = trace
        self.last_status: int = EXIT_SUCCESS


# ---- Leaf execution ----

def _trace_leaf(cmd: LeafCommand) -> None:
    words: List[str] = [shlex.quote(w) for w in cmd.argv()]
    if cmd.stdin is not None:
        words.append("<" + shlex.quote(cmd.stdin))
    if cmd.stdout is not None:
        words.append(">" + shlex.quote(cmd.stdout))
    if cmd.stderr is not None:
        words.append("2>" + shlex.quote(cmd.stderr))
    sys.stderr.write("+ " + " ".join(words) + "\n")
    sys.stderr.flush()


def run_leaf(cmd: Optional[LeafCommand], session: ShellSession) -> int:
    """Run one leaf: builtins in-process, anything else as an external program."""
    if cmd is None or not cmd.verb:
        return EXIT_FAILURE
    if session.trace:
        _trace_leaf(cmd)
    handler = builtin.lookup(cmd.verb)
    if handler is not None:
        return handler(cmd, session)
    return run_external(cmd, session)


def _exec_leaf(cmd: LeafCommand, session: ShellSession) -> int:
    """Child side of an external command.  Only returns on failure."""
    try:
        open_redirections(cmd)
    except OSError as e:
        diag(f"{e.filename or cmd.verb}: {e.strerror or e}")
        return EXIT_FAILURE

    argv = cmd.argv()
    try:
        os.execvpe(cmd.verb, argv, session.env)
    except FileNotFoundError as e:
        code, reason = EXIT_NOT_FOUND, e.strerror
    except PermissionError as e:
        code, reason = EXIT_NOT_EXECUTABLE, e.strerror
    except OSError as e:
        code, reason = EXIT_FAILURE, e.strerror or str(e)
    diag(f"Execution failed for '{cmd.verb}': {reason}")
    return code


def run_external(cmd: LeafCommand, session: ShellSession) -> int:
    pid = _spawn(lambda: _exec_leaf(cmd, session))
    if pid is None:
        return EXIT_FAILURE
    return _wait(pid)


# ---- Process helpers ----

def _run_child(body: Callable[[], int]) -> NoReturn:
    code = EXIT_FAILURE
    try:
        code = exit_code_for(body())
    except KeyboardInterrupt:
        code = 128 + signal.SIGINT
    except BaseException as e:
        # a forked child must never unwind into the parent's call stack
        diag(f"child error: {e!r}")
    finally:
        flush_std_streams()
        os._exit(code)


def _spawn(body: Callable[[], int]) -> Optional[int]:
    """Fork a child that runs ``body`` and exits with its status.

    Returns the child pid in the parent, or None if the fork failed.
    """
    flush_std_streams()
    try:
        pid = os.fork()
    except OSError as e:
        diag(f"fork: {e.strerror or e}")
        return None
    if pid == 0:
        _run_child(body)
    return pid


def _wait(pid: int) -> int:
    """Block until ``pid`` is reaped.

    A SIGINT during the wait reaches the child too; the child is still
    reaped before ``KeyboardInterrupt`` propagates.
    """
    interrupted = False
    while True:
        try:
            _, wait_status = os.waitpid(pid, 0)
            break
        except KeyboardInterrupt:
            interrupted = True
        except OSError as e:
            diag(f"wait: {e.strerror or e}")
            if interrupted:
                raise KeyboardInterrupt
            return EXIT_FAILURE
    if interrupted:
        raise KeyboardInterrupt
    if os.WIFSIGNALED(wait_status):
        signum = os.WTERMSIG(wait_status)
        if signum not in (signal.SIGPIPE, signal.SIGINT):
            diag(f"process {pid} terminated by {signal_name(signum)}")
    return status_from_wait(wait_status)


def _wait_pair(pid1: int, pid2: Optional[int]) -> int:
    # both children are reaped even when the first wait is interrupted
    try:
        first = _wait(pid1)
    finally:
        if pid2 is not None:
            second = _wait(pid2)
    if pid2 is None:
        return EXIT_FAILURE
    return _both_ok(first, second)


def _both_ok(first: int, second: int) -> int:
    return EXIT_SUCCESS if first == EXIT_SUCCESS and second == EXIT_SUCCESS else EXIT_FAILURE


# ---- Combinators ----

def run_sequential(left: CommandNode, right: CommandNode, session: ShellSession,
                   level: int, parent: Optional[CommandNode]) -> int:
    status = execute(left, session, level, parent)
    if status == SHELL_EXIT:
        return status
    return execute(right, session, level, parent)


def run_parallel(left: CommandNode, right: CommandNode, session: ShellSession,
                 level: int, parent: Optional[CommandNode]) -> int:
    pid1 = _spawn(lambda: execute(left, session, level + 1, parent))
    if pid1 is None:
        return EXIT_FAILURE
    pid2 = _spawn(lambda: execute(right, session, level + 1, parent))
    return _wait_pair(pid1, pid2)


def run_pipe(left: CommandNode, right: CommandNode, session: ShellSession,
             level: int, parent: Optional[CommandNode]) -> int:
    try:
        read_fd, write_fd = os.pipe()
    except OSError as e:
        diag(f"pipe: {e.strerror or e}")
        return EXIT_FAILURE

    def producer() -> int:
        os.close(read_fd)
        os.dup2(write_fd, 1)
        os.close(write_fd)
        return execute(left, session, level, parent)

    def consumer() -> int:
        os.close(write_fd)
        os.dup2(read_fd, 0)
        os.close(read_fd)
        return execute(right, session, level, parent)

    pid1: Optional[int] = None
    pid2: Optional[int] = None
    try:
        pid1 = _spawn(producer)
        if pid1 is not None:
            pid2 = _spawn(consumer)
    finally:
        # the parent moves no data; the consumer sees EOF once the producer is gone
        os.close(read_fd)
        os.close(write_fd)

    if pid1 is None:
        return EXIT_FAILURE
    return _wait_pair(pid1, pid2)


def run_conditional(node: CommandNode, session: ShellSession, level: int) -> int:
    status = execute(node.left, session, level, node)
    if status == SHELL_EXIT:
        return status
    if node.op is Operator.COND_ON_ZERO:
        run_right = status == EXIT_SUCCESS
    else:
        run_right = status != EXIT_SUCCESS
    if run_right:
        return execute(node.right, session, level + 1, node)
    return status


# ---- Tree dispatch ----

def execute(node: CommandNode, session: ShellSession, level: int = 0,
            parent: Optional[CommandNode] = None) -> int:
    """Run a command tree and return its status.

    ``level`` is the nesting depth handed down to children and ``parent`` the
    enclosing node; neither changes how a node runs.
    """
    match node.op:
        case Operator.NONE:
            return run_leaf(node.leaf, session)
        case Operator.SEQUENTIAL:
            return run_sequential(node.left, node.right, session, level, node)
        case Operator.PARALLEL:
            return run_parallel(node.left, node.right, session, level, node)
        case Operator.PIPE:
            return run_pipe(node.left, node.right, session, level, node)
        case Operator.COND_ON_ZERO | Operator.COND_ON_NONZERO:
            return run_conditional(node, session, level)
        case _:
            diag(f"malformed command tree: unknown operator {node.op!r}")
            return SHELL_EXIT


def run_tree(node: CommandNode, session: ShellSession) -> int:
    """Top-level entry: run one tree and remember its status on the session."""
    status = execute(node, session, 0, None)
    if status != SHELL_EXIT:
        session.last_status = status
    return status
