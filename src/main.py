#!/usr/bin/env python3

# Entry of minish

from __future__ import annotations

import argparse
import os
import sys
from typing import Iterable, Optional

from nodes import EXIT_FAILURE, SHELL_EXIT, diag
from ops import ShellSession, run_tree
from syntax import ParseError, format_tree, parse_line

__version__ = "0.2.0"

PROMPT = "minish> "
EXIT_INTERRUPTED = 130
TRACE_ENV = "MINISH_TRACE"


def trace_from_env(env: Optional[dict] = None) -> bool:
    value = (env if env is not None else os.environ).get(TRACE_ENV, "")
    return value.lower() in ("1", "true", "yes", "on")


def execute_line(line: str, session: ShellSession, noexec: bool = False) -> int:
    """Parse and run one line.  Blank lines leave the last status unchanged.

    With ``noexec`` the tree is printed instead of run.
    """
    try:
        tree = parse_line(line)
    except ParseError as e:
        diag(f"syntax error: {e}")
        session.last_status = 2
        return session.last_status
    if tree is None:
        return session.last_status
    if noexec:
        print(format_tree(tree), flush=True)
        return session.last_status
    return run_tree(tree, session)


def run_lines(lines: Iterable[str], session: ShellSession, noexec: bool = False) -> int:
    for line in lines:
        if execute_line(line.rstrip("\n"), session, noexec) == SHELL_EXIT:
            break
    return session.last_status


def repl(session: ShellSession, noexec: bool = False) -> int:
    interactive = sys.stdin.isatty()
    while True:
        try:
            line = input(PROMPT if interactive else "")
        except EOFError:
            # Ctrl-D on empty line -> exit
            if interactive:
                print()
            break
        except KeyboardInterrupt:
            # Ctrl-C at prompt -> new line and continue
            print()
            continue
        try:
            status = execute_line(line, session, noexec)
        except KeyboardInterrupt:
            # SIGINT during command; its children are already reaped
            print()
            session.last_status = EXIT_INTERRUPTED
            continue
        if status == SHELL_EXIT:
            break
    return session.last_status


def parse_args(args=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="minish",
        description="minish - a small command-tree shell",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  minish                          # read commands from standard input
  minish -c 'ls | wc -l'          # run one line
  minish -x script.sh             # run a file, tracing each command
  minish -n -c 'a && b | c'       # show the command tree only

Operators: ;  &  |  &&  ||     Redirections: <  >  >>  2>  2>>  &>  &>>
"""
    )
    parser.add_argument("-c", dest="command", metavar="COMMAND",
                        help="Run COMMAND and exit with its status")
    parser.add_argument("-x", "--trace", action="store_true",
                        help=f"Print each command to stderr before running it (also ${TRACE_ENV}=1)")
    parser.add_argument("-n", "--noexec", action="store_true",
                        help="Parse each line and print its command tree without running it")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("script", nargs="?", help="File of commands, one line each")
    return parser.parse_args(args)


def run(args: argparse.Namespace) -> int:
    session = ShellSession(inherit_env=True, trace=args.trace or trace_from_env())
    try:
        if args.command is not None:
            execute_line(args.command, session, args.noexec)
            return session.last_status
        if args.script is not None:
            try:
                with open(args.script, encoding="utf-8") as f:
                    return run_lines(f, session, args.noexec)
            except OSError as e:
                diag(f"{args.script}: {e.strerror or e}")
                return EXIT_FAILURE
    except KeyboardInterrupt:
        # non-interactive runs stop at the first interrupt
        return EXIT_INTERRUPTED
    return repl(session, args.noexec)


def main() -> None:
    sys.exit(run(parse_args()))


if __name__ == "__main__":
    main()
