"""Minimal front end: turn one line of text into a ``CommandNode`` tree.

Quoting follows the usual shell rules for '...', "..." and backslash, but
no expansion of any kind is done; words reach the engine as typed.

Operator precedence, lowest first: ``;``, ``&``, ``&&``/``||``, ``|``.
"""
from __future__ import annotations

from typing import List, Optional, Tuple

from nodes import CommandNode, IOFlags, LeafCommand, Operator

REDIRECTIONS = {"<", ">", ">>", "2>", "2>>", "&>", "&>>"}
CONTROL = {";", "&", "|", "&&", "||"}


class ParseError(ValueError):
    pass


class Token:
    def __init__(self, kind: str, value: str) -> None:
        # kind in { 'WORD', 'OP' }
        self.kind = kind
        self.value = value

    def is_op(self, *values: str) -> bool:
        return self.kind == 'OP' and (not values or self.value in values)

    def __repr__(self) -> str:
        return f"Token({self.kind!r}, {self.value!r})"


def tokenize(line: str) -> List[Token]:
    tokens: List[Token] = []
    buf: List[str] = []
    # a word exists once any quote was seen, even if it is empty ('')
    have_word = False
    quoted = False
    i = 0
    n = len(line)
    in_single = False
    in_double = False

    def flush_buf() -> None:
        nonlocal have_word, quoted
        if have_word:
            tokens.append(Token('WORD', ''.join(buf)))
        buf.clear()
        have_word = quoted = False

    while i < n:
        ch = line[i]
        if ch == "'" and not in_double:
            in_single = not in_single
            have_word = quoted = True
            i += 1
            continue
        if ch == '"' and not in_single:
            in_double = not in_double
            have_word = quoted = True
            i += 1
            continue
        if ch == '\\' and not in_single:
            if i + 1 < n:
                nxt = line[i + 1]
                if in_double and nxt not in ('"', '\\', '$', '`'):
                    buf.append('\\')
                buf.append(nxt)
                i += 2
            else:
                buf.append('\\')
                i += 1
            have_word = quoted = True
            continue
        if not in_single and not in_double:
            if ch.isspace():
                flush_buf()
                i += 1
                continue
            if ch == '#' and not have_word:
                break
            if ch in ('|', '&', ';', '<', '>'):
                nxt = line[i + 1] if i + 1 < n else ''
                nxt2 = line[i + 2] if i + 2 < n else ''
                # "2>" and "2>>" only when the 2 stands alone, unquoted
                if ch == '>' and buf == ['2'] and not quoted:
                    if nxt == '&':
                        raise ParseError("descriptor duplication (>&) is not supported")
                    buf.clear()
                    have_word = False
                    op = '2>>' if nxt == '>' else '2>'
                else:
                    flush_buf()
                    if ch == '&' and nxt == '>':
                        op = '&>>' if nxt2 == '>' else '&>'
                    elif ch in ('&', '|', '>') and nxt == ch:
                        op = ch * 2
                    elif ch == '>' and nxt == '&':
                        raise ParseError("descriptor duplication (>&) is not supported")
                    elif ch == '<' and nxt == '<':
                        raise ParseError("here-documents are not supported")
                    else:
                        op = ch
                tokens.append(Token('OP', op))
                i += len(op) if not op.startswith('2') else len(op) - 1
                continue
        buf.append(ch)
        have_word = True
        i += 1

    if in_single or in_double:
        raise ParseError("unterminated quote")
    flush_buf()
    return tokens


# --- Grammar ---

def _parse_simple(tokens: List[Token], i: int) -> Tuple[CommandNode, int]:
    words: List[str] = []
    leaf = LeafCommand(verb='')
    while i < len(tokens):
        t = tokens[i]
        if t.is_op(*CONTROL):
            break
        if t.is_op(*REDIRECTIONS):
            if i + 1 >= len(tokens) or tokens[i + 1].kind != 'WORD':
                raise ParseError(f"redirection {t.value!r} missing target")
            _set_redirection(leaf, t.value, tokens[i + 1].value)
            i += 2
            continue
        words.append(t.value)
        i += 1

    if not words:
        near = tokens[i].value if i < len(tokens) else 'end of line'
        raise ParseError(f"missing command near {near!r}")
    leaf.verb = words[0]
    leaf.args = words[1:]
    return CommandNode(Operator.NONE, leaf=leaf), i


def _set_redirection(leaf: LeafCommand, op: str, target: str) -> None:
    if op == '<':
        leaf.stdin = target
        return
    if op in ('>', '>>', '&>', '&>>'):
        leaf.stdout = target
        if op.endswith('>>'):
            leaf.io_flags |= IOFlags.OUT_APPEND
        else:
            leaf.io_flags &= ~IOFlags.OUT_APPEND
    if op in ('2>', '2>>', '&>', '&>>'):
        leaf.stderr = target
        if op.endswith('>>'):
            leaf.io_flags |= IOFlags.ERR_APPEND
        else:
            leaf.io_flags &= ~IOFlags.ERR_APPEND


def _parse_binary(tokens: List[Token], i: int, ops: dict, operand) -> Tuple[CommandNode, int]:
    # left-associative chain of operand (op operand)*
    node, i = operand(tokens, i)
    while i < len(tokens) and tokens[i].is_op(*ops):
        op = ops[tokens[i].value]
        i += 1
        if i >= len(tokens):
            raise ParseError(f"missing command after {op.value!r}")
        right, i = operand(tokens, i)
        node = CommandNode.join(op, node, right)
    return node, i


def _parse_pipe(tokens: List[Token], i: int) -> Tuple[CommandNode, int]:
    return _parse_binary(tokens, i, {'|': Operator.PIPE}, _parse_simple)


def _parse_cond(tokens: List[Token], i: int) -> Tuple[CommandNode, int]:
    ops = {'&&': Operator.COND_ON_ZERO, '||': Operator.COND_ON_NONZERO}
    return _parse_binary(tokens, i, ops, _parse_pipe)


def _parse_parallel(tokens: List[Token], i: int) -> Tuple[CommandNode, int]:
    return _parse_binary(tokens, i, {'&': Operator.PARALLEL}, _parse_cond)


def _parse_sequence(tokens: List[Token], i: int) -> Tuple[CommandNode, int]:
    node, i = _parse_parallel(tokens, i)
    while i < len(tokens) and tokens[i].is_op(';'):
        i += 1
        if i >= len(tokens):
            # trailing ';' ends the line
            break
        right, i = _parse_parallel(tokens, i)
        node = CommandNode.join(Operator.SEQUENTIAL, node, right)
    return node, i


def parse_line(line: str) -> Optional[CommandNode]:
    """Parse ``line`` into a tree; returns None for blank or comment-only lines."""
    tokens = tokenize(line)
    if not tokens:
        return None
    node, i = _parse_sequence(tokens, 0)
    if i != len(tokens):
        raise ParseError(f"unexpected {tokens[i].value!r}")
    return node


# --- Formatting (debug / test aid) ---

def format_tree(node: CommandNode, indent: int = 0) -> str:
    pad = "  " * indent
    if node.op is Operator.NONE:
        leaf = node.leaf
        parts = [f"{pad}CMD  " + ' '.join(leaf.argv())]
        for label, target in (("<", leaf.stdin), (">", leaf.stdout), ("2>", leaf.stderr)):
            if target is not None:
                parts.append(f"{label} {target}")
        return ' '.join(parts)
    lines = [f"{pad}OP   {node.op.value}",
             format_tree(node.left, indent + 1),
             format_tree(node.right, indent + 1)]
    return "\n".join(lines)
