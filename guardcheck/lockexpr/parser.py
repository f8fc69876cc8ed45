from __future__ import annotations

from pathlib import Path

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedInput

from guardcheck.core.errors import MalformedLockExpression

from .ast import Identifier, Invocation, LockExpression, Select, ThisReference

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

# Leading names that denote the receiver.
RECEIVER_NAMES = frozenset({"self", "this"})

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start="start",
	propagate_positions=True,
	maybe_placeholders=False,
)


def _name(t: Tree) -> str:
	return t.data if isinstance(t.data, str) else t.data.value


def _token(node: Tree, idx: int = 0) -> Token:
	tokens = [c for c in node.children if isinstance(c, Token)]
	if len(tokens) <= idx:
		raise TypeError(f"{_name(node)} node missing NAME token")
	return tokens[idx]


def _build(node: object) -> LockExpression:
	if not isinstance(node, Tree):
		raise TypeError(f"Unexpected node type: {type(node)}")
	kind = _name(node)
	if kind == "name":
		value = _token(node).value
		if value in RECEIVER_NAMES:
			return ThisReference()
		return Identifier(value)
	if kind == "call":
		return Invocation(None, _token(node).value)
	if kind in ("select", "invocation"):
		base_node = node.children[0]
		base = _build(base_node)
		member = _token(node).value
		if kind == "select":
			return Select(base, member)
		return Invocation(base, member)
	raise TypeError(f"Unexpected lock expression node: {kind}")


def parse_lock_expression(text: str) -> LockExpression:
	"""
	Parse annotation text into a LockExpression tree.

	Raises MalformedLockExpression for empty text and for anything the grammar
	rejects (unbalanced parens, call arguments, stray punctuation, trailing
	dots). The reported column is 1-based within `text` when lark knows it.
	"""
	if not isinstance(text, str) or not text.strip():
		raise MalformedLockExpression("empty lock expression", text=text if isinstance(text, str) else "")
	try:
		tree = _PARSER.parse(text)
	except UnexpectedInput as err:
		column = getattr(err, "column", None)
		if not isinstance(column, int) or column < 1:
			column = None
		where = f" at column {column}" if column is not None else " at end of input"
		raise MalformedLockExpression(f"malformed lock expression{where}", text=text, column=column) from err
	return _build(tree)


__all__ = ["parse_lock_expression", "RECEIVER_NAMES"]
