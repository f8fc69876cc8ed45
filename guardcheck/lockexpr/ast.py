from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True)
class ThisReference:
	"""The receiver of the enclosing instance member (`self`)."""


@dataclass(frozen=True)
class Identifier:
	name: str


@dataclass(frozen=True)
class Select:
	"""Attribute access `base.member`."""

	base: "LockExpression"
	member: str


@dataclass(frozen=True)
class Invocation:
	"""
	Zero-argument call `base.method()`.

	`base` is None for a bare call `method()`, which binds against the
	enclosing scope the same way a bare identifier does.
	"""

	base: Optional["LockExpression"]
	method: str


LockExpression = Union[ThisReference, Identifier, Select, Invocation]


def render(expr: LockExpression) -> str:
	"""Render a lock expression back to annotation text."""
	if isinstance(expr, ThisReference):
		return "self"
	if isinstance(expr, Identifier):
		return expr.name
	if isinstance(expr, Select):
		return f"{render(expr.base)}.{expr.member}"
	if isinstance(expr, Invocation):
		if expr.base is None:
			return f"{expr.method}()"
		return f"{render(expr.base)}.{expr.method}()"
	raise TypeError(f"not a lock expression: {expr!r}")


def root_of(expr: LockExpression) -> LockExpression:
	"""Return the leftmost leaf of a chain (`ThisReference`, `Identifier` or bare `Invocation`)."""
	while True:
		if isinstance(expr, Select):
			expr = expr.base
			continue
		if isinstance(expr, Invocation) and expr.base is not None:
			expr = expr.base
			continue
		return expr


__all__ = [
	"ThisReference",
	"Identifier",
	"Select",
	"Invocation",
	"LockExpression",
	"render",
	"root_of",
]
