# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lock-expression error kinds.

These are raised by the parser and resolver and converted into diagnostics at
the guard-index boundary. They are `ValueError` subclasses so generic callers
can treat them as bad-input failures, but each carries the offending lock text
so the diagnostic can quote it as written.
"""

from __future__ import annotations

from typing import Optional


class LockExpressionError(ValueError):
	"""Base class for lock-expression parse/resolution failures."""

	def __init__(self, message: str, *, text: str) -> None:
		super().__init__(message)
		self.text = text
		self.detail = message


class MalformedLockExpression(LockExpressionError):
	"""The annotation text is not a valid lock expression."""

	def __init__(self, message: str, *, text: str, column: Optional[int] = None) -> None:
		super().__init__(message, text=text)
		self.column = column


class UnresolvableLockExpression(LockExpressionError):
	"""A name or member in the lock expression has no matching declaration."""


class StaticInstanceMismatch(LockExpressionError):
	"""A static member is guarded by a lock that needs an instance to reach."""


__all__ = [
	"LockExpressionError",
	"MalformedLockExpression",
	"UnresolvableLockExpression",
	"StaticInstanceMismatch",
]
