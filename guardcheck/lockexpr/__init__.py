# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lock-expression front end: immutable AST plus the lark-based parser.
"""

from .ast import Identifier, Invocation, LockExpression, Select, ThisReference, render
from .parser import parse_lock_expression

__all__ = [
	"Identifier",
	"Invocation",
	"LockExpression",
	"Select",
	"ThisReference",
	"render",
	"parse_lock_expression",
]
