# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
guardcheck: lock-discipline checker for Python sources.

Modules:
  lockexpr: lock-expression AST + lark parser
  symbols: declaration tables built from `ast` modules
  resolver: binds lock expressions to declaration / use-site scopes
  aliasing: lock equivalence and held-lock sets
  guard_index: guarded members + lock-method bindings
  held_locks: flow-sensitive held-lock computation
  checker: guard-violation driver per compilation unit

The CLI entrypoint is `guardcheck.driver:main`.
"""

from guardcheck.annotations import (
	GuardedBy,
	LockMethod,
	UnlockMethod,
	guarded_by,
	lock_method,
	unlock_method,
)

__all__ = [
	"GuardedBy",
	"LockMethod",
	"UnlockMethod",
	"guarded_by",
	"lock_method",
	"unlock_method",
]
