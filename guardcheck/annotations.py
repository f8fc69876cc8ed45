# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Runtime lock annotations.

These are no-op markers: they record the lock expression on the decorated
function (or sit inside `Annotated[...]` for fields) and never change
behavior. The checker reads them from source, matching on the terminal
name, so `from guardcheck import guarded_by` and
`import guardcheck.annotations as ga; @ga.guarded_by(...)` both work.

	class Account:
		lock = threading.Lock()
		balance: Annotated[int, guarded_by("lock")]

		@lock_method("lock")
		def enter(self): self.lock.acquire()
"""

from __future__ import annotations

from typing import Callable, TypeVar

F = TypeVar("F", bound=Callable)


class _LockAnnotation:
	attribute = ""

	__slots__ = ("lock",)

	def __init__(self, lock: str) -> None:
		self.lock = lock

	def __call__(self, fn: F) -> F:
		existing = tuple(getattr(fn, self.attribute, ()))
		setattr(fn, self.attribute, existing + (self.lock,))
		return fn

	def __repr__(self) -> str:
		return f"{type(self).__name__}({self.lock!r})"

	def __eq__(self, other: object) -> bool:
		return type(self) is type(other) and self.lock == other.lock  # type: ignore[attr-defined]

	def __hash__(self) -> int:
		return hash((type(self).__name__, self.lock))


class guarded_by(_LockAnnotation):
	"""The member may only be accessed while `lock` is held."""

	attribute = "__guarded_by__"
	__slots__ = ()


class lock_method(_LockAnnotation):
	"""After a normal return, `lock` is held by the caller."""

	attribute = "__lock_method__"
	__slots__ = ()


class unlock_method(_LockAnnotation):
	"""After a normal return, `lock` is no longer held."""

	attribute = "__unlock_method__"
	__slots__ = ()


GuardedBy = guarded_by
LockMethod = lock_method
UnlockMethod = unlock_method

__all__ = ["GuardedBy", "LockMethod", "UnlockMethod", "guarded_by", "lock_method", "unlock_method"]
