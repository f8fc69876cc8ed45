# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lock alias equivalence, held-lock sets and rebasing.

Two resolved locks are equivalent iff their canonical (root, path) forms are
equal. Resolution already normalises the root (implicit/explicit `self`,
static members through any receiver), so equivalence here is plain
structural equality: reflexive, symmetric and transitive by construction.
Different roots are never proven to alias.
"""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, Mapping, Optional, Tuple

from guardcheck.resolver import LockRoot, ResolvedLock, RootKind, Step


def locks_equivalent(a: ResolvedLock, b: ResolvedLock) -> bool:
	"""Return True when two resolved locks denote the same lock."""
	return a.key == b.key


class HeldLockSet:
	"""
	Immutable set of held locks keyed by equivalence class.

	Operations return new sets. `None` (not an empty set) is used by the flow
	analysis for unreachable program points; `meet` treats it as identity.
	"""

	__slots__ = ("_locks",)

	def __init__(self, locks: Iterable[ResolvedLock] = ()) -> None:
		by_key: Dict[Tuple[LockRoot, Tuple[Step, ...]], ResolvedLock] = {}
		for lock in locks:
			by_key.setdefault(lock.key, lock)
		self._locks = by_key

	def __contains__(self, lock: object) -> bool:
		return isinstance(lock, ResolvedLock) and lock.key in self._locks

	def __iter__(self) -> Iterator[ResolvedLock]:
		return iter(self._locks.values())

	def __len__(self) -> int:
		return len(self._locks)

	def __eq__(self, other: object) -> bool:
		if not isinstance(other, HeldLockSet):
			return NotImplemented
		return self._locks.keys() == other._locks.keys()

	def __hash__(self) -> int:
		return hash(frozenset(self._locks.keys()))

	def __repr__(self) -> str:
		inner = ", ".join(sorted(lock.canonical_text() for lock in self))
		return f"HeldLockSet({{{inner}}})"

	def holds(self, required: ResolvedLock) -> bool:
		"""True when some held lock is alias-equivalent to `required`."""
		return any(locks_equivalent(held, required) for held in self)

	def add(self, lock: ResolvedLock) -> "HeldLockSet":
		if lock in self:
			return self
		return HeldLockSet(list(self) + [lock])

	def remove(self, lock: ResolvedLock) -> "HeldLockSet":
		if lock not in self:
			return self
		return HeldLockSet(held for held in self if held.key != lock.key)

	def intersect(self, other: "HeldLockSet") -> "HeldLockSet":
		return HeldLockSet(held for held in self if held in other)


def meet(*states: Optional[HeldLockSet]) -> Optional[HeldLockSet]:
	"""Must-analysis meet: intersection over reachable predecessors."""
	out: Optional[HeldLockSet] = None
	for state in states:
		if state is None:
			continue
		out = state if out is None else out.intersect(state)
	return out


def rebase(
	lock: ResolvedLock,
	*,
	receiver: Optional[ResolvedLock] = None,
	args: Optional[Mapping[str, Optional[ResolvedLock]]] = None,
) -> Optional[ResolvedLock]:
	"""
	Translate a lock from a member's declaring frame into an access site frame.

	`self` is replaced by `receiver`; a parameter root is replaced by the
	argument bound to that parameter at the call. Class- and module-rooted
	locks are frame-independent. Returns None when the lock cannot be named at
	the site (no receiver, or the argument is not a lock-shaped expression).
	"""
	kind = lock.root.kind
	if kind in (RootKind.CLASS, RootKind.MODULE):
		return lock
	if kind is RootKind.THIS:
		base = receiver
	elif kind is RootKind.PARAM:
		base = (args or {}).get(lock.root.name)
	else:
		return None
	if base is None:
		return None
	return ResolvedLock(base.root, base.path + lock.path, lock.text, lock.expr, lock.type)


__all__ = ["HeldLockSet", "locks_equivalent", "meet", "rebase"]
