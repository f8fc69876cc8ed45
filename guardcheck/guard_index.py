#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Guarded-member index and lock-method registry.

Both tables are built lazily, once per declaring scope (class or module), by
scanning member declarations for lock annotations and resolving each lock
expression relative to the declaration's own scope. Entries are immutable
once built and shared read-only by every body analysis of the run.

Annotation problems (malformed text, unresolvable names, static members
guarded by instance locks) are recorded once per declaration into
`DeclarationDiagnostics`, attributed to the declaring module, and the
declaration is left out of the tables (fail open for that declaration only).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, List, Mapping, Optional, Set, Tuple, Union

from guardcheck.core.diagnostics import (
	Diagnostic,
	E_MALFORMED_LOCK_EXPR,
	E_STATIC_INSTANCE_MISMATCH,
	E_UNRESOLVABLE_LOCK_EXPR,
)
from guardcheck.core.errors import (
	LockExpressionError,
	MalformedLockExpression,
	StaticInstanceMismatch,
)
from guardcheck.resolver import LockResolver, ResolvedLock
from guardcheck.symbols import (
	AnnotationKind,
	AnnotationUse,
	ClassInfo,
	FieldInfo,
	FunctionInfo,
	ModuleInfo,
	Scope,
	Workspace,
)

logger = logging.getLogger(__name__)

Member = Union[FieldInfo, FunctionInfo]


class LockActionKind(Enum):
	ACQUIRE = auto()
	RELEASE = auto()


@dataclass(frozen=True)
class GuardedEntity:
	"""A member plus the lock that must be held to access it."""

	member: Member
	required_lock: ResolvedLock
	is_static: bool

	def __post_init__(self) -> None:
		if self.is_static and self.required_lock.requires_instance:
			raise ValueError(f"static member {self.member.qualname} guarded by instance lock")

	@property
	def display_name(self) -> str:
		return self.member.display_name


@dataclass(frozen=True)
class LockMethodBinding:
	"""A lock helper: after a normal return, `lock` is held (ACQUIRE) or not (RELEASE)."""

	method: FunctionInfo
	lock: ResolvedLock
	kind: LockActionKind


def _is_static_member(member: Member) -> bool:
	return member.is_static


def check_static_policy(member: Member, lock: ResolvedLock, verb: str = "guarded by") -> None:
	"""Raise StaticInstanceMismatch when a static member's lock needs an instance."""
	if _is_static_member(member) and lock.requires_instance:
		raise StaticInstanceMismatch(f"static member {verb} instance lock '{lock.text}'", text=lock.text)


class DeclarationDiagnostics:
	"""Annotation diagnostics keyed by declaring module, recorded once per declaration."""

	def __init__(self) -> None:
		self._by_module: Dict[str, List[Diagnostic]] = {}
		self._seen: Set[Tuple[int, int]] = set()

	def record(self, member: Member, use: AnnotationUse, diag: Diagnostic) -> None:
		key = (id(member), id(use))
		if key in self._seen:
			return
		self._seen.add(key)
		self._by_module.setdefault(member.module.name, []).append(diag)

	def for_module(self, module_name: str) -> List[Diagnostic]:
		return list(self._by_module.get(module_name, []))


class _AnnotationResolver:
	"""Shared annotation -> ResolvedLock step with diagnostic conversion."""

	def __init__(self, resolver: LockResolver, diagnostics: DeclarationDiagnostics) -> None:
		self.resolver = resolver
		self.diagnostics = diagnostics

	def resolve(self, member: Member, use: AnnotationUse, verb: str) -> Optional[ResolvedLock]:
		if use.text is None:
			self.diagnostics.record(
				member,
				use,
				Diagnostic(
					message=f"unresolvable lock expression '{use.source}'",
					code=E_UNRESOLVABLE_LOCK_EXPR,
					phase="annotations",
					severity="warning",
					span=use.span,
					notes=["lock expressions must be string literals; dynamic lock references are not analyzed"],
				),
			)
			return None
		try:
			lock = self.resolver.resolve_declared(use.text, member)
			check_static_policy(member, lock, verb)
		except StaticInstanceMismatch as err:
			self.diagnostics.record(
				member,
				use,
				Diagnostic(
					message=str(err),
					code=E_STATIC_INSTANCE_MISMATCH,
					phase="annotations",
					severity="error",
					span=member.span,
					notes=[f"'{member.display_name}' is static; '{use.text}' is only reachable through an instance"],
				),
			)
			return None
		except LockExpressionError as err:
			code = E_MALFORMED_LOCK_EXPR if isinstance(err, MalformedLockExpression) else E_UNRESOLVABLE_LOCK_EXPR
			self.diagnostics.record(
				member,
				use,
				Diagnostic(
					message=f"unresolvable lock expression '{use.text}'",
					code=code,
					phase="annotations",
					severity="warning",
					span=use.span,
					notes=[err.detail],
				),
			)
			return None
		logger.debug("resolved '%s' on %s to %s", use.text, member.qualname, lock.canonical_text())
		return lock


def _members(scope: Scope) -> List[Member]:
	out: List[Member] = list(scope.fields.values())
	out.extend(scope.functions.values())
	return out


class GuardedEntityIndex:
	"""Guarded members per declaring scope."""

	def __init__(self, workspace: Workspace, resolver: LockResolver, diagnostics: DeclarationDiagnostics) -> None:
		self.workspace = workspace
		self._annotations = _AnnotationResolver(resolver, diagnostics)
		self._cache: Dict[int, Dict[str, Tuple[GuardedEntity, ...]]] = {}

	def entities_in(self, scope: Scope) -> Mapping[str, Tuple[GuardedEntity, ...]]:
		cached = self._cache.get(id(scope))
		if cached is not None:
			return cached
		table: Dict[str, Tuple[GuardedEntity, ...]] = {}
		for member in _members(scope):
			if isinstance(member, FieldInfo):
				uses = [member.guard] if member.guard is not None else []
			else:
				uses = member.annotations_of(AnnotationKind.GUARD)
			entities: List[GuardedEntity] = []
			for use in uses:
				lock = self._annotations.resolve(member, use, "guarded by")
				if lock is None:
					continue
				entities.append(GuardedEntity(member, lock, _is_static_member(member)))
			if entities:
				table[member.name] = tuple(entities)
		self._cache[id(scope)] = table
		logger.debug("indexed %d guarded member(s) in %s", len(table), scope.qualname)
		return table

	def entities_for(self, member: Member) -> Tuple[GuardedEntity, ...]:
		return self.entities_in(member.owner).get(member.name, ())

	def lookup_member(self, cls: ClassInfo, name: str) -> Tuple[GuardedEntity, ...]:
		"""Guards of `cls.name`, honoring overrides along the MRO."""
		for c in self.workspace.mro(cls):
			if name in c.fields or name in c.functions:
				return self.entities_in(c).get(name, ())
		return ()

	def lookup_module_member(self, module: ModuleInfo, name: str) -> Tuple[GuardedEntity, ...]:
		if name in module.fields or name in module.functions:
			return self.entities_in(module).get(name, ())
		return ()


class LockMethodRegistry:
	"""Lock-acquire / lock-release helper methods per declaring scope."""

	def __init__(self, workspace: Workspace, resolver: LockResolver, diagnostics: DeclarationDiagnostics) -> None:
		self.workspace = workspace
		self._annotations = _AnnotationResolver(resolver, diagnostics)
		self._cache: Dict[int, Dict[str, Tuple[LockMethodBinding, ...]]] = {}

	def bindings_in(self, scope: Scope) -> Mapping[str, Tuple[LockMethodBinding, ...]]:
		cached = self._cache.get(id(scope))
		if cached is not None:
			return cached
		table: Dict[str, Tuple[LockMethodBinding, ...]] = {}
		for fn in scope.functions.values():
			bindings: List[LockMethodBinding] = []
			for use in fn.annotations:
				if use.kind is AnnotationKind.ACQUIRE:
					kind, verb = LockActionKind.ACQUIRE, "acquiring"
				elif use.kind is AnnotationKind.RELEASE:
					kind, verb = LockActionKind.RELEASE, "releasing"
				else:
					continue
				lock = self._annotations.resolve(fn, use, verb)
				if lock is not None:
					bindings.append(LockMethodBinding(fn, lock, kind))
			if bindings:
				table[fn.name] = tuple(bindings)
		self._cache[id(scope)] = table
		logger.debug("registered %d lock method(s) in %s", len(table), scope.qualname)
		return table

	def bindings_for(self, fn: FunctionInfo) -> Tuple[LockMethodBinding, ...]:
		return self.bindings_in(fn.owner).get(fn.name, ())

	def lookup_method(self, cls: ClassInfo, name: str) -> Tuple[LockMethodBinding, ...]:
		for c in self.workspace.mro(cls):
			if name in c.functions:
				return self.bindings_in(c).get(name, ())
		return ()


__all__ = [
	"DeclarationDiagnostics",
	"GuardedEntity",
	"GuardedEntityIndex",
	"LockActionKind",
	"LockMethodBinding",
	"LockMethodRegistry",
	"check_static_policy",
]
