#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Guard violation checking.

`AnalysisContext` bundles the per-run tables (workspace, resolver, guarded
entity index, lock-method registry, declaration diagnostics). It is built
once per run and shared by every check; the tables are read-only after they
are built.

`GuardViolationChecker` walks every function body of a module with the
held-lock analyzer and, at each access to a guarded member, rebases the
member's required lock to the access site and tests it against the locks
held there.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from guardcheck.aliasing import HeldLockSet, rebase
from guardcheck.config import CheckerConfig
from guardcheck.core.diagnostics import Diagnostic, E_GUARD_VIOLATION
from guardcheck.guard_index import (
	DeclarationDiagnostics,
	GuardedEntity,
	GuardedEntityIndex,
	LockMethodRegistry,
)
from guardcheck.held_locks import HeldLockAnalyzer
from guardcheck.resolver import BodyFrame, LockResolver, ResolvedLock
from guardcheck.symbols import (
	ClassInfo,
	FieldInfo,
	FunctionInfo,
	FunctionKind,
	ModuleInfo,
	Workspace,
	params_of,
)

logger = logging.getLogger(__name__)

FunctionNode = Union[ast.FunctionDef, ast.AsyncFunctionDef]


@dataclass
class AnalysisContext:
	"""Per-run analysis state shared by all checks."""

	workspace: Workspace
	config: CheckerConfig
	resolver: LockResolver
	declarations: DeclarationDiagnostics
	index: GuardedEntityIndex
	registry: LockMethodRegistry

	@classmethod
	def build(cls, workspace: Workspace, config: Optional[CheckerConfig] = None) -> "AnalysisContext":
		config = config or CheckerConfig()
		resolver = LockResolver(workspace, config)
		declarations = DeclarationDiagnostics()
		return cls(
			workspace=workspace,
			config=config,
			resolver=resolver,
			declarations=declarations,
			index=GuardedEntityIndex(workspace, resolver, declarations),
			registry=LockMethodRegistry(workspace, resolver, declarations),
		)

	def index_module(self, module: ModuleInfo) -> None:
		"""Force index/registry construction for every scope of `module`."""
		for scope in [module, *module.all_classes()]:
			self.index.entities_in(scope)
			self.registry.bindings_in(scope)

	def declaration_diagnostics(self, module: ModuleInfo) -> List[Diagnostic]:
		self.index_module(module)
		return self.declarations.for_module(module.name)


@dataclass
class _Body:
	frame: BodyFrame
	body: List[ast.stmt]
	entry: HeldLockSet
	exempt: bool = False


def _class_functions(cls: ClassInfo) -> List[Tuple[FunctionNode, FunctionInfo]]:
	"""Every def in a class body, including property setters/deleters and shadowed overloads."""
	out: List[Tuple[FunctionNode, FunctionInfo]] = []
	for stmt in cls.node.body:
		if not isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
			continue
		fn = cls.functions.get(stmt.name)
		if fn is None or fn.node is not stmt:
			# Accessor halves of properties are not table members; their
			# bodies still run with an instance receiver.
			fn = FunctionInfo(name=stmt.name, owner=cls, node=stmt, kind=FunctionKind.INSTANCE, params=params_of(stmt))
		out.append((stmt, fn))
	return out


def _module_functions(module: ModuleInfo) -> List[Tuple[FunctionNode, FunctionInfo]]:
	out: List[Tuple[FunctionNode, FunctionInfo]] = []
	for stmt in module.tree.body:
		if not isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
			continue
		fn = module.functions.get(stmt.name)
		if fn is None or fn.node is not stmt:
			fn = FunctionInfo(name=stmt.name, owner=module, node=stmt, kind=FunctionKind.MODULE, params=params_of(stmt))
		out.append((stmt, fn))
	return out


class GuardViolationChecker:
	"""Reports accesses to guarded members made without the required lock."""

	def __init__(self, context: AnalysisContext, config: Optional[CheckerConfig] = None) -> None:
		self.context = context
		self.config = config or context.config
		self.resolver = context.resolver
		self.index = context.index
		self.registry = context.registry

	def check_module(self, module: ModuleInfo) -> List[Diagnostic]:
		diagnostics: List[Diagnostic] = []
		functions = _module_functions(module)
		for cls in module.all_classes():
			functions.extend(_class_functions(cls))
		for _, fn in functions:
			diagnostics.extend(self.check_function(fn))
		return diagnostics

	def entry_state(self, fn: FunctionInfo) -> HeldLockSet:
		"""Locks held on entry to `fn`: its own guards when configured, else none."""
		if not self.config.assume_guard_held_in_guarded_methods:
			return HeldLockSet()
		if fn.owner.functions.get(fn.name) is not fn:
			return HeldLockSet()
		return HeldLockSet(entity.required_lock for entity in self.index.entities_for(fn))

	def check_function(self, fn: FunctionInfo) -> List[Diagnostic]:
		exempt = isinstance(fn.owner, ClassInfo) and fn.name in self.config.exempt_methods
		pending = [_Body(BodyFrame.for_function(fn), list(fn.node.body), self.entry_state(fn), exempt)]
		diagnostics: List[Diagnostic] = []
		while pending:
			item = pending.pop(0)
			diagnostics.extend(self._check_body(item, pending))
		return diagnostics

	def _check_body(self, item: _Body, pending: List[_Body]) -> List[Diagnostic]:
		frame = item.frame
		found: List[Diagnostic] = []
		analyzer: Optional[HeldLockAnalyzer] = None

		def on_node(node: ast.AST, held: HeldLockSet) -> None:
			assert analyzer is not None
			if isinstance(node, ast.Lambda):
				pending.append(_Body(frame.nested(node), [ast.Expr(value=node.body)], HeldLockSet()))
				return
			for lam in _lambdas_in(node):
				pending.append(_Body(frame.nested(lam), [ast.Expr(value=lam.body)], HeldLockSet()))
			if not item.exempt:
				found.extend(self._check_accesses(node, held, analyzer))

		def on_nested(node: Union[ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef]) -> None:
			if isinstance(node, ast.ClassDef):
				logger.debug("not checking class %s defined inside %s", node.name, frame.qualname)
				return
			pending.append(_Body(frame.nested(node), list(node.body), HeldLockSet()))

		analyzer = HeldLockAnalyzer(self.resolver, self.registry, frame, on_node=on_node, on_nested=on_nested)
		analyzer.analyze(item.body, item.entry)
		return found

	# -- accesses -----------------------------------------------------------

	def _check_accesses(self, node: ast.AST, held: HeldLockSet, analyzer: HeldLockAnalyzer) -> List[Diagnostic]:
		calls: Dict[int, ast.Call] = {}
		targets: List[ast.expr] = []
		for sub in _scan(node):
			if isinstance(sub, ast.Call):
				calls[id(sub.func)] = sub
			elif isinstance(sub, (ast.Attribute, ast.Name)):
				targets.append(sub)
		out: List[Diagnostic] = []
		for target in targets:
			call = calls.get(id(target))
			for entity, receiver in self._entities_at(target, analyzer.frame):
				args = {}
				if call is not None and isinstance(entity.member, FunctionInfo):
					args = analyzer.resolve_arguments(entity.member, call)
				required = rebase(entity.required_lock, receiver=receiver, args=args)
				if required is None:
					logger.debug(
						"skipping access to %s at %s: lock '%s' cannot be named there",
						entity.display_name,
						analyzer.frame.module.span(target).render(),
						entity.required_lock.text,
					)
					continue
				if held.holds(required):
					continue
				out.append(self._violation(entity, required, held, target, analyzer.frame.module))
		return out

	def _entities_at(self, node: ast.expr, frame: BodyFrame) -> List[Tuple[GuardedEntity, Optional[ResolvedLock]]]:
		if isinstance(node, ast.Name):
			sym = self.resolver.global_symbol(node.id, frame)
			if isinstance(sym, (FieldInfo, FunctionInfo)) and isinstance(sym.owner, ModuleInfo):
				return [(e, None) for e in self.index.entities_for(sym)]
			return []
		assert isinstance(node, ast.Attribute)
		recv = self.resolver.resolve_node(node.value, frame)
		if recv is None:
			return []
		if recv.namespace is not None:
			sym = self.context.workspace.module_member(recv.namespace, node.attr)
			if isinstance(sym, (FieldInfo, FunctionInfo)) and isinstance(sym.owner, ModuleInfo):
				return [(e, None) for e in self.index.entities_for(sym)]
			return []
		if recv.type is None:
			return []
		out: List[Tuple[GuardedEntity, Optional[ResolvedLock]]] = []
		for entity in self.index.lookup_member(recv.type.cls, node.attr):
			if recv.type.is_class_object and not entity.is_static:
				# `C.method` / `C.field` through the class object: no instance to check against.
				continue
			out.append((entity, recv))
		return out

	def _violation(
		self,
		entity: GuardedEntity,
		required: ResolvedLock,
		held: HeldLockSet,
		node: ast.AST,
		module: ModuleInfo,
	) -> Diagnostic:
		text = entity.required_lock.text
		if len(held):
			notes = ["locks held here: " + ", ".join(sorted(lock.canonical_text() for lock in held))]
		else:
			notes = ["no locks are held here"]
		notes.append(f"required lock resolves to '{required.canonical_text()}' at this access")
		return Diagnostic(
			message=f"{entity.display_name} is guarded by '{text}' but no matching lock is held",
			code=E_GUARD_VIOLATION,
			phase="guardcheck",
			severity="error",
			span=module.span(node),
			notes=notes,
		)


def _scan(node: ast.AST):
	"""Walk `node` without entering nested scopes."""
	stack = [node]
	while stack:
		cur = stack.pop()
		yield cur
		children = [
			child
			for child in ast.iter_child_nodes(cur)
			if not isinstance(child, (ast.Lambda, ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))
		]
		stack.extend(reversed(children))


def _lambdas_in(node: ast.AST) -> List[ast.Lambda]:
	"""Lambdas directly reachable from `node` (not nested inside another lambda)."""
	out: List[ast.Lambda] = []
	for sub in _scan(node):
		for child in ast.iter_child_nodes(sub):
			if isinstance(child, ast.Lambda):
				out.append(child)
	return out


__all__ = ["AnalysisContext", "GuardViolationChecker"]
