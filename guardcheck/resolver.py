#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lock-expression resolution.

A parsed LockExpression is bound to a scope and turned into a `ResolvedLock`:
a root binding plus a canonical path of member/call steps. Two scopes exist:

  * Declaration scope: the member an annotation sits on. Bare names look at
    the annotated function's parameters, then fields of the enclosing class
    (implicit `self`), then static members of outer classes, then module
    globals. Failures raise `UnresolvableLockExpression`.
  * Body scope (`BodyFrame`): an expression inside a function body. Python
    scoping applies (params, locals, closures, module globals); class fields
    are never reachable through a bare name. Resolution never raises here;
    anything that cannot be named yields None.

Static members are canonicalised to their declaring class (`CLASS(C).name`)
and module globals to their declaring module, so `self.lock`, `cls.lock` and
`C.lock` for a class-level `lock` all denote the same lock.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Optional, Tuple, Union

from guardcheck.config import CheckerConfig
from guardcheck.core.errors import UnresolvableLockExpression
from guardcheck.lockexpr.ast import Identifier, Invocation, LockExpression, Select, ThisReference, render
from guardcheck.lockexpr.parser import parse_lock_expression
from guardcheck.symbols import (
	ClassInfo,
	FieldInfo,
	FunctionInfo,
	FunctionKind,
	LocalNames,
	ModuleInfo,
	ParamInfo,
	Symbol,
	TypeRef,
	Workspace,
	local_names,
	params_of,
)


class RootKind(Enum):
	THIS = auto()
	PARAM = auto()
	LOCAL = auto()
	CLASS = auto()
	MODULE = auto()


@dataclass(frozen=True)
class LockRoot:
	"""
	Root binding of a lock expression.

	`scope` is the class qualname for THIS/CLASS, the function qualname for
	PARAM/LOCAL and the module name for MODULE. `name` is only set for
	PARAM/LOCAL roots.
	"""

	kind: RootKind
	scope: str
	name: str = ""

	def render(self) -> str:
		if self.kind is RootKind.THIS:
			return "self"
		if self.kind in (RootKind.PARAM, RootKind.LOCAL):
			return self.name
		return self.scope


@dataclass(frozen=True)
class MemberStep:
	name: str


@dataclass(frozen=True)
class CallStep:
	name: str


Step = Union[MemberStep, CallStep]


@dataclass(frozen=True)
class ResolvedLock:
	"""
	A lock expression bound to a scope.

	Equality and hashing only look at (root, path): that pair is the canonical
	form used for alias equivalence. The remaining fields are provenance.
	"""

	root: LockRoot
	path: Tuple[Step, ...] = ()
	text: str = field(default="", compare=False)
	expr: Optional[LockExpression] = field(default=None, compare=False)
	type: Optional[TypeRef] = field(default=None, compare=False)
	namespace: Optional[ModuleInfo] = field(default=None, compare=False, repr=False)

	@property
	def key(self) -> Tuple[LockRoot, Tuple[Step, ...]]:
		return (self.root, self.path)

	@property
	def is_static(self) -> bool:
		"""True when the lock is class-level: reachable without any instance or argument."""
		return self.root.kind in (RootKind.CLASS, RootKind.MODULE)

	@property
	def requires_instance(self) -> bool:
		return self.root.kind is RootKind.THIS

	def extend(self, step: Step, type: Optional[TypeRef] = None) -> "ResolvedLock":
		return ResolvedLock(self.root, self.path + (step,), self.text, self.expr, type)

	def with_text(self, text: str, expr: Optional[LockExpression] = None) -> "ResolvedLock":
		return ResolvedLock(self.root, self.path, text, expr if expr is not None else self.expr, self.type, self.namespace)

	def canonical_text(self) -> str:
		parts = [self.root.render()]
		for step in self.path:
			parts.append(f"{step.name}()" if isinstance(step, CallStep) else step.name)
		return ".".join(parts)


def this_root(cls: ClassInfo) -> LockRoot:
	return LockRoot(RootKind.THIS, cls.qualname)


def class_root(cls: ClassInfo) -> LockRoot:
	return LockRoot(RootKind.CLASS, cls.qualname)


def module_root(module_name: str) -> LockRoot:
	return LockRoot(RootKind.MODULE, module_name)


@dataclass
class BodyFrame:
	"""
	Use-site scope of one function body (or lambda).

	`parent` links closures to their enclosing function frame. `cls` is the
	class owning the outermost method, used for the receiver's type.
	"""

	module: ModuleInfo
	qualname: str
	node: Union[ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda]
	cls: Optional[ClassInfo] = None
	function: Optional[FunctionInfo] = None
	parent: Optional["BodyFrame"] = None
	params: Dict[str, ParamInfo] = field(default_factory=dict)
	names: LocalNames = field(default_factory=LocalNames)
	receiver_name: Optional[str] = None
	receiver_is_class: bool = False

	@classmethod
	def for_function(cls, fn: FunctionInfo) -> "BodyFrame":
		owner = fn.owner if isinstance(fn.owner, ClassInfo) else None
		return cls(
			module=fn.module,
			qualname=fn.qualname,
			node=fn.node,
			cls=owner,
			function=fn,
			params={p.name: p for p in fn.params},
			names=local_names(fn.node),
			receiver_name=fn.receiver_name,
			receiver_is_class=fn.kind is FunctionKind.CLASS,
		)

	def nested(self, node: Union[ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda]) -> "BodyFrame":
		if isinstance(node, ast.Lambda):
			qualname = f"{self.qualname}.<lambda@{node.lineno}:{node.col_offset}>"
			params = params_of(node)
		else:
			qualname = f"{self.qualname}.<locals>.{node.name}"
			params = params_of(node)
		return BodyFrame(
			module=self.module,
			qualname=qualname,
			node=node,
			cls=self.cls,
			function=None,
			parent=self,
			params={p.name: p for p in params},
			names=local_names(node),
		)


class LockResolver:
	"""Resolves lock expressions against declaration and body scopes."""

	def __init__(self, workspace: Workspace, config: Optional[CheckerConfig] = None) -> None:
		self.workspace = workspace
		self.config = config or CheckerConfig()

	# -- declaration scope --------------------------------------------------

	def resolve_declared(self, text: str, member: Union[FieldInfo, FunctionInfo]) -> ResolvedLock:
		"""
		Parse and resolve annotation text relative to `member`.

		Raises MalformedLockExpression / UnresolvableLockExpression. Static /
		instance policy is checked by the caller, which knows what the lock is
		used for.
		"""
		expr = parse_lock_expression(text)
		resolved = self._resolve_decl(expr, member, text)
		return resolved.with_text(text, expr)

	def _resolve_decl(self, expr: LockExpression, member: Union[FieldInfo, FunctionInfo], text: str) -> ResolvedLock:
		cls = member.owner if isinstance(member.owner, ClassInfo) else None
		fn = member if isinstance(member, FunctionInfo) else None
		module = member.module
		if isinstance(expr, ThisReference):
			if cls is None:
				raise UnresolvableLockExpression("'self' used outside of a class", text=text)
			return ResolvedLock(this_root(cls), type=TypeRef(cls))
		if isinstance(expr, Identifier):
			return self._resolve_decl_identifier(expr.name, cls, fn, module, text)
		if isinstance(expr, Select):
			base = self._resolve_decl(expr.base, member, text)
			return self._resolve_member(base, expr.member, is_call=False, text=text, lenient=False)
		if isinstance(expr, Invocation):
			if expr.base is not None:
				base = self._resolve_decl(expr.base, member, text)
				return self._resolve_member(base, expr.method, is_call=True, text=text, lenient=False)
			return self._resolve_decl_bare_call(expr.method, cls, module, text)
		raise TypeError(f"not a lock expression: {expr!r}")

	def _resolve_decl_identifier(
		self,
		name: str,
		cls: Optional[ClassInfo],
		fn: Optional[FunctionInfo],
		module: ModuleInfo,
		text: str,
	) -> ResolvedLock:
		ws = self.workspace
		# 1. Parameters (a parameter shadows a field of the same name).
		if fn is not None:
			param = fn.param(name)
			if param is not None:
				return self._param_lock(fn, param, cls)
		if cls is not None:
			# 2. Fields of the enclosing class, rooted at the implicit receiver.
			fld = ws.lookup_field(cls, name)
			if fld is not None:
				return self._field_lock(ResolvedLock(this_root(cls), type=TypeRef(cls)), fld)
			prop = ws.lookup_function(cls, name)
			if prop is not None and prop.kind is FunctionKind.PROPERTY:
				return ResolvedLock(this_root(cls), (MemberStep(name),), type=ws.return_type(prop))
			nested = ws.lookup_nested_class(cls, name)
			if nested is not None:
				return ResolvedLock(class_root(nested), type=TypeRef(nested, is_class_object=True))
			# 3. Static members of outer classes.
			for outer in ws.enclosing_classes(cls):
				ofld = ws.lookup_field(outer, name)
				if ofld is not None and ofld.is_static:
					return self._field_lock(ResolvedLock(class_root(outer), type=TypeRef(outer, True)), ofld)
				onested = ws.lookup_nested_class(outer, name)
				if onested is not None:
					return ResolvedLock(class_root(onested), type=TypeRef(onested, is_class_object=True))
		# 4. Module globals, classes and imports.
		found = self._resolve_global(module, name)
		if found is not None:
			return found
		raise UnresolvableLockExpression(
			f"'{name}' does not name a parameter, field or global in scope",
			text=text,
		)

	def _resolve_decl_bare_call(self, method: str, cls: Optional[ClassInfo], module: ModuleInfo, text: str) -> ResolvedLock:
		ws = self.workspace
		if cls is not None:
			fn = ws.lookup_function(cls, method)
			if fn is not None:
				base = ResolvedLock(this_root(cls), type=TypeRef(cls))
				return self._resolve_member(base, method, is_call=True, text=text, lenient=False)
			for outer in ws.enclosing_classes(cls):
				ofn = ws.lookup_function(outer, method)
				if ofn is not None and ofn.kind in (FunctionKind.STATIC, FunctionKind.CLASS):
					base = ResolvedLock(class_root(outer), type=TypeRef(outer, True))
					return self._resolve_member(base, method, is_call=True, text=text, lenient=False)
		found = self._resolve_global_call(module, method)
		if found is not None:
			return found
		raise UnresolvableLockExpression(f"'{method}()' does not name a method or function in scope", text=text)

	def _param_lock(self, fn: FunctionInfo, param: ParamInfo, cls: Optional[ClassInfo]) -> ResolvedLock:
		if param.name == fn.receiver_name and cls is not None:
			if fn.kind is FunctionKind.CLASS:
				return ResolvedLock(class_root(cls), type=TypeRef(cls, is_class_object=True))
			return ResolvedLock(this_root(cls), type=TypeRef(cls))
		return ResolvedLock(
			LockRoot(RootKind.PARAM, fn.qualname, param.name),
			type=self.workspace.param_type(fn, param),
		)

	def _field_lock(self, base: ResolvedLock, fld: FieldInfo) -> ResolvedLock:
		fld_type = self.workspace.field_type(fld)
		if fld.is_static:
			if isinstance(fld.owner, ClassInfo):
				return ResolvedLock(class_root(fld.owner), (MemberStep(fld.name),), type=fld_type)
			return ResolvedLock(module_root(fld.owner.name), (MemberStep(fld.name),), type=fld_type)
		return base.extend(MemberStep(fld.name), fld_type)

	# -- globals ------------------------------------------------------------

	def _resolve_global(self, module: ModuleInfo, name: str) -> Optional[ResolvedLock]:
		"""Module-level name: global variable, class, module, or external import."""
		sym = self.workspace.symbol_for_expr(ast.Name(id=name, ctx=ast.Load()), module)
		if isinstance(sym, FieldInfo):
			return ResolvedLock(module_root(sym.module.name), (MemberStep(sym.name),), type=self.workspace.field_type(sym))
		if isinstance(sym, ClassInfo):
			return ResolvedLock(class_root(sym), type=TypeRef(sym, is_class_object=True))
		if isinstance(sym, ModuleInfo):
			return ResolvedLock(module_root(sym.name), namespace=sym)
		if sym is not None:
			return None
		ref = module.imports.get(name)
		if ref is None:
			return None
		# External import: opaque, keyed by where it comes from so every
		# importer agrees on its identity.
		if ref.name is None:
			return ResolvedLock(module_root(ref.module))
		return ResolvedLock(module_root(ref.module), (MemberStep(ref.name),))

	def _resolve_global_call(self, module: ModuleInfo, name: str) -> Optional[ResolvedLock]:
		sym = self.workspace.resolve_global(module, name)
		if isinstance(sym, FunctionInfo) and sym.kind is FunctionKind.MODULE and sym.callable_without_args:
			return ResolvedLock(module_root(sym.module.name), (CallStep(sym.name),), type=self.workspace.return_type(sym))
		if sym is None:
			ref = module.imports.get(name)
			if ref is not None and ref.name is not None and ref.module not in self.workspace.modules:
				return ResolvedLock(module_root(ref.module), (CallStep(ref.name),))
		return None

	# -- member steps -------------------------------------------------------

	def _resolve_member(
		self,
		base: ResolvedLock,
		member: str,
		*,
		is_call: bool,
		text: str,
		lenient: bool,
	) -> ResolvedLock:
		ws = self.workspace
		step: Step = CallStep(member) if is_call else MemberStep(member)
		shown = f"{member}()" if is_call else member

		if base.namespace is not None:
			return self._resolve_module_member(base, member, is_call=is_call, text=text, lenient=lenient)

		t = base.type
		if t is None:
			if self.config.strict_member_resolution and not lenient:
				raise UnresolvableLockExpression(
					f"cannot resolve '{shown}': type of '{base.canonical_text()}' is unknown",
					text=text,
				)
			return base.extend(step, None)

		cls = t.cls
		if is_call:
			fn = ws.lookup_function(cls, member)
			if fn is not None and fn.kind is not FunctionKind.PROPERTY and fn.callable_without_args:
				if fn.kind in (FunctionKind.STATIC, FunctionKind.CLASS):
					return ResolvedLock(class_root(fn.owner), (CallStep(member),), type=ws.return_type(fn))
				if not t.is_class_object:
					return base.extend(step, ws.return_type(fn))
			if lenient:
				return base.extend(step, None)
			if fn is None:
				detail = f"'{cls.display_name}' has no method '{member}'"
			elif not fn.callable_without_args:
				detail = f"'{fn.display_name}' requires arguments"
			elif fn.kind is FunctionKind.PROPERTY:
				detail = f"'{fn.display_name}' is a property, not a method"
			else:
				detail = f"'{fn.display_name}' is an instance method and needs an instance of '{cls.display_name}'"
			raise UnresolvableLockExpression(detail, text=text)

		nested = ws.lookup_nested_class(cls, member)
		if nested is not None:
			return ResolvedLock(class_root(nested), type=TypeRef(nested, is_class_object=True))
		fld = ws.lookup_field(cls, member)
		if fld is not None and (fld.is_static or not t.is_class_object):
			return self._field_lock(base, fld)
		prop = ws.lookup_function(cls, member)
		if prop is not None and prop.kind is FunctionKind.PROPERTY and not t.is_class_object:
			return base.extend(step, ws.return_type(prop))
		if lenient:
			return base.extend(step, None)
		if fld is not None:
			detail = f"'{fld.display_name}' is an instance field and needs an instance of '{cls.display_name}'"
		else:
			detail = f"'{cls.display_name}' has no field '{member}'"
		raise UnresolvableLockExpression(detail, text=text)

	def _resolve_module_member(
		self,
		base: ResolvedLock,
		member: str,
		*,
		is_call: bool,
		text: str,
		lenient: bool,
	) -> ResolvedLock:
		namespace = base.namespace
		assert namespace is not None
		sym = self.workspace.module_member(namespace, member)
		if is_call:
			if isinstance(sym, FunctionInfo) and sym.callable_without_args:
				return ResolvedLock(module_root(sym.module.name), (CallStep(sym.name),), type=self.workspace.return_type(sym))
		else:
			if isinstance(sym, FieldInfo):
				return ResolvedLock(module_root(sym.module.name), (MemberStep(sym.name),), type=self.workspace.field_type(sym))
			if isinstance(sym, ClassInfo):
				return ResolvedLock(class_root(sym), type=TypeRef(sym, is_class_object=True))
			if isinstance(sym, ModuleInfo):
				return ResolvedLock(module_root(sym.name), namespace=sym)
		if lenient:
			return ResolvedLock(base.root, base.path + ((CallStep(member) if is_call else MemberStep(member)),))
		raise UnresolvableLockExpression(f"module '{namespace.name}' has no member '{member}'", text=text)

	# -- body scope ---------------------------------------------------------

	def resolve_in_body(self, expr: LockExpression, frame: BodyFrame) -> Optional[ResolvedLock]:
		"""Resolve an expression written inside a function body; None when it cannot be named."""
		text = render(expr)
		try:
			return self._resolve_body(expr, frame, text)
		except UnresolvableLockExpression:
			return None

	def resolve_node(self, node: ast.expr, frame: BodyFrame) -> Optional[ResolvedLock]:
		expr = lock_expr_from_node(node)
		if expr is None:
			return None
		return self.resolve_in_body(expr, frame)

	def _resolve_body(self, expr: LockExpression, frame: BodyFrame, text: str) -> Optional[ResolvedLock]:
		if isinstance(expr, ThisReference):
			return self._receiver_lock(frame)
		if isinstance(expr, Identifier):
			return self._resolve_body_identifier(expr.name, frame)
		if isinstance(expr, Select):
			base = self._resolve_body(expr.base, frame, text)
			if base is None:
				return None
			return self._resolve_member(base, expr.member, is_call=False, text=text, lenient=True)
		if isinstance(expr, Invocation):
			if expr.base is None:
				return self._resolve_body_bare_call(expr.method, frame)
			base = self._resolve_body(expr.base, frame, text)
			if base is None:
				return None
			return self._resolve_member(base, expr.method, is_call=True, text=text, lenient=True)
		return None

	def _receiver_lock(self, frame: BodyFrame) -> Optional[ResolvedLock]:
		cur: Optional[BodyFrame] = frame
		while cur is not None:
			if cur.receiver_name is not None and cur.cls is not None:
				if cur.receiver_is_class:
					return ResolvedLock(class_root(cur.cls), type=TypeRef(cur.cls, is_class_object=True))
				return ResolvedLock(this_root(cur.cls), type=TypeRef(cur.cls))
			cur = cur.parent
		return None

	def _resolve_body_identifier(self, name: str, frame: BodyFrame) -> Optional[ResolvedLock]:
		cur: Optional[BodyFrame] = frame
		while cur is not None:
			if name in cur.names.globals:
				break
			if name == cur.receiver_name:
				return self._receiver_lock(cur)
			param = cur.params.get(name)
			if param is not None:
				fn = cur.function
				ptype = self.workspace.param_type(fn, param) if fn is not None else None
				return ResolvedLock(LockRoot(RootKind.PARAM, cur.qualname, name), type=ptype)
			if name in cur.names.bound:
				return ResolvedLock(LockRoot(RootKind.LOCAL, cur.qualname, name))
			cur = cur.parent
		return self._resolve_global(frame.module, name)

	def global_symbol(self, name: str, frame: BodyFrame) -> Optional[Symbol]:
		"""Workspace symbol a bare name in `frame` refers to; None when a local binding shadows it."""
		cur: Optional[BodyFrame] = frame
		while cur is not None:
			if name in cur.names.globals:
				break
			if name == cur.receiver_name or name in cur.params or name in cur.names.bound:
				return None
			cur = cur.parent
		return self.workspace.resolve_global(frame.module, name)

	def _resolve_body_bare_call(self, name: str, frame: BodyFrame) -> Optional[ResolvedLock]:
		cur: Optional[BodyFrame] = frame
		while cur is not None:
			if name in cur.names.globals:
				break
			if name in cur.params or name in cur.names.bound:
				return None
			cur = cur.parent
		return self._resolve_global_call(frame.module, name)


def lock_expr_from_node(node: ast.expr) -> Optional[LockExpression]:
	"""
	Convert a Python expression to a LockExpression when it has lock shape.

	Names, attribute chains and zero-argument calls qualify; anything else
	(subscripts, calls with arguments, literals) yields None.
	"""
	if isinstance(node, ast.Name):
		return Identifier(node.id)
	if isinstance(node, ast.Attribute):
		base = lock_expr_from_node(node.value)
		return Select(base, node.attr) if base is not None else None
	if isinstance(node, ast.Call) and not node.args and not node.keywords:
		if isinstance(node.func, ast.Name):
			return Invocation(None, node.func.id)
		if isinstance(node.func, ast.Attribute):
			base = lock_expr_from_node(node.func.value)
			return Invocation(base, node.func.attr) if base is not None else None
	return None


__all__ = [
	"BodyFrame",
	"CallStep",
	"LockResolver",
	"LockRoot",
	"MemberStep",
	"ResolvedLock",
	"RootKind",
	"Step",
	"class_root",
	"lock_expr_from_node",
	"module_root",
	"this_root",
]
