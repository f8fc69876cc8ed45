# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Declaration tables for Python compilation units.

The guard engine needs answers the `ast` module alone does not give: which
class declares a field, whether a field or method is static, what the declared
type of a parameter/field/return value is, and which lock annotations a
member carries. This module builds those tables once per module:

  * `ModuleInfo`   module globals, module functions, classes, imports
  * `ClassInfo`    fields (class body + `self.x` assignments), methods,
                   nested classes, base-class expressions
  * `FieldInfo` / `FunctionInfo` / `ParamInfo`

`Workspace` holds every module of one analysis run and answers cross-module
queries (imports, MRO, declared types). It never evaluates code; types are
taken from annotations and from `ClassName(...)` initializers only.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple, Union

from guardcheck.core.span import Span

GUARD_NAMES = frozenset({"guarded_by", "GuardedBy"})
ACQUIRE_NAMES = frozenset({"lock_method", "LockMethod"})
RELEASE_NAMES = frozenset({"unlock_method", "UnlockMethod"})

# Subscript wrappers that are transparent for type/annotation purposes.
_TRANSPARENT_WRAPPERS = frozenset({"Optional", "Final", "ClassVar", "Annotated", "ReadOnly"})
_CLASS_OBJECT_WRAPPERS = frozenset({"Type", "type"})
_PROPERTY_DECORATORS = frozenset({"property", "cached_property"})


class AnnotationKind(Enum):
	GUARD = auto()
	ACQUIRE = auto()
	RELEASE = auto()


class FunctionKind(Enum):
	INSTANCE = auto()
	STATIC = auto()
	CLASS = auto()
	PROPERTY = auto()
	MODULE = auto()


@dataclass(eq=False)
class AnnotationUse:
	"""One lock annotation as written on a declaration."""

	kind: AnnotationKind
	text: Optional[str]  # None when the argument is not a string literal.
	source: str  # Argument source text, quoted in diagnostics.
	span: Span


@dataclass(eq=False)
class ParamInfo:
	name: str
	index: int
	annotation: Optional[ast.expr] = None
	has_default: bool = False
	kind: str = "positional"  # positional | vararg | kwonly | kwarg


@dataclass(eq=False)
class FieldInfo:
	"""A class field or module global."""

	name: str
	owner: "Scope"
	annotation: Optional[ast.expr] = None
	value: Optional[ast.expr] = None
	is_static: bool = False
	guard: Optional[AnnotationUse] = None
	span: Span = field(default_factory=Span)

	@property
	def qualname(self) -> str:
		return f"{self.owner.qualname}.{self.name}"

	@property
	def display_name(self) -> str:
		return f"{self.owner.display_name}.{self.name}" if self.owner.display_name else self.name

	@property
	def module(self) -> "ModuleInfo":
		return self.owner.module


@dataclass(eq=False)
class FunctionInfo:
	"""A method or module-level function."""

	name: str
	owner: "Scope"
	node: Union[ast.FunctionDef, ast.AsyncFunctionDef]
	kind: FunctionKind
	params: List[ParamInfo] = field(default_factory=list)
	returns: Optional[ast.expr] = None
	annotations: List[AnnotationUse] = field(default_factory=list)
	span: Span = field(default_factory=Span)

	@property
	def qualname(self) -> str:
		return f"{self.owner.qualname}.{self.name}"

	@property
	def display_name(self) -> str:
		return f"{self.owner.display_name}.{self.name}" if self.owner.display_name else self.name

	@property
	def module(self) -> "ModuleInfo":
		return self.owner.module

	@property
	def is_static(self) -> bool:
		"""True when the function runs without an instance receiver."""
		return self.kind in (FunctionKind.STATIC, FunctionKind.CLASS, FunctionKind.MODULE)

	@property
	def receiver_name(self) -> Optional[str]:
		"""Name of the implicit first parameter (`self` / `cls`), if any."""
		if self.kind in (FunctionKind.INSTANCE, FunctionKind.PROPERTY, FunctionKind.CLASS):
			positional = [p for p in self.params if p.kind == "positional"]
			if positional:
				return positional[0].name
		return None

	@property
	def call_params(self) -> List[ParamInfo]:
		"""Parameters bound by call arguments (receiver excluded)."""
		recv = self.receiver_name
		if recv is None:
			return list(self.params)
		return [p for p in self.params if p.name != recv]

	@property
	def callable_without_args(self) -> bool:
		return all(p.has_default or p.kind in ("vararg", "kwarg") for p in self.call_params)

	def annotations_of(self, kind: AnnotationKind) -> List[AnnotationUse]:
		return [a for a in self.annotations if a.kind is kind]

	def param(self, name: str) -> Optional[ParamInfo]:
		for p in self.params:
			if p.name == name:
				return p
		return None


@dataclass(frozen=True)
class ImportRef:
	module: str
	name: Optional[str] = None  # None for `import a.b as m`


@dataclass(eq=False)
class ClassInfo:
	name: str
	module: "ModuleInfo"
	node: ast.ClassDef
	outer: Optional["ClassInfo"] = None
	bases: List[ast.expr] = field(default_factory=list)
	fields: Dict[str, FieldInfo] = field(default_factory=dict)
	functions: Dict[str, FunctionInfo] = field(default_factory=dict)
	classes: Dict[str, "ClassInfo"] = field(default_factory=dict)
	span: Span = field(default_factory=Span)

	@property
	def display_name(self) -> str:
		if self.outer is not None:
			return f"{self.outer.display_name}.{self.name}"
		return self.name

	@property
	def qualname(self) -> str:
		return f"{self.module.name}.{self.display_name}"


@dataclass(eq=False)
class ModuleInfo:
	name: str
	tree: ast.Module
	path: Optional[str] = None
	fields: Dict[str, FieldInfo] = field(default_factory=dict)
	functions: Dict[str, FunctionInfo] = field(default_factory=dict)
	classes: Dict[str, ClassInfo] = field(default_factory=dict)
	imports: Dict[str, ImportRef] = field(default_factory=dict)
	is_package: bool = False

	@property
	def module(self) -> "ModuleInfo":
		return self

	@property
	def qualname(self) -> str:
		return self.name

	@property
	def display_name(self) -> str:
		return ""

	def all_classes(self) -> Iterator[ClassInfo]:
		stack = list(self.classes.values())
		while stack:
			cls = stack.pop(0)
			yield cls
			stack[0:0] = list(cls.classes.values())

	def span(self, node: Optional[ast.AST]) -> Span:
		return Span.from_node(node, self.path or self.name)


Scope = Union[ClassInfo, ModuleInfo]
Symbol = Union[ClassInfo, FieldInfo, FunctionInfo, ModuleInfo]


@dataclass(frozen=True)
class TypeRef:
	"""Static type of a value: an instance of `cls`, or the class object itself."""

	cls: ClassInfo
	is_class_object: bool = False


def terminal_name(node: Optional[ast.expr]) -> Optional[str]:
	"""`a.b.c` -> `c`, `c` -> `c`, `c(...)` -> terminal name of the callee."""
	if isinstance(node, ast.Call):
		node = node.func
	if isinstance(node, ast.Name):
		return node.id
	if isinstance(node, ast.Attribute):
		return node.attr
	return None


def _annotation_kind(call: ast.Call) -> Optional[AnnotationKind]:
	name = terminal_name(call.func)
	if name in GUARD_NAMES:
		return AnnotationKind.GUARD
	if name in ACQUIRE_NAMES:
		return AnnotationKind.ACQUIRE
	if name in RELEASE_NAMES:
		return AnnotationKind.RELEASE
	return None


def _annotation_use(call: ast.Call, kind: AnnotationKind, module: ModuleInfo) -> AnnotationUse:
	arg: Optional[ast.expr] = call.args[0] if call.args else None
	if arg is None:
		arg = next((kw.value for kw in call.keywords if kw.arg in ("lock", "value")), None)
	if isinstance(arg, ast.Constant) and isinstance(arg.value, str):
		return AnnotationUse(kind=kind, text=arg.value, source=arg.value, span=module.span(call))
	source = ast.unparse(arg) if arg is not None else ""
	return AnnotationUse(kind=kind, text=None, source=source, span=module.span(call))


def _field_annotation_info(ann: Optional[ast.expr]) -> Tuple[bool, List[ast.Call]]:
	"""
	Peel `ClassVar` / `Annotated` / `Final` wrappers off a field annotation.

	Returns (is_classvar, annotation calls found in `Annotated` metadata).
	"""
	is_classvar = False
	calls: List[ast.Call] = []
	node = ann
	while isinstance(node, ast.Subscript):
		wrapper = terminal_name(node.value)
		if wrapper not in _TRANSPARENT_WRAPPERS:
			break
		if wrapper == "ClassVar":
			is_classvar = True
		inner = node.slice
		if wrapper == "Annotated" and isinstance(inner, ast.Tuple) and inner.elts:
			for meta in inner.elts[1:]:
				if isinstance(meta, ast.Call):
					calls.append(meta)
			inner = inner.elts[0]
		node = inner
	if isinstance(node, ast.Name) and node.id == "ClassVar":
		is_classvar = True
	return is_classvar, calls


def params_of(node: Union[ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda]) -> List[ParamInfo]:
	args = node.args
	params: List[ParamInfo] = []
	positional = list(args.posonlyargs) + list(args.args)
	n_defaults = len(args.defaults)
	first_default = len(positional) - n_defaults
	for idx, arg in enumerate(positional):
		params.append(ParamInfo(arg.arg, len(params), arg.annotation, has_default=idx >= first_default))
	if args.vararg is not None:
		params.append(ParamInfo(args.vararg.arg, len(params), args.vararg.annotation, kind="vararg"))
	for arg, default in zip(args.kwonlyargs, args.kw_defaults):
		params.append(ParamInfo(arg.arg, len(params), arg.annotation, has_default=default is not None, kind="kwonly"))
	if args.kwarg is not None:
		params.append(ParamInfo(args.kwarg.arg, len(params), args.kwarg.annotation, kind="kwarg"))
	return params


def _function_kind(node: Union[ast.FunctionDef, ast.AsyncFunctionDef], in_class: bool) -> Optional[FunctionKind]:
	"""Classify a def; None means "accessor half of a property" (setter/deleter)."""
	if not in_class:
		return FunctionKind.MODULE
	kind = FunctionKind.INSTANCE
	for dec in node.decorator_list:
		if isinstance(dec, ast.Attribute) and dec.attr in ("setter", "deleter"):
			return None
		name = terminal_name(dec)
		if name == "staticmethod":
			kind = FunctionKind.STATIC
		elif name == "classmethod":
			kind = FunctionKind.CLASS
		elif name in _PROPERTY_DECORATORS:
			kind = FunctionKind.PROPERTY
	return kind


class SymbolTableBuilder:
	"""Walks one module AST and fills a ModuleInfo."""

	def __init__(self, name: str, tree: ast.Module, path: Optional[str] = None, is_package: bool = False) -> None:
		self.module = ModuleInfo(name=name, tree=tree, path=path, is_package=is_package)

	def build(self) -> ModuleInfo:
		for stmt in self.module.tree.body:
			self._visit_module_stmt(stmt)
		return self.module

	def _visit_module_stmt(self, stmt: ast.stmt) -> None:
		mod = self.module
		if isinstance(stmt, ast.ClassDef):
			cls = self._build_class(stmt, outer=None)
			mod.classes[cls.name] = cls
		elif isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
			fn = self._build_function(stmt, owner=mod, kind=FunctionKind.MODULE)
			mod.functions[fn.name] = fn
		elif isinstance(stmt, (ast.Assign, ast.AnnAssign)):
			self._declare_assignment(stmt, owner=mod, static=True)
		elif isinstance(stmt, (ast.Import, ast.ImportFrom)):
			self._record_import(stmt)
		elif isinstance(stmt, (ast.If, ast.Try)):
			# `if TYPE_CHECKING:` / guarded imports.
			for child in ast.iter_child_nodes(stmt):
				if isinstance(child, (ast.Import, ast.ImportFrom)):
					self._record_import(child)
				elif isinstance(child, ast.ExceptHandler):
					for sub in child.body:
						if isinstance(sub, (ast.Import, ast.ImportFrom)):
							self._record_import(sub)
			for block in (getattr(stmt, "body", []), getattr(stmt, "orelse", []), getattr(stmt, "finalbody", [])):
				for sub in block:
					if isinstance(sub, (ast.Import, ast.ImportFrom)):
						self._record_import(sub)

	def _record_import(self, stmt: Union[ast.Import, ast.ImportFrom]) -> None:
		mod = self.module
		if isinstance(stmt, ast.Import):
			for alias in stmt.names:
				if alias.asname:
					mod.imports[alias.asname] = ImportRef(alias.name)
				else:
					top = alias.name.split(".")[0]
					mod.imports[top] = ImportRef(top)
			return
		base = stmt.module or ""
		if stmt.level:
			parts = mod.name.split(".")
			keep = len(parts) - stmt.level + (1 if mod.is_package else 0)
			prefix = ".".join(parts[: max(keep, 0)])
			base = ".".join(p for p in (prefix, base) if p)
		for alias in stmt.names:
			if alias.name == "*":
				continue
			mod.imports[alias.asname or alias.name] = ImportRef(base, alias.name)

	def _declare_assignment(self, stmt: Union[ast.Assign, ast.AnnAssign], *, owner: Scope, static: bool) -> None:
		mod = self.module
		if isinstance(stmt, ast.AnnAssign):
			if not isinstance(stmt.target, ast.Name):
				return
			is_classvar, calls = _field_annotation_info(stmt.annotation)
			fld = FieldInfo(
				name=stmt.target.id,
				owner=owner,
				annotation=stmt.annotation,
				value=stmt.value,
				is_static=static or is_classvar,
				span=mod.span(stmt),
			)
			fld.guard = self._field_guard(calls)
			owner.fields[fld.name] = fld
			return
		for target in stmt.targets:
			if isinstance(target, ast.Name) and target.id not in owner.fields:
				owner.fields[target.id] = FieldInfo(
					name=target.id,
					owner=owner,
					value=stmt.value,
					is_static=True,
					span=mod.span(stmt),
				)

	def _field_guard(self, calls: Iterable[ast.Call]) -> Optional[AnnotationUse]:
		for call in calls:
			if _annotation_kind(call) is AnnotationKind.GUARD:
				return _annotation_use(call, AnnotationKind.GUARD, self.module)
		return None

	def _build_class(self, node: ast.ClassDef, outer: Optional[ClassInfo]) -> ClassInfo:
		cls = ClassInfo(
			name=node.name,
			module=self.module,
			node=node,
			outer=outer,
			bases=list(node.bases),
			span=self.module.span(node),
		)
		methods: List[FunctionInfo] = []
		for stmt in node.body:
			if isinstance(stmt, ast.ClassDef):
				inner = self._build_class(stmt, outer=cls)
				cls.classes[inner.name] = inner
			elif isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
				kind = _function_kind(stmt, in_class=True)
				if kind is None:
					continue
				fn = self._build_function(stmt, owner=cls, kind=kind)
				cls.functions[fn.name] = fn
				methods.append(fn)
			elif isinstance(stmt, ast.AnnAssign):
				# Annotated class-body fields are instance fields unless ClassVar.
				self._declare_assignment(stmt, owner=cls, static=False)
			elif isinstance(stmt, ast.Assign):
				self._declare_assignment(stmt, owner=cls, static=True)
		for fn in methods:
			self._collect_instance_fields(cls, fn)
		return cls

	def _collect_instance_fields(self, cls: ClassInfo, fn: FunctionInfo) -> None:
		recv = fn.receiver_name
		if recv is None or fn.kind is FunctionKind.CLASS:
			return
		for stmt in _walk_body(fn.node.body):
			if isinstance(stmt, ast.AnnAssign):
				targets = [stmt.target]
				annotation: Optional[ast.expr] = stmt.annotation
				value = stmt.value
			elif isinstance(stmt, ast.Assign):
				targets = list(stmt.targets)
				annotation = None
				value = stmt.value
			else:
				continue
			for target in targets:
				if not (
					isinstance(target, ast.Attribute)
					and isinstance(target.value, ast.Name)
					and target.value.id == recv
				):
					continue
				_, calls = _field_annotation_info(annotation)
				guard = self._field_guard(calls)
				existing = cls.fields.get(target.attr)
				if existing is not None:
					if existing.guard is None and guard is not None:
						existing.guard = guard
					if existing.annotation is None and annotation is not None:
						existing.annotation = annotation
					continue
				cls.fields[target.attr] = FieldInfo(
					name=target.attr,
					owner=cls,
					annotation=annotation,
					value=value,
					is_static=False,
					guard=guard,
					span=self.module.span(stmt),
				)

	def _build_function(
		self,
		node: Union[ast.FunctionDef, ast.AsyncFunctionDef],
		*,
		owner: Scope,
		kind: FunctionKind,
	) -> FunctionInfo:
		fn = FunctionInfo(
			name=node.name,
			owner=owner,
			node=node,
			kind=kind,
			params=params_of(node),
			returns=node.returns,
			span=self.module.span(node),
		)
		for dec in node.decorator_list:
			if not isinstance(dec, ast.Call):
				continue
			ann_kind = _annotation_kind(dec)
			if ann_kind is not None:
				fn.annotations.append(_annotation_use(dec, ann_kind, self.module))
		return fn


def _walk_body(stmts: List[ast.stmt]) -> Iterator[ast.stmt]:
	"""Yield statements of a body recursively, without entering nested scopes."""
	stack = list(reversed(stmts))
	while stack:
		stmt = stack.pop()
		yield stmt
		if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
			continue
		children: List[ast.stmt] = []
		for name in ("body", "orelse", "finalbody"):
			children.extend(getattr(stmt, name, []) or [])
		for handler in getattr(stmt, "handlers", []) or []:
			children.extend(handler.body)
		for case in getattr(stmt, "cases", []) or []:
			children.extend(case.body)
		stack.extend(reversed(children))


@dataclass
class LocalNames:
	"""Names bound in a function scope (Python scoping rules)."""

	bound: Set[str] = field(default_factory=set)
	globals: Set[str] = field(default_factory=set)
	nonlocals: Set[str] = field(default_factory=set)


def local_names(node: Union[ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda]) -> LocalNames:
	"""Collect names assigned in a function body (params excluded)."""
	out = LocalNames()
	if isinstance(node, ast.Lambda):
		return out

	def bind_target(target: ast.AST) -> None:
		for sub in ast.walk(target):
			if isinstance(sub, ast.Name) and isinstance(sub.ctx, (ast.Store, ast.Del)):
				out.bound.add(sub.id)

	stack: List[ast.AST] = list(node.body)
	while stack:
		cur = stack.pop()
		if isinstance(cur, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
			out.bound.add(cur.name)
			# Decorators and defaults evaluate in this scope.
			stack.extend(getattr(cur, "decorator_list", []))
			if not isinstance(cur, ast.ClassDef):
				stack.extend(d for d in cur.args.defaults)
				stack.extend(d for d in cur.args.kw_defaults if d is not None)
			continue
		if isinstance(cur, ast.Lambda):
			continue
		if isinstance(cur, ast.Global):
			out.globals.update(cur.names)
			continue
		if isinstance(cur, ast.Nonlocal):
			out.nonlocals.update(cur.names)
			continue
		if isinstance(cur, (ast.Import, ast.ImportFrom)):
			for alias in cur.names:
				if alias.name != "*":
					out.bound.add((alias.asname or alias.name).split(".")[0])
			continue
		if isinstance(cur, ast.ExceptHandler) and cur.name:
			out.bound.add(cur.name)
		if isinstance(cur, (ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)):
			# Comprehension targets live in their own scope; walrus targets do not.
			for sub in ast.walk(cur):
				if isinstance(sub, ast.NamedExpr):
					bind_target(sub.target)
			continue
		if isinstance(cur, ast.Name) and isinstance(cur.ctx, (ast.Store, ast.Del)):
			out.bound.add(cur.id)
		if isinstance(cur, (ast.MatchAs, ast.MatchStar)) and cur.name:
			out.bound.add(cur.name)
		if isinstance(cur, ast.MatchMapping) and cur.rest:
			out.bound.add(cur.rest)
		stack.extend(ast.iter_child_nodes(cur))
	out.bound -= out.globals
	out.bound -= out.nonlocals
	return out


class Workspace:
	"""All modules of one analysis run plus cross-module lookups."""

	def __init__(self) -> None:
		self.modules: Dict[str, ModuleInfo] = {}

	def add_module(self, name: str, source: str, path: Optional[str] = None, *, is_package: bool = False) -> ModuleInfo:
		"""Parse and register a module. Raises SyntaxError on invalid source."""
		tree = ast.parse(source, filename=path or name)
		return self.add_tree(name, tree, path, is_package=is_package)

	def add_tree(self, name: str, tree: ast.Module, path: Optional[str] = None, *, is_package: bool = False) -> ModuleInfo:
		mod = SymbolTableBuilder(name, tree, path, is_package=is_package).build()
		self.modules[name] = mod
		return mod

	# -- global names -------------------------------------------------------

	def resolve_global(self, module: ModuleInfo, name: str, _depth: int = 0) -> Optional[Symbol]:
		"""Resolve a module-level name, following workspace imports."""
		if name in module.classes:
			return module.classes[name]
		if name in module.functions:
			return module.functions[name]
		if name in module.fields:
			return module.fields[name]
		ref = module.imports.get(name)
		if ref is None or _depth > 8:
			return None
		if ref.name is None:
			return self.modules.get(ref.module)
		target = self.modules.get(ref.module)
		if target is not None:
			found = self.resolve_global(target, ref.name, _depth + 1)
			if found is not None:
				return found
		# `from pkg import submodule`
		return self.modules.get(f"{ref.module}.{ref.name}" if ref.module else ref.name)

	def module_member(self, module: ModuleInfo, name: str) -> Optional[Symbol]:
		found = self.resolve_global(module, name)
		if found is not None:
			return found
		return self.modules.get(f"{module.name}.{name}")

	# -- classes ------------------------------------------------------------

	def mro(self, cls: ClassInfo) -> List[ClassInfo]:
		"""Workspace classes in lookup order (depth-first, left-to-right, deduplicated)."""
		out: List[ClassInfo] = []
		seen: Set[int] = set()
		stack = [cls]
		while stack:
			cur = stack.pop(0)
			if id(cur) in seen:
				continue
			seen.add(id(cur))
			out.append(cur)
			bases = [b for b in (self._class_from_expr(e, cur) for e in cur.bases) if b is not None]
			stack[0:0] = bases
		return out

	def lookup_field(self, cls: ClassInfo, name: str) -> Optional[FieldInfo]:
		for c in self.mro(cls):
			if name in c.fields:
				return c.fields[name]
		return None

	def lookup_function(self, cls: ClassInfo, name: str) -> Optional[FunctionInfo]:
		for c in self.mro(cls):
			if name in c.functions:
				return c.functions[name]
		return None

	def lookup_nested_class(self, cls: ClassInfo, name: str) -> Optional[ClassInfo]:
		for c in self.mro(cls):
			if name in c.classes:
				return c.classes[name]
		return None

	def enclosing_classes(self, cls: ClassInfo) -> List[ClassInfo]:
		out: List[ClassInfo] = []
		cur = cls.outer
		while cur is not None:
			out.append(cur)
			cur = cur.outer
		return out

	def _class_from_expr(self, expr: ast.expr, context: ClassInfo) -> Optional[ClassInfo]:
		sym = self.symbol_for_expr(expr, context.module, context.outer)
		return sym if isinstance(sym, ClassInfo) else None

	def symbol_for_expr(self, expr: ast.expr, module: ModuleInfo, context: Optional[ClassInfo] = None) -> Optional[Symbol]:
		"""Resolve a dotted name expression (`Foo`, `mod.Foo`, `Outer.Inner`)."""
		if isinstance(expr, ast.Name):
			cur: Optional[ClassInfo] = context
			while cur is not None:
				if expr.id in cur.classes:
					return cur.classes[expr.id]
				cur = cur.outer
			return self.resolve_global(module, expr.id)
		if isinstance(expr, ast.Attribute):
			base = self.symbol_for_expr(expr.value, module, context)
			if isinstance(base, ModuleInfo):
				return self.module_member(base, expr.attr)
			if isinstance(base, ClassInfo):
				return self.lookup_nested_class(base, expr.attr)
		return None

	# -- types --------------------------------------------------------------

	def resolve_type(self, annotation: Optional[ast.expr], module: ModuleInfo, context: Optional[ClassInfo] = None) -> Optional[TypeRef]:
		"""Best-effort static type from an annotation; None when not a workspace class."""
		node = annotation
		if node is None:
			return None
		if isinstance(node, ast.Constant) and isinstance(node.value, str):
			try:
				parsed = ast.parse(node.value, mode="eval")
			except SyntaxError:
				return None
			return self.resolve_type(parsed.body, module, context)
		if isinstance(node, ast.Subscript):
			wrapper = terminal_name(node.value)
			inner = node.slice
			if wrapper in _TRANSPARENT_WRAPPERS:
				if isinstance(inner, ast.Tuple) and inner.elts:
					inner = inner.elts[0]
				return self.resolve_type(inner, module, context)
			if wrapper in _CLASS_OBJECT_WRAPPERS:
				ref = self.resolve_type(inner, module, context)
				return TypeRef(ref.cls, is_class_object=True) if ref is not None else None
			if wrapper == "Union" and isinstance(inner, ast.Tuple):
				return self._single_non_none(inner.elts, module, context)
			return None
		if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
			return self._single_non_none([node.left, node.right], module, context)
		sym = self.symbol_for_expr(node, module, context)
		if isinstance(sym, ClassInfo):
			return TypeRef(sym)
		return None

	def _single_non_none(self, elts: List[ast.expr], module: ModuleInfo, context: Optional[ClassInfo]) -> Optional[TypeRef]:
		rest = [e for e in elts if not (isinstance(e, ast.Constant) and e.value is None)]
		if len(rest) != 1:
			return None
		return self.resolve_type(rest[0], module, context)

	def field_type(self, fld: FieldInfo) -> Optional[TypeRef]:
		context = fld.owner if isinstance(fld.owner, ClassInfo) else None
		if fld.annotation is not None:
			return self.resolve_type(fld.annotation, fld.module, context)
		if isinstance(fld.value, ast.Call):
			sym = self.symbol_for_expr(fld.value.func, fld.module, context)
			if isinstance(sym, ClassInfo):
				return TypeRef(sym)
		return None

	def return_type(self, fn: FunctionInfo) -> Optional[TypeRef]:
		context = fn.owner if isinstance(fn.owner, ClassInfo) else None
		return self.resolve_type(fn.returns, fn.module, context)

	def param_type(self, fn: FunctionInfo, param: ParamInfo) -> Optional[TypeRef]:
		context = fn.owner if isinstance(fn.owner, ClassInfo) else None
		return self.resolve_type(param.annotation, fn.module, context)


__all__ = [
	"AnnotationKind",
	"AnnotationUse",
	"ClassInfo",
	"FieldInfo",
	"FunctionInfo",
	"FunctionKind",
	"ImportRef",
	"LocalNames",
	"ModuleInfo",
	"ParamInfo",
	"Scope",
	"Symbol",
	"SymbolTableBuilder",
	"TypeRef",
	"Workspace",
	"local_names",
	"params_of",
	"terminal_name",
]
