#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Held-lock computation: a structural, intraprocedural must-analysis.

The analyzer walks one function body statement by statement and tracks the
set of locks definitely held at each statement boundary:

- lock-method calls (registry ACQUIRE/RELEASE bindings, rebased to the call
  site) and primitive `X.acquire()` / `X.release()` calls change the set from
  that statement forward,
- `with X:` holds X for the block and drops it at block exit (abrupt exits
  included), unless X was already held before the block,
- `finally` is always reached: its effects apply to the state after the whole
  `try` statement; code inside it sees the meet of normal and exceptional
  entry states; handlers start from the meet of every state seen in the body,
- joins (if/else, loops, match, break/continue edges) intersect the sets;
  loops iterate silently to a fixpoint before the reporting pass.

`None` stands for "unreachable" and is the identity of the meet. Nested
function definitions and lambdas are not walked here; they are separate
bodies with their own (empty) entry state.
"""

from __future__ import annotations

import ast
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from guardcheck.aliasing import HeldLockSet, meet, rebase
from guardcheck.guard_index import LockActionKind, LockMethodBinding, LockMethodRegistry
from guardcheck.resolver import BodyFrame, LockResolver, ResolvedLock
from guardcheck.symbols import FunctionInfo, FunctionKind

State = Optional[HeldLockSet]
NodeCallback = Callable[[ast.AST, HeldLockSet], None]
NestedCallback = Callable[[Union[ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef]], None]
Effect = Tuple[LockActionKind, ResolvedLock]

PRIMITIVE_ACQUIRE = "acquire"
PRIMITIVE_RELEASE = "release"

_NESTED_SCOPES = (ast.Lambda, ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)
_TRY_NODES = tuple(getattr(ast, name) for name in ("Try", "TryStar") if hasattr(ast, name))
_MAX_LOOP_ITERATIONS = 64


@dataclass
class _LoopCtx:
	exit_depth: int
	breaks: List[State] = field(default_factory=list)
	continues: List[State] = field(default_factory=list)


def evaluation_order(node: ast.AST) -> Iterator[ast.AST]:
	"""Yield sub-nodes children-first (argument evaluation order), skipping nested scopes."""
	for child in ast.iter_child_nodes(node):
		if isinstance(child, _NESTED_SCOPES):
			continue
		yield from evaluation_order(child)
	yield node


def bind_call_arguments(fn: FunctionInfo, call: ast.Call) -> Dict[str, ast.expr]:
	"""Map parameter names of `fn` to argument expressions of `call` (receiver excluded)."""
	params = fn.call_params
	bound: Dict[str, ast.expr] = {}
	positional = [p for p in params if p.kind == "positional"]
	for p, arg in zip(positional, call.args):
		if isinstance(arg, ast.Starred):
			break
		bound[p.name] = arg
	names = {p.name for p in params}
	for kw in call.keywords:
		if kw.arg is not None and kw.arg in names:
			bound[kw.arg] = kw.value
	return bound


def _is_blocking_acquire(call: ast.Call) -> bool:
	"""`acquire()` / `acquire(True)` / `acquire(blocking=True)`; timed or non-blocking forms do not count."""
	if call.args:
		first = call.args[0]
		if not (isinstance(first, ast.Constant) and first.value is True):
			return False
		if len(call.args) > 1:
			timeout = call.args[1]
			if not (isinstance(timeout, ast.Constant) and timeout.value == -1):
				return False
	for kw in call.keywords:
		if kw.arg == "blocking" and not (isinstance(kw.value, ast.Constant) and kw.value.value is True):
			return False
		if kw.arg == "timeout" and not (isinstance(kw.value, ast.Constant) and kw.value.value == -1):
			return False
		if kw.arg is None:
			return False
	return True


def _jumps_out(body: Sequence[ast.stmt]) -> bool:
	"""True when `body` holds a `break` or `continue` outside nested scopes."""
	return any(
		isinstance(node, (ast.Break, ast.Continue)) for stmt in body for node in evaluation_order(stmt)
	)


class HeldLockAnalyzer:
	"""Computes held-lock sets for one function body."""

	def __init__(
		self,
		resolver: LockResolver,
		registry: LockMethodRegistry,
		frame: BodyFrame,
		*,
		on_node: Optional[NodeCallback] = None,
		on_nested: Optional[NestedCallback] = None,
	) -> None:
		self.resolver = resolver
		self.registry = registry
		self.frame = frame
		self.on_node = on_node
		self.on_nested = on_nested
		self._silent = 0
		self._loops: List[_LoopCtx] = []
		self._exits: List[Tuple[str, object]] = []
		self._exc_points: List[List[State]] = []
		self._states_before: Dict[int, HeldLockSet] = {}
		self._finally_memo: Dict[Tuple[int, HeldLockSet], Tuple[State, List[State]]] = {}

	# -- public -------------------------------------------------------------

	def analyze(self, body: Sequence[ast.stmt], entry: HeldLockSet) -> State:
		"""Walk `body` from `entry`; returns the state on normal fall-through (None if unreachable)."""
		return self._walk_block(body, entry)

	def state_before(self, stmt: ast.stmt) -> Optional[HeldLockSet]:
		"""Held set recorded before `stmt` during the reporting pass (None if never reached)."""
		return self._states_before.get(id(stmt))

	# -- helpers ------------------------------------------------------------

	@contextmanager
	def _silence(self) -> Iterator[None]:
		self._silent += 1
		try:
			yield
		finally:
			self._silent -= 1

	def _note_exc_point(self, state: State) -> None:
		if self._exc_points and state is not None:
			self._exc_points[-1].append(state)

	def _eval(self, node: Optional[ast.AST], state: HeldLockSet) -> HeldLockSet:
		"""Report `node` against `state`, then apply lock effects of the calls it makes."""
		if node is None:
			return state
		if not self._silent and self.on_node is not None:
			self.on_node(node, state)
		for sub in evaluation_order(node):
			if isinstance(sub, ast.Call):
				for kind, lock in self.call_effects(sub):
					state = state.add(lock) if kind is LockActionKind.ACQUIRE else state.remove(lock)
		return state

	# -- call effects -------------------------------------------------------

	def call_effects(self, call: ast.Call) -> List[Effect]:
		"""Lock effects of one call expression (empty for ordinary calls)."""
		func = call.func
		if isinstance(func, ast.Attribute):
			recv = self.resolver.resolve_node(func.value, self.frame)
			if recv is None:
				return []
			if recv.namespace is not None:
				sym = self.resolver.workspace.module_member(recv.namespace, func.attr)
				if isinstance(sym, FunctionInfo):
					return self._apply_bindings(self.registry.bindings_for(sym), call, None)
				return []
			if recv.type is not None:
				bindings = self.registry.lookup_method(recv.type.cls, func.attr)
				if bindings:
					return self._apply_bindings(bindings, call, recv)
			if func.attr == PRIMITIVE_ACQUIRE and _is_blocking_acquire(call):
				return [(LockActionKind.ACQUIRE, recv)]
			if func.attr == PRIMITIVE_RELEASE and not call.args and not call.keywords:
				return [(LockActionKind.RELEASE, recv)]
			return []
		if isinstance(func, ast.Name):
			fn = self._module_function(func.id)
			if fn is not None:
				return self._apply_bindings(self.registry.bindings_for(fn), call, None)
		return []

	def _module_function(self, name: str) -> Optional[FunctionInfo]:
		sym = self.resolver.global_symbol(name, self.frame)
		if isinstance(sym, FunctionInfo) and sym.kind is FunctionKind.MODULE:
			return sym
		return None

	def _apply_bindings(
		self,
		bindings: Sequence[LockMethodBinding],
		call: ast.Call,
		receiver: Optional[ResolvedLock],
	) -> List[Effect]:
		effects: List[Effect] = []
		for binding in bindings:
			if (
				receiver is not None
				and receiver.type is not None
				and receiver.type.is_class_object
				and binding.method.kind in (FunctionKind.INSTANCE, FunctionKind.PROPERTY)
			):
				continue
			args = self.resolve_arguments(binding.method, call)
			lock = rebase(binding.lock, receiver=receiver, args=args)
			if lock is not None:
				effects.append((binding.kind, lock))
		return effects

	def resolve_arguments(self, fn: FunctionInfo, call: ast.Call) -> Mapping[str, Optional[ResolvedLock]]:
		return {
			name: self.resolver.resolve_node(arg, self.frame)
			for name, arg in bind_call_arguments(fn, call).items()
		}

	def _conditional_acquire(self, test: ast.expr) -> Optional[ResolvedLock]:
		"""`if X.acquire(...)`: X is held in the then-branch."""
		if (
			isinstance(test, ast.Call)
			and isinstance(test.func, ast.Attribute)
			and test.func.attr == PRIMITIVE_ACQUIRE
		):
			return self.resolver.resolve_node(test.func.value, self.frame)
		return None

	# -- statements ---------------------------------------------------------

	def _walk_block(self, stmts: Sequence[ast.stmt], state: State) -> State:
		for stmt in stmts:
			if state is None:
				break
			if not self._silent:
				self._states_before[id(stmt)] = state
			self._note_exc_point(state)
			state = self._walk_stmt(stmt, state)
			self._note_exc_point(state)
		return state

	def _walk_stmt(self, stmt: ast.stmt, state: HeldLockSet) -> State:
		if isinstance(stmt, (ast.Return, ast.Raise)):
			self._eval(stmt, state)
			return None
		if isinstance(stmt, (ast.Break, ast.Continue)):
			self._jump(stmt, state)
			return None
		if isinstance(stmt, ast.If):
			return self._walk_if(stmt, state)
		if isinstance(stmt, (ast.While, ast.For, ast.AsyncFor)):
			return self._walk_loop(stmt, state)
		if isinstance(stmt, (ast.With, ast.AsyncWith)):
			return self._walk_with(stmt, state)
		if isinstance(stmt, _TRY_NODES):
			return self._walk_try(stmt, state)
		if isinstance(stmt, ast.Match):
			return self._walk_match(stmt, state)
		if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
			for dec in stmt.decorator_list:
				state = self._eval(dec, state)
			if not isinstance(stmt, ast.ClassDef):
				for default in list(stmt.args.defaults) + [d for d in stmt.args.kw_defaults if d is not None]:
					state = self._eval(default, state)
			else:
				for base in stmt.bases:
					state = self._eval(base, state)
			if not self._silent and self.on_nested is not None:
				self.on_nested(stmt)
			return state
		return self._eval(stmt, state)

	def _jump(self, stmt: ast.stmt, state: HeldLockSet) -> None:
		if not self._loops:
			return
		ctx = self._loops[-1]
		out = self._unwind(state, ctx.exit_depth)
		if isinstance(stmt, ast.Break):
			ctx.breaks.append(out)
		else:
			ctx.continues.append(out)

	def _unwind(self, state: State, depth: int) -> State:
		"""Apply `with` exits and `finally` bodies entered since `depth`, innermost first."""
		for kind, payload in reversed(self._exits[depth:]):
			if state is None:
				return None
			if kind == "with":
				for lock in payload:  # type: ignore[union-attr]
					state = state.remove(lock)
			else:
				saved_loops, self._loops = self._loops, []
				try:
					with self._silence():
						state = self._walk_block(payload, state)  # type: ignore[arg-type]
				finally:
					self._loops = saved_loops
		return state

	def _walk_if(self, stmt: ast.If, state: HeldLockSet) -> State:
		state = self._eval(stmt.test, state)
		then_in = state
		cond_lock = self._conditional_acquire(stmt.test)
		if cond_lock is not None:
			then_in = then_in.add(cond_lock)
		then_out = self._walk_block(stmt.body, then_in)
		else_out = self._walk_block(stmt.orelse, state)
		return meet(then_out, else_out)

	def _loop_pass(self, stmt: Union[ast.While, ast.For, ast.AsyncFor], head: HeldLockSet) -> Tuple[State, State, _LoopCtx]:
		"""One pass over the loop body from `head`: (state after test/target, body out, ctx)."""
		ctx = _LoopCtx(exit_depth=len(self._exits))
		self._loops.append(ctx)
		try:
			if isinstance(stmt, ast.While):
				after_test = self._eval(stmt.test, head)
				cond_lock = self._conditional_acquire(stmt.test)
				body_in = after_test.add(cond_lock) if cond_lock is not None else after_test
			else:
				after_test = head
				body_in = self._eval(stmt.target, head)
			body_out = self._walk_block(stmt.body, body_in)
		finally:
			self._loops.pop()
		return after_test, body_out, ctx

	def _walk_loop(self, stmt: Union[ast.While, ast.For, ast.AsyncFor], state: HeldLockSet) -> State:
		entry = state
		if not isinstance(stmt, ast.While):
			entry = self._eval(stmt.iter, state)
		head = entry
		with self._silence():
			for _ in range(_MAX_LOOP_ITERATIONS):
				_, body_out, ctx = self._loop_pass(stmt, head)
				new_head = meet(entry, body_out, *ctx.continues)
				assert new_head is not None
				if new_head == head:
					break
				head = new_head
		after_test, _, ctx = self._loop_pass(stmt, head)
		infinite = isinstance(stmt, ast.While) and isinstance(stmt.test, ast.Constant) and bool(stmt.test.value)
		exit_state: State = None if infinite else after_test
		else_out = self._walk_block(stmt.orelse, exit_state)
		return meet(else_out, *ctx.breaks)

	def _walk_with(self, stmt: Union[ast.With, ast.AsyncWith], state: HeldLockSet) -> State:
		added: List[ResolvedLock] = []
		for item in stmt.items:
			state = self._eval(item.context_expr, state)
			lock = self.resolver.resolve_node(item.context_expr, self.frame)
			if lock is not None and lock not in state:
				added.append(lock)
				state = state.add(lock)
			if item.optional_vars is not None:
				state = self._eval(item.optional_vars, state)
		self._exits.append(("with", tuple(added)))
		try:
			out = self._walk_block(stmt.body, state)
		finally:
			self._exits.pop()
		if out is None:
			return None
		for lock in added:
			out = out.remove(lock)
		return out

	def _walk_try(self, stmt: ast.stmt, state: HeldLockSet) -> State:
		body: List[ast.stmt] = getattr(stmt, "body")
		handlers: List[ast.ExceptHandler] = getattr(stmt, "handlers")
		orelse: List[ast.stmt] = getattr(stmt, "orelse")
		finalbody: List[ast.stmt] = getattr(stmt, "finalbody")

		if finalbody:
			self._exits.append(("finally", finalbody))
		try:
			self._exc_points.append([state])
			try:
				body_out = self._walk_block(body, state)
			finally:
				body_points = self._exc_points.pop()
			handler_in = meet(*body_points)
			assert handler_in is not None

			handler_outs: List[State] = []
			self._exc_points.append([])
			try:
				for handler in handlers:
					h_state = self._eval(handler.type, handler_in) if handler.type is not None else handler_in
					handler_outs.append(self._walk_block(handler.body, h_state))
			finally:
				handler_points = self._exc_points.pop()
			self._exc_points.append([])
			try:
				else_out = self._walk_block(orelse, body_out)
			finally:
				else_points = self._exc_points.pop()
		finally:
			if finalbody:
				self._exits.pop()

		normal = meet(else_out, *handler_outs)
		exc_entry = meet(handler_in, *handler_points, *else_points)
		assert exc_entry is not None
		if not finalbody:
			if self._exc_points:
				self._exc_points[-1].extend(body_points + handler_points + else_points)
			return normal

		report_entry = meet(normal, exc_entry)
		assert report_entry is not None
		outs = {report_entry: self._walk_finally(finalbody, report_entry)}
		with self._silence():
			for entry in (exc_entry, normal):
				if entry is not None and entry not in outs:
					outs[entry] = self._walk_finally(finalbody, entry)
		self._note_exc_point(outs[exc_entry])
		if normal is None:
			return None
		return outs[normal]

	def _walk_finally(self, body: List[ast.stmt], entry: HeldLockSet) -> State:
		"""
		Walk a `finally` body from `entry`.

		Silent walks of the same body from the same entry state are memoized,
		so nested `try`/`finally` statements are walked once per distinct entry
		state. Bodies that contain `break` or `continue` are never memoized.
		"""
		key = (id(body), entry)
		cached = self._finally_memo.get(key) if self._silent else None
		if cached is None:
			self._exc_points.append([])
			try:
				out = self._walk_block(body, entry)
			finally:
				points = self._exc_points.pop()
			cached = (out, points)
			if not _jumps_out(body):
				self._finally_memo[key] = cached
		out, points = cached
		if self._exc_points:
			self._exc_points[-1].extend(points)
		return out

	def _walk_match(self, stmt: ast.Match, state: HeldLockSet) -> State:
		state = self._eval(stmt.subject, state)
		outs: List[State] = []
		for case in stmt.cases:
			c_state = self._eval(case.guard, state) if case.guard is not None else state
			outs.append(self._walk_block(case.body, c_state))
		last = stmt.cases[-1] if stmt.cases else None
		exhaustive = (
			last is not None
			and last.guard is None
			and isinstance(last.pattern, ast.MatchAs)
			and last.pattern.pattern is None
		)
		if not exhaustive:
			outs.append(state)
		return meet(*outs)


__all__ = [
	"HeldLockAnalyzer",
	"bind_call_arguments",
	"evaluation_order",
	"PRIMITIVE_ACQUIRE",
	"PRIMITIVE_RELEASE",
]
