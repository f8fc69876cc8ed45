# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Held-lock flow tests.

Each body marks program points with `probe("label")` statements; the helper
returns the canonical texts of the locks held right before each probe (None
when the probe is unreachable).
"""

import ast
import textwrap
from typing import Dict, Optional, Set

from guardcheck.aliasing import HeldLockSet
from guardcheck.checker import AnalysisContext
from guardcheck.held_locks import HeldLockAnalyzer
from guardcheck.resolver import BodyFrame
from guardcheck.symbols import Workspace

PRELUDE = """
import threading
from guardcheck import lock_method, unlock_method

LOCK = threading.Lock()


@lock_method("LOCK")
def take():
	LOCK.acquire()


class C:
	def __init__(self):
		self.lock = threading.Lock()
		self.other = threading.Lock()

	@lock_method("lock")
	def enter(self):
		self.lock.acquire()

	@unlock_method("lock")
	def leave(self):
		self.lock.release()
"""


def _held(body: str, params: str = "self") -> Dict[str, Optional[Set[str]]]:
	"""Analyze `body` as method `C.probe_target(params)` and return held sets per probe."""
	method = f"\n\tdef probe_target({params}):\n" + textwrap.indent(textwrap.dedent(body), "\t\t")
	ws = Workspace()
	module = ws.add_module("m", textwrap.dedent(PRELUDE) + method)
	fn = module.classes["C"].functions["probe_target"]
	context = AnalysisContext.build(ws)
	analyzer = HeldLockAnalyzer(context.resolver, context.registry, BodyFrame.for_function(fn))
	analyzer.analyze(fn.node.body, HeldLockSet())
	out: Dict[str, Optional[Set[str]]] = {}
	for node in ast.walk(fn.node):
		if (
			isinstance(node, ast.Expr)
			and isinstance(node.value, ast.Call)
			and isinstance(node.value.func, ast.Name)
			and node.value.func.id == "probe"
		):
			label = node.value.args[0].value
			state = analyzer.state_before(node)
			out[label] = None if state is None else {lock.canonical_text() for lock in state}
	return out


def test_straight_line_acquire_release():
	held = _held(
		"""
		probe("before")
		self.lock.acquire()
		probe("held")
		self.lock.release()
		probe("after")
		"""
	)
	assert held == {"before": set(), "held": {"self.lock"}, "after": set()}


def test_with_block_holds_only_inside():
	held = _held(
		"""
		with self.lock:
			probe("in")
		probe("out")
		"""
	)
	assert held == {"in": {"self.lock"}, "out": set()}


def test_with_on_already_held_lock_keeps_it():
	held = _held(
		"""
		self.lock.acquire()
		with self.lock:
			probe("in")
		probe("out")
		"""
	)
	assert held["out"] == {"self.lock"}


def test_branch_join_is_intersection():
	held = _held(
		"""
		if cond:
			self.lock.acquire()
		probe("one_branch")
		if cond:
			self.other.acquire()
		else:
			self.other.acquire()
		probe("both_branches")
		""",
	)
	assert held["one_branch"] == set()
	assert held["both_branches"] == {"self.other"}


def test_return_makes_branch_unreachable():
	held = _held(
		"""
		self.lock.acquire()
		if cond:
			self.lock.release()
			return
		probe("still_held")
		"""
	)
	assert held["still_held"] == {"self.lock"}


def test_code_after_return_is_unreachable():
	held = _held(
		"""
		return
		probe("dead")
		"""
	)
	assert held["dead"] is None


def test_release_in_finally_applies_after_try():
	held = _held(
		"""
		self.lock.acquire()
		try:
			probe("body")
		finally:
			probe("finally")
			self.lock.release()
		probe("after")
		"""
	)
	assert held == {"body": {"self.lock"}, "finally": {"self.lock"}, "after": set()}


def test_acquire_inside_try_not_held_in_finally():
	held = _held(
		"""
		try:
			self.lock.acquire()
			probe("body")
		finally:
			probe("finally")
			self.lock.release()
		"""
	)
	assert held["body"] == {"self.lock"}
	assert held["finally"] == set()


def test_handler_starts_from_meet_of_try_body():
	held = _held(
		"""
		self.lock.acquire()
		try:
			self.lock.release()
			work()
		except ValueError:
			probe("handler")
		"""
	)
	assert held["handler"] == set()


def test_loop_reaches_fixpoint_before_reporting():
	held = _held(
		"""
		self.lock.acquire()
		for item in items:
			probe("iteration")
			if item:
				self.lock.release()
		probe("after_loop")
		"""
	)
	assert held["iteration"] == set()
	assert held["after_loop"] == set()


def test_loop_that_keeps_the_lock():
	held = _held(
		"""
		self.lock.acquire()
		while cond():
			probe("iteration")
		probe("after_loop")
		"""
	)
	assert held["iteration"] == {"self.lock"}
	assert held["after_loop"] == {"self.lock"}


def test_break_out_of_with_releases():
	held = _held(
		"""
		while True:
			with self.lock:
				if done():
					break
		probe("after_break")
		"""
	)
	assert held["after_break"] == set()


def test_infinite_loop_without_break_is_unreachable_after():
	held = _held(
		"""
		while True:
			work()
		probe("never")
		"""
	)
	assert held["never"] is None


def test_lock_methods_are_rebased_to_receiver():
	held = _held(
		"""
		self.enter()
		probe("mine")
		other.enter()
		probe("both")
		self.leave()
		probe("theirs")
		""",
		params='self, other: "C"',
	)
	assert held["mine"] == {"self.lock"}
	assert held["both"] == {"self.lock", "other.lock"}
	assert held["theirs"] == {"other.lock"}


def test_module_lock_function():
	held = _held(
		"""
		take()
		probe("taken")
		"""
	)
	assert held["taken"] == {"m.LOCK"}


def test_conditional_and_timed_acquire():
	held = _held(
		"""
		if self.lock.acquire(blocking=False):
			probe("got_it")
		probe("maybe")
		self.other.acquire(timeout=1)
		probe("timed")
		"""
	)
	assert held["got_it"] == {"self.lock"}
	assert held["maybe"] == set()
	assert held["timed"] == set()


def test_match_without_wildcard_keeps_fallthrough():
	held = _held(
		"""
		match value:
			case 1:
				self.lock.acquire()
			case _:
				self.lock.acquire()
		probe("exhaustive")
		match value:
			case 1:
				self.other.acquire()
		probe("partial")
		"""
	)
	assert held["exhaustive"] == {"self.lock"}
	assert held["partial"] == {"self.lock"}


def test_release_then_raise_in_else_reaches_finally():
	held = _held(
		"""
		self.lock.acquire()
		try:
			work()
		except ValueError:
			pass
		else:
			self.lock.release()
			raise RuntimeError()
		finally:
			probe("finally")
		probe("after")
		"""
	)
	assert held["finally"] == set()
	assert held["after"] == {"self.lock"}


def test_nested_finally_bodies_are_walked_once_per_entry_state(monkeypatch):
	depth = 16
	lines = []
	for level in range(depth):
		lines += ["\t" * level + "try:", "\t" * (level + 1) + "self.lock.acquire()", "\t" * level + "finally:"]
	lines += ["\t" * depth + "work()", 'probe("after")']

	calls = []
	original = HeldLockAnalyzer.call_effects

	def counting(self, call):
		if isinstance(call.func, ast.Name) and call.func.id == "work":
			calls.append(call)
		return original(self, call)

	monkeypatch.setattr(HeldLockAnalyzer, "call_effects", counting)
	held = _held("\n".join(lines))
	assert held["after"] == {"self.lock"}
	# one reporting walk plus one silent walk from the held state
	assert len(calls) <= 4
