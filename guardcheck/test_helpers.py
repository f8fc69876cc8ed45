# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Helpers for checker tests.

`check_source` runs the default suite over one in-memory module (plus any
supporting modules) and returns its diagnostics.

`CompilationTestHelper` checks sources annotated with expectation markers:

	# BUG: Diagnostic contains: guarded by 'lock'
	self.x = 1

A marker expects a diagnostic on the next line that is neither blank nor a
comment, whose message or notes contain the marker text. Any diagnostic on
a line without a marker fails the test.
"""

from __future__ import annotations

import re
import textwrap
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from guardcheck.config import CheckerFlags
from guardcheck.core.diagnostics import Diagnostic
from guardcheck.driver import check_workspace
from guardcheck.registry import CheckSuite
from guardcheck.symbols import Workspace

BUG_MARKER = re.compile(r"#\s*BUG:\s*Diagnostic contains:\s*(?P<text>.+?)\s*$")


def _suite(flags: Iterable[str], disabled: Sequence[str], severities: Optional[Mapping[str, str]]) -> CheckSuite:
	return CheckSuite.create(
		severities=severities,
		disabled=list(disabled),
		flags=CheckerFlags.parse(flags),
	)


def check_source(
	source: str,
	*,
	module: str = "test",
	files: Optional[Mapping[str, str]] = None,
	flags: Iterable[str] = (),
	disabled: Sequence[str] = (),
	severities: Optional[Mapping[str, str]] = None,
) -> List[Diagnostic]:
	"""Diagnostics for `source` (as module `module`); `files` are extra workspace modules."""
	workspace = Workspace()
	for name, text in (files or {}).items():
		workspace.add_module(name, textwrap.dedent(text), f"{name.replace('.', '/')}.py")
	target = workspace.add_module(module, textwrap.dedent(source), f"{module.replace('.', '/')}.py")
	return check_workspace(workspace, _suite(flags, disabled, severities), [target])


def messages(diagnostics: Iterable[Diagnostic]) -> List[str]:
	return [d.message for d in diagnostics]


def expected_markers(lines: Sequence[str]) -> List[Tuple[int, str]]:
	"""(1-based line, expected text) for every BUG marker in `lines`."""
	out: List[Tuple[int, str]] = []
	pending: List[str] = []
	for lineno, line in enumerate(lines, start=1):
		stripped = line.strip()
		match = BUG_MARKER.search(stripped) if stripped.startswith("#") else None
		if match is not None:
			pending.append(match.group("text"))
			continue
		if not stripped or stripped.startswith("#"):
			continue
		for text in pending:
			out.append((lineno, text))
		pending = []
	if pending:
		raise AssertionError(f"BUG marker(s) {pending!r} are not followed by a code line")
	return out


class CompilationTestHelper:
	"""Builds a workspace from source lines and verifies BUG markers against diagnostics."""

	def __init__(self, *, flags: Iterable[str] = (), disabled: Sequence[str] = ()) -> None:
		self.flags = list(flags)
		self.disabled = list(disabled)
		self._files: Dict[str, List[str]] = {}

	def add_source_lines(self, module: str, *lines: str) -> "CompilationTestHelper":
		self._files[module] = list(lines)
		return self

	def add_source(self, module: str, source: str) -> "CompilationTestHelper":
		return self.add_source_lines(module, *textwrap.dedent(source).splitlines())

	def run(self) -> Dict[str, List[Diagnostic]]:
		workspace = Workspace()
		paths: Dict[str, str] = {}
		for module, lines in self._files.items():
			path = f"{module.replace('.', '/')}.py"
			paths[path] = module
			workspace.add_module(module, "\n".join(lines) + "\n", path)
		by_module: Dict[str, List[Diagnostic]] = {module: [] for module in self._files}
		for diag in check_workspace(workspace, _suite(self.flags, self.disabled, None)):
			by_module[paths[diag.span.file or ""]].append(diag)
		return by_module

	def do_test(self) -> None:
		problems: List[str] = []
		for module, diags in self.run().items():
			expected = expected_markers(self._files[module])
			expected_lines = {line for line, _ in expected}
			for line, text in expected:
				on_line = [d for d in diags if d.span.line == line]
				if not any(text in d.message or any(text in n for n in d.notes) for d in on_line):
					got = "; ".join(d.message for d in on_line) or "no diagnostics"
					problems.append(f"{module}:{line}: expected diagnostic containing '{text}', got: {got}")
			for d in diags:
				if d.span.line not in expected_lines:
					problems.append(f"{module}:{d.span.line}: unexpected diagnostic: {d.message}")
		if problems:
			raise AssertionError("\n".join(problems))


__all__ = ["BUG_MARKER", "CompilationTestHelper", "check_source", "expected_markers", "messages"]
