#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
guardcheck command-line driver.

Reads Python sources (files, or directories searched for `*.py`), builds
one workspace from all of them, runs the enabled checks and prints
diagnostics. Unreadable or unparsable files become diagnostics of their own;
the remaining files are still checked.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from guardcheck.checker import AnalysisContext
from guardcheck.config import CheckerFlags
from guardcheck.core.diagnostics import Diagnostic, E_IO, E_SYNTAX, has_errors
from guardcheck.core.span import Span
from guardcheck.registry import CheckSuite, default_registry
from guardcheck.symbols import ModuleInfo, Workspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceFile:
	path: Path
	module: str
	is_package: bool = False


def module_name_for(path: Path, root: Optional[Path] = None) -> Tuple[str, bool]:
	"""Dotted module name for `path` relative to `root` (the file's stem without a root)."""
	rel = path.relative_to(root) if root is not None else Path(path.name)
	parts = list(rel.with_suffix("").parts)
	is_package = bool(parts) and parts[-1] == "__init__"
	if is_package:
		parts = parts[:-1] or [path.parent.name]
	return ".".join(parts), is_package


def discover_sources(paths: Sequence[Path]) -> Tuple[List[SourceFile], List[Diagnostic]]:
	sources: List[SourceFile] = []
	diagnostics: List[Diagnostic] = []
	for path in paths:
		if path.is_dir():
			for file in sorted(path.rglob("*.py")):
				name, is_package = module_name_for(file, path)
				sources.append(SourceFile(file, name, is_package))
		elif path.exists():
			name, is_package = module_name_for(path)
			sources.append(SourceFile(path, name, is_package))
		else:
			diagnostics.append(
				Diagnostic(
					message=f"no such file or directory: {path}",
					code=E_IO,
					phase="parser",
					span=Span(file=str(path)),
				)
			)
	return sources, diagnostics


def load_workspace(sources: Sequence[SourceFile]) -> Tuple[Workspace, List[ModuleInfo], List[Diagnostic]]:
	"""Parse every source into one workspace; per-file failures become diagnostics."""
	workspace = Workspace()
	modules: List[ModuleInfo] = []
	diagnostics: List[Diagnostic] = []
	for src in sources:
		try:
			text = src.path.read_text(encoding="utf-8")
		except (OSError, UnicodeDecodeError) as err:
			diagnostics.append(
				Diagnostic(
					message=f"cannot read {src.path}: {err}",
					code=E_IO,
					phase="parser",
					span=Span(file=str(src.path)),
				)
			)
			continue
		try:
			module = workspace.add_module(src.module, text, str(src.path), is_package=src.is_package)
		except SyntaxError as err:
			diagnostics.append(
				Diagnostic(
					message=f"syntax error: {err.msg}",
					code=E_SYNTAX,
					phase="parser",
					span=Span(file=str(src.path), line=err.lineno, column=err.offset),
				)
			)
			continue
		logger.info("loaded %s as module %s", src.path, src.module)
		modules.append(module)
	return workspace, modules, diagnostics


def check_workspace(workspace: Workspace, suite: CheckSuite, modules: Optional[Sequence[ModuleInfo]] = None) -> List[Diagnostic]:
	"""Run `suite` over `modules` (default: every workspace module)."""
	context = AnalysisContext.build(workspace, suite.config())
	targets = list(modules) if modules is not None else list(workspace.modules.values())
	return suite.run(context, targets)


def _sort_key(diag: Diagnostic) -> Tuple[str, int, int]:
	return (diag.span.file or "", diag.span.line or 0, diag.span.column or 0)


def _parse_severities(items: Sequence[str]) -> Dict[str, str]:
	out: Dict[str, str] = {}
	for item in items:
		name, sep, level = item.partition("=")
		if not sep or not name.strip() or not level.strip():
			raise ValueError(f"invalid --severity '{item}': expected CHECK=LEVEL")
		out[name.strip()] = level.strip().lower()
	return out


def _configure_logging(verbosity: int) -> None:
	"""0 -> WARNING, 1 -> INFO, 2+ -> DEBUG, on stderr."""
	level = logging.WARNING
	if verbosity == 1:
		level = logging.INFO
	elif verbosity >= 2:
		level = logging.DEBUG
	handler = logging.StreamHandler(sys.stderr)
	handler.setFormatter(logging.Formatter(fmt="%(levelname)s %(name)s: %(message)s"))
	root = logging.getLogger("guardcheck")
	root.setLevel(level)
	root.handlers[:] = [handler]


def build_parser() -> argparse.ArgumentParser:
	known = "; ".join(f"{info.name}: {info.summary}" for info in default_registry())
	parser = argparse.ArgumentParser(prog="guardcheck", description="Check lock-guarded member accesses in Python sources")
	parser.add_argument("paths", type=Path, nargs="+", help="Python files or directories to check")
	parser.add_argument("--json", action="store_true", help="Emit diagnostics as JSON on stdout")
	parser.add_argument(
		"--disable",
		action="append",
		default=[],
		metavar="CHECK",
		help=f"Disable a check (repeatable; known: {known})",
	)
	parser.add_argument(
		"--severity",
		action="append",
		default=[],
		metavar="CHECK=LEVEL",
		help="Override a check's severity (error, warning, note, off)",
	)
	parser.add_argument(
		"--flag",
		action="append",
		default=[],
		metavar="NAME=VALUE",
		help="Checker flag, e.g. StrictMemberResolution=true or ExemptMethods=__init__,setup",
	)
	parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v info, -vv debug)")
	return parser


def main(argv: Optional[List[str]] = None) -> int:
	"""
	Check the given paths and report diagnostics.

	With --json, prints `{"exit_code": N, "diagnostics": [...]}` on stdout;
	otherwise prints `file:line:col: severity: message` lines on stderr.
	Exit code is 1 when any error-severity diagnostic was produced, 2 on
	usage errors and 0 otherwise.
	"""
	parser = build_parser()
	args = parser.parse_args(argv)
	_configure_logging(args.verbose)

	try:
		suite = CheckSuite.create(
			severities=_parse_severities(args.severity),
			disabled=args.disable,
			flags=CheckerFlags.parse(args.flag),
		)
		suite.config()
	except ValueError as err:
		parser.error(str(err))

	sources, diagnostics = discover_sources(args.paths)
	workspace, modules, load_diags = load_workspace(sources)
	diagnostics.extend(load_diags)
	diagnostics.extend(check_workspace(workspace, suite, modules))
	diagnostics.sort(key=_sort_key)

	exit_code = 1 if has_errors(diagnostics) else 0
	if args.json:
		print(json.dumps({"exit_code": exit_code, "diagnostics": [d.to_json() for d in diagnostics]}))
	else:
		for diag in diagnostics:
			print(diag.render(), file=sys.stderr)
			for note in diag.notes:
				print(f"  note: {note}", file=sys.stderr)
	logger.info("checked %d module(s), %d diagnostic(s)", len(modules), len(diagnostics))
	return exit_code


if __name__ == "__main__":
	sys.exit(main())
