"""
Common diagnostic structure for the guard checks and the driver.

A diagnostic is a message plus a code, a phase label and a span. Checks append
diagnostics to plain lists; the driver renders them as text or JSON.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict

from .span import Span

# Diagnostic codes emitted by the engine.
E_MALFORMED_LOCK_EXPR = "E_MALFORMED_LOCK_EXPR"
E_UNRESOLVABLE_LOCK_EXPR = "E_UNRESOLVABLE_LOCK_EXPR"
E_STATIC_INSTANCE_MISMATCH = "E_STATIC_INSTANCE_MISMATCH"
E_GUARD_VIOLATION = "E_GUARD_VIOLATION"
E_SYNTAX = "E_SYNTAX"
E_IO = "E_IO"

SEVERITIES = ("error", "warning", "note", "off")


@dataclass
class Diagnostic:
	"""Represents an analysis diagnostic (error/warning/note)."""

	message: str
	code: str | None = None
	# Phase label: "parser" for unreadable inputs, "annotations" for lock
	# annotation problems, "guardcheck" for guard violations.
	phase: str | None = None
	severity: str = "error"
	span: Span = field(default_factory=Span)  # Source location (Span() denotes unknown).
	notes: list[str] = field(default_factory=list)
	check: str | None = None

	def __post_init__(self) -> None:
		if self.span is None:  # type: ignore[unreachable]
			self.span = Span()

	def with_severity(self, severity: str) -> "Diagnostic":
		return replace(self, severity=severity, notes=list(self.notes))

	def render(self) -> str:
		"""Render in the `file:line:col: severity: message` shape."""
		text = f"{self.span.render()}: {self.severity}: {self.message}"
		if self.check:
			text += f" [{self.check}]"
		return text

	def to_json(self) -> Dict[str, Any]:
		return {
			"phase": self.phase,
			"code": self.code,
			"check": self.check,
			"message": self.message,
			"severity": self.severity,
			"file": self.span.file,
			"line": self.span.line,
			"column": self.span.column,
			"notes": list(self.notes),
		}


def has_errors(diagnostics: list[Diagnostic]) -> bool:
	return any(d.severity == "error" for d in diagnostics)


__all__ = [
	"Diagnostic",
	"has_errors",
	"SEVERITIES",
	"E_MALFORMED_LOCK_EXPR",
	"E_UNRESOLVABLE_LOCK_EXPR",
	"E_STATIC_INSTANCE_MISMATCH",
	"E_GUARD_VIOLATION",
	"E_SYNTAX",
	"E_IO",
]
