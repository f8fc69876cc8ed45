# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Lightweight source span representation used by diagnostics.

A Span carries best-effort file/line/column info. Spans built from `ast`
nodes use 1-based lines and 1-based columns (the `ast` module reports 0-based
column offsets; we shift them so text output matches editor conventions).
"""

from __future__ import annotations

import ast
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Span:
	"""Represents a source span (best-effort file/line/column)."""

	file: Optional[str] = None
	line: Optional[int] = None
	column: Optional[int] = None
	end_line: Optional[int] = None
	end_column: Optional[int] = None

	@classmethod
	def from_node(cls, node: Optional[ast.AST], file: Optional[str] = None) -> "Span":
		"""
		Construct a Span from an `ast` node.

		Nodes without position info (synthesized nodes, `ast.arguments`) yield a
		Span with only `file` set.
		"""
		if node is None:
			return cls(file=file)
		line = getattr(node, "lineno", None)
		col = getattr(node, "col_offset", None)
		end_line = getattr(node, "end_lineno", None)
		end_col = getattr(node, "end_col_offset", None)
		return cls(
			file=file,
			line=line,
			column=col + 1 if col is not None else None,
			end_line=end_line,
			end_column=end_col + 1 if end_col is not None else None,
		)

	def render(self) -> str:
		"""Render as `file:line:col`, using `?` for unknown parts."""
		file = self.file or "<unknown>"
		line = self.line if self.line is not None else "?"
		col = self.column if self.column is not None else "?"
		return f"{file}:{line}:{col}"


__all__ = ["Span"]
