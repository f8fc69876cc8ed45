"""
guardcheck.core: shared span/diagnostic/error types used across the engine.

Modules:
  - span: best-effort source locations
  - diagnostics: Diagnostic record + codes
  - errors: lock-expression error kinds
"""

__all__ = [
	"span",
	"diagnostics",
	"errors",
]
