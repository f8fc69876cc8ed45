# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Analysis configuration.

`CheckerFlags` is the raw `NAME=VALUE` flag map handed over by the CLI (or a
test). `CheckerConfig` is the typed value built from it once at startup and
passed explicitly to every component that needs it. Both are frozen and
compare by value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

DEFAULT_EXEMPT_METHODS: FrozenSet[str] = frozenset({"__init__", "__new__", "__post_init__", "__init_subclass__"})

FLAG_STRICT_MEMBERS = "StrictMemberResolution"
FLAG_EXEMPT_METHODS = "ExemptMethods"
FLAG_ASSUME_GUARD_HELD = "AssumeGuardHeldInGuardedMethods"

_TRUE = frozenset({"true", "yes", "on", "1"})
_FALSE = frozenset({"false", "no", "off", "0"})


@dataclass(frozen=True)
class CheckerFlags:
	"""Immutable string flag map (`NAME=VALUE`)."""

	values: Tuple[Tuple[str, str], ...] = ()

	@classmethod
	def parse(cls, items: Iterable[str]) -> "CheckerFlags":
		"""
		Parse `NAME=VALUE` strings; a bare `NAME` means `NAME=true`.

		Later occurrences of a flag override earlier ones. Raises ValueError on
		an empty flag name.
		"""
		merged: Dict[str, str] = {}
		for item in items:
			name, sep, value = item.partition("=")
			name = name.strip()
			if not name:
				raise ValueError(f"invalid flag '{item}': missing name")
			merged[name] = value.strip() if sep else "true"
		return cls(tuple(sorted(merged.items())))

	@classmethod
	def from_mapping(cls, mapping: Mapping[str, str]) -> "CheckerFlags":
		return cls(tuple(sorted((str(k), str(v)) for k, v in mapping.items())))

	def as_dict(self) -> Dict[str, str]:
		return dict(self.values)

	def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
		return self.as_dict().get(name, default)

	def get_bool(self, name: str, default: bool) -> bool:
		raw = self.get(name)
		if raw is None:
			return default
		low = raw.lower()
		if low in _TRUE:
			return True
		if low in _FALSE:
			return False
		raise ValueError(f"flag {name} expects a boolean, got '{raw}'")

	def get_set(self, name: str) -> Optional[FrozenSet[str]]:
		raw = self.get(name)
		if raw is None:
			return None
		return frozenset(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class CheckerConfig:
	"""Typed engine configuration."""

	strict_member_resolution: bool = False
	exempt_methods: FrozenSet[str] = field(default=DEFAULT_EXEMPT_METHODS)
	assume_guard_held_in_guarded_methods: bool = True

	@classmethod
	def from_flags(cls, flags: CheckerFlags) -> "CheckerConfig":
		exempt = flags.get_set(FLAG_EXEMPT_METHODS)
		return cls(
			strict_member_resolution=flags.get_bool(FLAG_STRICT_MEMBERS, False),
			exempt_methods=exempt if exempt is not None else DEFAULT_EXEMPT_METHODS,
			assume_guard_held_in_guarded_methods=flags.get_bool(FLAG_ASSUME_GUARD_HELD, True),
		)


__all__ = [
	"CheckerConfig",
	"CheckerFlags",
	"DEFAULT_EXEMPT_METHODS",
	"FLAG_ASSUME_GUARD_HELD",
	"FLAG_EXEMPT_METHODS",
	"FLAG_STRICT_MEMBERS",
]
