#!/usr/bin/env python3
# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Check registry and suite configuration.

A check is anything with `run(context, module) -> list[Diagnostic]`. The
registry is an explicit mapping from check id to `CheckInfo`; there is no
discovery or reflection. A factory declared with `accepts_config=True` is
called with the run's `CheckerConfig`, any other factory with no arguments.

`CheckSuite` is the immutable selection of checks for one run (which are
disabled, severity overrides, raw flags). It compares by value and validates
that every check it names exists in its registry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, FrozenSet, Iterator, List, Mapping, Optional, Protocol, Tuple

from guardcheck.checker import AnalysisContext, GuardViolationChecker
from guardcheck.config import CheckerConfig, CheckerFlags
from guardcheck.core.diagnostics import SEVERITIES, Diagnostic
from guardcheck.symbols import ModuleInfo

logger = logging.getLogger(__name__)


class Check(Protocol):
	def run(self, context: AnalysisContext, module: ModuleInfo) -> List[Diagnostic]:
		...


@dataclass(frozen=True)
class CheckInfo:
	name: str
	factory: Callable[..., Check]
	default_severity: Optional[str] = None
	accepts_config: bool = False
	summary: str = ""

	def create(self, config: CheckerConfig) -> Check:
		if self.accepts_config:
			return self.factory(config)
		return self.factory()


class CheckRegistry:
	"""Ordered, explicit id -> CheckInfo mapping."""

	def __init__(self, checks: Optional[List[CheckInfo]] = None) -> None:
		self._checks: Dict[str, CheckInfo] = {}
		for info in checks or []:
			self.register(info)

	def register(self, info: CheckInfo) -> None:
		if info.name in self._checks:
			raise ValueError(f"check '{info.name}' is already registered")
		self._checks[info.name] = info

	def __contains__(self, name: object) -> bool:
		return name in self._checks

	def __iter__(self) -> Iterator[CheckInfo]:
		return iter(self._checks.values())

	def __len__(self) -> int:
		return len(self._checks)

	def get(self, name: str) -> CheckInfo:
		try:
			return self._checks[name]
		except KeyError:
			raise KeyError(f"unknown check '{name}'") from None

	def names(self) -> Tuple[str, ...]:
		return tuple(self._checks)


class GuardedByCheck:
	"""Accesses to guarded members without the required lock."""

	def __init__(self, config: CheckerConfig) -> None:
		self.config = config

	def run(self, context: AnalysisContext, module: ModuleInfo) -> List[Diagnostic]:
		return GuardViolationChecker(context, self.config).check_module(module)


class LockAnnotationsCheck:
	"""Malformed, unresolvable and static/instance-mismatched lock annotations."""

	def run(self, context: AnalysisContext, module: ModuleInfo) -> List[Diagnostic]:
		return context.declaration_diagnostics(module)


GUARDED_BY = "GuardedBy"
LOCK_ANNOTATIONS = "LockAnnotations"


def default_registry() -> CheckRegistry:
	return CheckRegistry(
		[
			CheckInfo(
				name=LOCK_ANNOTATIONS,
				factory=LockAnnotationsCheck,
				summary="lock annotations must parse, resolve and respect static/instance scoping",
			),
			CheckInfo(
				name=GUARDED_BY,
				factory=GuardedByCheck,
				accepts_config=True,
				summary="guarded members are only accessed while their lock is held",
			),
		]
	)


def _frozen_map(mapping: Optional[Mapping[str, str]]) -> Tuple[Tuple[str, str], ...]:
	return tuple(sorted((mapping or {}).items()))


@dataclass(frozen=True)
class CheckSuite:
	"""Immutable selection of checks for one run."""

	registry: CheckRegistry = field(default_factory=default_registry, compare=False)
	severities: Tuple[Tuple[str, str], ...] = ()
	disabled: FrozenSet[str] = frozenset()
	flags: CheckerFlags = field(default_factory=CheckerFlags)
	# Registries compare by the checks they hold.
	check_names: Tuple[str, ...] = field(init=False, default=())

	def __post_init__(self) -> None:
		object.__setattr__(self, "check_names", self.registry.names())
		known = set(self.registry.names())
		unknown = sorted((set(dict(self.severities)) | set(self.disabled)) - known)
		if unknown:
			raise ValueError(f"unknown check(s): {', '.join(unknown)}; known checks: {', '.join(sorted(known))}")
		for name, level in self.severities:
			if level not in SEVERITIES:
				raise ValueError(f"invalid severity '{level}' for {name}; expected one of {', '.join(SEVERITIES)}")

	@classmethod
	def create(
		cls,
		*,
		registry: Optional[CheckRegistry] = None,
		severities: Optional[Mapping[str, str]] = None,
		disabled: Optional[List[str]] = None,
		flags: Optional[CheckerFlags] = None,
	) -> "CheckSuite":
		return cls(
			registry=registry or default_registry(),
			severities=_frozen_map(severities),
			disabled=frozenset(disabled or ()),
			flags=flags or CheckerFlags(),
		)

	def config(self) -> CheckerConfig:
		return CheckerConfig.from_flags(self.flags)

	def severity_for(self, name: str) -> Optional[str]:
		override = dict(self.severities).get(name)
		if override is not None:
			return override
		return self.registry.get(name).default_severity

	def enabled_checks(self) -> List[CheckInfo]:
		return [info for info in self.registry if info.name not in self.disabled and self.severity_for(info.name) != "off"]

	def instantiate(self, config: Optional[CheckerConfig] = None) -> List[Tuple[CheckInfo, Check]]:
		config = config or self.config()
		return [(info, info.create(config)) for info in self.enabled_checks()]

	def run(self, context: AnalysisContext, modules: List[ModuleInfo]) -> List[Diagnostic]:
		"""Run every enabled check over `modules`; severities and check names are applied here."""
		out: List[Diagnostic] = []
		for info, check in self.instantiate(context.config):
			severity = self.severity_for(info.name)
			for module in modules:
				logger.debug("running %s on %s", info.name, module.name)
				for diag in check.run(context, module):
					diag = replace(diag, check=info.name)
					if severity is not None:
						diag = diag.with_severity(severity)
					out.append(diag)
		return out


__all__ = [
	"Check",
	"CheckInfo",
	"CheckRegistry",
	"CheckSuite",
	"GUARDED_BY",
	"GuardedByCheck",
	"LOCK_ANNOTATIONS",
	"LockAnnotationsCheck",
	"default_registry",
]
