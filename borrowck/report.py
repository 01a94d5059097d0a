# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Diagnostic reporter: the one result object a verification run hands back.

Reports are collected as-is, deduplicated on `(kind, place, point)`, ordered
deterministically and split into conflicts and lints. Serialization uses
sorted keys so two runs over the same input produce byte-identical JSON.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List

from borrowck.core.diagnostics import LINT_KINDS, ConflictKind, ConflictReport


@dataclass
class Report:
	"""Verdict for one function."""

	function: str
	conflicts: List[ConflictReport] = field(default_factory=list)
	lints: List[ConflictReport] = field(default_factory=list)

	@classmethod
	def build(cls, function: str, reports: Iterable[ConflictReport]) -> "Report":
		ordered = sorted(reports, key=ConflictReport.sort_key)
		seen = set()
		conflicts: List[ConflictReport] = []
		lints: List[ConflictReport] = []
		for rep in ordered:
			if rep.dedup_key in seen:
				continue
			seen.add(rep.dedup_key)
			(lints if rep.kind in LINT_KINDS else conflicts).append(rep)
		return cls(function=function, conflicts=conflicts, lints=lints)

	@property
	def reports(self) -> List[ConflictReport]:
		return list(self.conflicts)

	@property
	def ok(self) -> bool:
		return not self.conflicts

	def of_kind(self, kind: ConflictKind) -> List[ConflictReport]:
		return [r for r in self.conflicts + self.lints if r.kind is kind]

	def to_dict(self) -> Dict[str, Any]:
		return {
			"function": self.function,
			"ok": self.ok,
			"conflicts": [r.to_dict() for r in self.conflicts],
			"lints": [r.to_dict() for r in self.lints],
		}

	def to_json(self) -> str:
		return json.dumps(self.to_dict(), sort_keys=True, indent=2)

	def render_text(self, source: str = "") -> str:
		"""Human-readable lines, one per finding, each prefixed with `source:` when given."""
		prefix = f"{source}:" if source else ""
		lines = []
		for rep in self.conflicts + self.lints:
			lines.append(f"{prefix}{self.function}:{rep.point}: {rep.severity}: {rep.kind.value}: {rep.message}")
		return "\n".join(lines)


__all__ = ["Report"]
