# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Structured diagnostics produced by the borrow checker.

A ConflictReport is plain data: the checker never raises for a faulty input
program, it records a report and keeps analysing with the conservative state
that produced it. Rendering (text, JSON, editor protocols) is left to callers;
`to_dict` gives the one serializable shape everybody agrees on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .point import ProgramPoint


class ConflictKind(Enum):
	"""Taxonomy of borrow-check findings."""

	USE_AFTER_MOVE = "UseAfterMove"
	BORROW_ACROSS_MOVE = "BorrowAcrossMove"
	ALIASING_CONFLICT = "AliasingConflict"
	DANGLING_REFERENCE = "DanglingReference"
	# Internal-limits error: the fixpoint cap was hit and results are partial.
	ANALYSIS_DID_NOT_CONVERGE = "AnalysisDidNotConverge"
	# Lint only; never affects the verdict.
	DEAD_CODE = "DeadCode"


LINT_KINDS = frozenset({ConflictKind.DEAD_CODE})


@dataclass(frozen=True)
class ConflictReport:
	"""
	One borrow-check finding.

	`place` is the rendered path of the primary place (`x`, `x.f`, `(*r).f`).
	`related` optionally describes the loan(s) or move site involved; its values
	are JSON-friendly so reports can be serialized without a custom encoder.
	"""

	kind: ConflictKind
	place: str
	point: ProgramPoint
	message: str
	related: Optional[Dict[str, Any]] = None
	# Loan id used as the secondary sort key (None sorts first).
	loan_id: Optional[int] = field(default=None, compare=False)

	@property
	def severity(self) -> str:
		return "warning" if self.kind in LINT_KINDS else "error"

	@property
	def dedup_key(self) -> tuple:
		return (self.kind, self.place, self.point)

	def sort_key(self) -> tuple:
		return (
			self.point,
			-1 if self.loan_id is None else self.loan_id,
			self.kind.value,
			self.place,
		)

	def to_dict(self) -> Dict[str, Any]:
		"""Render to the stable JSON-friendly shape."""
		return {
			"kind": self.kind.value,
			"place": self.place,
			"point": self.point.to_json(),
			"related": self.related,
			"message": self.message,
			"severity": self.severity,
		}


__all__ = ["ConflictKind", "ConflictReport", "LINT_KINDS"]
