# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
borrowck.core: shared primitives used across the analysis passes.

Modules:
  - diagnostics: ConflictKind / ConflictReport
  - point: ProgramPoint
  - types_core: TypeId/TypeTable primitives
"""

__all__ = [
	"diagnostics",
	"point",
	"types_core",
]
