# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Verification engine: the library entry point.

  verify(func, types=...)        one function → Report
  verify_program(program, ...)   every function → {name: Report}

A run is a straight pipeline with no state shared between runs:

  validate → CFG → move fixpoint → liveness + loan fixpoint → detect → report

Malformed IR raises MalformedIRError before any dataflow. Everything else the
checker finds about the input program comes back as data in the Report.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

from borrowck.cfg import ControlFlowGraph, build_cfg
from borrowck.config import CheckerConfig
from borrowck.conflicts import detect_conflicts
from borrowck.core.diagnostics import ConflictKind, ConflictReport
from borrowck.core.point import ProgramPoint
from borrowck.core.types_core import TypeTable
from borrowck.ir import FunctionIR, Program
from borrowck.ir_validate import validate_function
from borrowck.liveness import compute_liveness
from borrowck.loans import track_loans
from borrowck.moves import track_moves
from borrowck.report import Report
from borrowck.scopes import build_frames

logger = logging.getLogger(__name__)


def _dead_code_lints(func: FunctionIR, cfg: ControlFlowGraph) -> List[ConflictReport]:
	return [
		ConflictReport(
			kind=ConflictKind.DEAD_CODE,
			place=f"bb{bid}",
			point=ProgramPoint(bid, 0),
			message=f"block bb{bid} of '{func.name}' is unreachable and was not analysed",
		)
		for bid in cfg.dead
	]


def verify(func: FunctionIR, *, types: TypeTable, config: Optional[CheckerConfig] = None) -> Report:
	"""
	Check one function and return its Report.

	Raises MalformedIRError when the IR violates its preconditions.
	"""
	config = config or CheckerConfig()
	validate_function(func, types)
	cfg = build_cfg(func)

	moves = track_moves(func, cfg, types, config)
	liveness = compute_liveness(func, cfg, types, config)
	loans = track_loans(func, cfg, types, config, liveness)
	frames = build_frames(func, cfg)
	reports = detect_conflicts(func, cfg, types, moves, loans, frames)

	stalled = [
		name
		for name, converged in (("moves", moves.converged), ("liveness", liveness.converged), ("loans", loans.converged))
		if not converged
	]
	if stalled:
		reports.append(
			ConflictReport(
				kind=ConflictKind.ANALYSIS_DID_NOT_CONVERGE,
				place=func.name,
				point=ProgramPoint(cfg.entry, 0),
				message=(
					f"analysis of '{func.name}' did not converge within {config.max_iterations} block visits "
					f"({', '.join(stalled)}); results are partial"
				),
				related={"passes": stalled, "max_iterations": config.max_iterations},
			)
		)
	if config.lint_dead_code:
		reports.extend(_dead_code_lints(func, cfg))

	report = Report.build(func.name, reports)
	logger.debug(
		"%s: %d conflicts, %d lints (%d loans)", func.name, len(report.conflicts), len(report.lints), len(loans.loans)
	)
	return report


def verify_program(
	program: Program,
	*,
	config: Optional[CheckerConfig] = None,
	jobs: Optional[int] = None,
) -> Dict[str, Report]:
	"""
	Verify every function of `program`, keyed by name in name order.

	With more than one job the functions are checked on a thread pool; the
	program is only read, so workers share it without locking. The first
	MalformedIRError (in name order) propagates to the caller.
	"""
	config = config or CheckerConfig()
	jobs = jobs if jobs is not None else config.jobs
	names = sorted(program.functions)
	if jobs <= 1 or len(names) <= 1:
		return {name: verify(program.functions[name], types=program.types, config=config) for name in names}
	logger.debug("verifying %d functions on %d threads", len(names), jobs)
	with ThreadPoolExecutor(max_workers=jobs) as pool:
		futures = {
			name: pool.submit(verify, program.functions[name], types=program.types, config=config) for name in names
		}
		return {name: futures[name].result() for name in names}


__all__ = ["verify", "verify_program"]
