# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Backward liveness of reference-carrying roots.

A loan stays active exactly as long as the root holding the reference is
live (will be used on some path forward before being redefined). This pass
computes that liveness per block and per statement:

  live_out(b) = ∪ live_in(s) for successors s
  live_in(b)  = uses(b) ∪ (live_out(b) − defs(b))

and then walks each block backwards once to get live-before/live-after sets
for every program point. Only roots that can hold a reference are tracked;
everything else is irrelevant to regions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterator, List, Set, Tuple

from borrowck.cfg import ControlFlowGraph
from borrowck.config import CheckerConfig
from borrowck.core.point import ProgramPoint
from borrowck.core.types_core import TypeTable
from borrowck.ir import (
	Assign,
	Borrow,
	Branch,
	Clone,
	Drop,
	Eval,
	FunctionIR,
	Move,
	Return,
	StatementOp,
	TerminatorOp,
	operand_place,
	value_operands,
)
from borrowck.places import Place

logger = logging.getLogger(__name__)


def reference_roots(func: FunctionIR, types: TypeTable) -> FrozenSet[str]:
	"""
	Roots whose values may hold a reference.

	Declared reference-carrying types are tracked, and so is every borrow
	destination root, so an untyped holder still keeps its loan alive.
	"""
	roots: Set[str] = {name for name, decl in func.locals.items() if types.carries_ref(decl.ty)}
	for blk in func.blocks:
		for stmt in blk.statements:
			if isinstance(stmt, Borrow):
				roots.add(stmt.dest.name)
	return frozenset(roots)


def _places_read(stmt: StatementOp) -> Iterator[Place]:
	"""Every place a statement reads (operands, borrow subjects, index vars)."""
	if isinstance(stmt, (Assign, Eval)):
		value = stmt.value
		if isinstance(value, Clone):
			yield value.place
		for op in value_operands(value):
			place = operand_place(op)
			if place is not None:
				yield place
	elif isinstance(stmt, Borrow):
		yield stmt.of
	elif isinstance(stmt, Move):
		yield stmt.src


def _root_uses(place: Place) -> Iterator[str]:
	yield place.name
	yield from place.index_vars()


def stmt_uses_defs(func: FunctionIR, stmt: StatementOp, tracked: FrozenSet[str]) -> Tuple[Set[str], Set[str]]:
	"""
	(uses, defs) of tracked roots for one statement.

	A full write of a root is a definition. A partial write (`s.f = ..`) is
	neither: the rest of the value stays alive. Writing through a reference
	(`*r = ..`) uses the reference.
	"""
	uses: Set[str] = set()
	defs: Set[str] = set()
	for place in _places_read(stmt):
		uses.update(r for r in _root_uses(place) if r in tracked)
	dest = None
	if isinstance(stmt, (Assign, Borrow, Move)):
		dest = stmt.dest
	if dest is not None:
		uses.update(v for v in dest.index_vars() if v in tracked)
		if dest.has_deref and dest.name in tracked:
			uses.add(dest.name)
		elif dest.is_root and dest.name in tracked:
			defs.add(dest.name)
	if isinstance(stmt, Drop) and stmt.place.is_root and stmt.place.name in tracked:
		defs.add(stmt.place.name)
	return uses, defs


def term_uses(func: FunctionIR, term: TerminatorOp, tracked: FrozenSet[str]) -> Set[str]:
	uses: Set[str] = set()
	if isinstance(term, Branch):
		place = operand_place(term.cond)
		if place is not None:
			uses.update(r for r in _root_uses(place) if r in tracked)
	elif isinstance(term, Return):
		if func.return_place.name in tracked:
			uses.add(func.return_place.name)
	return uses


@dataclass
class LivenessFacts:
	"""Live tracked roots per block and per program point."""

	tracked: FrozenSet[str] = frozenset()
	live_in: Dict[int, FrozenSet[str]] = field(default_factory=dict)
	live_out: Dict[int, FrozenSet[str]] = field(default_factory=dict)
	live_before: Dict[ProgramPoint, FrozenSet[str]] = field(default_factory=dict)
	live_after: Dict[ProgramPoint, FrozenSet[str]] = field(default_factory=dict)
	converged: bool = True
	iterations: int = 0

	def is_live_after(self, point: ProgramPoint, root: str) -> bool:
		return root in self.live_after.get(point, frozenset())


def compute_liveness(
	func: FunctionIR,
	cfg: ControlFlowGraph,
	types: TypeTable,
	config: CheckerConfig,
) -> LivenessFacts:
	"""Run backward liveness to a fixpoint over the reachable CFG."""
	tracked = reference_roots(func, types)
	facts = LivenessFacts(tracked=tracked)

	per_stmt: Dict[int, List[Tuple[Set[str], Set[str]]]] = {}
	block_use: Dict[int, Set[str]] = {}
	block_def: Dict[int, Set[str]] = {}
	for bid in cfg.rpo:
		blk = cfg.block(bid)
		rows = [stmt_uses_defs(func, s, tracked) for s in blk.statements]
		per_stmt[bid] = rows
		# Summarize the block backwards: uses that are not preceded by a def.
		use_b: Set[str] = set(term_uses(func, blk.terminator, tracked))
		def_b: Set[str] = set()
		for uses, defs in reversed(rows):
			use_b = (use_b - defs) | uses
			def_b |= defs
		block_use[bid] = use_b
		block_def[bid] = def_b

	live_in: Dict[int, Set[str]] = {bid: set() for bid in cfg.rpo}
	live_out: Dict[int, Set[str]] = {bid: set() for bid in cfg.rpo}
	order = {bid: i for i, bid in enumerate(cfg.postorder())}
	pending: Set[int] = set(cfg.rpo)
	iterations = 0
	while pending:
		if iterations >= config.max_iterations:
			facts.converged = False
			logger.warning("%s: liveness hit the iteration cap (%d)", func.name, config.max_iterations)
			break
		bid = min(pending, key=order.__getitem__)
		pending.discard(bid)
		iterations += 1
		out: Set[str] = set()
		for succ in cfg.block(bid).succs:
			out |= live_in.get(succ, set())
		new_in = block_use[bid] | (out - block_def[bid])
		live_out[bid] = out
		if new_in != live_in[bid]:
			live_in[bid] = new_in
			for p in cfg.live_preds(bid):
				pending.add(p)
	facts.iterations = iterations
	logger.debug("%s: liveness over %d roots after %d block visits", func.name, len(tracked), iterations)

	for bid in cfg.rpo:
		blk = cfg.block(bid)
		facts.live_in[bid] = frozenset(live_in[bid])
		facts.live_out[bid] = frozenset(live_out[bid])
		tpt = ProgramPoint(bid, blk.terminator_index)
		live = set(live_out[bid])
		facts.live_after[tpt] = frozenset(live)
		live |= term_uses(func, blk.terminator, tracked)
		facts.live_before[tpt] = frozenset(live)
		for idx in range(len(blk.statements) - 1, -1, -1):
			pt = ProgramPoint(bid, idx)
			facts.live_after[pt] = frozenset(live)
			uses, defs = per_stmt[bid][idx]
			live = (live - defs) | uses
			facts.live_before[pt] = frozenset(live)
	return facts


__all__ = ["LivenessFacts", "compute_liveness", "reference_roots", "stmt_uses_defs", "term_uses"]
