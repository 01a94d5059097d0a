# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
CFG builder for borrow checking.

Blocks live in an arena indexed by integer id with explicit successor and
predecessor lists, so loops are plain edges rather than object cycles and the
whole graph serializes to JSON for golden tests.

Besides the edges, the builder records what every dataflow pass needs:
  * which blocks are reachable from entry (the rest is dead code and is
    excluded from analysis; it only produces a lint),
  * which edges are loop back edges (so passes know where a fixpoint is
    needed), and
  * reverse post-order / post-order iteration orders.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

from borrowck.core.point import ProgramPoint
from borrowck.dom import DominatorAnalysis, DominatorInfo
from borrowck.ir import FunctionIR, StatementOp, TerminatorOp

logger = logging.getLogger(__name__)


@dataclass
class CfgBlock:
	"""Basic block with its statements, terminator and explicit edges."""

	id: int
	statements: Tuple[StatementOp, ...]
	terminator: TerminatorOp
	succs: List[int] = field(default_factory=list)
	preds: List[int] = field(default_factory=list)

	@property
	def terminator_index(self) -> int:
		return len(self.statements)


@dataclass
class ControlFlowGraph:
	"""
	Arena CFG for one function.

	`preds` lists every predecessor, dead ones included; dataflow passes use
	`live_preds` so unreachable code never contributes state to a join.
	"""

	blocks: List[CfgBlock]
	entry: int = 0
	reachable: FrozenSet[int] = frozenset()
	back_edges: FrozenSet[Tuple[int, int]] = frozenset()
	irreducible_edges: FrozenSet[Tuple[int, int]] = frozenset()
	rpo: Tuple[int, ...] = ()
	dominators: Optional[DominatorInfo] = None

	@property
	def dead(self) -> Tuple[int, ...]:
		return tuple(b.id for b in self.blocks if b.id not in self.reachable)

	@property
	def loop_headers(self) -> FrozenSet[int]:
		return frozenset(dst for _src, dst in self.back_edges)

	def block(self, bid: int) -> CfgBlock:
		return self.blocks[bid]

	def live_preds(self, bid: int) -> List[int]:
		return [p for p in self.blocks[bid].preds if p in self.reachable]

	def postorder(self) -> Tuple[int, ...]:
		return tuple(reversed(self.rpo))

	def points(self, bid: int) -> List[ProgramPoint]:
		"""All points of a block, terminator included."""
		blk = self.blocks[bid]
		return [ProgramPoint(bid, i) for i in range(len(blk.statements) + 1)]

	def to_dict(self) -> Dict[str, object]:
		"""Edge structure only; used by golden tests and `--dump-cfg`."""
		return {
			"entry": self.entry,
			"blocks": [
				{"id": b.id, "succs": list(b.succs), "preds": list(b.preds), "statements": len(b.statements)}
				for b in self.blocks
			],
			"reachable": sorted(self.reachable),
			"back_edges": sorted([list(e) for e in self.back_edges]),
			"irreducible_edges": sorted([list(e) for e in self.irreducible_edges]),
		}


def build_cfg(func: FunctionIR) -> ControlFlowGraph:
	"""
	Build the arena CFG of a validated function.

	The input is not modified; statements are shared, not copied, since IR nodes
	are immutable.
	"""
	blocks: List[CfgBlock] = []
	for bid, blk in enumerate(func.blocks):
		assert blk.terminator is not None, "build_cfg requires validated IR"
		succs: List[int] = []
		for t in blk.terminator.targets():
			# `if c then bb1 else bb1` is one edge.
			if t not in succs:
				succs.append(t)
		blocks.append(CfgBlock(id=bid, statements=tuple(blk.statements), terminator=blk.terminator, succs=succs))
	for blk in blocks:
		for s in blk.succs:
			blocks[s].preds.append(blk.id)

	entry = 0
	# Iterative DFS: post-order plus retreating edges (target still on the stack).
	postorder: List[int] = []
	on_stack = set()
	visited = set()
	retreating: List[Tuple[int, int]] = []
	stack: List[Tuple[int, int]] = [(entry, 0)]
	visited.add(entry)
	on_stack.add(entry)
	while stack:
		bid, next_succ = stack[-1]
		succs = blocks[bid].succs
		if next_succ < len(succs):
			stack[-1] = (bid, next_succ + 1)
			s = succs[next_succ]
			if s in on_stack:
				retreating.append((bid, s))
			elif s not in visited:
				visited.add(s)
				on_stack.add(s)
				stack.append((s, 0))
			continue
		stack.pop()
		on_stack.discard(bid)
		postorder.append(bid)

	rpo = tuple(reversed(postorder))
	reachable = frozenset(visited)
	dominators = DominatorAnalysis().compute(entry, rpo, {b.id: b.preds for b in blocks})
	back_edges = frozenset(retreating)
	irreducible = frozenset(e for e in retreating if not dominators.dominates(e[1], e[0]))

	cfg = ControlFlowGraph(
		blocks=blocks,
		entry=entry,
		reachable=reachable,
		back_edges=back_edges,
		irreducible_edges=irreducible,
		rpo=rpo,
		dominators=dominators,
	)
	logger.debug(
		"%s: %d blocks, %d reachable, %d back edges (%d irreducible)",
		func.name,
		len(blocks),
		len(reachable),
		len(back_edges),
		len(irreducible),
	)
	return cfg


__all__ = ["CfgBlock", "ControlFlowGraph", "build_cfg"]
