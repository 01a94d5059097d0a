# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Dominator analysis over the borrow-check CFG.

The CFG builder uses this to tell natural-loop back edges (the target
dominates the source) apart from retreating edges of irreducible regions. It is
kept separate from the CFG builder so the graph code stays a plain arena and
the dominator table can be tested on its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Set


@dataclass
class DominatorInfo:
	"""
	Dominator tables for the reachable part of a CFG.

	dom[b]  = set of blocks dominating b (b included)
	idom[b] = immediate dominator block or None for entry
	"""

	dom: Dict[int, Set[int]] = field(default_factory=dict)
	idom: Dict[int, Optional[int]] = field(default_factory=dict)

	def dominates(self, a: int, b: int) -> bool:
		"""True if `a` dominates `b` (every block dominates itself)."""
		return a in self.dom.get(b, ())


class DominatorAnalysis:
	"""
	Compute dominators for a CFG given as predecessor lists.

	Algorithm: classic iterative dataflow:
	  - dom(entry) = {entry}
	  - dom(b) = all blocks initially
	  - dom(b) = {b} ∪ (⋂_{p ∈ preds(b)} dom(p)) until fixed point
	Then idom(b) is the dominator of b (other than b) that every other strict
	dominator of b dominates.

	Only `blocks` take part; predecessors outside that set (dead code) are
	ignored so unreachable blocks cannot weaken dominance of live ones.
	"""

	def compute(self, entry: int, blocks: Iterable[int], preds: Mapping[int, List[int]]) -> DominatorInfo:
		order = list(blocks)
		live = set(order)
		live_preds: Dict[int, List[int]] = {b: [p for p in preds.get(b, []) if p in live] for b in order}

		dom: Dict[int, Set[int]] = {b: set(order) for b in order}
		dom[entry] = {entry}

		changed = True
		while changed:
			changed = False
			for b in order:
				if b == entry:
					continue
				ps = live_preds[b]
				if not ps:
					new_dom = {b}
				else:
					inter = set(dom[ps[0]])
					for p in ps[1:]:
						inter &= dom[p]
					new_dom = inter | {b}
				if new_dom != dom[b]:
					dom[b] = new_dom
					changed = True

		idom: Dict[int, Optional[int]] = {entry: None}
		for b in order:
			if b == entry:
				continue
			candidates = dom[b] - {b}
			chosen: Optional[int] = None
			# The immediate dominator is the strict dominator dominated by all others.
			for c in sorted(candidates):
				if all(d in dom[c] for d in candidates):
					chosen = c
					break
			idom[b] = chosen

		return DominatorInfo(dom=dom, idom=idom)


__all__ = ["DominatorInfo", "DominatorAnalysis"]
