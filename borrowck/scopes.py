# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Implicit scope frames.

The IR has no lexical scopes; storage ends either when the function returns
(every local and temporary) or at an explicit `Drop` marker. Both are modelled
as a ScopeFrame: the places whose storage ends, and the points where it ends.
The conflict detector checks that no loan on those places outlives an exit.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Tuple

from borrowck.cfg import ControlFlowGraph
from borrowck.core.point import ProgramPoint
from borrowck.ir import Drop, FunctionIR, Return
from borrowck.places import Place, PlaceKind, places_overlap


class FrameKind(Enum):
	FUNCTION = auto()
	DROP = auto()


# Roots whose storage belongs to the function's own frame.
FRAME_OWNED = frozenset({PlaceKind.LOCAL, PlaceKind.TEMP})


@dataclass(frozen=True)
class ScopeFrame:
	kind: FrameKind
	name: str
	places: Tuple[Place, ...]
	exits: Tuple[ProgramPoint, ...]

	def owns(self, place: Place) -> bool:
		"""True when `place` lives in storage this frame releases (not behind a reference)."""
		if place.has_deref:
			return False
		if self.kind is FrameKind.FUNCTION:
			return place.base.kind in FRAME_OWNED
		return any(places_overlap(p, place) for p in self.places)


def build_frames(func: FunctionIR, cfg: ControlFlowGraph) -> List[ScopeFrame]:
	"""The function frame first, then one frame per reachable Drop in point order."""
	returns: List[ProgramPoint] = []
	drops: List[ScopeFrame] = []
	for bid in sorted(cfg.reachable):
		blk = cfg.block(bid)
		for idx, stmt in enumerate(blk.statements):
			if isinstance(stmt, Drop) and not stmt.place.has_deref:
				drops.append(
					ScopeFrame(
						kind=FrameKind.DROP,
						name=f"drop {stmt.place}",
						places=(stmt.place,),
						exits=(ProgramPoint(bid, idx),),
					)
				)
		if isinstance(blk.terminator, Return):
			returns.append(ProgramPoint(bid, blk.terminator_index))
	owned = tuple(
		Place(decl.base) for _name, decl in sorted(func.locals.items()) if decl.base.kind in FRAME_OWNED
	)
	frames = [ScopeFrame(kind=FrameKind.FUNCTION, name=func.name, places=owned, exits=tuple(returns))]
	frames.extend(drops)
	return frames


__all__ = ["FrameKind", "ScopeFrame", "FRAME_OWNED", "build_frames"]
