# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Move/ownership tracking: forward dataflow over the CFG.

State per program point: root name → MoveState. MoveState is an explicit
lattice so joins are a single operator instead of ad hoc branching:

  Owned            the root holds its whole value
  Moved            the whole value has been moved out (or was never set)
  PartiallyMoved   some sub-paths have been moved out; the empty path means
                   "the whole value may have been moved on some incoming edge"

Join: equal states join to themselves, Moved ⊔ Moved = Moved, anything else
unions the moved paths (Owned contributes none, Moved contributes the whole
value). Paths only come from the finitely many move sites of the function, so
the lattice has finite height and the worklist terminates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from borrowck.cfg import ControlFlowGraph
from borrowck.config import CheckerConfig
from borrowck.core.point import ProgramPoint
from borrowck.core.types_core import TypeTable
from borrowck.ir import (
	Aggregate,
	Assign,
	Borrow,
	Branch,
	Call,
	Clone,
	Copy,
	Drop,
	Eval,
	FunctionIR,
	Move,
	MoveOp,
	Operand,
	Ref,
	Return,
	StatementOp,
	Use,
	ValueExpr,
	place_type,
	statement_dest,
)
from borrowck.places import DerefProj, Place, Projection, places_overlap, render_place

logger = logging.getLogger(__name__)

Path = Tuple[Projection, ...]


class MoveKind(Enum):
	OWNED = auto()
	MOVED = auto()
	PARTIAL = auto()


@dataclass(frozen=True)
class MoveState:
	"""One lattice element for a root (see module docstring)."""

	kind: MoveKind
	paths: FrozenSet[Path] = frozenset()

	def __str__(self) -> str:
		if self.kind is MoveKind.PARTIAL:
			return f"PartiallyMoved({len(self.paths)})"
		return "Owned" if self.kind is MoveKind.OWNED else "Moved"

	@property
	def maybe_whole(self) -> bool:
		"""True when the whole value may be gone on some path."""
		return self.kind is MoveKind.MOVED or () in self.paths

	def moved_paths(self) -> FrozenSet[Path]:
		if self.kind is MoveKind.MOVED:
			return frozenset({()})
		return self.paths

	def join(self, other: "MoveState") -> "MoveState":
		if self == other:
			return self
		if self.kind is MoveKind.MOVED and other.kind is MoveKind.MOVED:
			return MOVED
		union = self.moved_paths() | other.moved_paths()
		if not union:
			return OWNED
		return MoveState(MoveKind.PARTIAL, _minimize(union))

	def after_move(self, path: Path) -> "MoveState":
		"""State after moving `path` out of this root."""
		if not path or self.kind is MoveKind.MOVED:
			return MOVED
		paths = set(self.paths)
		paths = {p for p in paths if not _is_prefix(path, p)}
		paths.add(path)
		return MoveState(MoveKind.PARTIAL, _minimize(paths))

	def after_assign(self, path: Path) -> "MoveState":
		"""
		State after writing a fresh value into `path`.

		Writing the whole root heals everything. Writing a sub-path heals moved
		paths under it; a wholly Moved root stays Moved since the rest of the
		value is still gone.
		"""
		if not path:
			return OWNED
		if self.kind is not MoveKind.PARTIAL:
			return self
		paths = {p for p in self.paths if not _is_prefix(path, p)}
		if not paths:
			return OWNED
		return MoveState(MoveKind.PARTIAL, frozenset(paths))

	def conflicting_path(self, base_place: Place, path: Path) -> Optional[Path]:
		"""Return a moved path overlapping `path`, or None when the read is fine."""
		if self.kind is MoveKind.OWNED:
			return None
		if self.kind is MoveKind.MOVED:
			return ()
		target = Place(base_place.base, path)
		for p in sorted(self.paths, key=_path_sort_key):
			if places_overlap(Place(base_place.base, p), target):
				return p
		return None


OWNED = MoveState(MoveKind.OWNED)
MOVED = MoveState(MoveKind.MOVED)


def _is_prefix(prefix: Path, path: Path) -> bool:
	return path[: len(prefix)] == prefix


def _minimize(paths: Set[Path] | FrozenSet[Path]) -> FrozenSet[Path]:
	"""Drop paths already covered by a moved prefix."""
	return frozenset(p for p in paths if not any(q != p and _is_prefix(q, p) for q in paths))


def _path_sort_key(path: Path) -> Tuple[int, str]:
	return (len(path), repr(path))


MoveMap = Dict[str, MoveState]


def join_maps(a: MoveMap, b: MoveMap) -> MoveMap:
	"""Pointwise join; roots missing on one side count as Moved (not yet set)."""
	out: MoveMap = {}
	for name in set(a) | set(b):
		out[name] = a.get(name, MOVED).join(b.get(name, MOVED))
	return out


@dataclass(frozen=True)
class MoveEvent:
	"""A use of a place whose value is (possibly) gone."""

	point: ProgramPoint
	place: Place
	state: MoveState
	moved_path: Path
	action: str  # "use", "borrow", "move"
	uninitialized: bool
	moved_at: Tuple[ProgramPoint, ...] = ()

	def message(self) -> str:
		name = render_place(self.place)
		if self.uninitialized:
			if self.state.kind is MoveKind.PARTIAL:
				return f"use of possibly-uninitialized '{name}'"
			return f"use of uninitialized '{name}'"
		if self.state.kind is MoveKind.PARTIAL and self.moved_path == ():
			what = "possibly moved value"
		elif self.state.kind is MoveKind.PARTIAL:
			what = f"partially moved value (moved: {render_place(Place(self.place.base, self.moved_path))})"
		else:
			what = "moved value"
		verb = {"use": "use of", "borrow": "borrow of", "move": "move of"}[self.action]
		return f"{verb} {what} '{name}'"


@dataclass(frozen=True)
class MoveSite:
	"""A move-out that actually transfers ownership (non-Copy place)."""

	point: ProgramPoint
	place: Place


@dataclass
class MoveFacts:
	"""Result of the move tracker: per-point states plus the violations it saw."""

	state_before: Dict[ProgramPoint, MoveMap] = field(default_factory=dict)
	events: List[MoveEvent] = field(default_factory=list)
	moves: List[MoveSite] = field(default_factory=list)
	converged: bool = True
	iterations: int = 0

	def state_at(self, point: ProgramPoint, root: str) -> Optional[MoveState]:
		m = self.state_before.get(point)
		if m is None:
			return None
		return m.get(root)


class MoveTracker:
	"""
	Forward move dataflow over one function's CFG.

	Entry state: parameters are Owned, every other root starts Moved (storage
	without a value). Unreached predecessors are bottom and do not take part in
	joins. After the fixpoint every reachable block is replayed once to record
	per-point states and MoveEvents, so violations are reported exactly once no
	matter how many times the worklist revisited a block.
	"""

	def __init__(self, func: FunctionIR, cfg: ControlFlowGraph, types: TypeTable, config: CheckerConfig) -> None:
		self.func = func
		self.cfg = cfg
		self.types = types
		self.config = config
		self._returns_value = self._assigns_return_place()
		self._move_sites = self._collect_move_sites()
		self._reaches = self._forward_closure()
		# Recording sinks; only set during the final replay.
		self._facts: Optional[MoveFacts] = None

	def run(self) -> MoveFacts:
		cfg = self.cfg
		entry_state: MoveMap = {}
		for name, decl in self.func.locals.items():
			entry_state[name] = OWNED if decl.base.is_external else MOVED

		order = {bid: i for i, bid in enumerate(cfg.rpo)}
		in_states: Dict[int, MoveMap] = {cfg.entry: dict(entry_state)}
		out_states: Dict[int, MoveMap] = {}
		pending: Set[int] = {cfg.entry}
		iterations = 0
		converged = True
		while pending:
			if iterations >= self.config.max_iterations:
				converged = False
				logger.warning(
					"%s: move analysis hit the iteration cap (%d)", self.func.name, self.config.max_iterations
				)
				break
			bid = min(pending, key=order.__getitem__)
			pending.discard(bid)
			iterations += 1
			in_state = self._join_preds(bid, out_states, entry_state)
			in_states[bid] = in_state
			out = self._transfer_block(bid, dict(in_state))
			if out_states.get(bid) != out:
				out_states[bid] = out
				for succ in cfg.block(bid).succs:
					pending.add(succ)
		logger.debug("%s: move analysis %s after %d block visits", self.func.name, "converged" if converged else "stopped", iterations)

		facts = MoveFacts(converged=converged, iterations=iterations)
		self._facts = facts
		try:
			for bid in cfg.rpo:
				if bid not in in_states:
					continue
				self._transfer_block(bid, dict(in_states[bid]))
		finally:
			self._facts = None
		return facts

	def _join_preds(self, bid: int, out_states: Dict[int, MoveMap], entry_state: MoveMap) -> MoveMap:
		incoming: List[MoveMap] = []
		if bid == self.cfg.entry:
			incoming.append(entry_state)
		for p in self.cfg.live_preds(bid):
			if p in out_states:
				incoming.append(out_states[p])
		if not incoming:
			return dict(entry_state)
		result = dict(incoming[0])
		for other in incoming[1:]:
			result = join_maps(result, other)
		return result

	def _transfer_block(self, bid: int, state: MoveMap) -> MoveMap:
		"""Walk statements then the terminator, mutating `state`."""
		blk = self.cfg.block(bid)
		for idx, stmt in enumerate(blk.statements):
			pt = ProgramPoint(bid, idx)
			if self._facts is not None:
				self._facts.state_before[pt] = dict(state)
			self._transfer_stmt(stmt, state, pt)
		pt = ProgramPoint(bid, blk.terminator_index)
		if self._facts is not None:
			self._facts.state_before[pt] = dict(state)
		term = blk.terminator
		if isinstance(term, Branch):
			self._eval_operand(term.cond, state, pt)
		elif isinstance(term, Return) and self._returns_value:
			self._read(state, self.func.return_place, pt, "use")
		return state

	def _transfer_stmt(self, stmt: StatementOp, state: MoveMap, pt: ProgramPoint) -> None:
		if isinstance(stmt, Assign):
			self._eval_value(stmt.value, state, pt)
			self._write(state, stmt.dest, pt)
		elif isinstance(stmt, Borrow):
			self._read(state, stmt.of, pt, "borrow")
			self._write(state, stmt.dest, pt)
		elif isinstance(stmt, Move):
			self._move_out(state, stmt.src, pt)
			self._write(state, stmt.dest, pt)
		elif isinstance(stmt, Drop):
			if not stmt.place.has_deref:
				root = stmt.place.name
				state[root] = state.get(root, MOVED).after_move(stmt.place.projections)
		elif isinstance(stmt, Eval):
			self._eval_value(stmt.value, state, pt)

	def _eval_value(self, value: ValueExpr, state: MoveMap, pt: ProgramPoint) -> None:
		if isinstance(value, Use):
			self._eval_operand(value.operand, state, pt)
		elif isinstance(value, Clone):
			self._read(state, value.place, pt, "use")
		elif isinstance(value, Call):
			for arg in value.args:
				self._eval_operand(arg, state, pt)
		elif isinstance(value, Aggregate):
			for _name, op in value.fields:
				self._eval_operand(op, state, pt)

	def _eval_operand(self, op: Operand, state: MoveMap, pt: ProgramPoint) -> None:
		if isinstance(op, Copy):
			self._read(state, op.place, pt, "use")
		elif isinstance(op, MoveOp):
			self._move_out(state, op.place, pt)
		elif isinstance(op, Ref):
			self._read(state, op.place, pt, "borrow")

	def _read_index_vars(self, state: MoveMap, place: Place, pt: ProgramPoint) -> None:
		for var in place.index_vars():
			self._read(state, self.func.place(var), pt, "use")

	def _read(self, state: MoveMap, place: Place, pt: ProgramPoint, action: str) -> bool:
		"""Check a read of `place`; return False when it hit a moved value."""
		self._read_index_vars(state, place, pt)
		root = place.name
		st = state.get(root, MOVED)
		# Through a deref only the reference itself has to be present.
		path = place.projections
		deref_at = next((i for i, p in enumerate(path) if isinstance(p, DerefProj)), None)
		if deref_at is not None:
			path = path[:deref_at]
		hit = st.conflicting_path(place, path)
		if hit is None:
			return True
		if self._facts is not None:
			sites = self._reaching_move_sites(place, pt)
			self._facts.events.append(
				MoveEvent(
					point=pt,
					place=place,
					state=st,
					moved_path=hit,
					action=action,
					uninitialized=st.maybe_whole and not sites and not place.base.is_external,
					moved_at=sites,
				)
			)
		return False

	def _move_out(self, state: MoveMap, place: Place, pt: ProgramPoint) -> None:
		ty = place_type(self.func, self.types, place)
		if self.types.is_copy(ty) or place.has_deref:
			# Copies never change state; moving out of a borrow is not an ownership transfer we track.
			self._read(state, place, pt, "use")
			return
		self._read(state, place, pt, "move")
		root = place.name
		state[root] = state.get(root, MOVED).after_move(place.projections)
		if self._facts is not None:
			self._facts.moves.append(MoveSite(point=pt, place=place))

	def _write(self, state: MoveMap, dest: Place, pt: ProgramPoint) -> None:
		self._read_index_vars(state, dest, pt)
		if dest.has_deref:
			# Writing through a reference needs the reference, not ownership.
			deref_at = next(i for i, p in enumerate(dest.projections) if isinstance(p, DerefProj))
			self._read(state, Place(dest.base, dest.projections[:deref_at]), pt, "use")
			return
		root = dest.name
		state[root] = state.get(root, MOVED).after_assign(dest.projections)

	def _assigns_return_place(self) -> bool:
		"""
		True when some statement writes the return place.

		A body that never writes it returns unit, so `Return` must not read it.
		"""
		ret = self.func.return_place.base
		for blk in self.cfg.blocks:
			for stmt in blk.statements:
				dest = statement_dest(stmt)
				if dest is not None and dest.base == ret:
					return True
		return False

	def _collect_move_sites(self) -> Dict[str, List[Tuple[ProgramPoint, Place]]]:
		"""Every statement that can move (or drop) out of a root, by root name."""
		sites: Dict[str, List[Tuple[ProgramPoint, Place]]] = {}

		def add(pt: ProgramPoint, place: Place, *, force: bool = False) -> None:
			if place.has_deref:
				return
			if not force and self.types.is_copy(place_type(self.func, self.types, place)):
				return
			sites.setdefault(place.name, []).append((pt, place))

		for blk in self.cfg.blocks:
			for idx, stmt in enumerate(blk.statements):
				pt = ProgramPoint(blk.id, idx)
				if isinstance(stmt, Move):
					add(pt, stmt.src)
				elif isinstance(stmt, Drop):
					add(pt, stmt.place, force=True)
				elif isinstance(stmt, (Assign, Eval)):
					value = stmt.value
					ops: List[Operand] = []
					if isinstance(value, Use):
						ops = [value.operand]
					elif isinstance(value, Call):
						ops = list(value.args)
					elif isinstance(value, Aggregate):
						ops = [op for _n, op in value.fields]
					for op in ops:
						if isinstance(op, MoveOp):
							add(pt, op.place)
		return sites

	def _forward_closure(self) -> Dict[int, Set[int]]:
		"""reaches[b] = blocks reachable from b through at least one edge."""
		reaches: Dict[int, Set[int]] = {}
		for blk in self.cfg.blocks:
			seen: Set[int] = set()
			stack = list(blk.succs)
			while stack:
				b = stack.pop()
				if b in seen:
					continue
				seen.add(b)
				stack.extend(self.cfg.block(b).succs)
			reaches[blk.id] = seen
		return reaches

	def _reaching_move_sites(self, place: Place, pt: ProgramPoint) -> Tuple[ProgramPoint, ...]:
		out = []
		for site_pt, site_place in self._move_sites.get(place.name, []):
			if not places_overlap(site_place, place):
				continue
			same_block_before = site_pt.block == pt.block and site_pt.stmt < pt.stmt
			if same_block_before or pt.block in self._reaches.get(site_pt.block, ()):
				out.append(site_pt)
		return tuple(sorted(out))


def track_moves(func: FunctionIR, cfg: ControlFlowGraph, types: TypeTable, config: CheckerConfig) -> MoveFacts:
	"""Run the move tracker to a fixpoint and return its facts."""
	return MoveTracker(func, cfg, types, config).run()


__all__ = [
	"MoveKind",
	"MoveState",
	"OWNED",
	"MOVED",
	"join_maps",
	"MoveEvent",
	"MoveSite",
	"MoveFacts",
	"MoveTracker",
	"track_moves",
]
