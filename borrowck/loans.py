# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Loan & region tracking.

A loan is created by every `Borrow` statement and every `Ref` operand. Its
region is not stored on the loan: it falls out of two facts computed here,

  * which loans *reach* a point (forward dataflow, union at joins), and
  * whether the loan's holder root is live there (see `borrowck.liveness`).

A loan is active at P iff it reaches P and its holder is live at P. Temporary
loans (a `Ref` operand whose result keeps no reference) are active only at the
point that issues them.

Copying a reference into another root does not create a new borrow; it
creates a *derived* loan with the same place and kind, held by the new root
and linked to its origin. Derived loans are memoized by
`(origin, point, holder)` so a loop that keeps re-copying a reference reaches a
fixpoint instead of minting ids forever.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from borrowck.cfg import ControlFlowGraph
from borrowck.config import CheckerConfig
from borrowck.core.point import ProgramPoint
from borrowck.core.types_core import TypeTable
from borrowck.ir import (
	Assign,
	Borrow,
	Clone,
	Copy,
	Eval,
	FunctionIR,
	LoanKind,
	Move,
	MoveOp,
	Ref,
	Return,
	StatementOp,
	place_type,
	statement_dest,
	value_operands,
)
from borrowck.liveness import LivenessFacts, compute_liveness
from borrowck.places import Place

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Loan:
	"""
	One borrow of `place`.

	`holder` is the root whose value carries the reference; None marks a
	temporary loan that ends with its statement. `origin` is the id of the
	borrow this loan was derived from (its own id for an original loan).
	"""

	id: int
	place: Place
	kind: LoanKind
	issued_at: ProgramPoint
	holder: Optional[str]
	origin: int

	@property
	def temporary(self) -> bool:
		return self.holder is None

	@property
	def derived(self) -> bool:
		return self.origin != self.id

	def describe(self) -> str:
		return f"{self.kind} loan #{self.id} of '{self.place}' at {self.issued_at}"

	def to_dict(self) -> Dict[str, object]:
		return {
			"loan": self.id,
			"loan_kind": str(self.kind),
			"loan_place": str(self.place),
			"issued_at": self.issued_at.to_json(),
			"holder": self.holder,
		}


@dataclass
class LoanFacts:
	"""Reaching loans per point plus everything needed to ask which are active."""

	loans: Dict[int, Loan] = field(default_factory=dict)
	# Original loans issued by each point's statement, in operand order.
	issued: Dict[ProgramPoint, List[Loan]] = field(default_factory=dict)
	derived: Dict[ProgramPoint, List[Loan]] = field(default_factory=dict)
	reaching_before: Dict[ProgramPoint, FrozenSet[int]] = field(default_factory=dict)
	# Roots fully redefined by the statement at a point.
	kills: Dict[ProgramPoint, FrozenSet[str]] = field(default_factory=dict)
	liveness: LivenessFacts = field(default_factory=LivenessFacts)
	return_root: str = ""
	converged: bool = True
	iterations: int = 0

	def _held_live(self, ids: Iterable[int], live: FrozenSet[str]) -> List[Loan]:
		out = []
		for lid in sorted(ids):
			loan = self.loans[lid]
			if loan.holder is not None and loan.holder in live:
				out.append(loan)
		return out

	def active_before(self, point: ProgramPoint) -> List[Loan]:
		"""Loans whose region contains `point`, by id."""
		return self._held_live(
			self.reaching_before.get(point, frozenset()),
			self.liveness.live_before.get(point, frozenset()),
		)

	def active_after(self, point: ProgramPoint) -> List[Loan]:
		"""
		Loans that were active before `point` and are still needed after it.

		This is the set a write at `point` must respect: a holder that is dead
		after the write, or that the write itself redefines, no longer matters.
		"""
		killed = self.kills.get(point, frozenset())
		live = self.liveness.live_after.get(point, frozenset()) - killed
		return self._held_live(self.reaching_before.get(point, frozenset()), live)

	def escaping(self, point: ProgramPoint) -> List[Loan]:
		"""Loans held by the return place when the function returns at `point`."""
		return [
			self.loans[lid]
			for lid in sorted(self.reaching_before.get(point, frozenset()))
			if self.loans[lid].holder == self.return_root
		]

	def region(self, loan_id: int) -> FrozenSet[ProgramPoint]:
		"""Points where the loan is active (its issuing point included)."""
		loan = self.loans[loan_id]
		points: Set[ProgramPoint] = {loan.issued_at}
		if loan.holder is None:
			return frozenset(points)
		for pt, ids in self.reaching_before.items():
			if loan_id in ids and loan.holder in self.liveness.live_before.get(pt, frozenset()):
				points.add(pt)
		return frozenset(points)

	def origin_region(self, origin: int) -> FrozenSet[ProgramPoint]:
		"""Union of the regions of an original loan and everything derived from it."""
		points: Set[ProgramPoint] = set()
		for loan in self.loans.values():
			if loan.origin == origin:
				points |= self.region(loan.id)
		return frozenset(points)


class LoanTracker:
	"""
	Forward reaching-loans dataflow for one function.

	Original loans do not depend on dataflow state, so they are all created up
	front in block/statement order; that keeps loan ids stable across runs.
	Derived loans are minted during the fixpoint through the memo table.
	"""

	def __init__(
		self,
		func: FunctionIR,
		cfg: ControlFlowGraph,
		types: TypeTable,
		config: CheckerConfig,
		liveness: LivenessFacts,
	) -> None:
		self.func = func
		self.cfg = cfg
		self.types = types
		self.config = config
		self.liveness = liveness
		self.tracked = liveness.tracked
		self.loans: Dict[int, Loan] = {}
		self._issued: Dict[ProgramPoint, List[Loan]] = {}
		self._derived_memo: Dict[Tuple[int, ProgramPoint, str], Loan] = {}
		self._recording: Optional[LoanFacts] = None
		self._issue_all()

	def _new_loan(self, place: Place, kind: LoanKind, pt: ProgramPoint, holder: Optional[str], origin: Optional[int] = None) -> Loan:
		lid = len(self.loans)
		loan = Loan(id=lid, place=place, kind=kind, issued_at=pt, holder=holder, origin=lid if origin is None else origin)
		self.loans[lid] = loan
		return loan

	def _result_carries_ref(self, dest: Place) -> bool:
		ty = place_type(self.func, self.types, dest)
		if ty is None:
			return dest.name in self.tracked
		return self.types.carries_ref(ty)

	def _issue_all(self) -> None:
		for bid in sorted(self.cfg.reachable):
			blk = self.cfg.block(bid)
			for idx, stmt in enumerate(blk.statements):
				pt = ProgramPoint(bid, idx)
				out: List[Loan] = []
				if isinstance(stmt, Borrow):
					out.append(self._new_loan(stmt.of, stmt.kind, pt, stmt.dest.name))
				elif isinstance(stmt, (Assign, Eval)):
					holder = None
					if isinstance(stmt, Assign) and self._result_carries_ref(stmt.dest):
						holder = stmt.dest.name
					for op in value_operands(stmt.value):
						if isinstance(op, Ref):
							out.append(self._new_loan(op.place, op.kind, pt, holder))
				if out:
					self._issued[pt] = out

	def _derive(self, parent: Loan, pt: ProgramPoint, holder: str) -> Loan:
		key = (parent.origin, pt, holder)
		loan = self._derived_memo.get(key)
		if loan is None:
			loan = self._new_loan(parent.place, parent.kind, pt, holder, origin=parent.origin)
			self._derived_memo[key] = loan
		return loan

	def _flows_from(self, place: Place) -> bool:
		"""Does reading `place` hand over the references its root holds?"""
		if place.name not in self.tracked:
			return False
		ty = place_type(self.func, self.types, place)
		return ty is None or self.types.carries_ref(ty)

	def _derive_from(self, src_root: str, pt: ProgramPoint, holder: str, state: Set[int]) -> List[Loan]:
		out = []
		for lid in sorted(state):
			parent = self.loans[lid]
			# `r = copy r` re-derives r's own loans so the kill below keeps them.
			if parent.holder == src_root:
				out.append(self._derive(parent, pt, holder))
		return out

	def _transfer_stmt(self, stmt: StatementOp, pt: ProgramPoint, state: Set[int]) -> Set[int]:
		dest = statement_dest(stmt)
		gen: List[Loan] = [ln for ln in self._issued.get(pt, []) if ln.holder is not None]
		derived: List[Loan] = []
		if isinstance(stmt, Borrow):
			# Reborrow through `*r`: whatever r borrows stays borrowed while dest lives.
			if stmt.of.has_deref and stmt.of.name in self.tracked:
				derived.extend(self._derive_from(stmt.of.name, pt, stmt.dest.name, state))
		elif isinstance(stmt, Assign) and self._result_carries_ref(stmt.dest):
			sources: List[Place] = []
			if isinstance(stmt.value, Clone):
				sources.append(stmt.value.place)
			for op in value_operands(stmt.value):
				if isinstance(op, (Copy, MoveOp)):
					sources.append(op.place)
			for src in sources:
				if self._flows_from(src):
					derived.extend(self._derive_from(src.name, pt, stmt.dest.name, state))
		elif isinstance(stmt, Move) and self._flows_from(stmt.src):
			derived.extend(self._derive_from(stmt.src.name, pt, stmt.dest.name, state))

		killed: FrozenSet[str] = frozenset()
		if dest is not None and dest.is_root:
			killed = frozenset({dest.name})
			state = {lid for lid in state if self.loans[lid].holder != dest.name}
		state |= {ln.id for ln in gen}
		state |= {ln.id for ln in derived}
		# Loans whose holder is dead can never become active again: any later
		# use of the holder is preceded by a redefinition, which kills them.
		live = self.liveness.live_after.get(pt, frozenset())
		state = {lid for lid in state if self.loans[lid].holder in live}

		if self._recording is not None:
			self._recording.kills[pt] = killed
			if derived:
				self._recording.derived[pt] = derived
		return state

	def _transfer_block(self, bid: int, state: Set[int]) -> Set[int]:
		blk = self.cfg.block(bid)
		for idx, stmt in enumerate(blk.statements):
			pt = ProgramPoint(bid, idx)
			if self._recording is not None:
				self._recording.reaching_before[pt] = frozenset(state)
			state = self._transfer_stmt(stmt, pt, state)
		pt = ProgramPoint(bid, blk.terminator_index)
		if self._recording is not None:
			self._recording.reaching_before[pt] = frozenset(state)
			self._recording.kills[pt] = frozenset()
		if isinstance(blk.terminator, Return):
			return set()
		live = self.liveness.live_out.get(bid, frozenset())
		return {lid for lid in state if self.loans[lid].holder in live}

	def run(self) -> LoanFacts:
		cfg = self.cfg
		order = {bid: i for i, bid in enumerate(cfg.rpo)}
		in_states: Dict[int, Set[int]] = {cfg.entry: set()}
		out_states: Dict[int, Set[int]] = {}
		pending: Set[int] = {cfg.entry}
		iterations = 0
		converged = True
		while pending:
			if iterations >= self.config.max_iterations:
				converged = False
				logger.warning("%s: loan analysis hit the iteration cap (%d)", self.func.name, self.config.max_iterations)
				break
			bid = min(pending, key=order.__getitem__)
			pending.discard(bid)
			iterations += 1
			in_state: Set[int] = set()
			for p in cfg.live_preds(bid):
				in_state |= out_states.get(p, set())
			in_states[bid] = in_state
			out = self._transfer_block(bid, set(in_state))
			if out_states.get(bid) != out:
				out_states[bid] = out
				for succ in cfg.block(bid).succs:
					pending.add(succ)
		logger.debug(
			"%s: %d loans after %d block visits (%s)",
			self.func.name,
			len(self.loans),
			iterations,
			"converged" if converged else "stopped",
		)

		facts = LoanFacts(
			liveness=self.liveness,
			return_root=self.func.return_place.name,
			converged=converged,
			iterations=iterations,
		)
		self._recording = facts
		try:
			for bid in cfg.rpo:
				if bid in in_states:
					self._transfer_block(bid, set(in_states[bid]))
		finally:
			self._recording = None
		facts.loans = dict(self.loans)
		facts.issued = {pt: list(lns) for pt, lns in self._issued.items()}
		return facts


def track_loans(
	func: FunctionIR,
	cfg: ControlFlowGraph,
	types: TypeTable,
	config: CheckerConfig,
	liveness: Optional[LivenessFacts] = None,
) -> LoanFacts:
	"""Compute liveness (unless given) and reaching loans for one function."""
	if liveness is None:
		liveness = compute_liveness(func, cfg, types, config)
	return LoanTracker(func, cfg, types, config, liveness).run()


__all__ = ["Loan", "LoanFacts", "LoanTracker", "track_loans"]
