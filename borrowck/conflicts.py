# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Conflict detection.

Consumes the facts of the move tracker and the loan tracker and turns them into
ConflictReports. Nothing here runs a fixpoint; every check is a local question
about one point:

  * the statement's accesses (reads, writes, moves, new borrows) against the
    loans active there,
  * scope exits (`Drop` markers, `Return`) against loans that outlive them.

Pairs of loans are checked when the later one is issued: two loans can only be
active together on some execution if one of them is issued while the other is
already active. Each pair, keyed by origin loans, is reported once.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import FrozenSet, List, Optional, Set

from borrowck.cfg import ControlFlowGraph
from borrowck.core.diagnostics import ConflictKind, ConflictReport
from borrowck.core.point import ProgramPoint
from borrowck.core.types_core import TypeTable
from borrowck.ir import (
	Assign,
	Borrow,
	Branch,
	Clone,
	Copy,
	Eval,
	FunctionIR,
	LoanKind,
	Move,
	MoveOp,
	Ref,
	StatementOp,
	place_type,
	value_operands,
	operand_place,
)
from borrowck.loans import Loan, LoanFacts
from borrowck.moves import MoveFacts
from borrowck.places import DerefProj, Place, is_prefix, places_overlap
from borrowck.scopes import FrameKind, ScopeFrame


class AccessKind(Enum):
	READ = auto()
	WRITE = auto()
	MOVE = auto()
	BORROW = auto()


@dataclass(frozen=True)
class Access:
	kind: AccessKind
	place: Place
	loan: Optional[Loan] = None


def behind_deref(written: Place, borrowed: Place) -> bool:
	"""
	True when `borrowed` is reached through a reference stored in `written`.

	Overwriting (or dropping) a reference does not touch the memory it points
	to, so loans of `*r` survive a write to `r`.
	"""
	if not is_prefix(written, borrowed):
		return False
	rest = borrowed.projections[len(written.projections):]
	return any(isinstance(p, DerefProj) for p in rest)


def through_old_value(loan: Loan, place: Place) -> bool:
	"""
	True when `place` is rooted at the loan's holder and the loan borrows
	something behind that same root (`r = &mut *r`).

	Such a loan names storage reached through the value the holder had before
	it was overwritten; the holder now points at it, so using the holder is
	not an access to anything else. The borrow of the original storage lives
	on in the loans derived from the old value.
	"""
	return loan.holder == place.name and loan.place.name == place.name and loan.place.has_deref


class ConflictDetector:
	"""Turns move and loan facts of one function into conflict reports."""

	def __init__(
		self,
		func: FunctionIR,
		cfg: ControlFlowGraph,
		types: TypeTable,
		moves: MoveFacts,
		loans: LoanFacts,
		frames: List[ScopeFrame],
	) -> None:
		self.func = func
		self.cfg = cfg
		self.types = types
		self.moves = moves
		self.loans = loans
		self.frames = frames
		self._reported_pairs: Set[FrozenSet[int]] = set()
		self._reports: List[ConflictReport] = []

	def run(self) -> List[ConflictReport]:
		self._reports = []
		self._reported_pairs = set()
		self._use_after_move()
		for bid in sorted(self.cfg.reachable):
			blk = self.cfg.block(bid)
			for idx, stmt in enumerate(blk.statements):
				pt = ProgramPoint(bid, idx)
				self._check_accesses(pt, self._statement_accesses(stmt, pt))
			tpt = ProgramPoint(bid, blk.terminator_index)
			term = blk.terminator
			if isinstance(term, Branch):
				place = operand_place(term.cond)
				if place is not None:
					self._check_accesses(tpt, [Access(AccessKind.READ, place)])
		for frame in self.frames:
			for exit_pt in frame.exits:
				self._check_frame_exit(frame, exit_pt)
		return list(self._reports)

	# Accesses

	def _is_real_move(self, place: Place) -> bool:
		if place.has_deref:
			return False
		return not self.types.is_copy(place_type(self.func, self.types, place))

	def _statement_accesses(self, stmt: StatementOp, pt: ProgramPoint) -> List[Access]:
		"""Accesses of one statement in evaluation order; the write comes last."""
		issued = iter(self.loans.issued.get(pt, []))
		out: List[Access] = []
		if isinstance(stmt, (Assign, Eval)):
			if isinstance(stmt.value, Clone):
				out.append(Access(AccessKind.READ, stmt.value.place))
			for op in value_operands(stmt.value):
				if isinstance(op, Copy):
					out.append(Access(AccessKind.READ, op.place))
				elif isinstance(op, MoveOp):
					kind = AccessKind.MOVE if self._is_real_move(op.place) else AccessKind.READ
					out.append(Access(kind, op.place))
				elif isinstance(op, Ref):
					out.append(Access(AccessKind.BORROW, op.place, next(issued)))
		elif isinstance(stmt, Borrow):
			out.append(Access(AccessKind.BORROW, stmt.of, next(issued)))
		elif isinstance(stmt, Move):
			kind = AccessKind.MOVE if self._is_real_move(stmt.src) else AccessKind.READ
			out.append(Access(kind, stmt.src))
		if isinstance(stmt, (Assign, Borrow, Move)):
			out.append(Access(AccessKind.WRITE, stmt.dest))
		return out

	def _check_accesses(self, pt: ProgramPoint, accesses: List[Access]) -> None:
		active = self.loans.active_before(pt)
		# Loans issued earlier in the same statement are active for the rest of it.
		issued_here: List[Loan] = []
		for acc in accesses:
			if acc.kind is AccessKind.WRITE:
				for loan in self.loans.active_after(pt):
					if through_old_value(loan, acc.place):
						continue
					if places_overlap(loan.place, acc.place) and not behind_deref(acc.place, loan.place):
						self._access_conflict(acc, loan, pt)
				continue
			for loan in active + issued_here:
				if not places_overlap(loan.place, acc.place) or through_old_value(loan, acc.place):
					continue
				if acc.kind is AccessKind.BORROW:
					assert acc.loan is not None
					if loan.origin == acc.loan.origin:
						continue
					if acc.loan.kind is LoanKind.SHARED and loan.kind is LoanKind.SHARED:
						continue
					self._pair_conflict(loan, acc.loan, pt)
				elif acc.kind is AccessKind.READ:
					if loan.kind is LoanKind.UNIQUE:
						self._access_conflict(acc, loan, pt)
				else:
					self._access_conflict(acc, loan, pt)
			if acc.loan is not None:
				issued_here.append(acc.loan)

	def _pair_conflict(self, existing: Loan, new: Loan, pt: ProgramPoint) -> None:
		key = frozenset({existing.origin, new.origin})
		if key in self._reported_pairs:
			return
		self._reported_pairs.add(key)
		msg = f"cannot borrow '{new.place}' as {new.kind} because {existing.describe()} is still in use"
		if existing.holder is not None:
			msg += f" through '{existing.holder}'"
		self._emit(
			ConflictKind.ALIASING_CONFLICT,
			new.place,
			pt,
			msg,
			related={"existing": existing.to_dict(), "borrow": new.to_dict()},
			loan_id=existing.id,
		)

	def _access_conflict(self, acc: Access, loan: Loan, pt: ProgramPoint) -> None:
		if acc.kind is AccessKind.MOVE:
			kind = ConflictKind.BORROW_ACROSS_MOVE
			msg = f"cannot move out of '{acc.place}' because it is borrowed: {loan.describe()} is still in use"
		elif acc.kind is AccessKind.WRITE:
			kind = ConflictKind.ALIASING_CONFLICT
			msg = f"cannot assign to '{acc.place}' while it is borrowed: {loan.describe()} is still in use"
		else:
			kind = ConflictKind.ALIASING_CONFLICT
			msg = f"cannot read '{acc.place}' while it is uniquely borrowed: {loan.describe()} is still in use"
		self._emit(kind, acc.place, pt, msg, related={"existing": loan.to_dict()}, loan_id=loan.id)

	# Scope exits

	def _check_frame_exit(self, frame: ScopeFrame, pt: ProgramPoint) -> None:
		if frame.kind is FrameKind.FUNCTION:
			for loan in self.loans.escaping(pt):
				if not frame.owns(loan.place):
					continue
				self._emit(
					ConflictKind.DANGLING_REFERENCE,
					loan.place,
					pt,
					f"returned reference to '{loan.place}' outlives '{loan.place.name}', "
					f"which is released when '{frame.name}' returns ({loan.describe()})",
					related={"existing": loan.to_dict()},
					loan_id=loan.id,
				)
			return
		for loan in self.loans.active_after(pt):
			if not frame.owns(loan.place):
				continue
			if any(behind_deref(p, loan.place) for p in frame.places):
				continue
			self._emit(
				ConflictKind.DANGLING_REFERENCE,
				loan.place,
				pt,
				f"'{loan.place}' is dropped while still borrowed: {loan.describe()} is used later through '{loan.holder}'",
				related={"existing": loan.to_dict()},
				loan_id=loan.id,
			)

	# Moves

	def _use_after_move(self) -> None:
		for ev in self.moves.events:
			related = None
			if ev.moved_at:
				related = {"moved_at": [p.to_json() for p in ev.moved_at], "state": str(ev.state)}
			self._emit(ConflictKind.USE_AFTER_MOVE, ev.place, ev.point, ev.message(), related=related)

	def _emit(
		self,
		kind: ConflictKind,
		place: Place,
		pt: ProgramPoint,
		message: str,
		*,
		related=None,
		loan_id: Optional[int] = None,
	) -> None:
		self._reports.append(
			ConflictReport(kind=kind, place=str(place), point=pt, message=message, related=related, loan_id=loan_id)
		)


def detect_conflicts(
	func: FunctionIR,
	cfg: ControlFlowGraph,
	types: TypeTable,
	moves: MoveFacts,
	loans: LoanFacts,
	frames: List[ScopeFrame],
) -> List[ConflictReport]:
	return ConflictDetector(func, cfg, types, moves, loans, frames).run()


__all__ = ["AccessKind", "Access", "ConflictDetector", "behind_deref", "through_old_value", "detect_conflicts"]
