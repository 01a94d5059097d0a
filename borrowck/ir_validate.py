# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Precondition checks for borrow-check input IR.

A program fault (use after move, aliasing, ...) is data and ends up in a
report. A malformed IR is a front-end bug: there is no meaningful dataflow to
run over a jump to a nonexistent block, so we raise immediately instead.
"""

from __future__ import annotations

from typing import Iterator, Optional

from borrowck.core.point import ProgramPoint
from borrowck.core.types_core import TypeTable
from borrowck.ir import (
	Aggregate,
	Assign,
	Borrow,
	Branch,
	Call,
	Clone,
	Const,
	Alloc,
	Copy,
	Drop,
	Eval,
	FunctionIR,
	Goto,
	Literal,
	LoanKind,
	Move,
	MoveOp,
	Operand,
	Ref,
	Return,
	StatementOp,
	Unreachable,
	Use,
	ValueExpr,
)
from borrowck.places import Place, PlaceKind


class MalformedIRError(ValueError):
	"""
	Fatal precondition violation in the input IR.

	This is a `ValueError` subclass so callers treating bad input uniformly keep
	working, but it carries the function name and a best-effort point so the
	driver can render a structured diagnostic instead of a traceback.
	"""

	def __init__(self, message: str, *, function: str, point: Optional[ProgramPoint] = None) -> None:
		where = f"{function}" if point is None else f"{function} at {point}"
		super().__init__(f"{where}: {message}")
		self.function = function
		self.point = point
		self.reason = message


def validate_function(func: FunctionIR, types: TypeTable) -> None:
	"""Raise MalformedIRError unless `func` is well-formed."""

	def fail(message: str, point: Optional[ProgramPoint] = None) -> None:
		raise MalformedIRError(message, function=func.name, point=point)

	if not func.blocks:
		fail("function has no blocks")

	for name, decl in func.locals.items():
		if decl.base.name != name:
			fail(f"declaration key '{name}' does not match root '{decl.base.name}'")
		if decl.ty not in types:
			fail(f"'{name}' declared with unknown type id {decl.ty}")

	seen_params = set()
	for p in func.params:
		if not p.is_root:
			fail(f"parameter '{p}' must be a root place")
		if p.name in seen_params:
			fail(f"duplicate parameter '{p.name}'")
		seen_params.add(p.name)
		decl = func.decl(p.name)
		if decl is None or decl.base != p.base or decl.base.kind is not PlaceKind.PARAM:
			fail(f"parameter '{p.name}' is not declared as a parameter")
	for name, decl in func.locals.items():
		if decl.base.kind is PlaceKind.PARAM and name not in seen_params:
			fail(f"'{name}' is declared as a parameter but missing from the parameter list")

	ret = func.return_place
	if not ret.is_root:
		fail(f"return place '{ret}' must be a root place")
	decl = func.decl(ret.name)
	if decl is None or decl.base != ret.base:
		fail(f"return place '{ret.name}' is not declared")

	n_blocks = len(func.blocks)
	for bid, block in enumerate(func.blocks):
		for idx, stmt in enumerate(block.statements):
			pt = ProgramPoint(bid, idx)
			if not isinstance(stmt, StatementOp):
				fail(f"unknown statement {stmt!r}", pt)
			for place in _statement_places(stmt, fail, pt):
				_check_place(func, place, fail, pt)
		term = block.terminator
		pt = ProgramPoint(bid, len(block.statements))
		if term is None:
			fail(f"block {bid} has no terminator", pt)
		if not isinstance(term, (Goto, Branch, Return, Unreachable)):
			fail(f"unknown terminator {term!r}", pt)
		for target in term.targets():
			if not isinstance(target, int) or isinstance(target, bool) or not 0 <= target < n_blocks:
				fail(f"terminator references nonexistent block {target!r}", pt)
		if isinstance(term, Branch):
			for place in _operand_places(term.cond, fail, pt):
				_check_place(func, place, fail, pt)


def _check_place(func: FunctionIR, place: Place, fail, pt: ProgramPoint) -> None:
	if not isinstance(place, Place):
		fail(f"expected a place, got {place!r}", pt)
	decl = func.decl(place.name)
	if decl is None:
		fail(f"use of undeclared root '{place.name}'", pt)
	if decl.base != place.base:
		fail(
			f"place '{place}' uses root kind {place.base.kind.name} but '{place.name}' is declared {decl.base.kind.name}",
			pt,
		)
	for var in place.index_vars():
		if func.decl(var) is None:
			fail(f"index variable '{var}' in '{place}' is not declared", pt)


def _statement_places(stmt: StatementOp, fail, pt: ProgramPoint) -> Iterator[Place]:
	if isinstance(stmt, Assign):
		yield stmt.dest
		yield from _value_places(stmt.value, fail, pt)
	elif isinstance(stmt, Borrow):
		if not isinstance(stmt.kind, LoanKind):
			fail(f"borrow kind must be a LoanKind, got {stmt.kind!r}", pt)
		yield stmt.dest
		yield stmt.of
	elif isinstance(stmt, Move):
		yield stmt.dest
		yield stmt.src
	elif isinstance(stmt, Drop):
		yield stmt.place
	elif isinstance(stmt, Eval):
		yield from _value_places(stmt.value, fail, pt)
	else:
		fail(f"unknown statement {stmt!r}", pt)


def _value_places(value: ValueExpr, fail, pt: ProgramPoint) -> Iterator[Place]:
	if isinstance(value, (Const, Alloc)):
		return
	if isinstance(value, Use):
		yield from _operand_places(value.operand, fail, pt)
	elif isinstance(value, Clone):
		yield value.place
	elif isinstance(value, Call):
		for arg in value.args:
			yield from _operand_places(arg, fail, pt)
	elif isinstance(value, Aggregate):
		names = [n for n, _ in value.fields]
		if len(names) != len(set(names)):
			fail(f"aggregate '{value.type_name}' initializes a field twice", pt)
		for _name, op in value.fields:
			yield from _operand_places(op, fail, pt)
	else:
		fail(f"unknown value expression {value!r}", pt)


def _operand_places(op: Operand, fail, pt: ProgramPoint) -> Iterator[Place]:
	if isinstance(op, Literal):
		return
	if isinstance(op, (Copy, MoveOp)):
		yield op.place
	elif isinstance(op, Ref):
		if not isinstance(op.kind, LoanKind):
			fail(f"borrow kind must be a LoanKind, got {op.kind!r}", pt)
		yield op.place
	else:
		fail(f"unknown operand {op!r}", pt)


__all__ = ["MalformedIRError", "validate_function"]
