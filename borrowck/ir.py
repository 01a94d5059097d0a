# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Borrow-check input IR.

Pipeline placement:
  front end (external, or `borrowck.ir_text`) → IR (this file) → CFG → dataflow → reports

The IR is explicit and already typed:
- Every root (param, local, temporary, return slot) is declared with a TypeId.
- Blocks hold simple statements followed by exactly one terminator.
- Control flow only leaves a block through its terminator.

Use this file as a reference for what the IR can express. There are **no
semantics** baked in here; the analysis passes give the nodes meaning.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, Iterator, List, Optional, Tuple, Union

from borrowck.core.types_core import TypeId, TypeTable
from borrowck.places import FieldProj, IndexProj, Place, PlaceBase, PlaceKind


class LoanKind(Enum):
	"""Kinds of borrows."""

	SHARED = auto()
	UNIQUE = auto()

	def __str__(self) -> str:
		return "shared" if self is LoanKind.SHARED else "unique"


# Operands


class Operand:
	"""Base class for call/aggregate operands."""
	pass


@dataclass(frozen=True)
class Copy(Operand):
	"""Read `place` without transferring ownership."""
	place: Place


@dataclass(frozen=True)
class MoveOp(Operand):
	"""Transfer ownership out of `place` (Copy-category places are copied)."""
	place: Place


@dataclass(frozen=True)
class Ref(Operand):
	"""Borrow `place` for the duration of the enclosing statement (or longer if the result keeps it)."""
	place: Place
	kind: LoanKind = LoanKind.SHARED


@dataclass(frozen=True)
class Literal(Operand):
	"""Constant operand."""
	value: Union[int, bool, str, None] = None


# Value expressions (right-hand sides)


class ValueExpr:
	"""Base class for assignment sources."""
	pass


@dataclass(frozen=True)
class Const(ValueExpr):
	"""A fresh constant value."""
	value: Union[int, bool, str, None] = None


@dataclass(frozen=True)
class Alloc(ValueExpr):
	"""A fresh heap-backed owned value (`Vec::new()`, `Box::new(..)`)."""
	type_name: str = ""


@dataclass(frozen=True)
class Use(ValueExpr):
	"""Value of a single operand (`x = copy y`, `x = move y`)."""
	operand: Operand


@dataclass(frozen=True)
class Clone(ValueExpr):
	"""Explicit deep copy of `place`; never changes the source state."""
	place: Place


@dataclass(frozen=True)
class Call(ValueExpr):
	"""Call of an external function; the engine only sees its operands."""
	func: str
	args: Tuple[Operand, ...] = ()


@dataclass(frozen=True)
class Aggregate(ValueExpr):
	"""Struct literal `T { f: op, ... }`; field operands may move or borrow."""
	type_name: str
	fields: Tuple[Tuple[str, Operand], ...] = ()


# Statements


class StatementOp:
	"""Base class for IR statements (non-terminators)."""
	pass


@dataclass(frozen=True)
class Assign(StatementOp):
	"""dest = value"""
	dest: Place
	value: ValueExpr


@dataclass(frozen=True)
class Borrow(StatementOp):
	"""dest = &of / &mut of"""
	dest: Place
	of: Place
	kind: LoanKind = LoanKind.SHARED


@dataclass(frozen=True)
class Move(StatementOp):
	"""dest = move src"""
	dest: Place
	src: Place


@dataclass(frozen=True)
class Drop(StatementOp):
	"""Drop marker: the storage of `place` ends here (scope exit)."""
	place: Place


@dataclass(frozen=True)
class Eval(StatementOp):
	"""Evaluate `value` for its effects and discard the result."""
	value: ValueExpr


# Terminators


class TerminatorOp:
	"""Base class for block terminators."""

	def targets(self) -> Tuple[int, ...]:
		return ()


@dataclass(frozen=True)
class Goto(TerminatorOp):
	"""Unconditional branch to another basic block."""
	target: int

	def targets(self) -> Tuple[int, ...]:
		return (self.target,)


@dataclass(frozen=True)
class Branch(TerminatorOp):
	"""Conditional branch to then/else blocks."""
	cond: Operand
	then_block: int
	else_block: int

	def targets(self) -> Tuple[int, ...]:
		return (self.then_block, self.else_block)


@dataclass(frozen=True)
class Return(TerminatorOp):
	"""Function return; the value travels in the function's return place."""
	pass


@dataclass(frozen=True)
class Unreachable(TerminatorOp):
	"""Terminator for a control-flow path earlier stages proved impossible."""
	pass


# Containers


@dataclass
class BlockIR:
	"""
	Basic block: a list of statements followed by a single terminator.

	`terminator` is Optional only so front ends can build blocks incrementally;
	validation rejects a function with a block that never got one.
	"""
	statements: List[StatementOp] = field(default_factory=list)
	terminator: Optional[TerminatorOp] = None


@dataclass(frozen=True)
class LocalDecl:
	"""Declaration of one root: its identity and its type."""
	base: PlaceBase
	ty: TypeId


@dataclass
class FunctionIR:
	"""
	One function body.

	Blocks are stored in a list; a block's id is its index and block 0 is the
	entry. `locals` declares every root the body mentions, parameters and the
	return place included.
	"""
	name: str
	params: List[Place]
	return_place: Place
	locals: Dict[str, LocalDecl] = field(default_factory=dict)
	blocks: List[BlockIR] = field(default_factory=list)

	def decl(self, name: str) -> Optional[LocalDecl]:
		return self.locals.get(name)

	def base(self, name: str) -> PlaceBase:
		"""Return the declared PlaceBase for `name` (KeyError if undeclared)."""
		return self.locals[name].base

	def place(self, name: str) -> Place:
		"""Root place of a declared name, with its declared kind."""
		return Place(self.base(name))

	def type_of_root(self, name: str) -> Optional[TypeId]:
		d = self.locals.get(name)
		return d.ty if d is not None else None


@dataclass
class Program:
	"""Whole-program input: a shared type table plus function bodies by name."""
	types: TypeTable
	functions: Dict[str, FunctionIR] = field(default_factory=dict)


def place_type(func: FunctionIR, types: TypeTable, place: Place) -> Optional[TypeId]:
	"""
	Resolve the type of a (possibly projected) place, or None when unknown.

	Unknown types are treated as owning by the move tracker and as not carrying
	references by liveness.
	"""
	ty = func.type_of_root(place.base.name)
	for proj in place.projections:
		if ty is None:
			return None
		if isinstance(proj, FieldProj):
			ty = types.field_type(ty, proj.name)
		elif isinstance(proj, IndexProj):
			ty = types.elem_type(ty)
		else:
			ty = types.pointee_type(ty)
	return ty


def operand_place(op: Operand) -> Optional[Place]:
	if isinstance(op, (Copy, MoveOp, Ref)):
		return op.place
	return None


def value_operands(value: ValueExpr) -> Iterator[Operand]:
	"""Yield the operands a value expression evaluates, in evaluation order."""
	if isinstance(value, Use):
		yield value.operand
	elif isinstance(value, Call):
		yield from value.args
	elif isinstance(value, Aggregate):
		for _name, op in value.fields:
			yield op


def statement_dest(stmt: StatementOp) -> Optional[Place]:
	if isinstance(stmt, (Assign, Borrow, Move)):
		return stmt.dest
	return None


def new_function(
	name: str,
	types: TypeTable,
	*,
	params: Dict[str, TypeId] | None = None,
	locals: Dict[str, TypeId] | None = None,
	temps: Dict[str, TypeId] | None = None,
	ret: Tuple[str, TypeId] | None = None,
) -> FunctionIR:
	"""
	Convenience constructor for hand-built IR (tests, embedders).

	`ret` defaults to an `Int`-typed `_ret` slot.
	"""
	decls: Dict[str, LocalDecl] = {}
	param_places: List[Place] = []
	for pname, ty in (params or {}).items():
		base = PlaceBase(PlaceKind.PARAM, pname)
		decls[pname] = LocalDecl(base, ty)
		param_places.append(Place(base))
	for lname, ty in (locals or {}).items():
		decls[lname] = LocalDecl(PlaceBase(PlaceKind.LOCAL, lname), ty)
	for tname, ty in (temps or {}).items():
		decls[tname] = LocalDecl(PlaceBase(PlaceKind.TEMP, tname), ty)
	ret_name, ret_ty = ret if ret is not None else ("_ret", types.ensure_int())
	ret_base = PlaceBase(PlaceKind.RETURN, ret_name)
	decls[ret_name] = LocalDecl(ret_base, ret_ty)
	return FunctionIR(name=name, params=param_places, return_place=Place(ret_base), locals=decls)


__all__ = [
	"LoanKind",
	"Operand",
	"Copy",
	"MoveOp",
	"Ref",
	"Literal",
	"ValueExpr",
	"Const",
	"Alloc",
	"Use",
	"Clone",
	"Call",
	"Aggregate",
	"StatementOp",
	"Assign",
	"Borrow",
	"Move",
	"Drop",
	"Eval",
	"TerminatorOp",
	"Goto",
	"Branch",
	"Return",
	"Unreachable",
	"BlockIR",
	"LocalDecl",
	"FunctionIR",
	"Program",
	"place_type",
	"operand_place",
	"value_operands",
	"statement_dest",
	"new_function",
]
