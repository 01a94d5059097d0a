# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Loan issuance, derived loans and regions."""

from borrowck.cfg import build_cfg
from borrowck.config import CheckerConfig
from borrowck.core.point import ProgramPoint
from borrowck.ir import (
	Alloc,
	Assign,
	BlockIR,
	Borrow,
	Branch,
	Call,
	Copy,
	Eval,
	Goto,
	LoanKind,
	Ref,
	Return,
	Use,
	new_function,
)
from borrowck.loans import track_loans
from borrowck.places import local, param

P = ProgramPoint


def _loans(fn, types, **config):
	return track_loans(fn, build_cfg(fn), types, CheckerConfig(**config))


def _use(place):
	return Eval(Call("use", (Copy(place),)))


def _shared_then_unique(types):
	vec = types.lookup("Vec")
	ref = types.ensure_ref(vec)
	fn = new_function("f", types, locals={"x": vec, "r1": ref, "r2": ref, "m": types.ensure_ref_mut(vec)})
	fn.blocks = [
		BlockIR(
			[
				Assign(local("x"), Alloc("Vec")),
				Borrow(local("r1"), local("x")),
				Assign(local("r2"), Use(Copy(local("r1")))),
				_use(local("r2")),
				Borrow(local("m"), local("x"), LoanKind.UNIQUE),
				_use(local("m")),
			],
			Return(),
		)
	]
	return fn


def test_original_loans_get_ids_in_program_order(types):
	facts = _loans(_shared_then_unique(types), types)
	first, second = facts.loans[0], facts.loans[1]
	assert (first.kind, first.issued_at, first.holder) == (LoanKind.SHARED, P(0, 1), "r1")
	assert (second.kind, second.issued_at, second.holder) == (LoanKind.UNIQUE, P(0, 4), "m")
	assert not first.derived and not first.temporary


def test_copying_a_reference_derives_a_loan(types):
	facts = _loans(_shared_then_unique(types), types)
	(derived,) = facts.derived[P(0, 2)]
	assert derived.origin == 0
	assert derived.holder == "r2"
	assert derived.place == local("x")
	assert derived.derived


def test_region_ends_at_last_use_of_the_holder(types):
	facts = _loans(_shared_then_unique(types), types)
	assert facts.region(0) == {P(0, 1), P(0, 2)}
	assert facts.origin_region(0) == {P(0, 1), P(0, 2), P(0, 3)}
	assert facts.active_before(P(0, 4)) == []
	assert facts.converged


def test_active_after_drops_holders_redefined_or_dead(types):
	facts = _loans(_shared_then_unique(types), types)
	assert [ln.id for ln in facts.active_before(P(0, 2))] == [0]
	# r1 is read for the last time at (0,2).
	assert facts.active_after(P(0, 2)) == []


def test_ref_operand_is_temporary_unless_result_keeps_it(types):
	vec = types.lookup("Vec")
	int_ty = types.ensure_int()
	fn = new_function("f", types, locals={"v": vec, "n": int_ty, "r": types.ensure_ref(int_ty)})
	fn.blocks = [
		BlockIR(
			[
				Assign(local("v"), Alloc("Vec")),
				Assign(local("n"), Call("len", (Ref(local("v")),))),
				Assign(local("r"), Call("first", (Ref(local("v")),))),
				_use(local("r")),
			],
			Return(),
		)
	]
	facts = _loans(fn, types)
	(tmp,) = facts.issued[P(0, 1)]
	(kept,) = facts.issued[P(0, 2)]
	assert tmp.temporary
	assert facts.region(tmp.id) == {P(0, 1)}
	assert kept.holder == "r"
	assert facts.region(kept.id) == {P(0, 2), P(0, 3)}


def test_reborrow_keeps_the_original_borrow_alive(types):
	vec = types.lookup("Vec")
	mref = types.ensure_ref_mut(vec)
	fn = new_function("f", types, locals={"x": vec, "r": mref, "r2": mref})
	fn.blocks = [
		BlockIR(
			[
				Assign(local("x"), Alloc("Vec")),
				Borrow(local("r"), local("x"), LoanKind.UNIQUE),
				Borrow(local("r2"), local("r").deref(), LoanKind.UNIQUE),
				_use(local("r2")),
			],
			Return(),
		)
	]
	facts = _loans(fn, types)
	(via_r2,) = facts.derived[P(0, 2)]
	assert via_r2.origin == 0 and via_r2.holder == "r2"
	active = facts.active_before(P(0, 3))
	assert {(str(ln.place), ln.holder) for ln in active} == {("x", "r2"), ("*r", "r2")}


def test_loop_reaches_a_fixpoint_with_memoized_derived_loans(types):
	vec = types.lookup("Vec")
	ref = types.ensure_ref(vec)
	fn = new_function(
		"f",
		types,
		params={"x": vec, "c": types.ensure_bool()},
		locals={"a": ref, "b": ref},
	)
	fn.blocks = [
		BlockIR([Borrow(local("a"), param("x"))], Goto(1)),
		BlockIR([], Branch(Copy(param("c")), 2, 3)),
		BlockIR(
			[
				Assign(local("b"), Use(Copy(local("a")))),
				Assign(local("a"), Use(Copy(local("b")))),
			],
			Goto(1),
		),
		BlockIR([_use(local("a"))], Return()),
	]
	facts = _loans(fn, types)
	assert facts.converged
	# One original plus one derived loan per (origin, point, holder).
	assert len(facts.loans) == 3
	assert {ln.origin for ln in facts.loans.values()} == {0}
	# Both the entry borrow and its copy around the loop are held by `a`.
	assert [ln.id for ln in facts.active_before(P(3, 0))] == [0, 2]


def test_escaping_loans_are_those_held_by_the_return_place(types):
	vec = types.lookup("Vec")
	ref = types.ensure_ref(vec)
	fn = new_function("f", types, params={"p": vec}, ret=("_ret", ref))
	fn.blocks = [BlockIR([Borrow(fn.return_place, param("p"))], Return())]
	facts = _loans(fn, types)
	assert [ln.place for ln in facts.escaping(P(0, 1))] == [param("p")]
