# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Move tracker dataflow over hand-built IR."""

from borrowck.cfg import build_cfg
from borrowck.config import CheckerConfig
from borrowck.core.point import ProgramPoint
from borrowck.ir import (
	Alloc,
	Assign,
	BlockIR,
	Branch,
	Call,
	Copy,
	Drop,
	Eval,
	Goto,
	Move,
	MoveOp,
	Return,
	new_function,
)
from borrowck.ir_validate import validate_function
from borrowck.moves import MOVED, OWNED, MoveKind, track_moves
from borrowck.places import local, param


def _track(fn, types, **config):
	validate_function(fn, types)
	return track_moves(fn, build_cfg(fn), types, CheckerConfig(**config))


def _use(place):
	return Eval(Call("use", (Copy(place),)))


def test_use_after_move_is_reported_once(types):
	vec = types.lookup("Vec")
	fn = new_function("f", types, params={"x": vec}, locals={"y": vec})
	fn.blocks = [BlockIR([Move(local("y"), param("x")), _use(param("x"))], Return())]
	facts = _track(fn, types)
	assert len(facts.events) == 1
	ev = facts.events[0]
	assert ev.point == ProgramPoint(0, 1)
	assert str(ev.place) == "x"
	assert ev.moved_at == (ProgramPoint(0, 0),)
	assert ev.message() == "use of moved value 'x'"


def test_reassignment_heals_a_move(types):
	vec = types.lookup("Vec")
	fn = new_function("f", types, params={"x": vec}, locals={"y": vec})
	fn.blocks = [
		BlockIR(
			[
				Move(local("y"), param("x")),
				Assign(param("x"), Alloc("Vec")),
				_use(param("x")),
			],
			Return(),
		)
	]
	facts = _track(fn, types)
	assert facts.events == []
	assert facts.state_at(ProgramPoint(0, 2), "x") == OWNED


def test_move_on_one_branch_is_a_maybe_move(types):
	vec = types.lookup("Vec")
	fn = new_function("f", types, params={"x": vec, "c": types.ensure_bool()}, locals={"y": vec})
	fn.blocks = [
		BlockIR([], Branch(Copy(param("c")), 1, 2)),
		BlockIR([Move(local("y"), param("x"))], Goto(3)),
		BlockIR([], Goto(3)),
		BlockIR([_use(param("x"))], Return()),
	]
	facts = _track(fn, types)
	assert [ev.point for ev in facts.events] == [ProgramPoint(3, 0)]
	assert facts.events[0].message() == "use of possibly moved value 'x'"
	assert facts.events[0].moved_at == (ProgramPoint(1, 0),)
	assert facts.state_at(ProgramPoint(3, 0), "x").kind is MoveKind.PARTIAL


def test_partial_move_keeps_sibling_fields(types):
	vec = types.lookup("Vec")
	fn = new_function("f", types, params={"p": types.lookup("Pair")}, locals={"a": vec})
	fn.blocks = [
		BlockIR(
			[
				Move(local("a"), param("p").field("a")),
				_use(param("p").field("b")),
				_use(param("p")),
			],
			Return(),
		)
	]
	facts = _track(fn, types)
	assert len(facts.events) == 1
	assert facts.events[0].point == ProgramPoint(0, 2)
	assert facts.events[0].message() == "use of partially moved value (moved: p.a) 'p'"


def test_copy_values_are_never_moved(types):
	int_ty = types.ensure_int()
	point = types.lookup("Point")
	fn = new_function("f", types, params={"n": int_ty, "pt": point}, locals={"m": int_ty, "q": point})
	fn.blocks = [
		BlockIR(
			[
				Move(local("m"), param("n")),
				Assign(local("q"), Call("id", (MoveOp(param("pt")),))),
				_use(param("n")),
				_use(param("pt")),
			],
			Return(),
		)
	]
	facts = _track(fn, types)
	assert facts.events == []
	assert facts.moves == []


def test_read_of_never_assigned_local_is_uninitialized(types):
	fn = new_function("f", types, locals={"v": types.lookup("Vec")})
	fn.blocks = [BlockIR([_use(local("v"))], Return())]
	facts = _track(fn, types)
	assert len(facts.events) == 1
	assert facts.events[0].uninitialized
	assert facts.events[0].message() == "use of uninitialized 'v'"


def test_use_after_drop(types):
	fn = new_function("f", types, locals={"v": types.lookup("Vec")})
	fn.blocks = [BlockIR([Assign(local("v"), Alloc("Vec")), Drop(local("v")), _use(local("v"))], Return())]
	facts = _track(fn, types)
	assert len(facts.events) == 1
	ev = facts.events[0]
	assert not ev.uninitialized
	assert ev.moved_at == (ProgramPoint(0, 1),)
	assert ev.message() == "use of moved value 'v'"


def test_move_inside_loop_is_caught_on_the_second_trip(types):
	vec = types.lookup("Vec")
	fn = new_function("f", types, params={"x": vec, "c": types.ensure_bool()}, locals={"y": vec})
	fn.blocks = [
		BlockIR([], Goto(1)),
		BlockIR([], Branch(Copy(param("c")), 2, 3)),
		BlockIR([Move(local("y"), param("x"))], Goto(1)),
		BlockIR([], Return()),
	]
	facts = _track(fn, types)
	assert facts.converged
	assert [ev.point for ev in facts.events] == [ProgramPoint(2, 0)]
	assert facts.events[0].message() == "move of possibly moved value 'x'"


def test_field_write_into_moved_root_keeps_it_moved(types):
	fn = new_function("f", types, locals={"p": types.lookup("Pair")})
	fn.blocks = [BlockIR([Assign(local("p").field("a"), Alloc("Vec"))], Return())]
	facts = _track(fn, types)
	assert facts.state_at(ProgramPoint(0, 0), "p") == MOVED
	assert facts.state_at(ProgramPoint(0, 1), "p") == MOVED


def test_iteration_cap_stops_the_worklist(types):
	vec = types.lookup("Vec")
	fn = new_function("f", types, params={"x": vec, "c": types.ensure_bool()}, locals={"y": vec})
	fn.blocks = [
		BlockIR([], Goto(1)),
		BlockIR([], Branch(Copy(param("c")), 2, 3)),
		BlockIR([Move(local("y"), param("x"))], Goto(1)),
		BlockIR([], Return()),
	]
	facts = _track(fn, types, max_iterations=1)
	assert not facts.converged
	assert facts.iterations == 1
