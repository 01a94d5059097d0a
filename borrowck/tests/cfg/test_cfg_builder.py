# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""CFG construction: edges, reachability, back edges and dominators."""

from borrowck.cfg import build_cfg
from borrowck.core.point import ProgramPoint
from borrowck.core.types_core import TypeTable
from borrowck.dom import DominatorAnalysis
from borrowck.ir import BlockIR, Branch, Const, Assign, Copy, Goto, Return
from borrowck.ir import new_function
from borrowck.places import local


def _fn(*terminators, stmts_in_entry=0):
	"""Function whose block i ends with terminators[i]; `c` is a Bool local."""
	types = TypeTable()
	fn = new_function("f", types, locals={"c": types.ensure_bool()})
	for i, term in enumerate(terminators):
		stmts = [Assign(local("c"), Const(True))] * (stmts_in_entry if i == 0 else 0)
		fn.blocks.append(BlockIR(statements=stmts, terminator=term))
	return fn


def _branch(a, b):
	return Branch(Copy(local("c")), a, b)


def test_diamond_edges_and_order():
	cfg = build_cfg(_fn(_branch(1, 2), Goto(3), Goto(3), Return()))
	assert cfg.block(0).succs == [1, 2]
	assert sorted(cfg.block(3).preds) == [1, 2]
	assert cfg.rpo[0] == 0 and cfg.rpo[-1] == 3
	assert cfg.postorder()[0] == 3
	assert cfg.back_edges == frozenset()
	assert cfg.dead == ()
	assert cfg.dominators.idom[3] == 0
	assert cfg.dominators.dominates(0, 2)
	assert not cfg.dominators.dominates(1, 3)


def test_loop_back_edge_is_detected():
	cfg = build_cfg(_fn(Goto(1), _branch(2, 3), Goto(1), Return()))
	assert cfg.back_edges == frozenset({(2, 1)})
	assert cfg.loop_headers == frozenset({1})
	assert cfg.irreducible_edges == frozenset()


def test_self_loop():
	cfg = build_cfg(_fn(_branch(0, 1), Return()))
	assert (0, 0) in cfg.back_edges
	assert cfg.block(0).preds == [0]


def test_unreachable_blocks_are_dead_and_excluded_from_live_preds():
	cfg = build_cfg(_fn(Return(), Goto(0)))
	assert cfg.reachable == frozenset({0})
	assert cfg.dead == (1,)
	assert cfg.block(0).preds == [1]
	assert cfg.live_preds(0) == []
	assert cfg.rpo == (0,)


def test_branch_to_same_block_is_one_edge():
	cfg = build_cfg(_fn(_branch(1, 1), Return()))
	assert cfg.block(0).succs == [1]
	assert cfg.block(1).preds == [0]


def test_irreducible_loop_is_flagged():
	cfg = build_cfg(_fn(_branch(1, 2), Goto(2), Goto(1)))
	assert cfg.back_edges == frozenset({(2, 1)})
	assert cfg.irreducible_edges == frozenset({(2, 1)})


def test_points_include_the_terminator():
	cfg = build_cfg(_fn(Return(), stmts_in_entry=2))
	assert cfg.points(0) == [ProgramPoint(0, 0), ProgramPoint(0, 1), ProgramPoint(0, 2)]
	assert cfg.block(0).terminator_index == 2


def test_to_dict_is_json_shaped():
	cfg = build_cfg(_fn(Goto(1), _branch(2, 3), Goto(1), Return(), Return()))
	data = cfg.to_dict()
	assert data["entry"] == 0
	assert data["reachable"] == [0, 1, 2, 3]
	assert data["back_edges"] == [[2, 1]]
	assert data["blocks"][1] == {"id": 1, "succs": [2, 3], "preds": [0, 2], "statements": 0}


def test_dominators_ignore_dead_predecessors():
	# 3 is dead but jumps into 2; it must not weaken dom(2).
	info = DominatorAnalysis().compute(0, [0, 1, 2], {0: [], 1: [0], 2: [1, 3]})
	assert info.dom[2] == {0, 1, 2}
	assert info.idom == {0: None, 1: 0, 2: 1}
