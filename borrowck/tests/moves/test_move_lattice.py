# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""MoveState lattice: joins and transfer helpers."""

import itertools

from borrowck.moves import MOVED, OWNED, MoveKind, MoveState, join_maps
from borrowck.places import FieldProj, local

A = (FieldProj("a"),)
B = (FieldProj("b"),)
AX = (FieldProj("a"), FieldProj("x"))


def _partial(*paths):
	return MoveState(MoveKind.PARTIAL, frozenset(paths))


def test_join_table():
	assert OWNED.join(OWNED) is OWNED
	assert MOVED.join(MOVED) is MOVED
	assert OWNED.join(MOVED) == _partial(())
	assert MOVED.join(OWNED) == _partial(())
	assert _partial(A).join(OWNED) == _partial(A)
	assert _partial(A).join(_partial(B)) == _partial(A, B)
	assert _partial(A).join(MOVED) == _partial(())


def test_join_is_commutative_and_idempotent():
	states = [OWNED, MOVED, _partial(A), _partial(B), _partial(()), _partial(AX)]
	for a, b in itertools.product(states, repeat=2):
		assert a.join(b) == b.join(a)
		assert a.join(a) == a


def test_join_drops_paths_covered_by_a_prefix():
	assert _partial(A).join(_partial(AX)) == _partial(A)
	assert _partial(()).join(_partial(B)) == _partial(())


def test_maybe_whole():
	assert MOVED.maybe_whole
	assert _partial(()).maybe_whole
	assert not _partial(A).maybe_whole
	assert not OWNED.maybe_whole


def test_after_move():
	assert OWNED.after_move(()) is MOVED
	assert OWNED.after_move(A) == _partial(A)
	assert _partial(AX).after_move(A) == _partial(A)
	assert _partial(B).after_move(A) == _partial(A, B)
	assert MOVED.after_move(A) is MOVED


def test_after_assign_heals():
	assert MOVED.after_assign(()) == OWNED
	assert _partial(A).after_assign(()) == OWNED
	assert _partial(A).after_assign(A) == OWNED
	assert _partial(AX).after_assign(A) == OWNED
	assert _partial(A, B).after_assign(A) == _partial(B)
	# The rest of a wholly moved value is still gone.
	assert MOVED.after_assign(A) is MOVED


def test_conflicting_path():
	p = local("p")
	assert OWNED.conflicting_path(p, ()) is None
	assert MOVED.conflicting_path(p, B) == ()
	assert _partial(A).conflicting_path(p, B) is None
	assert _partial(A).conflicting_path(p, AX) == A
	assert _partial(A).conflicting_path(p, ()) == A


def test_join_maps_treats_missing_roots_as_moved():
	out = join_maps({"x": OWNED, "y": MOVED}, {"y": MOVED})
	assert out == {"x": _partial(()), "y": MOVED}


def test_str():
	assert str(OWNED) == "Owned"
	assert str(MOVED) == "Moved"
	assert str(_partial(A, B)) == "PartiallyMoved(2)"
