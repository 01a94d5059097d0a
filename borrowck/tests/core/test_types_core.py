# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""TypeTable queries used by the checker."""

import pytest

from borrowck.core.types_core import TypeKind, TypeTable


def test_scalars_and_refs_are_copy():
	table = TypeTable()
	int_ty = table.ensure_int()
	assert table.is_copy(int_ty)
	assert table.is_copy(table.ensure_bool())
	assert table.is_copy(table.ensure_ref(int_ty))
	assert table.is_copy(table.ensure_ref_mut(int_ty))


def test_owned_unknown_and_missing_types_are_not_copy():
	table = TypeTable()
	assert not table.is_copy(table.new_owned("Vec"))
	assert not table.is_copy(table.ensure_unknown())
	assert not table.is_copy(None)
	assert not table.is_copy(999)


def test_struct_copy_follows_declaration():
	table = TypeTable()
	int_ty = table.ensure_int()
	vec = table.new_owned("Vec")
	assert table.is_copy(table.new_struct("Point", {"x": int_ty, "y": int_ty}, copy=True))
	assert not table.is_copy(table.new_struct("Holder", {"v": vec}))


def test_copy_struct_rejects_owning_field():
	table = TypeTable()
	vec = table.new_owned("Vec")
	with pytest.raises(ValueError, match="non-Copy field 'v'"):
		table.new_struct("Bad", {"v": vec}, copy=True)


def test_duplicate_type_name_is_rejected():
	table = TypeTable()
	table.new_owned("Vec")
	with pytest.raises(ValueError, match="duplicate type name"):
		table.new_owned("Vec")


def test_ensure_helpers_are_stable():
	table = TypeTable()
	int_ty = table.ensure_int()
	assert table.ensure_int() == int_ty
	assert table.ensure_ref(int_ty) == table.ensure_ref(int_ty)
	assert table.ensure_ref(int_ty) != table.ensure_ref_mut(int_ty)
	assert table.ensure_array(int_ty) == table.ensure_array(int_ty)
	assert table.get(table.ensure_ref_mut(int_ty)).name == "&mut Int"
	assert table.lookup("Int") == int_ty


def test_carries_ref_looks_through_structs_and_arrays():
	table = TypeTable()
	int_ty = table.ensure_int()
	ref = table.ensure_ref(int_ty)
	view = table.new_struct("View", {"len": int_ty, "data": ref})
	plain = table.new_struct("Plain", {"len": int_ty})
	assert table.carries_ref(ref)
	assert table.carries_ref(view)
	assert table.carries_ref(table.ensure_array(view))
	assert not table.carries_ref(plain)
	assert not table.carries_ref(int_ty)
	assert not table.carries_ref(None)


def test_projection_types():
	table = TypeTable()
	int_ty = table.ensure_int()
	pair = table.new_struct("Pair", {"a": int_ty, "b": table.ensure_bool()})
	arr = table.ensure_array(pair)
	ref = table.ensure_ref(arr)
	assert table.field_type(pair, "b") == table.ensure_bool()
	assert table.field_type(pair, "missing") is None
	assert table.elem_type(arr) == pair
	assert table.pointee_type(ref) == arr
	assert table.pointee_type(int_ty) is None
	assert table.get(ref).kind is TypeKind.REF
