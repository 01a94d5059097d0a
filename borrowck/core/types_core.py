# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Minimal type core consumed by the borrow checker.

TypeIds are opaque ints indexing into a TypeTable. The checker never infers
types; it only asks a handful of questions about already-typed places:
  * Is a value of this type Copy (reads never move it)?
  * Is it a reference, and if so is it unique (`&mut`)?
  * Does it carry references anywhere inside (so liveness must track it)?
  * What is the type of a field / element / pointee projection?
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, Optional, Tuple


TypeId = int  # opaque handle into the TypeTable


class TypeKind(Enum):
	"""Kinds of types understood by the checker."""

	SCALAR = auto()   # Int, Bool, ...: always Copy.
	OWNED = auto()    # Heap-backed owning value (Vec, String, Box).
	STRUCT = auto()   # Named fields; Copy only when declared so.
	ARRAY = auto()    # Owning array of `param_types[0]`.
	REF = auto()      # `&T` / `&mut T` (non-owning).
	UNKNOWN = auto()  # Conservatively owning.


@dataclass(frozen=True)
class TypeDef:
	"""Definition of a type stored in the TypeTable."""

	kind: TypeKind
	name: str
	param_types: Tuple[TypeId, ...] = ()
	field_names: Tuple[str, ...] = ()
	ref_mut: bool | None = None  # only meaningful for TypeKind.REF
	copy: bool = False


class TypeTable:
	"""
	Type table that owns TypeIds.

	The table is filled by the front end before verification starts. Analysis
	passes only call the read-only queries (`get`, `is_copy`, ...), so a single
	table can be shared by verifications running in parallel.
	"""

	def __init__(self) -> None:
		self._defs: Dict[TypeId, TypeDef] = {}
		self._by_name: Dict[str, TypeId] = {}
		self._ref_cache: Dict[Tuple[TypeId, bool], TypeId] = {}
		self._array_cache: Dict[TypeId, TypeId] = {}
		self._next_id: TypeId = 1  # reserve 0 for "invalid"
		self._int_type: TypeId | None = None
		self._bool_type: TypeId | None = None
		self._unknown_type: TypeId | None = None

	def new_scalar(self, name: str) -> TypeId:
		"""Register a scalar (Copy) type and return its TypeId."""
		return self._add(TypeDef(kind=TypeKind.SCALAR, name=name, copy=True))

	def new_owned(self, name: str) -> TypeId:
		"""Register an opaque heap-backed owning type (e.g. `Vec`)."""
		return self._add(TypeDef(kind=TypeKind.OWNED, name=name))

	def new_struct(self, name: str, fields: Dict[str, TypeId], *, copy: bool = False) -> TypeId:
		"""
		Register a struct type.

		`copy=True` marks a fixed-size value type whose reads never move. A Copy
		struct may not contain owning fields; that is a front-end error we report
		eagerly here because the checker would otherwise silently duplicate owners.
		"""
		if copy:
			for fname, fty in fields.items():
				if not self.is_copy(fty):
					raise ValueError(f"copy struct '{name}' has non-Copy field '{fname}'")
		return self._add(
			TypeDef(
				kind=TypeKind.STRUCT,
				name=name,
				param_types=tuple(fields.values()),
				field_names=tuple(fields.keys()),
				copy=copy,
			)
		)

	def ensure_int(self) -> TypeId:
		"""Return a stable Int TypeId, creating it once."""
		if self._int_type is None:
			self._int_type = self.new_scalar("Int")
		return self._int_type

	def ensure_bool(self) -> TypeId:
		"""Return a stable Bool TypeId, creating it once."""
		if self._bool_type is None:
			self._bool_type = self.new_scalar("Bool")
		return self._bool_type

	def ensure_unknown(self) -> TypeId:
		"""Return a stable Unknown TypeId, creating it once."""
		if self._unknown_type is None:
			self._unknown_type = self._add(TypeDef(kind=TypeKind.UNKNOWN, name="Unknown"))
		return self._unknown_type

	def ensure_ref(self, inner: TypeId) -> TypeId:
		"""Return a stable shared reference TypeId to `inner`, creating it once."""
		return self._ensure_ref(inner, False)

	def ensure_ref_mut(self, inner: TypeId) -> TypeId:
		"""Return a stable unique reference TypeId to `inner`, creating it once."""
		return self._ensure_ref(inner, True)

	def ensure_array(self, elem: TypeId) -> TypeId:
		"""Return a stable Array<elem> TypeId, creating it once."""
		if elem not in self._array_cache:
			self._array_cache[elem] = self._add(
				TypeDef(kind=TypeKind.ARRAY, name=f"Array<{self.get(elem).name}>", param_types=(elem,)),
				named=False,
			)
		return self._array_cache[elem]

	def _ensure_ref(self, inner: TypeId, is_mut: bool) -> TypeId:
		key = (inner, is_mut)
		if key not in self._ref_cache:
			prefix = "&mut " if is_mut else "&"
			self._ref_cache[key] = self._add(
				TypeDef(
					kind=TypeKind.REF,
					name=f"{prefix}{self.get(inner).name}",
					param_types=(inner,),
					ref_mut=is_mut,
				),
				named=False,
			)
		return self._ref_cache[key]

	def _add(self, td: TypeDef, *, named: bool = True) -> TypeId:
		if named and td.name in self._by_name:
			raise ValueError(f"duplicate type name '{td.name}'")
		ty_id = self._next_id
		self._next_id += 1
		self._defs[ty_id] = td
		if named:
			self._by_name[td.name] = ty_id
		return ty_id

	def get(self, ty: TypeId) -> TypeDef:
		"""Fetch the TypeDef for a given TypeId."""
		return self._defs[ty]

	def lookup(self, name: str) -> Optional[TypeId]:
		"""Return the TypeId registered under `name`, if any."""
		return self._by_name.get(name)

	def __contains__(self, ty: object) -> bool:
		return ty in self._defs

	def is_copy(self, ty: Optional[TypeId]) -> bool:
		"""
		Return True if reading a value of this type never moves it.

		Scalars, Copy structs and references are Copy. Unique references are
		treated as Copy too: the checker tracks ownership of storage, and a
		reference never owns the storage it points to.
		"""
		if ty is None or ty not in self._defs:
			return False
		td = self._defs[ty]
		if td.kind in (TypeKind.SCALAR, TypeKind.REF):
			return True
		if td.kind is TypeKind.STRUCT:
			return td.copy
		return False

	def is_ref(self, ty: Optional[TypeId]) -> bool:
		return ty is not None and ty in self._defs and self._defs[ty].kind is TypeKind.REF

	def carries_ref(self, ty: Optional[TypeId]) -> bool:
		"""Return True if a value of this type may hold a reference."""
		return self._carries_ref(ty, set())

	def _carries_ref(self, ty: Optional[TypeId], seen: set) -> bool:
		if ty is None or ty not in self._defs or ty in seen:
			return False
		seen.add(ty)
		td = self._defs[ty]
		if td.kind is TypeKind.REF:
			return True
		if td.kind in (TypeKind.STRUCT, TypeKind.ARRAY):
			return any(self._carries_ref(p, seen) for p in td.param_types)
		return False

	def field_type(self, ty: Optional[TypeId], name: str) -> Optional[TypeId]:
		if ty is None or ty not in self._defs:
			return None
		td = self._defs[ty]
		if td.kind is not TypeKind.STRUCT or name not in td.field_names:
			return None
		return td.param_types[td.field_names.index(name)]

	def elem_type(self, ty: Optional[TypeId]) -> Optional[TypeId]:
		if ty is None or ty not in self._defs:
			return None
		td = self._defs[ty]
		if td.kind is TypeKind.ARRAY:
			return td.param_types[0]
		return None

	def pointee_type(self, ty: Optional[TypeId]) -> Optional[TypeId]:
		if ty is None or ty not in self._defs:
			return None
		td = self._defs[ty]
		if td.kind is TypeKind.REF:
			return td.param_types[0]
		return None


__all__ = ["TypeId", "TypeKind", "TypeDef", "TypeTable"]
