# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Place model: storage locations and paths into them.

This models the "where" of values (locals + projections) so the analysis
passes can track moves/borrows per place. It intentionally carries no policy:
it answers structural questions only.
  * Which root does a place hang off, and what projections lead into it?
  * Do two places possibly name overlapping storage?
  * Is one place a prefix of another?
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Iterable, Optional, Tuple


class IndexKind(Enum):
	"""Coarse-grained index classification to keep Place hashable."""

	ANY = auto()       # Unknown / non-constant index; conservatively overlaps.
	CONST = auto()     # Known constant index.


@dataclass(frozen=True)
class FieldProj:
	"""Field access projection (e.g., `.name`)."""

	name: str


@dataclass(frozen=True)
class IndexProj:
	"""
	Index projection (e.g., `[i]`).

	`value` is only set for CONST indices. `var` names the local holding a
	non-constant index; reading it is a use of that local, but for overlap
	purposes a variable index is still ANY.
	"""

	kind: IndexKind
	value: Optional[int] = None
	var: Optional[str] = None


@dataclass(frozen=True)
class DerefProj:
	"""
	Dereference projection (`*p`).

	We model deref as a projection so the place `*p` is represented as:
	  Place(base=p, projections=(DerefProj(),))
	which keeps `(*p).field` and `(*p)[i]` composable.
	"""
	pass

Projection = FieldProj | IndexProj | DerefProj


class PlaceKind(Enum):
	LOCAL = auto()
	PARAM = auto()
	TEMP = auto()
	RETURN = auto()
	GLOBAL = auto()


@dataclass(frozen=True)
class PlaceBase:
	"""Identity for the root of a Place (locals, params, temporaries, ...)."""

	kind: PlaceKind
	name: str

	@property
	def is_external(self) -> bool:
		"""True when the storage outlives the function frame."""
		return self.kind in (PlaceKind.PARAM, PlaceKind.GLOBAL)


@dataclass(frozen=True)
class Place:
	"""
	A borrowable/moveable storage location.

	`base` carries identity. `projections` capture field/index/deref accesses,
	so `foo.bar[0]` becomes base `foo` with projections `.bar`, `[0]`.
	"""

	base: PlaceBase
	projections: Tuple[Projection, ...] = ()

	def with_projection(self, proj: Projection) -> "Place":
		"""Return a new Place with an additional projection appended."""
		return Place(self.base, self.projections + (proj,))

	def field(self, name: str) -> "Place":
		return self.with_projection(FieldProj(name))

	def index(self, value: int | str | None = None) -> "Place":
		"""`[3]` for ints, `[i]` for a local name, `[_]` for None."""
		if isinstance(value, int):
			return self.with_projection(IndexProj(IndexKind.CONST, value=value))
		return self.with_projection(IndexProj(IndexKind.ANY, var=value))

	def deref(self) -> "Place":
		return self.with_projection(DerefProj())

	@property
	def root(self) -> "Place":
		return Place(self.base)

	@property
	def name(self) -> str:
		return self.base.name

	@property
	def is_root(self) -> bool:
		return not self.projections

	@property
	def has_deref(self) -> bool:
		return any(isinstance(p, DerefProj) for p in self.projections)

	def index_vars(self) -> Iterable[str]:
		"""Locals read to evaluate the index projections of this place."""
		for proj in self.projections:
			if isinstance(proj, IndexProj) and proj.var is not None:
				yield proj.var

	def __str__(self) -> str:
		return render_place(self)


def local(name: str) -> Place:
	return Place(PlaceBase(PlaceKind.LOCAL, name))


def param(name: str) -> Place:
	return Place(PlaceBase(PlaceKind.PARAM, name))


def places_overlap(a: Place, b: Place) -> bool:
	"""
	Return True when two places may refer to overlapping storage.

	This function is the single source of truth for "place overlap" used by
	move tracking, loan conflicts and drop checks.

	Rules:
	- Different bases never overlap.
	- Prefix overlap counts: `x` overlaps `x.field` and `x[0]`.
	- Field projections are disjoint when the field names differ.
	- Index projections:
	  - CONST vs CONST are disjoint when indices differ (`arr[0]` vs `arr[1]`).
	  - ANY overlaps everything (`arr[i]` overlaps `arr[0]` and `arr[j]`).
	- Any projection-kind mismatch at the same depth is treated as overlapping
	  (conservative until we have more precise layout information).
	"""
	if a.base != b.base:
		return False

	ap = a.projections
	bp = b.projections
	n = min(len(ap), len(bp))
	for idx in range(n):
		pa = ap[idx]
		pb = bp[idx]
		if pa == pb:
			continue

		# Field-vs-field: disjoint when names differ.
		if isinstance(pa, FieldProj) and isinstance(pb, FieldProj):
			return False

		# Index-vs-index: disjoint only when both are CONST and values differ.
		if isinstance(pa, IndexProj) and isinstance(pb, IndexProj):
			if pa.kind is IndexKind.CONST and pb.kind is IndexKind.CONST:
				if pa.value is not None and pb.value is not None and pa.value != pb.value:
					return False
			# Otherwise: ANY overlaps, or equal const handled by pa==pb above.
			return True

		return True

	# One place is a prefix of the other (or identical): overlaps by definition.
	return True


def is_prefix(prefix: Place, place: Place) -> bool:
	"""Return True if `prefix` is `place` or an ancestor of it."""
	if prefix.base != place.base:
		return False
	n = len(prefix.projections)
	return place.projections[:n] == prefix.projections


def render_place(place: Place) -> str:
	"""
	Render a place as a path string: `x`, `x.f`, `x[0]`, `x[i]`, `x[_]`, `*r`,
	`(*r).f`.
	"""
	out = place.base.name
	projs = place.projections
	for idx, proj in enumerate(projs):
		if isinstance(proj, DerefProj):
			out = f"*{out}"
			# A following field/index binds tighter than deref.
			if idx + 1 < len(projs):
				out = f"({out})"
		elif isinstance(proj, FieldProj):
			out = f"{out}.{proj.name}"
		elif proj.kind is IndexKind.CONST:
			out = f"{out}[{proj.value}]"
		else:
			out = f"{out}[{proj.var if proj.var is not None else '_'}]"
	return out


__all__ = [
	"IndexKind",
	"FieldProj",
	"IndexProj",
	"DerefProj",
	"Projection",
	"PlaceKind",
	"PlaceBase",
	"Place",
	"local",
	"param",
	"places_overlap",
	"is_prefix",
	"render_place",
]
