# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Program point representation used by every analysis pass and by diagnostics.

A point is a (block, stmt) pair. The terminator of a block with `n` statements
lives at stmt index `n`, so every instruction of a function has exactly one
point. Points sort lexicographically, which is the order diagnostics are
reported in.
"""

from __future__ import annotations

from typing import NamedTuple


class ProgramPoint(NamedTuple):
	"""A (basic-block id, statement index) pair."""

	block: int
	stmt: int

	def __str__(self) -> str:
		return f"bb{self.block}[{self.stmt}]"

	def to_json(self) -> list[int]:
		return [self.block, self.stmt]


__all__ = ["ProgramPoint"]
