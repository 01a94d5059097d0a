# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
import logging

import pytest

from borrowck.config import ENV_JOBS, ENV_MAX_ITERATIONS
from borrowck.core.types_core import TypeTable


@pytest.fixture(autouse=True)
def _isolate_checker_env(monkeypatch) -> None:
	"""Keep CI-level BORROWCK_* overrides from leaking into expectations."""
	monkeypatch.delenv(ENV_MAX_ITERATIONS, raising=False)
	monkeypatch.delenv(ENV_JOBS, raising=False)


@pytest.fixture
def types() -> TypeTable:
	"""Type table with the builtin scalars plus an owning `Vec` and a `Pair` struct."""
	table = TypeTable()
	int_ty = table.ensure_int()
	table.ensure_bool()
	vec = table.new_owned("Vec")
	table.new_struct("Pair", {"a": vec, "b": vec})
	table.new_struct("Point", {"x": int_ty, "y": int_ty}, copy=True)
	return table


@pytest.fixture
def debug_logs(caplog):
	caplog.set_level(logging.DEBUG, logger="borrowck")
	return caplog
