# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Checker configuration.

Library callers build a CheckerConfig directly; the CLI maps its flags onto
one, and CI can override the limits through the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

ENV_MAX_ITERATIONS = "BORROWCK_MAX_ITERATIONS"
ENV_JOBS = "BORROWCK_JOBS"

DEFAULT_MAX_ITERATIONS = 10_000


@dataclass(frozen=True)
class CheckerConfig:
	"""
	Options shared by every verification run.

	- max_iterations: cap on block visits per fixpoint pass. Hitting it yields an
	  AnalysisDidNotConverge report and partial results instead of a hang.
	- lint_dead_code: report unreachable blocks as DeadCode warnings.
	- jobs: worker threads used by verify_program (1 = sequential).
	"""

	max_iterations: int = DEFAULT_MAX_ITERATIONS
	lint_dead_code: bool = True
	jobs: int = 1

	def __post_init__(self) -> None:
		if self.max_iterations < 1:
			raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")
		if self.jobs < 1:
			raise ValueError(f"jobs must be positive, got {self.jobs}")

	@classmethod
	def from_env(cls, env: Optional[Mapping[str, str]] = None, **overrides) -> "CheckerConfig":
		"""
		Build a config from `BORROWCK_*` environment variables.

		Explicit keyword overrides win over the environment; unset variables keep
		the defaults. Malformed numbers raise ValueError.
		"""
		env = os.environ if env is None else env
		values = {}
		raw = env.get(ENV_MAX_ITERATIONS)
		if raw:
			values["max_iterations"] = _parse_int(ENV_MAX_ITERATIONS, raw)
		raw = env.get(ENV_JOBS)
		if raw:
			values["jobs"] = _parse_int(ENV_JOBS, raw)
		values.update({k: v for k, v in overrides.items() if v is not None})
		return cls(**values)

	def with_overrides(self, **overrides) -> "CheckerConfig":
		return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _parse_int(name: str, raw: str) -> int:
	try:
		return int(raw)
	except ValueError:
		raise ValueError(f"{name} must be an integer, got {raw!r}") from None


__all__ = ["CheckerConfig", "DEFAULT_MAX_ITERATIONS", "ENV_MAX_ITERATIONS", "ENV_JOBS"]
