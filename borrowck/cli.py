# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Command-line driver: `python -m borrowck FILE`.

Parses a textual IR file, verifies every function (or the ones selected with
--function) and reports findings. Exit codes:

  0  every function verified
  1  at least one conflict (or an analysis that did not converge)
  2  the input could not be checked: unreadable, unparsable or malformed IR
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List

from borrowck.cfg import build_cfg
from borrowck.config import CheckerConfig
from borrowck.engine import verify_program
from borrowck.ir import Program
from borrowck.ir_text import IRSyntaxError, parse_program
from borrowck.ir_validate import MalformedIRError, validate_function
from borrowck.report import Report

EXIT_OK = 0
EXIT_CONFLICTS = 1
EXIT_BAD_INPUT = 2


def _diag_to_json(message: str, phase: str, source: Path, *, line=None, column=None, function=None) -> dict:
	"""Render an input-level error to a structured JSON-friendly dict."""
	return {
		"phase": phase,
		"message": message,
		"severity": "error",
		"file": str(source),
		"function": function,
		"line": line,
		"column": column,
	}


def _fail(args: argparse.Namespace, diag: dict) -> int:
	if args.json:
		print(json.dumps({"exit_code": EXIT_BAD_INPUT, "diagnostics": [diag]}, sort_keys=True))
	else:
		line = diag.get("line")
		loc = f"{line}:{diag.get('column')}" if line is not None else "?:?"
		print(f"{diag['file']}:{loc}: error: {diag['message']}", file=sys.stderr)
	return EXIT_BAD_INPUT


def _build_arg_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(prog="borrowck", description="Ownership and borrow verification for textual IR")
	parser.add_argument("source", type=Path, help="Path to a textual IR file")
	parser.add_argument("--json", action="store_true", help="Emit structured reports as JSON on stdout")
	parser.add_argument(
		"--function",
		dest="functions",
		action="append",
		metavar="NAME",
		help="Only verify this function (repeatable)",
	)
	parser.add_argument("--max-iterations", type=int, default=None, help="Cap on block visits per fixpoint pass")
	parser.add_argument("--jobs", type=int, default=None, help="Verify functions on this many threads")
	parser.add_argument(
		"--no-dead-code-lint",
		action="store_true",
		help="Do not report unreachable blocks",
	)
	parser.add_argument("--dump-cfg", action="store_true", help="Print the CFG of each function as JSON and exit")
	parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (repeat for debug)")
	return parser


def main(argv: List[str] | None = None) -> int:
	"""
	Parse, verify and report.

	With --json, prints `{"exit_code": .., "functions": {name: report}}` with
	sorted keys; otherwise prints one line per finding to stderr.
	"""
	args = _build_arg_parser().parse_args(argv)
	level = logging.WARNING if args.verbose == 0 else logging.INFO if args.verbose == 1 else logging.DEBUG
	logging.basicConfig(level=level, format="%(name)s: %(levelname)s: %(message)s", stream=sys.stderr)
	source: Path = args.source

	try:
		config = CheckerConfig.from_env(
			max_iterations=args.max_iterations,
			jobs=args.jobs,
			lint_dead_code=False if args.no_dead_code_lint else None,
		)
	except ValueError as err:
		return _fail(args, _diag_to_json(str(err), "config", source))

	try:
		text = source.read_text(encoding="utf-8")
	except OSError as err:
		return _fail(args, _diag_to_json(f"cannot read input: {err.strerror or err}", "io", source))

	try:
		program = parse_program(text)
	except IRSyntaxError as err:
		return _fail(args, _diag_to_json(err.reason, "parser", source, line=err.line, column=err.column))

	if args.functions:
		missing = [name for name in args.functions if name not in program.functions]
		if missing:
			return _fail(args, _diag_to_json(f"no function named '{missing[0]}'", "driver", source))
		program = Program(types=program.types, functions={n: program.functions[n] for n in args.functions})

	if args.dump_cfg:
		cfgs: Dict[str, dict] = {}
		for name in sorted(program.functions):
			func = program.functions[name]
			try:
				validate_function(func, program.types)
			except MalformedIRError as err:
				return _fail(args, _malformed_diag(err, source))
			cfgs[name] = build_cfg(func).to_dict()
		print(json.dumps({"functions": cfgs}, sort_keys=True, indent=2))
		return EXIT_OK

	try:
		reports = verify_program(program, config=config)
	except MalformedIRError as err:
		return _fail(args, _malformed_diag(err, source))

	exit_code = EXIT_OK if all(r.ok for r in reports.values()) else EXIT_CONFLICTS
	if args.json:
		payload = {"exit_code": exit_code, "functions": {name: r.to_dict() for name, r in reports.items()}}
		print(json.dumps(payload, sort_keys=True, indent=2))
	else:
		_print_text(source, reports)
	return exit_code


def _malformed_diag(err: MalformedIRError, source: Path) -> dict:
	diag = _diag_to_json(err.reason, "validate", source, function=err.function)
	if err.point is not None:
		diag["point"] = err.point.to_json()
	return diag


def _print_text(source: Path, reports: Dict[str, Report]) -> None:
	for report in reports.values():
		text = report.render_text(str(source))
		if text:
			print(text, file=sys.stderr)


__all__ = ["main", "EXIT_OK", "EXIT_CONFLICTS", "EXIT_BAD_INPUT"]
