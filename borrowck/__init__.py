# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
borrowck: ownership and borrow verification over a typed control-flow IR.

Public surface:
  - verify / verify_program: run the checker (borrowck.engine)
  - Report, ConflictReport, ConflictKind: results
  - CheckerConfig: run options
  - MalformedIRError: raised for IR that breaks its preconditions
  - borrowck.ir: the IR node types; borrowck.ir_text: textual IR front end
"""

from borrowck.config import CheckerConfig
from borrowck.core.diagnostics import ConflictKind, ConflictReport
from borrowck.core.point import ProgramPoint
from borrowck.engine import verify, verify_program
from borrowck.ir_validate import MalformedIRError
from borrowck.report import Report

__all__ = [
	"CheckerConfig",
	"ConflictKind",
	"ConflictReport",
	"MalformedIRError",
	"ProgramPoint",
	"Report",
	"verify",
	"verify_program",
]
