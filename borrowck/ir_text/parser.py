# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Textual IR front end.

Parses the small textual IR described in `grammar.lark` with a lark LALR
parser and builds `borrowck.ir` dataclasses by walking the parse tree. The
front end resolves names only as far as building needs: types must be
declared before use, while roots a body never declares are built as locals
and left for the IR validator to reject.
"""

from __future__ import annotations

import ast
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from lark import Lark, Token, Tree
from lark.exceptions import UnexpectedInput

from borrowck.core.types_core import TypeId, TypeTable
from borrowck.ir import (
	Aggregate,
	Alloc,
	Assign,
	BlockIR,
	Borrow,
	Branch,
	Call,
	Clone,
	Const,
	Copy,
	Drop,
	Eval,
	FunctionIR,
	Goto,
	Literal,
	LoanKind,
	LocalDecl,
	Move,
	MoveOp,
	Operand,
	Program,
	Ref,
	Return,
	StatementOp,
	TerminatorOp,
	Unreachable,
	Use,
	ValueExpr,
)
from borrowck.places import IndexKind, IndexProj, Place, PlaceBase, PlaceKind

_GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	start="start",
	propagate_positions=True,
	maybe_placeholders=False,
)

_BLOCK_LABEL = re.compile(r"bb(\d+)")

DEFAULT_RETURN_NAME = "_ret"


class IRSyntaxError(ValueError):
	"""
	Textual IR that does not parse, or references a name that cannot be built.

	Carries a 1-based line/column when known so drivers can point at the input.
	"""

	def __init__(self, message: str, *, line: Optional[int] = None, column: Optional[int] = None) -> None:
		where = f"{line}:{column}: " if line is not None else ""
		super().__init__(f"{where}{message}")
		self.reason = message
		self.line = line
		self.column = column

	@classmethod
	def from_lark(cls, err: UnexpectedInput) -> "IRSyntaxError":
		first = str(err).strip().splitlines()[0] if str(err).strip() else type(err).__name__
		return cls(first, line=getattr(err, "line", None), column=getattr(err, "column", None))


def parse_program(source: str) -> Program:
	"""Parse textual IR into a Program (types plus functions by name)."""
	try:
		tree = _PARSER.parse(source)
	except UnexpectedInput as err:
		raise IRSyntaxError.from_lark(err) from err
	return _build_program(tree)


def parse_function(source: str) -> Tuple[FunctionIR, TypeTable]:
	"""Parse a source holding exactly one function; returns it with its type table."""
	program = parse_program(source)
	if len(program.functions) != 1:
		raise IRSyntaxError(f"expected exactly one function, found {len(program.functions)}")
	(func,) = program.functions.values()
	return func, program.types


# Program / declarations


def _build_program(tree: Tree) -> Program:
	types = TypeTable()
	types.ensure_int()
	types.ensure_bool()
	functions: Dict[str, FunctionIR] = {}
	for child in tree.children:
		if not isinstance(child, Tree):
			continue
		kind = _name(child)
		if kind in ("owned_type_decl", "scalar_type_decl"):
			name_tok = child.children[0]
			try:
				if kind == "owned_type_decl":
					types.new_owned(name_tok.value)
				else:
					types.new_scalar(name_tok.value)
			except ValueError as err:
				raise _error(str(err), name_tok) from None
		elif kind in ("struct_decl", "copy_struct_decl"):
			_build_struct(child, types, copy=kind == "copy_struct_decl")
		elif kind == "fn_decl":
			func = _build_function(child, types)
			if func.name in functions:
				raise _error(f"duplicate function '{func.name}'", child)
			functions[func.name] = func
	return Program(types=types, functions=functions)


def _build_struct(tree: Tree, types: TypeTable, *, copy: bool) -> None:
	name_tok = tree.children[0]
	fields: Dict[str, TypeId] = {}
	for child in tree.children[1:]:
		if isinstance(child, Tree) and _name(child) == "field_decl":
			fname = child.children[0]
			if fname.value in fields:
				raise _error(f"duplicate field '{fname.value}' in struct '{name_tok.value}'", fname)
			fields[fname.value] = _build_type(child.children[1], types)
	try:
		types.new_struct(name_tok.value, fields, copy=copy)
	except ValueError as err:
		raise _error(str(err), name_tok) from None


def _build_type(tree: Tree, types: TypeTable) -> TypeId:
	kind = _name(tree)
	if kind == "named_type":
		tok = tree.children[0]
		if tok.value == "Unknown":
			return types.ensure_unknown()
		ty = types.lookup(tok.value)
		if ty is None:
			raise _error(f"unknown type '{tok.value}'", tok)
		return ty
	if kind == "ref_type":
		return types.ensure_ref(_build_type(tree.children[0], types))
	if kind == "ref_mut_type":
		return types.ensure_ref_mut(_build_type(tree.children[0], types))
	if kind == "array_type":
		return types.ensure_array(_build_type(tree.children[0], types))
	raise _error(f"unexpected type node '{kind}'", tree)


# Functions


_DECL_KINDS = {
	"let_decl": PlaceKind.LOCAL,
	"temp_decl": PlaceKind.TEMP,
	"global_decl": PlaceKind.GLOBAL,
}


def _build_function(tree: Tree, types: TypeTable) -> FunctionIR:
	children = list(tree.children)
	name_tok = children[0]
	decls: Dict[str, LocalDecl] = {}
	params: List[Place] = []
	ret: Optional[Place] = None
	block_trees: List[Tree] = []

	def declare(kind: PlaceKind, tok: Token, ty_tree: Tree) -> Place:
		if tok.value in decls:
			raise _error(f"'{tok.value}' is declared twice in '{name_tok.value}'", tok)
		base = PlaceBase(kind, tok.value)
		decls[tok.value] = LocalDecl(base, _build_type(ty_tree, types))
		return Place(base)

	for child in children[1:]:
		if not isinstance(child, Tree):
			continue
		kind = _name(child)
		if kind == "param":
			params.append(declare(PlaceKind.PARAM, child.children[0], child.children[1]))
		elif kind == "ret_anon":
			ret = declare(PlaceKind.RETURN, Token("NAME", DEFAULT_RETURN_NAME), child.children[0])
		elif kind == "ret_named":
			ret = declare(PlaceKind.RETURN, child.children[0], child.children[1])
		elif kind in _DECL_KINDS:
			declare(_DECL_KINDS[kind], child.children[0], child.children[1])
		elif kind == "block":
			block_trees.append(child)
	if ret is None:
		base = PlaceBase(PlaceKind.RETURN, DEFAULT_RETURN_NAME)
		if DEFAULT_RETURN_NAME in decls:
			raise _error(f"'{DEFAULT_RETURN_NAME}' is reserved for the return place", name_tok)
		decls[DEFAULT_RETURN_NAME] = LocalDecl(base, types.ensure_int())
		ret = Place(base)

	scope = {name: decl.base for name, decl in decls.items()}
	blocks = [_build_block(bt, idx, scope) for idx, bt in enumerate(block_trees)]
	return FunctionIR(name=name_tok.value, params=params, return_place=ret, locals=decls, blocks=blocks)


def _build_block(tree: Tree, index: int, scope: Dict[str, PlaceBase]) -> BlockIR:
	label = tree.children[0]
	if _block_id(label) != index:
		raise _error(f"expected block label 'bb{index}', got '{label.value}'", label)
	statements: List[StatementOp] = []
	terminator: Optional[TerminatorOp] = None
	for child in tree.children[1:]:
		if not isinstance(child, Tree):
			continue
		kind = _name(child)
		if kind.endswith("_term"):
			terminator = _build_terminator(child, scope)
		else:
			statements.append(_build_stmt(child, scope))
	return BlockIR(statements=statements, terminator=terminator)


def _block_id(tok: Token) -> int:
	m = _BLOCK_LABEL.fullmatch(tok.value)
	if m is None:
		raise _error(f"block labels look like 'bb0', got '{tok.value}'", tok)
	return int(m.group(1))


# Statements


def _build_stmt(tree: Tree, scope: Dict[str, PlaceBase]) -> StatementOp:
	kind = _name(tree)
	if kind == "drop_stmt":
		return Drop(_build_place(tree.children[0], scope))
	if kind == "eval_stmt":
		return Eval(_build_value(tree.children[0], scope))
	if kind != "assign_stmt":
		raise _error(f"unexpected statement node '{kind}'", tree)
	dest = _build_place(tree.children[0], scope)
	rv = tree.children[1]
	rv_kind = _name(rv)
	# `&p` / `move p` on the right of `=` are the dedicated statements.
	if rv_kind == "rv_ref":
		return Borrow(dest, _build_place(rv.children[0], scope), LoanKind.SHARED)
	if rv_kind == "rv_ref_mut":
		return Borrow(dest, _build_place(rv.children[0], scope), LoanKind.UNIQUE)
	if rv_kind == "rv_move":
		return Move(dest, _build_place(rv.children[0], scope))
	return Assign(dest, _build_value(rv, scope))


def _build_value(tree: Tree, scope: Dict[str, PlaceBase]) -> ValueExpr:
	kind = _name(tree)
	if kind == "rv_ref":
		return Use(Ref(_build_place(tree.children[0], scope), LoanKind.SHARED))
	if kind == "rv_ref_mut":
		return Use(Ref(_build_place(tree.children[0], scope), LoanKind.UNIQUE))
	if kind == "rv_move":
		return Use(MoveOp(_build_place(tree.children[0], scope)))
	if kind == "rv_copy":
		return Use(Copy(_build_place(tree.children[0], scope)))
	if kind == "rv_clone":
		return Clone(_build_place(tree.children[0], scope))
	if kind == "rv_const":
		return Const(_literal_value(tree.children[0]))
	if kind == "rv_alloc":
		return Alloc(tree.children[0].value)
	if kind == "rv_call":
		func_tok = tree.children[0]
		args = tuple(_build_operand(c, scope) for c in tree.children[1:] if isinstance(c, Tree))
		return Call(func_tok.value, args)
	if kind == "rv_aggregate":
		type_tok = tree.children[0]
		fields = []
		for c in tree.children[1:]:
			if isinstance(c, Tree) and _name(c) == "field_init":
				fields.append((c.children[0].value, _build_operand(c.children[1], scope)))
		return Aggregate(type_tok.value, tuple(fields))
	raise _error(f"unexpected value node '{kind}'", tree)


def _build_operand(tree: Tree, scope: Dict[str, PlaceBase]) -> Operand:
	kind = _name(tree)
	if kind == "op_literal":
		return Literal(_literal_value(tree.children[0]))
	place = _build_place(tree.children[0], scope)
	if kind == "op_copy":
		return Copy(place)
	if kind == "op_move":
		return MoveOp(place)
	if kind == "op_ref":
		return Ref(place, LoanKind.SHARED)
	if kind == "op_ref_mut":
		return Ref(place, LoanKind.UNIQUE)
	raise _error(f"unexpected operand node '{kind}'", tree)


def _literal_value(tree: Tree):
	kind = _name(tree)
	if kind == "lit_int":
		return int(tree.children[0].value)
	if kind == "lit_true":
		return True
	if kind == "lit_false":
		return False
	if kind == "lit_str":
		return ast.literal_eval(tree.children[0].value)
	raise _error(f"unexpected literal node '{kind}'", tree)


def _build_place(tree: Tree, scope: Dict[str, PlaceBase]) -> Place:
	kind = _name(tree)
	if kind == "place_root":
		tok = tree.children[0]
		# Undeclared roots are left for the validator to report.
		return Place(scope.get(tok.value, PlaceBase(PlaceKind.LOCAL, tok.value)))
	inner = _build_place(tree.children[0], scope)
	if kind == "place_field":
		return inner.field(tree.children[1].value)
	if kind == "place_deref":
		return inner.deref()
	if kind == "place_index_const":
		return inner.with_projection(IndexProj(IndexKind.CONST, value=int(tree.children[1].value)))
	if kind == "place_index_var":
		return inner.index(tree.children[1].value)
	if kind == "place_index_any":
		return inner.index(None)
	raise _error(f"unexpected place node '{kind}'", tree)


def _build_terminator(tree: Tree, scope: Dict[str, PlaceBase]) -> TerminatorOp:
	kind = _name(tree)
	if kind == "goto_term":
		return Goto(_block_id(tree.children[0]))
	if kind == "branch_term":
		cond = _build_operand(tree.children[0], scope)
		return Branch(cond, _block_id(tree.children[1]), _block_id(tree.children[2]))
	if kind == "return_term":
		return Return()
	if kind == "unreachable_term":
		return Unreachable()
	raise _error(f"unexpected terminator node '{kind}'", tree)


# Helpers


def _error(message: str, node: Tree | Token) -> IRSyntaxError:
	if isinstance(node, Token):
		return IRSyntaxError(message, line=node.line, column=node.column)
	meta = getattr(node, "meta", None)
	if meta is not None and not getattr(meta, "empty", True):
		return IRSyntaxError(message, line=meta.line, column=meta.column)
	return IRSyntaxError(message)


def _name(node: Tree | Token) -> str:
	if isinstance(node, Tree):
		data = node.data
		if isinstance(data, Token):
			return data.value
		return data
	if isinstance(node, Token):
		return node.type
	return ""


__all__ = ["IRSyntaxError", "parse_program", "parse_function", "DEFAULT_RETURN_NAME"]
