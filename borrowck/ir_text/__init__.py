# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Textual IR front end (lark grammar + tree builder).

Handy for tests, fixtures and the command-line driver; library callers with
their own compiler front end build `borrowck.ir` nodes directly instead.
"""

from .parser import DEFAULT_RETURN_NAME, IRSyntaxError, parse_function, parse_program

__all__ = ["DEFAULT_RETURN_NAME", "IRSyntaxError", "parse_function", "parse_program"]
