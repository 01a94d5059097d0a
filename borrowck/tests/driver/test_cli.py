# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Command-line driver: exit codes, JSON shape and failure phases."""

import json

from borrowck.cli import EXIT_BAD_INPUT, EXIT_CONFLICTS, EXIT_OK, main
from borrowck.config import ENV_MAX_ITERATIONS

SOURCE = """
type Vec = owned;

fn clean(x: Vec) {
    let r: &Vec;
    bb0: {
        r = &x;
        eval call use(copy r);
        eval call push(&mut x);
        return;
    }
}

fn aliasing() {
    let v: Vec;
    let first: &Vec;
    bb0: {
        v = alloc Vec;
        first = &v;
        eval call push(&mut v);
        eval call println(copy first);
        return;
    }
}
"""

LOOP = """
type Vec = owned;

fn spin(x: Vec, c: Bool) {
    let y: Vec;
    bb0: { goto bb1; }
    bb1: { branch copy c, bb2, bb3; }
    bb2: { y = move x; goto bb1; }
    bb3: { return; }
}
"""


def _write(tmp_path, text, name="input.bir"):
	path = tmp_path / name
	path.write_text(text, encoding="utf-8")
	return path


def _run_json(capsys, *argv):
	code = main([*map(str, argv), "--json"])
	return code, json.loads(capsys.readouterr().out)


def test_conflicts_exit_one_with_per_function_reports(tmp_path, capsys):
	code, payload = _run_json(capsys, _write(tmp_path, SOURCE))
	assert code == EXIT_CONFLICTS
	assert payload["exit_code"] == EXIT_CONFLICTS
	assert sorted(payload["functions"]) == ["aliasing", "clean"]
	assert payload["functions"]["clean"]["ok"] is True
	(conflict,) = payload["functions"]["aliasing"]["conflicts"]
	assert conflict["kind"] == "AliasingConflict"
	assert conflict["point"] == [0, 2]
	assert conflict["place"] == "v"


def test_function_filter(tmp_path, capsys):
	code, payload = _run_json(capsys, _write(tmp_path, SOURCE), "--function", "clean")
	assert code == EXIT_OK
	assert list(payload["functions"]) == ["clean"]


def test_unknown_function_is_a_driver_error(tmp_path, capsys):
	code, payload = _run_json(capsys, _write(tmp_path, SOURCE), "--function", "nope")
	assert code == EXIT_BAD_INPUT
	(diag,) = payload["diagnostics"]
	assert diag["phase"] == "driver"
	assert "nope" in diag["message"]


def test_text_output_goes_to_stderr(tmp_path, capsys):
	path = _write(tmp_path, SOURCE)
	assert main([str(path)]) == EXIT_CONFLICTS
	captured = capsys.readouterr()
	assert captured.out == ""
	assert f"{path}:aliasing:bb0[2]: error: AliasingConflict:" in captured.err


def test_parse_error(tmp_path, capsys):
	code, payload = _run_json(capsys, _write(tmp_path, "fn f() {\n  bb0: { return }\n}\n"))
	assert code == EXIT_BAD_INPUT
	(diag,) = payload["diagnostics"]
	assert diag["phase"] == "parser"
	assert diag["line"] == 2


def test_missing_file(tmp_path, capsys):
	code, payload = _run_json(capsys, tmp_path / "missing.bir")
	assert code == EXIT_BAD_INPUT
	assert payload["diagnostics"][0]["phase"] == "io"


def test_malformed_ir_names_the_function(tmp_path, capsys):
	code, payload = _run_json(capsys, _write(tmp_path, "fn broken() { bb0: { goto bb4; } }"))
	assert code == EXIT_BAD_INPUT
	(diag,) = payload["diagnostics"]
	assert diag["phase"] == "validate"
	assert diag["function"] == "broken"
	assert diag["point"] == [0, 0]


def test_iteration_cap_flag(tmp_path, capsys):
	path = _write(tmp_path, LOOP)
	code, payload = _run_json(capsys, path, "--max-iterations", "1")
	assert code == EXIT_CONFLICTS
	kinds = [c["kind"] for c in payload["functions"]["spin"]["conflicts"]]
	assert "AnalysisDidNotConverge" in kinds


def test_bad_environment_override(tmp_path, capsys, monkeypatch):
	monkeypatch.setenv(ENV_MAX_ITERATIONS, "lots")
	code, payload = _run_json(capsys, _write(tmp_path, SOURCE))
	assert code == EXIT_BAD_INPUT
	assert payload["diagnostics"][0]["phase"] == "config"


def test_dead_code_lint_can_be_disabled(tmp_path, capsys):
	path = _write(tmp_path, "fn f() { bb0: { return; } bb1: { return; } }")
	code, payload = _run_json(capsys, path)
	assert code == EXIT_OK
	assert [lint["kind"] for lint in payload["functions"]["f"]["lints"]] == ["DeadCode"]
	code, payload = _run_json(capsys, path, "--no-dead-code-lint")
	assert payload["functions"]["f"]["lints"] == []


def test_dump_cfg(tmp_path, capsys):
	code = main([str(_write(tmp_path, LOOP)), "--dump-cfg"])
	assert code == EXIT_OK
	cfg = json.loads(capsys.readouterr().out)["functions"]["spin"]
	assert cfg["entry"] == 0
	assert cfg["back_edges"] == [[2, 1]]


def test_parallel_jobs(tmp_path, capsys):
	code, payload = _run_json(capsys, _write(tmp_path, SOURCE), "--jobs", "2")
	assert code == EXIT_CONFLICTS
	assert payload["functions"]["clean"]["ok"] is True
