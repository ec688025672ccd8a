from __future__ import annotations

import json
import shlex
import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

from ffireduce.cli import app

PIPELINE = """
import pathlib
import sys

header = pathlib.Path(sys.argv[1]).read_text()
if "Bad" in header:
    print("input.h:1:8: error: cannot generate bindings for Bad", file=sys.stderr)
    sys.exit(2)
"""

PASSING = "import sys\nsys.exit(0)\n"

HEADER = "struct Bad {};\nint keep;\nint other;\n"
CONFIG = '#include "input.h"\ngenerate!("Bad")\n'


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in (
        "FFIREDUCE_GEN_CMD",
        "FFIREDUCE_CHECK_CMD",
        "FFIREDUCE_TIMEOUT",
        "FFIREDUCE_JOBS",
        "FFIREDUCE_KEEP_SCRATCH",
        "FFIREDUCE_OUTPUT_DIR",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("FFIREDUCE_SCRATCH_DIR", str(tmp_path / "scratch"))


def _gen_cmd(tmp_path: Path, body: str = PIPELINE) -> str:
    script = tmp_path / "pipeline.py"
    script.write_text(body)
    return " ".join(shlex.quote(part) for part in (sys.executable, str(script), "{header}"))


def _case(tmp_path: Path) -> Path:
    path = tmp_path / "repro.json"
    path.write_text(json.dumps({"header": HEADER, "config": CONFIG}))
    return path


def test_cli_reduce_writes_minimal_case(tmp_path: Path) -> None:
    out = tmp_path / "out"
    runner = CliRunner()
    result = runner.invoke(
        app,
        [
            "reduce",
            str(_case(tmp_path)),
            "--gen-cmd",
            _gen_cmd(tmp_path),
            "--output",
            str(out),
            "--timeout",
            "30",
        ],
    )
    assert result.exit_code == 0, result.stdout
    reduced = json.loads((out / "repro.json").read_text())
    assert reduced["header"] == "struct Bad {};\n"
    assert (out / "report.json").exists()
    assert "Reduction" in result.stdout
    assert list((tmp_path / "scratch").iterdir()) == []


def test_cli_file_builds_case_from_header(tmp_path: Path) -> None:
    header = tmp_path / "input.h"
    header.write_text(HEADER)
    out = tmp_path / "out"
    runner = CliRunner()
    result = runner.invoke(
        app,
        ["file", str(header), "--gen-cmd", _gen_cmd(tmp_path), "--output", str(out), "--archive"],
    )
    assert result.exit_code == 0, result.stdout
    assert (out / "input.h").read_text() == "struct Bad {};\n"
    assert (tmp_path / "out.tar.gz").exists()


def test_cli_check_prints_signature(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(
        app, ["check", str(_case(tmp_path)), "--gen-cmd", _gen_cmd(tmp_path)]
    )
    assert result.exit_code == 0, result.stdout
    assert "Failure reproduces" in result.stdout
    assert "Exit code: 2" in result.stdout


def test_cli_reports_unreproducible_input(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(
        app, ["reduce", str(_case(tmp_path)), "--gen-cmd", _gen_cmd(tmp_path, PASSING)]
    )
    assert result.exit_code == 1
    assert "no failure to reduce" in result.stdout
    assert "Traceback" not in result.stdout


def test_cli_requires_a_pipeline_command(tmp_path: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(app, ["reduce", str(_case(tmp_path))])
    assert result.exit_code == 1
    assert "no pipeline command" in result.stdout


def test_cli_reports_missing_pipeline_binary(tmp_path: Path) -> None:
    runner = CliRunner()
    missing = str(tmp_path / "absent-generator")
    result = runner.invoke(app, ["reduce", str(_case(tmp_path)), "--gen-cmd", missing])
    assert result.exit_code == 1
    assert "not found" in result.stdout


def test_cli_reports_parse_errors(tmp_path: Path) -> None:
    path = tmp_path / "repro.json"
    path.write_text(json.dumps({"header": "struct Broken {", "config": ""}))
    runner = CliRunner()
    result = runner.invoke(
        app, ["reduce", str(path), "--gen-cmd", _gen_cmd(tmp_path)]
    )
    assert result.exit_code == 1
    assert "parse error" in result.stdout
