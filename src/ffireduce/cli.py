from __future__ import annotations

import logging
import shlex
from dataclasses import replace
from pathlib import Path

import typer
from rich.console import Console

from ffireduce.bundle.case import ReproCase, case_from_files, load_case, preprocess_header
from ffireduce.bundle.package import write_result
from ffireduce.bundle.report import ReductionReport
from ffireduce.config import ReduceConfig, default_config
from ffireduce.errors import OracleUnusable, ReduceError
from ffireduce.model.types import Candidate
from ffireduce.oracle.base import capture_signature
from ffireduce.oracle.invoker import OracleInvoker
from ffireduce.runtime import initialize_runtime
from ffireduce.search.engine import ReductionEngine
from ffireduce.ui.render import render_report, render_signature

app = typer.Typer(help="Reduce failing C++/Rust binding-generator inputs to a minimal case")

console = Console()
logger = logging.getLogger(__name__)

CASE_ARGUMENT = typer.Argument(..., exists=True, dir_okay=False, help="repro.json case")
HEADER_ARGUMENT = typer.Argument(..., exists=True, dir_okay=False, help="C++ header")
DIRECTIVES_OPTION = typer.Option(None, "--directives", "-d", exists=True, dir_okay=False)
INCLUDE_DIR_OPTION = typer.Option([], "--include-dir", "-I", file_okay=False)
PREPROCESS_CMD_OPTION = typer.Option("c++ -E -P", "--preprocess-cmd")
GEN_CMD_OPTION = typer.Option(None, "--gen-cmd", help="pipeline argv; {dir} {header} {host}")
CHECK_CMD_OPTION = typer.Option(None, "--check-cmd", help="validity pre-check argv")
TIMEOUT_OPTION = typer.Option(None, "--timeout", min=0.001, help="seconds per invocation")
JOBS_OPTION = typer.Option(None, "--jobs", "-j", min=1)
PROBLEM_OPTION = typer.Option(None, "--problem", help="text the failure output must contain")
OUTPUT_OPTION = typer.Option(None, "--output", "-o", file_okay=False)
ARCHIVE_OPTION = typer.Option(False, "--archive")
KEEP_SCRATCH_OPTION = typer.Option(False, "--keep-scratch")
MAX_INVOCATIONS_OPTION = typer.Option(None, "--max-invocations", min=1)
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v")


def _build_config(
    *,
    gen_cmd: str | None,
    check_cmd: str | None,
    timeout: float | None,
    jobs: int | None,
    output: Path | None,
    keep_scratch: bool,
    max_invocations: int | None,
) -> ReduceConfig:
    config = default_config()
    paths = config.paths if output is None else replace(config.paths, output_dir=output)
    config = replace(
        config,
        paths=paths,
        gen_command=tuple(shlex.split(gen_cmd)) if gen_cmd else config.gen_command,
        check_command=tuple(shlex.split(check_cmd)) if check_cmd else config.check_command,
        timeout_s=timeout if timeout is not None else config.timeout_s,
        jobs=jobs if jobs is not None else config.jobs,
        keep_scratch=keep_scratch or config.keep_scratch,
        max_invocations=max_invocations,
    )
    if not config.gen_command:
        raise OracleUnusable("no pipeline command; pass --gen-cmd or set FFIREDUCE_GEN_CMD")
    return config


def _invoker(config: ReduceConfig) -> OracleInvoker:
    invoker = OracleInvoker(
        config.gen_command,
        timeout_s=config.timeout_s,
        scratch_root=config.paths.scratch_root,
        keep_scratch=config.keep_scratch,
        check_command=config.check_command,
    )
    invoker.ensure_usable()
    return invoker


def _log_accept(candidate: Candidate, size: tuple[int, int]) -> None:
    console.print(
        f"[green]accepted[/green] {candidate.description} -> {size[0]} decls, {size[1]} bytes"
    )


def _reduce_case(
    case: ReproCase, config: ReduceConfig, *, problem: str | None, archive: bool
) -> None:
    problem = problem or case.problem
    model = case.to_model()
    invoker = _invoker(config)
    engine = ReductionEngine(
        model,
        invoker,
        problem=problem,
        jobs=config.jobs,
        max_invocations=config.max_invocations,
        on_accept=_log_accept,
    )
    result = engine.run()
    packaged = write_result(result, config.paths.output_dir, problem=problem, archive=archive)
    render_report(ReductionReport.from_result(result), console)
    if not result.history:
        console.print("Input is already minimal")
    console.print(f"Reduced case: {packaged.case_path}")
    if packaged.archive_path is not None:
        console.print(f"Archive: {packaged.archive_path}")


@app.command("reduce")
def reduce_command(
    case_path: Path = CASE_ARGUMENT,
    gen_cmd: str | None = GEN_CMD_OPTION,
    check_cmd: str | None = CHECK_CMD_OPTION,
    timeout: float | None = TIMEOUT_OPTION,
    jobs: int | None = JOBS_OPTION,
    problem: str | None = PROBLEM_OPTION,
    output: Path | None = OUTPUT_OPTION,
    archive: bool = ARCHIVE_OPTION,
    keep_scratch: bool = KEEP_SCRATCH_OPTION,
    max_invocations: int | None = MAX_INVOCATIONS_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    initialize_runtime(verbose=verbose, logger=logger)
    logger.info("reduce start case=%s", case_path)
    try:
        config = _build_config(
            gen_cmd=gen_cmd,
            check_cmd=check_cmd,
            timeout=timeout,
            jobs=jobs,
            output=output,
            keep_scratch=keep_scratch,
            max_invocations=max_invocations,
        )
        _reduce_case(load_case(case_path), config, problem=problem, archive=archive)
    except ReduceError as exc:
        console.print(str(exc), style="red", markup=False)
        raise typer.Exit(code=1) from exc
    logger.info("reduce complete case=%s", case_path)


@app.command("file")
def file_command(
    header_path: Path = HEADER_ARGUMENT,
    directives: Path | None = DIRECTIVES_OPTION,
    include_dir: list[Path] = INCLUDE_DIR_OPTION,
    preprocess_cmd: str = PREPROCESS_CMD_OPTION,
    gen_cmd: str | None = GEN_CMD_OPTION,
    check_cmd: str | None = CHECK_CMD_OPTION,
    timeout: float | None = TIMEOUT_OPTION,
    jobs: int | None = JOBS_OPTION,
    problem: str | None = PROBLEM_OPTION,
    output: Path | None = OUTPUT_OPTION,
    archive: bool = ARCHIVE_OPTION,
    keep_scratch: bool = KEEP_SCRATCH_OPTION,
    max_invocations: int | None = MAX_INVOCATIONS_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    initialize_runtime(verbose=verbose, logger=logger)
    logger.info("file reduce start header=%s directives=%s", header_path, directives)
    try:
        config = _build_config(
            gen_cmd=gen_cmd,
            check_cmd=check_cmd,
            timeout=timeout,
            jobs=jobs,
            output=output,
            keep_scratch=keep_scratch,
            max_invocations=max_invocations,
        )
        header = None
        if include_dir:
            header = preprocess_header(
                header_path,
                include_dir,
                command=shlex.split(preprocess_cmd),
                timeout_s=config.timeout_s,
            )
        case = case_from_files(header_path, directives, header=header)
        _reduce_case(case, config, problem=problem, archive=archive)
    except ReduceError as exc:
        console.print(str(exc), style="red", markup=False)
        raise typer.Exit(code=1) from exc
    logger.info("file reduce complete header=%s", header_path)


@app.command("check")
def check_command(
    case_path: Path = CASE_ARGUMENT,
    gen_cmd: str | None = GEN_CMD_OPTION,
    timeout: float | None = TIMEOUT_OPTION,
    problem: str | None = PROBLEM_OPTION,
    keep_scratch: bool = KEEP_SCRATCH_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    initialize_runtime(verbose=verbose, logger=logger)
    logger.info("check start case=%s", case_path)
    try:
        config = _build_config(
            gen_cmd=gen_cmd,
            check_cmd=None,
            timeout=timeout,
            jobs=None,
            output=None,
            keep_scratch=keep_scratch,
            max_invocations=None,
        )
        case = load_case(case_path)
        invoker = _invoker(config)
        result = invoker.run(case.to_model())
        signature = capture_signature(result, problem=problem or case.problem)
    except ReduceError as exc:
        console.print(str(exc), style="red", markup=False)
        raise typer.Exit(code=1) from exc
    logger.info("check complete returncode=%s", result.returncode)
    console.print("Failure reproduces")
    render_signature(signature, console)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
