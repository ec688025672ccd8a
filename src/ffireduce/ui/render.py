from __future__ import annotations

from rich.console import Console
from rich.table import Table

from ffireduce.bundle.report import ReductionReport
from ffireduce.oracle.base import Signature


def render_signature(signature: Signature, console: Console | None = None) -> None:
    console = console or Console()
    returncode = "any non-zero" if signature.returncode is None else str(signature.returncode)
    console.print(f"Exit code: {returncode}")
    console.print(f"Marker: {signature.marker or '-'}")


def render_report(report: ReductionReport, console: Console | None = None) -> None:
    console = console or Console()
    table = Table(title="Reduction")
    table.add_column("Metric")
    table.add_column("Original", justify="right")
    table.add_column("Final", justify="right")
    table.add_row(
        "declarations",
        str(report.original_size.declarations),
        str(report.final_size.declarations),
    )
    table.add_row("bytes", str(report.original_size.bytes), str(report.final_size.bytes))
    console.print(table)
    console.print(
        f"Invocations: {report.invocations}  cache hits: {report.cache_hits}  "
        f"invalid: {report.invalid_candidates}  timeouts: {report.timeouts}"
    )
    console.print(f"Accepted moves: {report.accepted_moves} in {report.elapsed_ms} ms")
    if report.accepted_by_pass:
        passes = Table(title="Accepted by pass")
        passes.add_column("Pass")
        passes.add_column("Moves", justify="right")
        for name, count in sorted(report.accepted_by_pass.items()):
            passes.add_row(name, str(count))
        console.print(passes)
    if report.budget_exhausted:
        console.print("[yellow]Invocation budget exhausted; result may not be minimal[/yellow]")
