from __future__ import annotations

import logging
import tarfile
from dataclasses import dataclass
from pathlib import Path

from ffireduce.bundle.case import ReproCase
from ffireduce.bundle.report import ReductionReport
from ffireduce.canonical import model_sha256, pretty_model_text
from ffireduce.model.render import HOST_FILE_NAME, header_name, render_header, render_host
from ffireduce.search.engine import ReductionResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackagedResult:
    output_dir: Path
    case_path: Path
    report_path: Path
    archive_path: Path | None = None


def write_result(
    result: ReductionResult,
    output_dir: Path,
    *,
    problem: str | None = None,
    archive: bool = False,
) -> PackagedResult:
    logger.info("package start output_dir=%s", output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    reduced = result.reduced
    case = ReproCase.from_model(reduced, problem=problem)
    case_path = output_dir / "repro.json"
    case_path.write_text(pretty_model_text(case), encoding="utf-8")
    header_path = output_dir / header_name(reduced)
    header_path.parent.mkdir(parents=True, exist_ok=True)
    header_path.write_text(render_header(reduced), encoding="utf-8")
    (output_dir / HOST_FILE_NAME).write_text(render_host(reduced), encoding="utf-8")
    report = ReductionReport.from_result(result).model_copy(
        update={"case_sha256": model_sha256(case)}
    )
    report_path = output_dir / "report.json"
    report_path.write_text(pretty_model_text(report), encoding="utf-8")
    archive_path = _archive(output_dir) if archive else None
    logger.info("package complete case=%s archive=%s", case_path, archive_path)
    return PackagedResult(
        output_dir=output_dir,
        case_path=case_path,
        report_path=report_path,
        archive_path=archive_path,
    )


def _archive(output_dir: Path) -> Path:
    archive_path = output_dir.with_name(output_dir.name + ".tar.gz")
    with tarfile.open(archive_path, mode="w:gz") as tar:
        for item in sorted(output_dir.rglob("*")):
            if item.is_file():
                tar.add(item, arcname=str(Path(output_dir.name) / item.relative_to(output_dir)))
    return archive_path
