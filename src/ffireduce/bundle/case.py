from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path

from pydantic import BaseModel, ValidationError

from ffireduce.errors import OracleUnusable, ParseError, ReduceError
from ffireduce.model.directives import parse_directives, render_annotation
from ffireduce.model.parse import parse_case
from ffireduce.model.render import render_directives, render_header
from ffireduce.model.types import Model

logger = logging.getLogger(__name__)


class ReproCase(BaseModel):
    """On-disk reproduction case, the ``repro.json`` format."""

    header: str
    config: str
    problem: str | None = None

    def to_model(self) -> Model:
        return parse_case(self.header, self.config)

    @classmethod
    def from_model(cls, model: Model, *, problem: str | None = None) -> ReproCase:
        return cls(
            header=render_header(model),
            config=render_directives(model),
            problem=problem,
        )


def load_case(path: Path) -> ReproCase:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        raise ParseError("reproduction case is empty", source=str(path))
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"invalid JSON: {exc.msg}", line=exc.lineno, source=str(path)) from exc
    try:
        case = ReproCase.model_validate(raw)
    except ValidationError as exc:
        message = exc.errors()[0]["msg"]
        raise ParseError(f"invalid reproduction case: {message}", source=str(path)) from exc
    logger.info("case loaded path=%s header_bytes=%s", path, len(case.header))
    return case


def case_from_files(
    header_path: Path, directives_path: Path | None, *, header: str | None = None
) -> ReproCase:
    """Build a case from a header and an optional directives file.

    An include of the header is added when the directives do not name one.
    """
    if header is None:
        header = header_path.read_text(encoding="utf-8")
    config = directives_path.read_text(encoding="utf-8") if directives_path is not None else ""
    annotations = parse_directives(config)
    if any(item.is_include for item in annotations):
        return ReproCase(header=header, config=config)
    lines = [f'#include "{header_path.name}"']
    lines.extend(render_annotation(item) for item in annotations)
    return ReproCase(header=header, config="\n".join(lines) + "\n")


def preprocess_header(
    header_path: Path, include_dirs: list[Path], *, command: list[str], timeout_s: float
) -> str:
    """Flatten a header and the includes it pulls from ``include_dirs``."""
    argv = [*command, *(f"-I{path}" for path in include_dirs), str(header_path)]
    logger.info("preprocess start header=%s include_dirs=%s", header_path, len(include_dirs))
    try:
        completed = subprocess.run(
            argv, capture_output=True, text=True, timeout=timeout_s, check=False
        )
    except FileNotFoundError as exc:
        raise OracleUnusable(f"preprocessor not found: {argv[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        raise ReduceError(f"preprocessor timed out after {timeout_s}s") from exc
    if completed.returncode != 0:
        detail = completed.stderr.strip().splitlines()[:1]
        raise ReduceError(
            f"preprocessor failed with exit code {completed.returncode}: "
            + (detail[0] if detail else "no output")
        )
    return completed.stdout
