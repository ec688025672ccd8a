from __future__ import annotations

import os
import shlex
import tempfile
from dataclasses import dataclass
from pathlib import Path

_DEFAULT_TIMEOUT_S = 60.0
_DEFAULT_JOBS = 1


@dataclass(frozen=True)
class Paths:
    root: Path
    scratch_root: Path
    output_dir: Path


@dataclass(frozen=True)
class ReduceConfig:
    paths: Paths
    gen_command: tuple[str, ...] = ()
    check_command: tuple[str, ...] = ()
    timeout_s: float = _DEFAULT_TIMEOUT_S
    jobs: int = _DEFAULT_JOBS
    keep_scratch: bool = False
    max_invocations: int | None = None


def default_paths(root: Path | None = None) -> Paths:
    base = root or Path.cwd()
    scratch_env = os.getenv("FFIREDUCE_SCRATCH_DIR", "").strip()
    output_env = os.getenv("FFIREDUCE_OUTPUT_DIR", "").strip()
    scratch_root = Path(scratch_env) if scratch_env else Path(tempfile.gettempdir()) / "ffireduce"
    output_dir = Path(output_env) if output_env else base / "reduced"
    return Paths(root=base, scratch_root=scratch_root, output_dir=output_dir)


def default_config(root: Path | None = None) -> ReduceConfig:
    gen_env = os.getenv("FFIREDUCE_GEN_CMD", "").strip()
    check_env = os.getenv("FFIREDUCE_CHECK_CMD", "").strip()
    return ReduceConfig(
        paths=default_paths(root),
        gen_command=tuple(shlex.split(gen_env)) if gen_env else (),
        check_command=tuple(shlex.split(check_env)) if check_env else (),
        timeout_s=_env_float("FFIREDUCE_TIMEOUT", _DEFAULT_TIMEOUT_S),
        jobs=max(1, _env_int("FFIREDUCE_JOBS", _DEFAULT_JOBS)),
        keep_scratch=_parse_env_flag(os.getenv("FFIREDUCE_KEEP_SCRATCH")) or False,
    )


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _parse_env_flag(value: str | None) -> bool | None:
    if value is None:
        return None
    raw = value.strip().lower()
    if raw == "":
        return None
    if raw in {"0", "false", "no", "off"}:
        return False
    return True
