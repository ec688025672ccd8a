from __future__ import annotations

import contextlib
import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

from ffireduce.errors import OracleUnusable
from ffireduce.model.render import HOST_FILE_NAME, header_name, render_header, render_host
from ffireduce.model.types import Candidate, Model
from ffireduce.oracle.base import Outcome, RunResult, Signature, classify
from ffireduce.oracle.scratch import scratch_directory

logger = logging.getLogger(__name__)

SCRATCH_MARKER = "<scratch>"


class OracleInvoker:
    """Runs the external generator+compiler pipeline against one rendered model.

    ``command`` is an argv list; ``{dir}``, ``{header}`` and ``{host}`` are
    replaced by the scratch directory and the paths of the rendered files. The
    optional ``check_command`` runs first and a failure there marks the
    candidate invalid without running the pipeline.
    """

    def __init__(
        self,
        command: Sequence[str],
        *,
        timeout_s: float,
        scratch_root: Path,
        keep_scratch: bool = False,
        check_command: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        poll_interval_s: float = 0.05,
    ) -> None:
        if not command:
            raise OracleUnusable("no generator command configured")
        if timeout_s <= 0:
            raise ValueError("timeout must be positive")
        self.command = _absolute_program(command)
        self.check_command = _absolute_program(check_command)
        self.timeout_s = timeout_s
        self.scratch_root = scratch_root
        self.keep_scratch = keep_scratch
        self.env = dict(env or {})
        self.poll_interval_s = poll_interval_s
        self.invocations = 0
        self.check_invocations = 0
        self._lock = threading.Lock()

    def ensure_usable(self) -> None:
        for argv in (self.command, self.check_command):
            if argv:
                _resolve_executable(argv[0])

    def run(self, model: Model, cancel: threading.Event | None = None) -> RunResult:
        with scratch_directory(self.scratch_root, keep=self.keep_scratch) as workdir:
            try:
                paths = self.materialize(model, workdir)
            except OSError as exc:
                raise OracleUnusable(f"cannot write candidate files: {exc}") from exc
            self._count(check=False)
            return self._execute(self._argv(self.command, paths), workdir, cancel)

    def evaluate(
        self,
        candidate: Candidate,
        signature: Signature,
        cancel: threading.Event | None = None,
    ) -> Outcome:
        missing = candidate.model.missing_symbols()
        if missing:
            logger.debug(
                "candidate invalid move=%s missing=%s", candidate.description, ",".join(missing)
            )
            return Outcome.INVALID
        with scratch_directory(self.scratch_root, keep=self.keep_scratch) as workdir:
            try:
                paths = self.materialize(candidate.model, workdir)
            except OSError as exc:
                logger.warning(
                    "materialize failed move=%s error=%s", candidate.description, exc
                )
                return Outcome.DOES_NOT_REPRODUCE
            if self.check_command:
                self._count(check=True)
                check = self._execute(self._argv(self.check_command, paths), workdir, cancel)
                if check.cancelled:
                    return Outcome.DOES_NOT_REPRODUCE
                if check.timed_out:
                    logger.warning("check timed out move=%s", candidate.description)
                    return Outcome.TIMEOUT
                if check.returncode != 0:
                    logger.debug("candidate rejected by check move=%s", candidate.description)
                    return Outcome.INVALID
            self._count(check=False)
            result = self._execute(self._argv(self.command, paths), workdir, cancel)
        if result.timed_out:
            logger.warning(
                "oracle timeout move=%s timeout_s=%s", candidate.description, self.timeout_s
            )
        return classify(result, signature)

    def materialize(self, model: Model, workdir: Path) -> dict[str, Path]:
        header_path = workdir / header_name(model)
        header_path.parent.mkdir(parents=True, exist_ok=True)
        header_path.write_text(render_header(model), encoding="utf-8")
        host_path = workdir / HOST_FILE_NAME
        host_path.write_text(render_host(model), encoding="utf-8")
        return {"dir": workdir, "header": header_path, "host": host_path}

    def _count(self, *, check: bool) -> None:
        with self._lock:
            if check:
                self.check_invocations += 1
            else:
                self.invocations += 1

    def _argv(self, template: Sequence[str], paths: Mapping[str, Path]) -> list[str]:
        argv: list[str] = []
        for arg in template:
            for key, value in paths.items():
                arg = arg.replace("{" + key + "}", str(value))
            argv.append(arg)
        return argv

    def _execute(
        self, argv: list[str], workdir: Path, cancel: threading.Event | None
    ) -> RunResult:
        env = dict(os.environ)
        env.update(self.env)
        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                argv,
                cwd=workdir,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                env=env,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise OracleUnusable(f"pipeline binary not found: {argv[0]}") from exc
        except PermissionError as exc:
            raise OracleUnusable(f"pipeline binary not executable: {argv[0]}") from exc
        timed_out = False
        cancelled = False
        stdout = ""
        stderr = ""
        try:
            deadline = start + self.timeout_s
            while True:
                if cancel is not None and cancel.is_set():
                    cancelled = True
                    break
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    timed_out = True
                    break
                try:
                    stdout, stderr = proc.communicate(
                        timeout=min(self.poll_interval_s, remaining)
                    )
                    break
                except subprocess.TimeoutExpired:
                    continue
        finally:
            if proc.returncode is None:
                _kill_group(proc)
                stdout, stderr = proc.communicate()
        elapsed_ms = int((time.monotonic() - start) * 1000)
        marker = str(workdir)
        return RunResult(
            returncode=None if (timed_out or cancelled) else proc.returncode,
            stdout=stdout.replace(marker, SCRATCH_MARKER),
            stderr=stderr.replace(marker, SCRATCH_MARKER),
            timed_out=timed_out,
            cancelled=cancelled,
            elapsed_ms=elapsed_ms,
        )


def _absolute_program(argv: Sequence[str]) -> tuple[str, ...]:
    # the pipeline runs with the scratch directory as cwd
    if not argv:
        return ()
    program = argv[0]
    if os.sep in program and not os.path.isabs(program):
        program = str(Path(program).resolve())
    return (program, *argv[1:])


def _resolve_executable(program: str) -> str:
    if os.sep in program or (os.altsep and os.altsep in program):
        path = Path(program)
        if not path.exists():
            raise OracleUnusable(f"pipeline binary not found: {program}")
        if not os.access(path, os.X_OK):
            raise OracleUnusable(f"pipeline binary not executable: {program}")
        return str(path)
    found = shutil.which(program)
    if found is None:
        raise OracleUnusable(f"pipeline binary not found on PATH: {program}")
    return found


def _kill_group(proc: subprocess.Popen[str]) -> None:
    with contextlib.suppress(ProcessLookupError, PermissionError):
        os.killpg(proc.pid, signal.SIGKILL)
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
