from __future__ import annotations

import re
import signal
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from ffireduce.errors import UnreproducibleInput
from ffireduce.model.types import Candidate, Model

_ERROR_LINE_RE = re.compile(r"\berror\b\s*[:\[]", re.IGNORECASE)


class Outcome(str, Enum):
    REPRODUCES = "reproduces"
    DOES_NOT_REPRODUCE = "does_not_reproduce"
    INVALID = "invalid"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class RunResult:
    returncode: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    cancelled: bool = False
    elapsed_ms: int = 0

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


class Signature(BaseModel):
    """Marker identifying "the same failure" across candidates.

    ``returncode`` of None accepts any exit status when a marker is set and any
    non-zero status otherwise. ``marker`` must occur in stdout or stderr.
    """

    model_config = ConfigDict(frozen=True)

    returncode: int | None = None
    marker: str | None = None

    def matches(self, result: RunResult) -> bool:
        if result.returncode is None:
            return False
        if self.returncode is not None and result.returncode != self.returncode:
            return False
        if self.returncode is None and self.marker is None and result.returncode == 0:
            return False
        if self.marker is not None and self.marker not in result.output:
            return False
        return True


class Oracle(Protocol):
    invocations: int

    def run(self, model: Model, cancel: threading.Event | None = None) -> RunResult:
        ...

    def evaluate(
        self,
        candidate: Candidate,
        signature: Signature,
        cancel: threading.Event | None = None,
    ) -> Outcome:
        ...


def classify(result: RunResult, signature: Signature) -> Outcome:
    if result.cancelled:
        return Outcome.DOES_NOT_REPRODUCE
    if result.timed_out:
        return Outcome.TIMEOUT
    if result.returncode == -signal.SIGKILL:
        # killed from outside, typically the out-of-memory killer
        return Outcome.DOES_NOT_REPRODUCE
    if signature.matches(result):
        return Outcome.REPRODUCES
    return Outcome.DOES_NOT_REPRODUCE


def capture_signature(result: RunResult, *, problem: str | None = None) -> Signature:
    """Build the signature from the baseline run, or check a user supplied one."""
    if result.timed_out:
        raise UnreproducibleInput("baseline run timed out; raise --timeout or fix the pipeline")
    if problem:
        signature = Signature(marker=problem)
        if not signature.matches(result):
            raise UnreproducibleInput(
                f"baseline run does not show the expected problem {problem!r} "
                f"(exit code {result.returncode})"
            )
        return signature
    if result.returncode is None or result.returncode == 0:
        raise UnreproducibleInput("baseline run succeeded; there is no failure to reduce")
    return Signature(returncode=result.returncode, marker=_first_error_line(result.output))


def _first_error_line(output: str) -> str | None:
    for line in output.splitlines():
        match = _ERROR_LINE_RE.search(line)
        if match is None:
            continue
        # drop file:line:col prefixes, they move as the input shrinks
        marker = line[match.start() :].strip()
        if marker:
            return marker
    return None
