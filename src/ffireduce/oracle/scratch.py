from __future__ import annotations

import logging
import shutil
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

from ffireduce.errors import OracleUnusable, TransientFilesystemError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@contextmanager
def scratch_directory(root: Path, *, keep: bool = False, prefix: str = "cand-") -> Iterator[Path]:
    """Scoped scratch directory, removed on every exit path unless ``keep``."""

    def _create() -> Path:
        root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=prefix, dir=root))

    path = retry_once(_create, action="create", target=root)
    try:
        yield path
    finally:
        if keep:
            logger.info("scratch kept path=%s", path)
        else:
            retry_once(lambda: _remove(path), action="cleanup", target=path)


def retry_once(operation: Callable[[], T], *, action: str, target: Path) -> T:
    try:
        return operation()
    except OSError as exc:
        first = TransientFilesystemError(f"scratch {action} failed at {target}: {exc}")
        logger.warning("scratch %s failed path=%s error=%s action=retry", action, target, exc)
    try:
        return operation()
    except OSError as exc:
        raise OracleUnusable(f"scratch {action} failed twice at {target}: {exc}") from first


def _remove(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)
