from __future__ import annotations

import logging


def configure_logging(level: int = logging.INFO) -> None:
    root = logging.getLogger()
    if root.handlers:
        root.setLevel(level)
        return
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def initialize_runtime(*, verbose: bool = False, logger: logging.Logger | None = None) -> None:
    configure_logging(logging.DEBUG if verbose else logging.INFO)
    logger = logger or logging.getLogger("ffireduce.runtime")
    logger.debug("runtime initialized verbose=%s", verbose)
