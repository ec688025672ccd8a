from __future__ import annotations


class ReduceError(Exception):
    """Fatal error that aborts a reduction run."""


class ParseError(ReduceError):
    def __init__(self, message: str, *, line: int | None = None, source: str = "header") -> None:
        self.line = line
        self.source = source
        where = f"{source}:{line}" if line is not None else source
        super().__init__(f"parse error in {where}: {message}")


class OracleUnusable(ReduceError):
    pass


class UnreproducibleInput(ReduceError):
    pass


class TransientFilesystemError(OSError):
    pass
