from __future__ import annotations

from pathlib import PurePosixPath

from ffireduce.model.directives import include_target, render_annotation
from ffireduce.model.types import Model

DEFAULT_HEADER_NAME = "input.h"
HOST_FILE_NAME = "lib.rs"


def render_header(model: Model) -> str:
    """Render the C++ side.

    Consecutive declarations sharing a namespace share one reopened block, so
    any subset of declarations renders as standalone text.
    """
    lines: list[str] = []
    current: tuple[str, ...] = ()
    for decl in sorted(model.declarations, key=lambda item: item.id):
        if decl.namespace != current:
            lines.extend(_close(current))
            lines.extend(_open(decl.namespace))
            current = decl.namespace
        lines.append(decl.text)
    lines.extend(_close(current))
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def render_host(model: Model) -> str:
    directives = [render_annotation(item) for item in model.annotations]
    body = "".join(f"    {line}\n" for line in directives)
    return f"autocxx::include_cpp! {{\n{body}}}\n\nfn main() {{}}\n"


def render_directives(model: Model) -> str:
    return "".join(render_annotation(item) + "\n" for item in model.annotations)


def header_name(model: Model) -> str:
    """Relative path of the rendered header, taken from the first include.

    Absolute or parent-relative targets keep only their file name so the header
    always lands inside the directory it is written to.
    """
    for item in model.annotations:
        target = include_target(item)
        if target:
            return _contained(target)
    return DEFAULT_HEADER_NAME


def _contained(target: str) -> str:
    path = PurePosixPath(target.replace("\\", "/"))
    if path.name in ("", ".", ".."):
        return DEFAULT_HEADER_NAME
    if path.is_absolute() or ".." in path.parts or ":" in path.parts[0]:
        return path.name
    return str(path)


def size_of(model: Model) -> tuple[int, int]:
    rendered = render_header(model) + render_host(model)
    return len(model.declarations), len(rendered.encode("utf-8"))


def _open(namespace: tuple[str, ...]) -> list[str]:
    opened: list[str] = []
    for part in namespace:
        if part.startswith("inline "):
            opened.append(f"inline namespace {part.removeprefix('inline ')} {{")
        else:
            opened.append(f"namespace {part} {{")
    return opened


def _close(namespace: tuple[str, ...]) -> list[str]:
    return ["}" for _part in namespace]
