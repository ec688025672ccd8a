from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import replace

from ffireduce.model.types import DeclKind, Declaration, Model

_CONDITIONAL_RE = re.compile(
    r"^\s*#\s*(if|ifdef|ifndef|elif|elifdef|elifndef|else|endif)\b", re.MULTILINE
)


def link(decls: Sequence[Declaration]) -> tuple[Declaration, ...]:
    """Recompute ``depends_on`` for every declaration.

    D depends on E when D mentions a name E declares. The members of one
    ``#if ... #endif`` group depend on each other so a conditional is only ever
    removed as a whole.
    """
    table: dict[str, set[int]] = {}
    for decl in decls:
        for name in decl.names:
            table.setdefault(name, set()).add(decl.id)
    grouped = _conditional_groups(decls)
    linked: list[Declaration] = []
    for decl in decls:
        deps = set(grouped.get(decl.id, ()))
        for name in decl.mentions:
            deps.update(table.get(name, ()))
        deps.discard(decl.id)
        linked.append(replace(decl, depends_on=frozenset(deps)))
    return tuple(linked)


def relink(model: Model) -> Model:
    return replace(model, declarations=link(model.declarations))


def dependents(model: Model) -> dict[int, set[int]]:
    """Reverse edges over the live declarations: id -> ids that depend on it."""
    live = model.declaration_ids
    reverse: dict[int, set[int]] = {decl.id: set() for decl in model.declarations}
    for decl in model.declarations:
        for dep in decl.depends_on:
            if dep in live:
                reverse[dep].add(decl.id)
    return reverse


def transitive_dependents(reverse: dict[int, set[int]], roots: Iterable[int]) -> set[int]:
    seen: set[int] = set()
    pending = list(roots)
    while pending:
        current = pending.pop()
        if current in seen:
            continue
        seen.add(current)
        pending.extend(reverse.get(current, ()))
    return seen


def _conditional_groups(decls: Sequence[Declaration]) -> dict[int, set[int]]:
    groups: dict[int, set[int]] = {}
    stack: list[list[int]] = []
    for decl in decls:
        if decl.kind is not DeclKind.PREPROCESSOR:
            continue
        match = _CONDITIONAL_RE.search(decl.text)
        if match is None:
            continue
        directive = match.group(1)
        if directive in {"if", "ifdef", "ifndef"}:
            stack.append([decl.id])
        elif directive == "endif":
            if not stack:
                continue
            members = stack.pop()
            members.append(decl.id)
            for member in members:
                groups.setdefault(member, set()).update(members)
        elif stack:
            stack[-1].append(decl.id)
    return groups
