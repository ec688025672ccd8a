from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import replace
from enum import Enum

from ffireduce.errors import ParseError
from ffireduce.model.deps import dependents, relink, transitive_dependents
from ffireduce.model.parse import body_span, reparse_declaration, split_members
from ffireduce.model.types import Candidate, DeclKind, Declaration, Model

logger = logging.getLogger(__name__)

_ENUM_RE = re.compile(r"\benum\b")


class PassKind(str, Enum):
    DECLARATION = "declaration"
    SUBTREE = "subtree"
    ANNOTATION = "annotation"
    TOKEN = "token"


PASS_ORDER: tuple[PassKind, ...] = (
    PassKind.DECLARATION,
    PassKind.SUBTREE,
    PassKind.ANNOTATION,
    PassKind.TOKEN,
)


def generate(model: Model, pass_kind: PassKind) -> Iterator[Candidate]:
    """Lazily enumerate single-move simplifications of ``model``.

    Each call starts a fresh sequence, so callers restart a pass simply by
    calling again with the newly accepted model.
    """
    if pass_kind is PassKind.DECLARATION:
        yield from _declaration_moves(model)
    elif pass_kind is PassKind.SUBTREE:
        yield from _subtree_moves(model)
    elif pass_kind is PassKind.ANNOTATION:
        yield from _annotation_moves(model)
    elif pass_kind is PassKind.TOKEN:
        yield from _token_moves(model)
    else:
        raise ValueError(f"unknown pass kind {pass_kind}")


def removable_leaves(model: Model) -> list[int]:
    reverse = dependents(model)
    referenced = model.referenced_declarations()
    return [
        decl.id
        for decl in model.declarations
        if not reverse[decl.id] and decl.id not in referenced
    ]


def chunk_sizes(count: int) -> list[int]:
    sizes: list[int] = []
    size = count // 2
    while size >= 2:
        sizes.append(size)
        size //= 2
    return sizes


def prune_annotations(model: Model) -> Model:
    """Drop annotation symbols that stopped resolving; drop emptied directives."""
    pruned = model
    for item in model.annotations:
        if not item.symbols:
            continue
        kept = tuple(
            symbol
            for symbol in item.symbols
            if symbol not in model.known_symbols or model.resolves(symbol)
        )
        if kept == item.symbols:
            continue
        if kept:
            pruned = pruned.with_annotation(replace(item, symbols=kept))
        else:
            pruned = pruned.without_annotation(item.id)
    return pruned


def _declaration_moves(model: Model) -> Iterator[Candidate]:
    leaves = removable_leaves(model)
    # coarse chunks of independent leaves first, single leaves last
    for size in chunk_sizes(len(leaves)):
        for start in range(0, len(leaves), size):
            chunk = leaves[start : start + size]
            if len(chunk) < 2:
                continue
            yield Candidate(
                model=model.without_declarations(set(chunk)),
                pass_kind=PassKind.DECLARATION.value,
                description=f"remove {len(chunk)} declarations #{chunk[0]}..#{chunk[-1]}",
            )
    for decl_id in leaves:
        decl = model.declaration(decl_id)
        yield Candidate(
            model=model.without_declarations({decl_id}),
            pass_kind=PassKind.DECLARATION.value,
            description=f"remove declaration #{decl_id} {_label(decl)}",
        )


def _subtree_moves(model: Model) -> Iterator[Candidate]:
    reverse = dependents(model)
    referenced = model.referenced_declarations()
    seen: set[frozenset[int]] = set()
    for decl in model.declarations:
        if not reverse[decl.id] and decl.id not in referenced:
            continue
        removed = frozenset(transitive_dependents(reverse, [decl.id]))
        if removed in seen:
            continue
        seen.add(removed)
        yield Candidate(
            model=prune_annotations(model.without_declarations(removed)),
            pass_kind=PassKind.SUBTREE.value,
            description=(
                f"remove subtree of #{decl.id} {_label(decl)} ({len(removed)} declarations)"
            ),
        )


def _annotation_moves(model: Model) -> Iterator[Candidate]:
    for item in model.annotations:
        yield Candidate(
            model=model.without_annotation(item.id),
            pass_kind=PassKind.ANNOTATION.value,
            description=f"drop directive {item.name}",
        )
    for item in model.annotations:
        if len(item.symbols) < 2:
            continue
        for symbol in item.symbols:
            kept = tuple(value for value in item.symbols if value != symbol)
            yield Candidate(
                model=model.with_annotation(replace(item, symbols=kept)),
                pass_kind=PassKind.ANNOTATION.value,
                description=f"drop {symbol!r} from {item.name}",
            )


def _token_moves(model: Model) -> Iterator[Candidate]:
    ordered = sorted(model.declarations, key=lambda decl: (-len(decl.text), decl.id))
    for decl in ordered:
        for text, what in _body_edits(decl):
            if len(text) >= len(decl.text):
                continue
            try:
                updated = reparse_declaration(decl, text)
            except ParseError as exc:
                logger.debug("token edit skipped decl=%s reason=%s", decl.id, exc)
                continue
            yield Candidate(
                model=relink(model.with_declaration(updated)),
                pass_kind=PassKind.TOKEN.value,
                description=f"{what} in #{decl.id} {_label(decl)}",
            )


def _body_edits(decl: Declaration) -> Iterator[tuple[str, str]]:
    if decl.kind in (DeclKind.INCLUDE, DeclKind.PREPROCESSOR, DeclKind.CONSTANT):
        return
    if decl.kind not in (DeclKind.FUNCTION, DeclKind.TYPE, DeclKind.OPAQUE):
        raise ValueError(f"unknown declaration kind {decl.kind}")
    span = body_span(decl.text)
    if span is None:
        return
    start, end = span
    text = decl.text
    inner = text[start + 1 : end - 1]
    if decl.kind is DeclKind.FUNCTION:
        yield text[:start].rstrip() + ";", "drop body"
        if inner.strip():
            yield text[: start + 1] + text[end - 1 :], "empty body"
        return
    separator = "," if _ENUM_RE.search(text[:start]) else ";"
    members = split_members(inner, separator=separator)
    for member_start, member_end in reversed(members):
        new_inner = inner[:member_start] + inner[member_end:]
        if not new_inner.strip():
            new_inner = ""
        yield text[: start + 1] + new_inner + text[end - 1 :], "drop member"


def _label(decl: Declaration) -> str:
    names = ",".join(sorted(decl.names)[:3])
    return f"{decl.kind.value}({names})" if names else decl.kind.value
