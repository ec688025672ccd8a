from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from ffireduce.canonical import sha256_canonical, text_digest


class DeclKind(str, Enum):
    INCLUDE = "include"
    PREPROCESSOR = "preprocessor"
    TYPE = "type"
    FUNCTION = "function"
    CONSTANT = "constant"
    OPAQUE = "opaque"


@dataclass(frozen=True)
class Declaration:
    id: int
    kind: DeclKind
    text: str
    namespace: tuple[str, ...] = ()
    names: frozenset[str] = frozenset()
    mentions: frozenset[str] = frozenset()
    depends_on: frozenset[int] = frozenset()

    @property
    def scope(self) -> str:
        return "::".join(part.removeprefix("inline ") for part in self.namespace)

    @property
    def qualified_names(self) -> frozenset[str]:
        if not self.namespace:
            return self.names
        prefix = self.scope
        return frozenset(f"{prefix}::{name}" for name in self.names)

    def digest(self) -> str:
        return text_digest(self.text)


@dataclass(frozen=True)
class Annotation:
    id: int
    name: str
    symbols: tuple[str, ...] = ()
    flags: tuple[str, ...] = ()
    raw: str | None = None

    @property
    def is_include(self) -> bool:
        return self.name == "#include"


@dataclass(frozen=True)
class Model:
    """Immutable snapshot of a reproduction case.

    ``known_symbols`` holds the annotation symbols that resolved against the
    original input. Symbols outside that set come from headers the case does
    not contain and are never treated as dangling.
    """

    declarations: tuple[Declaration, ...]
    annotations: tuple[Annotation, ...]
    known_symbols: frozenset[str] = field(default=frozenset())

    def declaration(self, decl_id: int) -> Declaration:
        for decl in self.declarations:
            if decl.id == decl_id:
                return decl
        raise KeyError(f"no declaration with id {decl_id}")

    @property
    def declaration_ids(self) -> frozenset[int]:
        return frozenset(decl.id for decl in self.declarations)

    def without_declarations(self, decl_ids: set[int] | frozenset[int]) -> Model:
        kept = tuple(decl for decl in self.declarations if decl.id not in decl_ids)
        return replace(self, declarations=kept)

    def without_annotation(self, annotation_id: int) -> Model:
        kept = tuple(item for item in self.annotations if item.id != annotation_id)
        return replace(self, annotations=kept)

    def with_declaration(self, updated: Declaration) -> Model:
        decls = tuple(
            updated if decl.id == updated.id else decl for decl in self.declarations
        )
        return replace(self, declarations=decls)

    def with_annotation(self, updated: Annotation) -> Model:
        items = tuple(
            updated if item.id == updated.id else item for item in self.annotations
        )
        return replace(self, annotations=items)

    def resolves(self, symbol: str) -> bool:
        target = _plain_symbol(symbol)
        for decl in self.declarations:
            if target in decl.names or target in decl.qualified_names:
                return True
            if decl.namespace:
                joined = decl.scope
                if joined == target or joined.startswith(target + "::"):
                    return True
        return False

    def missing_symbols(self) -> list[str]:
        missing: list[str] = []
        for annotation in self.annotations:
            for symbol in annotation.symbols:
                if symbol not in self.known_symbols:
                    continue
                if not self.resolves(symbol):
                    missing.append(symbol)
        return missing

    def referenced_declarations(self) -> set[int]:
        referenced: set[int] = set()
        symbols = {symbol for item in self.annotations for symbol in item.symbols}
        for symbol in symbols:
            target = _plain_symbol(symbol)
            for decl in self.declarations:
                if target in decl.names or target in decl.qualified_names:
                    referenced.add(decl.id)
        return referenced

    def key(self) -> str:
        payload = {
            "decls": [[decl.id, decl.digest()] for decl in sorted(self.declarations, key=_by_id)],
            "annotations": [
                [item.id, list(item.symbols)]
                for item in sorted(self.annotations, key=lambda item: item.id)
            ],
        }
        return sha256_canonical(payload)


def _by_id(decl: Declaration) -> int:
    return decl.id


def _plain_symbol(symbol: str) -> str:
    return symbol.split("<", 1)[0].strip().removeprefix("::")


@dataclass(frozen=True)
class Candidate:
    model: Model
    pass_kind: str
    description: str

    def key(self) -> str:
        return self.model.key()
