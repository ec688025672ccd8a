from __future__ import annotations

from dataclasses import replace

from ffireduce.model.deps import dependents, transitive_dependents
from ffireduce.model.parse import parse_case, parse_header
from ffireduce.model.types import Model

CHAIN = "struct A { int x; };\nstruct B { A a; };\nstruct C { B b; };\nint unrelated;\n"


def test_mentions_create_dependencies() -> None:
    decls = parse_header(CHAIN)
    assert decls[0].depends_on == frozenset()
    assert decls[1].depends_on == frozenset({0})
    assert decls[2].depends_on == frozenset({1})
    assert decls[3].depends_on == frozenset()


def test_dependents_and_closure() -> None:
    model = Model(declarations=parse_header(CHAIN), annotations=())
    reverse = dependents(model)
    assert reverse[0] == {1}
    assert reverse[1] == {2}
    assert reverse[2] == set()
    assert transitive_dependents(reverse, [0]) == {0, 1, 2}
    assert transitive_dependents(reverse, [3]) == {3}


def test_dependents_ignore_removed_declarations() -> None:
    model = Model(declarations=parse_header(CHAIN), annotations=())
    reverse = dependents(model.without_declarations({1}))
    assert reverse[0] == set()


def test_conditional_group_is_linked() -> None:
    decls = parse_header("#ifdef HAVE_X\nint x;\n#else\nint y;\n#endif\n")
    assert decls[0].depends_on == frozenset({2, 4})
    assert decls[4].depends_on == frozenset({0, 2})
    assert decls[1].depends_on == frozenset()


def test_missing_symbols_and_known_symbols() -> None:
    model = parse_case(
        CHAIN,
        '#include "input.h"\ngenerate!("B")\ngenerate!("FromElsewhere")\n',
    )
    assert model.known_symbols == frozenset({"B"})
    assert model.missing_symbols() == []
    assert model.referenced_declarations() == {1}
    without_b = model.without_declarations({1})
    assert without_b.missing_symbols() == ["B"]


def test_namespace_prefix_resolves() -> None:
    model = parse_case(
        "namespace outer { namespace inner { struct T {}; } }\n",
        'generate!("outer::inner::T")\ngenerate_ns!("outer")\n',
    )
    assert model.resolves("outer::inner::T")
    assert model.resolves("outer")
    assert model.resolves("::outer::inner::T")
    assert not model.resolves("outer::Other")
    assert model.known_symbols == frozenset({"outer::inner::T", "outer"})


def test_key_tracks_edits() -> None:
    model = parse_case(CHAIN, "")
    assert model.key() == parse_case(CHAIN, "").key()
    edited = model.with_declaration(replace(model.declaration(0), text="struct A {};"))
    assert edited.key() != model.key()
    assert model.without_declarations({3}).key() != model.key()
