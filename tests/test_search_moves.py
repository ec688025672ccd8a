from __future__ import annotations

import pytest

from ffireduce.model.parse import parse_case
from ffireduce.search.moves import (
    PASS_ORDER,
    PassKind,
    chunk_sizes,
    generate,
    prune_annotations,
    removable_leaves,
)

CHAIN = "struct A { int x; };\nstruct B { A a; };\nstruct C { B b; };\nint unrelated;\n"


def test_pass_order_is_coarse_to_fine() -> None:
    assert PASS_ORDER == (
        PassKind.DECLARATION,
        PassKind.SUBTREE,
        PassKind.ANNOTATION,
        PassKind.TOKEN,
    )


def test_chunk_sizes_halve() -> None:
    assert chunk_sizes(10) == [5, 2]
    assert chunk_sizes(4) == [2]
    assert chunk_sizes(3) == []


def test_removable_leaves_skip_dependencies_and_referenced() -> None:
    model = parse_case(CHAIN, "")
    assert removable_leaves(model) == [2, 3]
    referenced = parse_case(CHAIN, 'generate!("unrelated")\n')
    assert removable_leaves(referenced) == [2]


def test_declaration_pass_tries_chunks_before_single_leaves() -> None:
    header = "".join(f"int v{idx};\n" for idx in range(8))
    candidates = list(generate(parse_case(header, ""), PassKind.DECLARATION))
    removed = [8 - len(candidate.model.declarations) for candidate in candidates]
    assert removed == [4, 4, 2, 2, 2, 2] + [1] * 8
    assert all(candidate.pass_kind == "declaration" for candidate in candidates)


def test_declaration_pass_never_breaks_dependencies() -> None:
    model = parse_case(CHAIN, "")
    for candidate in generate(model, PassKind.DECLARATION):
        live = candidate.model.declaration_ids
        for decl in candidate.model.declarations:
            assert decl.depends_on <= live


def test_subtree_pass_removes_dependents() -> None:
    model = parse_case(CHAIN, 'generate!("C")\n')
    candidates = list(generate(model, PassKind.SUBTREE))
    removed = [model.declaration_ids - candidate.model.declaration_ids for candidate in candidates]
    assert removed == [{0, 1, 2}, {1, 2}, {2}]
    # the directive naming C is pruned along with it
    assert all(not candidate.model.annotations for candidate in candidates)
    assert all(candidate.model.missing_symbols() == [] for candidate in candidates)


def test_annotation_pass_drops_directives_then_symbols() -> None:
    model = parse_case(CHAIN, '#include "input.h"\ngenerate!("A", "B")\n')
    candidates = list(generate(model, PassKind.ANNOTATION))
    assert [candidate.description for candidate in candidates] == [
        "drop directive #include",
        "drop directive generate",
        "drop 'A' from generate",
        "drop 'B' from generate",
    ]
    assert candidates[2].model.annotations[1].symbols == ("B",)


def test_token_pass_shrinks_bodies() -> None:
    model = parse_case("int add(int a, int b) { return a + b; }\n", "")
    candidates = list(generate(model, PassKind.TOKEN))
    texts = [candidate.model.declarations[0].text for candidate in candidates]
    assert texts == ["int add(int a, int b);", "int add(int a, int b) {}"]
    assert all(candidate.model.declarations[0].names == {"add"} for candidate in candidates)


def test_token_pass_drops_members_and_relinks() -> None:
    model = parse_case(CHAIN, "")
    candidates = [
        candidate
        for candidate in generate(model, PassKind.TOKEN)
        if "#1" in candidate.description
    ]
    assert len(candidates) == 1
    edited = candidates[0].model.declaration(1)
    assert "A a;" not in edited.text
    assert edited.depends_on == frozenset()


def test_token_pass_drops_enumerators() -> None:
    model = parse_case("enum E { X, Y };\n", "")
    candidates = list(generate(model, PassKind.TOKEN))
    assert candidates[0].model.declarations[0].names == {"E", "X"}
    assert candidates[1].model.declarations[0].names == {"E", "Y"}


def test_prune_annotations_keeps_foreign_symbols() -> None:
    model = parse_case(CHAIN, 'generate!("A", "Elsewhere")\ngenerate!("C")\n')
    pruned = prune_annotations(model.without_declarations({0, 1, 2}))
    assert len(pruned.annotations) == 1
    assert pruned.annotations[0].symbols == ("Elsewhere",)


def test_generation_is_restartable() -> None:
    model = parse_case(CHAIN, "")
    first = [candidate.key() for candidate in generate(model, PassKind.SUBTREE)]
    second = [candidate.key() for candidate in generate(model, PassKind.SUBTREE)]
    assert first == second


def test_unknown_pass_kind_raises() -> None:
    with pytest.raises(ValueError):
        list(generate(parse_case(CHAIN, ""), "bogus"))  # type: ignore[arg-type]
