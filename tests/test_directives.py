from __future__ import annotations

import pytest

from ffireduce.errors import ParseError
from ffireduce.model.directives import include_target, parse_directives, render_annotation

WRAPPED = """autocxx::include_cpp! {
    #include "api.h"
    safety!(unsafe_ffi)
    generate!("ns::Foo")
    generate_pod!("Handle")
    block!("Other", "Second")
}
"""


def test_parse_wrapped_directives() -> None:
    annotations = parse_directives(WRAPPED)
    assert [item.name for item in annotations] == [
        "#include",
        "safety",
        "generate",
        "generate_pod",
        "block",
    ]
    assert [item.id for item in annotations] == [0, 1, 2, 3, 4]
    assert annotations[0].is_include
    assert include_target(annotations[0]) == "api.h"
    assert annotations[1].flags == ("unsafe_ffi",)
    assert annotations[2].symbols == ("ns::Foo",)
    assert annotations[4].symbols == ("Other", "Second")


def test_bare_directive_list_matches_wrapped() -> None:
    bare = '#include "api.h"\nsafety!(unsafe_ffi)\ngenerate!("ns::Foo")\n'
    wrapped = parse_directives(WRAPPED)
    assert parse_directives(bare) == wrapped[:3]


def test_render_annotation() -> None:
    annotations = parse_directives(WRAPPED)
    assert render_annotation(annotations[0]) == '#include "api.h"'
    assert render_annotation(annotations[1]) == "safety!(unsafe_ffi)"
    assert render_annotation(annotations[4]) == 'block!("Other", "Second")'


def test_render_escapes_quotes() -> None:
    annotations = parse_directives('generate!("say \\"hi\\"")\n')
    assert annotations[0].symbols == ('say "hi"',)
    assert render_annotation(annotations[0]) == 'generate!("say \\"hi\\"")'


@pytest.mark.parametrize(
    "text",
    [
        'generate("Foo")',
        '#define X 1',
        'generate!("Foo"',
        '42',
    ],
)
def test_malformed_directives_raise(text: str) -> None:
    with pytest.raises(ParseError) as excinfo:
        parse_directives(text)
    assert excinfo.value.source == "directives"
