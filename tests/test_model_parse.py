from __future__ import annotations

import pytest

from ffireduce.errors import ParseError
from ffireduce.model.lexer import code_tokens, tokenize
from ffireduce.model.parse import body_span, parse_header, reparse_declaration, split_members
from ffireduce.model.render import render_header
from ffireduce.model.types import DeclKind, Model

HEADER = """#include <cstdint>
namespace ns {
struct Foo { int a; };
inline namespace v1 {
enum Color { Red, Green };
}
}
typedef int Handle;
int add(int a, int b) { return a + b; }
const int kLimit = 4;
"""


def test_tokenize_skips_literals_and_comments() -> None:
    tokens = tokenize('int x = 1; // trailing ; comment\nconst char* s = "a;b";\n')
    code = code_tokens(tokens)
    assert [tok.value for tok in code if tok.value == ";"] == [";", ";"]
    assert any(tok.kind == "comment" for tok in tokens)
    assert any(tok.kind == "string" and tok.value == '"a;b"' for tok in code)
    assert code[-1].line == 2


def test_tokenize_preprocessor_continuation() -> None:
    tokens = tokenize("#define F(x) \\\n  ((x) + 1)\nint y;\n")
    assert tokens[0].kind == "preproc"
    assert "((x) + 1)" in tokens[0].value
    assert tokens[1].line == 3


def test_parse_header_kinds_and_namespaces() -> None:
    decls = parse_header(HEADER)
    assert [decl.kind for decl in decls] == [
        DeclKind.INCLUDE,
        DeclKind.TYPE,
        DeclKind.TYPE,
        DeclKind.TYPE,
        DeclKind.FUNCTION,
        DeclKind.CONSTANT,
    ]
    assert decls[1].namespace == ("ns",)
    assert decls[1].names == frozenset({"Foo"})
    assert decls[2].namespace == ("ns", "inline v1")
    assert decls[2].names == frozenset({"Color", "Red", "Green"})
    assert "ns::v1::Color" in decls[2].qualified_names
    assert decls[3].names == frozenset({"Handle"})
    assert decls[4].names == frozenset({"add"})
    assert decls[4].text == "int add(int a, int b) { return a + b; }"
    assert decls[5].names == frozenset({"kLimit"})


def test_render_header_round_trips() -> None:
    decls = parse_header(HEADER)
    rendered = render_header(Model(declarations=decls, annotations=()))
    assert "inline namespace v1 {" in rendered
    again = parse_header(rendered)
    assert [decl.text for decl in again] == [decl.text for decl in decls]
    assert [decl.namespace for decl in again] == [decl.namespace for decl in decls]


def test_leading_comment_belongs_to_following_declaration() -> None:
    decls = parse_header("// the widget\nstruct Widget {};\n")
    assert len(decls) == 1
    assert decls[0].text.startswith("// the widget")


def test_linkage_block_is_opaque_with_inner_names() -> None:
    decls = parse_header('extern "C" {\nint c_api(void);\nstruct CStruct { int v; };\n}\n')
    assert len(decls) == 1
    assert decls[0].kind is DeclKind.OPAQUE
    assert decls[0].names == frozenset({"c_api", "CStruct"})


def test_static_assert_is_opaque() -> None:
    decls = parse_header("static_assert(sizeof(int) == 4, \"int\");\n")
    assert decls[0].kind is DeclKind.OPAQUE


def test_define_declares_macro_name() -> None:
    decls = parse_header("#define LIMIT 4\nint arr[LIMIT];\n")
    assert decls[0].kind is DeclKind.CONSTANT
    assert decls[0].names == frozenset({"LIMIT"})
    assert decls[1].names == frozenset({"arr"})
    assert decls[1].depends_on == frozenset({0})


@pytest.mark.parametrize(
    ("text", "fragment"),
    [
        ("struct A {\n", "unclosed '{'"),
        ("int x", "unterminated declaration"),
        ("/* never closed", "unterminated block comment"),
        ("int y;\n}\n", "unbalanced '}'"),
        ('const char* s = "open;\n', "unterminated literal"),
    ],
)
def test_parse_errors_carry_line_information(text: str, fragment: str) -> None:
    with pytest.raises(ParseError) as excinfo:
        parse_header(text)
    assert fragment in str(excinfo.value)
    assert excinfo.value.line is not None


def test_unbalanced_brace_reports_its_line() -> None:
    with pytest.raises(ParseError) as excinfo:
        parse_header("int y;\n}\n")
    assert excinfo.value.line == 2


def test_body_span_and_members() -> None:
    text = "struct S { int a; int b; };"
    span = body_span(text)
    assert span is not None
    start, end = span
    assert text[start:end] == "{ int a; int b; }"
    inner = text[start + 1 : end - 1]
    members = [inner[lo:hi] for lo, hi in split_members(inner)]
    assert members == ["int a;", "int b;"]


def test_enum_members_split_on_commas() -> None:
    inner = " X, Y = 2 "
    members = [inner[lo:hi] for lo, hi in split_members(inner, separator=",")]
    assert members == ["X,", "Y = 2"]


def test_body_span_ignores_initializers() -> None:
    assert body_span("int values[] = {1, 2};") is None


def test_reparse_declaration_refreshes_names() -> None:
    decl = parse_header("struct S { Other o; };\n")[0]
    assert "Other" in decl.mentions
    updated = reparse_declaration(decl, "struct S { };")
    assert updated.names == frozenset({"S"})
    assert "Other" not in updated.mentions
    with pytest.raises(ParseError):
        reparse_declaration(decl, "// nothing left")
