from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import replace

from ffireduce.errors import ParseError
from ffireduce.model.deps import link
from ffireduce.model.directives import parse_directives
from ffireduce.model.lexer import Token, code_tokens, identifiers, tokenize
from ffireduce.model.types import DeclKind, Declaration, Model

_CLOSERS = {"(": ")", "[": "]", "{": "}"}
_TYPE_KEYWORDS = {"struct", "class", "union", "enum"}
_ATTRIBUTE_WORDS = {
    "__attribute__",
    "__declspec",
    "alignas",
    "alignof",
    "decltype",
    "noexcept",
    "throw",
    "__asm__",
    "asm",
}
_KEYWORDS = {
    "alignas", "auto", "bool", "char", "char16_t", "char32_t", "char8_t", "class",
    "const", "constexpr", "consteval", "constinit", "decltype", "double", "enum",
    "explicit", "extern", "final", "float", "friend", "inline", "int", "long",
    "mutable", "namespace", "noexcept", "operator", "override", "private",
    "protected", "public", "register", "short", "signed", "static", "struct",
    "template", "thread_local", "typedef", "typename", "union", "unsigned",
    "using", "virtual", "void", "volatile", "wchar_t", "return", "if", "else",
    "for", "while", "do", "switch", "case", "default", "break", "continue",
    "sizeof", "this", "true", "false", "nullptr", "new", "delete", "throw",
    "try", "catch", "goto", "static_assert", "static_cast", "dynamic_cast",
    "reinterpret_cast", "const_cast", "typeid", "__attribute__", "__declspec",
}
_PREPROC_RE = re.compile(r"#\s*(\w+)\s*(\w*)")
_INCLUDE_DIRECTIVES = {"include", "include_next", "import"}

Span = tuple[int, int, tuple[str, ...]]


def parse_case(header: str, directives: str) -> Model:
    declarations = parse_header(header)
    annotations = parse_directives(directives)
    model = Model(declarations=declarations, annotations=annotations)
    known = frozenset(
        symbol
        for item in annotations
        for symbol in item.symbols
        if model.resolves(symbol)
    )
    return replace(model, known_symbols=known)


def parse_header(text: str, *, source: str = "header") -> tuple[Declaration, ...]:
    tokens = tokenize(text, source=source)
    spans = split_statements(tokens, 0, len(tokens), (), source=source)
    decls: list[Declaration] = []
    for ordinal, (first, last, namespace) in enumerate(spans):
        stmt_tokens = tokens[first : last + 1]
        body = text[stmt_tokens[0].start : stmt_tokens[-1].end]
        kind, names, mentions = describe(stmt_tokens, source=source)
        decls.append(
            Declaration(
                id=ordinal,
                kind=kind,
                text=body,
                namespace=namespace,
                names=frozenset(names),
                mentions=frozenset(mentions - names),
            )
        )
    return link(decls)


def reparse_declaration(decl: Declaration, text: str) -> Declaration:
    """Re-derive names and mentions after a declaration's text was edited."""
    tokens = tokenize(text)
    if not code_tokens(tokens):
        raise ParseError("declaration has no code left", source=f"declaration {decl.id}")
    kind, names, mentions = describe(tokens)
    return replace(
        decl,
        text=text,
        kind=kind,
        names=frozenset(names),
        mentions=frozenset(mentions - names),
    )


def split_statements(
    tokens: Sequence[Token],
    lo: int,
    hi: int,
    namespace: tuple[str, ...],
    *,
    source: str = "header",
) -> list[Span]:
    """Split ``tokens[lo:hi]`` into top-level statements.

    Returns ``(first, last, namespace)`` token index spans. Namespace blocks are
    flattened into their members; leading comments belong to the statement
    that follows them.
    """
    spans: list[Span] = []
    begin: int | None = None
    has_code = False
    stack: list[tuple[str, int]] = []
    k = lo
    while k < hi:
        tok = tokens[k]
        if begin is None:
            begin = k
        if tok.kind == "comment":
            k += 1
            continue
        if tok.kind == "preproc" and not stack and not has_code:
            spans.append((begin, k, namespace))
            begin = None
            k += 1
            continue
        if tok.kind == "punct" and tok.value in "([{":
            stack.append((tok.value, k))
        elif tok.kind == "punct" and tok.value in ")]}":
            if not stack or _CLOSERS[stack[-1][0]] != tok.value:
                raise ParseError(f"unbalanced '{tok.value}'", line=tok.line, source=source)
            _opener, open_idx = stack.pop()
            if tok.value == "}" and not stack:
                head = code_tokens(list(tokens[begin:open_idx]))
                nested = _namespace_path(head)
                if nested is not None:
                    spans.extend(
                        split_statements(
                            tokens, open_idx + 1, k, namespace + nested, source=source
                        )
                    )
                    begin = None
                    has_code = False
                    k += 1
                    continue
                if not _is_aggregate_head(head) and not _next_is_semicolon(tokens, k + 1, hi):
                    spans.append((begin, k, namespace))
                    begin = None
                    has_code = False
                    k += 1
                    continue
        elif tok.kind == "punct" and tok.value == ";" and not stack:
            if has_code:
                spans.append((begin, k, namespace))
            begin = None
            has_code = False
            k += 1
            continue
        has_code = True
        k += 1
    if stack:
        opener, open_idx = stack[-1]
        raise ParseError(f"unclosed '{opener}'", line=tokens[open_idx].line, source=source)
    if has_code and begin is not None:
        raise ParseError("unterminated declaration", line=tokens[begin].line, source=source)
    if begin is not None and spans and spans[-1][1] == begin - 1 and spans[-1][2] == namespace:
        first, _last, ns = spans[-1]
        spans[-1] = (first, hi - 1, ns)
    return spans


def describe(
    tokens: Sequence[Token], *, source: str = "header"
) -> tuple[DeclKind, set[str], set[str]]:
    """Classify one statement and return ``(kind, declared names, mentions)``."""
    code = code_tokens(list(tokens))
    first = code[0]
    if first.kind == "preproc":
        return _describe_preproc(first.value)
    mentions = {tok.value for tok in code if tok.kind == "ident"} - _KEYWORDS
    values = [tok.value for tok in code]
    start = _skip_template_prefix(code)
    head = _head(code, start)
    head_values = [tok.value for tok in head]
    if not head_values:
        return DeclKind.OPAQUE, set(), mentions
    if _is_linkage_block(head) or (head_values == ["namespace"] and "{" in values):
        return DeclKind.OPAQUE, _inner_names(code, source), mentions
    if head_values[0] == "static_assert":
        return DeclKind.OPAQUE, set(), mentions
    if "typedef" in head_values:
        return DeclKind.TYPE, _names_or_empty(_typedef_name(code)), mentions
    if head_values[0] == "using":
        if len(head_values) > 1 and head_values[1] == "namespace":
            return DeclKind.OPAQUE, set(), mentions
        if len(code) > start + 2 and code[start + 2].value == "=":
            return DeclKind.TYPE, {code[start + 1].value}, mentions
        idents = [tok.value for tok in head if tok.kind == "ident"]
        return DeclKind.OPAQUE, {idents[-1]} if idents else set(), mentions
    call_name = _call_name(head)
    if call_name is not None:
        return DeclKind.FUNCTION, _names_or_empty(call_name), mentions
    if any(value in _TYPE_KEYWORDS for value in head_values):
        names = _names_or_empty(_type_name(head))
        if "enum" in head_values:
            names |= _enumerators(code)
        if not names:
            names = _trailing_declarators(code)
        return DeclKind.TYPE, names, mentions
    name = _variable_name(head)
    if name is None:
        return DeclKind.OPAQUE, set(), mentions
    return DeclKind.CONSTANT, {name}, mentions


def body_span(text: str) -> tuple[int, int] | None:
    """Character span of the outermost ``{...}`` body of a declaration, braces included."""
    tokens = code_tokens(tokenize(text))
    depth = 0
    open_pos: int | None = None
    paren = 0
    for tok in tokens:
        if tok.kind != "punct":
            continue
        if tok.value in "([":
            paren += 1
        elif tok.value in ")]":
            paren -= 1
        elif tok.value == "=" and paren == 0 and depth == 0:
            return None
        elif tok.value == "{" and paren == 0:
            if depth == 0:
                open_pos = tok.start
            depth += 1
        elif tok.value == "}" and paren == 0:
            depth -= 1
            if depth == 0 and open_pos is not None:
                return open_pos, tok.end
    return None


def split_members(body: str, *, separator: str = ";") -> list[tuple[int, int]]:
    """Character spans of the members inside a ``{...}`` body (braces excluded)."""
    tokens = tokenize(body, preprocessor=True)
    spans: list[tuple[int, int]] = []
    begin: int | None = None
    depth = 0
    for idx, tok in enumerate(tokens):
        if begin is None:
            if tok.kind == "comment":
                continue
            begin = tok.start
        if tok.kind == "preproc" and depth == 0:
            spans.append((begin, tok.end))
            begin = None
            continue
        if tok.kind != "punct":
            continue
        if tok.value in "([{":
            depth += 1
        elif tok.value in ")]}":
            depth -= 1
            if tok.value == "}" and depth == 0 and separator == ";":
                if not _next_is_semicolon(tokens, idx + 1, len(tokens)):
                    prior = [t.value for t in tokens if begin <= t.start < tok.start]
                    if "=" not in prior and not _TYPE_KEYWORDS & set(prior):
                        spans.append((begin, tok.end))
                        begin = None
        elif tok.value == separator and depth == 0:
            spans.append((begin, tok.end))
            begin = None
        elif tok.value == ":" and depth == 0 and separator == ";":
            prior = [t.value for t in tokens if begin <= t.start < tok.start]
            if prior in (["public"], ["private"], ["protected"]):
                spans.append((begin, tok.end))
                begin = None
    if begin is not None:
        tail = body[begin:].strip()
        if tail:
            spans.append((begin, begin + len(body[begin:].rstrip())))
    return spans


def _describe_preproc(line: str) -> tuple[DeclKind, set[str], set[str]]:
    match = _PREPROC_RE.match(line)
    directive = match.group(1) if match else ""
    if directive in _INCLUDE_DIRECTIVES:
        return DeclKind.INCLUDE, set(), set()
    rest = line[match.end(1) :] if match else line
    mentions = identifiers(rest) - {"defined"}
    if directive == "define" and match is not None and match.group(2):
        return DeclKind.CONSTANT, {match.group(2)}, mentions
    return DeclKind.PREPROCESSOR, set(), mentions


def _namespace_path(head: list[Token]) -> tuple[str, ...] | None:
    values = [tok.value for tok in head]
    inline = False
    if values[:1] == ["inline"]:
        inline = True
        values = values[1:]
    if values[:1] != ["namespace"] or len(values) < 2:
        return None
    parts = [value for value in values[1:] if value != "::"]
    if not parts or any(not _is_ident(part) for part in parts):
        return None
    if inline:
        parts[-1] = f"inline {parts[-1]}"
    return tuple(parts)


def _is_aggregate_head(head: list[Token]) -> bool:
    depth = 0
    for idx, tok in enumerate(head):
        if tok.value == "(":
            prev = head[idx - 1].value if idx > 0 else ""
            if depth == 0 and prev not in _ATTRIBUTE_WORDS and not _TYPE_KEYWORDS & {
                t.value for t in head[:idx]
            }:
                return False
            depth += 1
        elif tok.value == ")":
            depth -= 1
        elif tok.value == "=" and depth == 0:
            return True
    values = {tok.value for tok in head}
    return bool(values & (_TYPE_KEYWORDS | {"typedef", "using"}))


def _next_is_semicolon(tokens: Sequence[Token], start: int, hi: int) -> bool:
    for idx in range(start, hi):
        tok = tokens[idx]
        if tok.kind == "comment":
            continue
        return tok.kind == "punct" and tok.value == ";"
    return False


def _is_linkage_block(head: list[Token]) -> bool:
    return len(head) == 2 and head[0].value == "extern" and head[1].kind == "string"


def _inner_names(code: list[Token], source: str) -> set[str]:
    open_idx = next(idx for idx, tok in enumerate(code) if tok.value == "{")
    close_idx = max(idx for idx, tok in enumerate(code) if tok.value == "}")
    names: set[str] = set()
    for first, last, _ns in split_statements(code, open_idx + 1, close_idx, (), source=source):
        _kind, inner, _mentions = describe(code[first : last + 1], source=source)
        names |= inner
    return names


def _skip_template_prefix(code: list[Token]) -> int:
    idx = 0
    while idx < len(code) and code[idx].value == "template":
        idx += 1
        if idx < len(code) and code[idx].value == "<":
            depth = 0
            while idx < len(code):
                if code[idx].value == "<":
                    depth += 1
                elif code[idx].value == ">":
                    depth -= 1
                    if depth == 0:
                        idx += 1
                        break
                idx += 1
    return idx


def _head(code: list[Token], start: int) -> list[Token]:
    head: list[Token] = []
    depth = 0
    idx = start
    while idx < len(code):
        tok = code[idx]
        if tok.value == "operator":
            # operator symbols such as == or () must not end the head
            head.append(tok)
            idx += 1
            if idx + 1 < len(code) and code[idx].value == "(" and code[idx + 1].value == ")":
                head.extend(code[idx : idx + 2])
                idx += 2
            while idx < len(code) and code[idx].value != "(":
                head.append(code[idx])
                idx += 1
            continue
        if tok.value in ("(", "["):
            depth += 1
        elif tok.value in (")", "]"):
            depth -= 1
        elif depth == 0 and tok.value in ("{", ";", "="):
            break
        head.append(tok)
        idx += 1
    return head


def _call_name(head: list[Token]) -> str | None:
    depth = 0
    for idx, tok in enumerate(head):
        if tok.value != "(":
            if tok.value == ")":
                depth -= 1
            continue
        if depth > 0:
            depth += 1
            continue
        prev = head[idx - 1] if idx > 0 else None
        if prev is not None and prev.value in _ATTRIBUTE_WORDS:
            depth += 1
            continue
        if prev is None:
            return None
        if prev.kind == "ident" and prev.value not in _KEYWORDS:
            return prev.value
        if _operator_before(head, idx):
            return "operator"
        for inner in head[idx + 1 :]:
            if inner.kind == "ident" and inner.value not in _KEYWORDS:
                return inner.value
            if inner.value == ")":
                break
        return None
    return None


def _operator_before(head: list[Token], idx: int) -> bool:
    return any(tok.value == "operator" for tok in head[:idx])


def _type_name(head: list[Token]) -> str | None:
    seen_keyword = False
    depth = 0
    for tok in head:
        if tok.value == "(":
            depth += 1
            continue
        if tok.value == ")":
            depth -= 1
            continue
        if depth > 0:
            continue
        if tok.value in _TYPE_KEYWORDS:
            seen_keyword = True
            continue
        if not seen_keyword:
            continue
        if tok.value in (":", "<", "{"):
            return None
        if tok.kind == "ident" and tok.value not in _ATTRIBUTE_WORDS and tok.value != "final":
            return tok.value
    return None


def _typedef_name(code: list[Token]) -> str | None:
    for idx in range(len(code) - 3):
        if code[idx].value == "(" and code[idx + 1].value == "*":
            if code[idx + 2].kind == "ident" and code[idx + 3].value == ")":
                return code[idx + 2].value
    depth = 0
    last: str | None = None
    for tok in code:
        if tok.value in ("(", "[", "{"):
            depth += 1
        elif tok.value in (")", "]", "}"):
            depth -= 1
        elif depth == 0 and tok.kind == "ident" and tok.value not in _KEYWORDS:
            last = tok.value
    return last


def _enumerators(code: list[Token]) -> set[str]:
    names: set[str] = set()
    depth = 0
    expect_name = False
    for tok in code:
        if tok.value == "{":
            depth += 1
            expect_name = depth == 1
            continue
        if tok.value == "}":
            depth -= 1
            continue
        if depth != 1:
            continue
        if tok.value == ",":
            expect_name = True
            continue
        if expect_name and tok.kind == "ident":
            names.add(tok.value)
        expect_name = False
    return names


def _trailing_declarators(code: list[Token]) -> set[str]:
    close_idx = max((idx for idx, tok in enumerate(code) if tok.value == "}"), default=-1)
    return {
        tok.value
        for tok in code[close_idx + 1 :]
        if tok.kind == "ident" and tok.value not in _KEYWORDS
    }


def _variable_name(head: list[Token]) -> str | None:
    depth = 0
    last: str | None = None
    for tok in head:
        if tok.value in ("(", "["):
            if depth == 0 and tok.value == "[" and last is not None:
                return last
            depth += 1
            continue
        if tok.value in (")", "]"):
            depth -= 1
            continue
        if depth == 0 and tok.kind == "ident" and tok.value not in _KEYWORDS:
            last = tok.value
    return last


def _names_or_empty(name: str | None) -> set[str]:
    return {name} if name else set()


def _is_ident(value: str) -> bool:
    return value.replace("_", "a").isalnum() and not value[0].isdigit()
