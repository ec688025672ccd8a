from __future__ import annotations

import re

from ffireduce.errors import ParseError
from ffireduce.model.lexer import Token, code_tokens, tokenize
from ffireduce.model.types import Annotation

_WRAPPER_RE = re.compile(
    r"^\s*(?:[A-Za-z_]\w*\s*::\s*)*include_cpp\s*!\s*\{(?P<body>.*)\}\s*;?\s*$", re.S
)
_INCLUDE_RE = re.compile(r"#\s*include\s*(?P<target>\"[^\"]*\"|<[^>]*>)")


def parse_directives(text: str) -> tuple[Annotation, ...]:
    """Parse generator directives, with or without the ``include_cpp!`` wrapper."""
    match = _WRAPPER_RE.match(text)
    body = match.group("body") if match else text
    tokens = code_tokens(tokenize(body, source="directives"))
    annotations: list[Annotation] = []
    idx = 0
    while idx < len(tokens):
        tok = tokens[idx]
        if tok.kind == "preproc":
            annotations.append(_include_annotation(len(annotations), tok))
            idx += 1
            continue
        if tok.value == ";":
            idx += 1
            continue
        if tok.kind != "ident":
            raise ParseError(f"unexpected {tok.value!r}", line=tok.line, source="directives")
        idx, annotation = _macro_annotation(len(annotations), tokens, idx)
        annotations.append(annotation)
    return tuple(annotations)


def render_annotation(annotation: Annotation) -> str:
    if annotation.is_include:
        return annotation.raw or f"#include {annotation.flags[0]}"
    args = [_quote(symbol) for symbol in annotation.symbols]
    args.extend(annotation.flags)
    return f"{annotation.name}!({', '.join(args)})"


def include_target(annotation: Annotation) -> str | None:
    if not annotation.is_include or not annotation.flags:
        return None
    return annotation.flags[0][1:-1]


def _include_annotation(ordinal: int, tok: Token) -> Annotation:
    match = _INCLUDE_RE.match(tok.value)
    if match is None:
        raise ParseError(
            f"only #include is allowed among directives, got {tok.value!r}",
            line=tok.line,
            source="directives",
        )
    return Annotation(
        id=ordinal,
        name="#include",
        flags=(match.group("target"),),
        raw=tok.value.strip(),
    )


def _macro_annotation(ordinal: int, tokens: list[Token], idx: int) -> tuple[int, Annotation]:
    start = tokens[idx]
    path = [start.value]
    idx += 1
    while idx + 1 < len(tokens) and tokens[idx].value == "::":
        path.append(tokens[idx + 1].value)
        idx += 2
    if idx + 1 >= len(tokens) or tokens[idx].value != "!" or tokens[idx + 1].value not in "({":
        raise ParseError(
            f"expected a directive like name!(...) after {start.value!r}",
            line=start.line,
            source="directives",
        )
    closer = ")" if tokens[idx + 1].value == "(" else "}"
    idx += 2
    args: list[list[Token]] = [[]]
    depth = 0
    while True:
        if idx >= len(tokens):
            raise ParseError("unterminated directive", line=start.line, source="directives")
        tok = tokens[idx]
        idx += 1
        if tok.value in ("(", "[", "{", "<"):
            depth += 1
        elif tok.value in (")", "]", "}", ">"):
            if depth == 0 and tok.value == closer:
                break
            depth -= 1
        elif tok.value == "," and depth == 0:
            args.append([])
            continue
        args[-1].append(tok)
    symbols: list[str] = []
    flags: list[str] = []
    for arg in args:
        if not arg:
            continue
        if len(arg) == 1 and arg[0].kind == "string":
            symbols.append(_unquote(arg[0].value))
        else:
            flags.append(_join(arg))
    return idx, Annotation(
        id=ordinal,
        name="::".join(path),
        symbols=tuple(symbols),
        flags=tuple(flags),
    )


def _join(tokens: list[Token]) -> str:
    out = ""
    prev: Token | None = None
    for tok in tokens:
        if prev is not None and prev.kind == "ident" and tok.kind == "ident":
            out += " "
        out += tok.value
        prev = tok
    return out


def _unquote(literal: str) -> str:
    body = literal[literal.index('"') + 1 : -1]
    return body.replace('\\"', '"').replace("\\\\", "\\")


def _quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'
