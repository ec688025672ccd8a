from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from ffireduce.errors import ParseError

TokenKind = Literal["ident", "number", "string", "char", "punct", "comment", "preproc"]

_IDENT_RE = re.compile(r"[A-Za-z_$][A-Za-z0-9_$]*")
_NUMBER_RE = re.compile(r"\.?[0-9](?:[eEpP][+-]|[A-Za-z0-9_.'])*")
_STRING_PREFIXES = {"L", "u", "U", "u8"}
_RAW_PREFIXES = {"R", "LR", "uR", "UR", "u8R"}
_RAW_DELIM_RE = re.compile(r'"([^()\\\s]{0,16})\(')
_PAIRED_PUNCT = ("::", "->", "...")


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: str
    start: int
    end: int
    line: int


def tokenize(text: str, *, source: str = "header", preprocessor: bool = True) -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    line = 1
    line_start = True
    length = len(text)
    while pos < length:
        ch = text[pos]
        if ch == "\n":
            line += 1
            pos += 1
            line_start = True
            continue
        if ch.isspace():
            pos += 1
            continue
        if ch == "#" and line_start and preprocessor:
            end = _preproc_end(text, pos)
            value = text[pos:end].rstrip()
            tokens.append(Token("preproc", value, pos, pos + len(value), line))
            line += text.count("\n", pos, end)
            pos = end
            continue
        line_start = False
        if text.startswith("//", pos):
            end = text.find("\n", pos)
            end = length if end == -1 else end
            tokens.append(Token("comment", text[pos:end], pos, end, line))
            pos = end
            continue
        if text.startswith("/*", pos):
            end = text.find("*/", pos + 2)
            if end == -1:
                raise ParseError("unterminated block comment", line=line, source=source)
            end += 2
            tokens.append(Token("comment", text[pos:end], pos, end, line))
            line += text.count("\n", pos, end)
            pos = end
            continue
        match = _IDENT_RE.match(text, pos)
        if match is not None:
            word = match.group(0)
            end = match.end()
            if end < length and text[end] == '"' and word in _RAW_PREFIXES:
                stop = _raw_string_end(text, end, line, source)
                tokens.append(Token("string", text[pos:stop], pos, stop, line))
                line += text.count("\n", pos, stop)
                pos = stop
                continue
            if end < length and text[end] in "\"'" and word in _STRING_PREFIXES:
                stop = _quoted_end(text, end, line, source)
                kind: TokenKind = "string" if text[end] == '"' else "char"
                tokens.append(Token(kind, text[pos:stop], pos, stop, line))
                pos = stop
                continue
            tokens.append(Token("ident", word, pos, end, line))
            pos = end
            continue
        match = _NUMBER_RE.match(text, pos)
        if match is not None:
            tokens.append(Token("number", match.group(0), pos, match.end(), line))
            pos = match.end()
            continue
        if ch in "\"'":
            stop = _quoted_end(text, pos, line, source)
            kind = "string" if ch == '"' else "char"
            tokens.append(Token(kind, text[pos:stop], pos, stop, line))
            pos = stop
            continue
        for punct in _PAIRED_PUNCT:
            if text.startswith(punct, pos):
                tokens.append(Token("punct", punct, pos, pos + len(punct), line))
                pos += len(punct)
                break
        else:
            tokens.append(Token("punct", ch, pos, pos + 1, line))
            pos += 1
    return tokens


def identifiers(text: str) -> set[str]:
    found: set[str] = set()
    for token in tokenize(text, preprocessor=False):
        if token.kind == "ident":
            found.add(token.value)
    return found


def code_tokens(tokens: list[Token]) -> list[Token]:
    return [token for token in tokens if token.kind != "comment"]


def _preproc_end(text: str, pos: int) -> int:
    length = len(text)
    while pos < length:
        end = text.find("\n", pos)
        if end == -1:
            return length
        if text[end - 1] == "\\" or (text[end - 1] == "\r" and text[end - 2] == "\\"):
            pos = end + 1
            continue
        return end
    return length


def _quoted_end(text: str, pos: int, line: int, source: str) -> int:
    quote = text[pos]
    idx = pos + 1
    length = len(text)
    while idx < length:
        ch = text[idx]
        if ch == "\\":
            idx += 2
            continue
        if ch == quote:
            return idx + 1
        if ch == "\n":
            break
        idx += 1
    raise ParseError("unterminated literal", line=line, source=source)


def _raw_string_end(text: str, pos: int, line: int, source: str) -> int:
    match = _RAW_DELIM_RE.match(text, pos)
    if match is None:
        raise ParseError("malformed raw string literal", line=line, source=source)
    closer = ")" + match.group(1) + '"'
    end = text.find(closer, match.end())
    if end == -1:
        raise ParseError("unterminated raw string literal", line=line, source=source)
    return end + len(closer)
