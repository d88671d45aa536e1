"""In-place edits of JSON-with-comments text.

json5 reads these documents but cannot write them back with their comments.
The scanner here records where each object member and array item sits in
the original text so new values can be spliced in, leaving every other
byte (comments, indentation, trailing commas) as it was.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import NamedTuple

import json5

_TOKEN = re.compile(
    r"""
    (?P<space>\s+)
    | (?P<comment>//[^\n]*|/\*.*?\*/)
    | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
    | (?P<punct>[{}\[\]:,])
    | (?P<scalar>[^\s{}\[\]:,"'/]+)
    """,
    re.VERBOSE | re.DOTALL,
)

_INDENT = re.compile(r"[ \t]*")


class JsoncEditError(ValueError):
    """Raised when text cannot be scanned or edited at the requested path."""

    pass


class _Token(NamedTuple):
    kind: str
    text: str
    start: int
    end: int


@dataclass
class _Node:
    """Location of one value in the source text.

    For objects and arrays `start` is the opening bracket and `close` the
    closing one; `trailing_comma` is the offset just past a comma that
    follows the last entry.
    """

    kind: str
    start: int
    end: int = 0
    close: int = 0
    members: dict[str, _Node] = field(default_factory=dict)
    first_member: int | None = None
    items: list[_Node] = field(default_factory=list)
    trailing_comma: int | None = None


def _tokenize(text: str) -> Iterator[_Token]:
    pos = 0
    while pos < len(text):
        match = _TOKEN.match(text, pos)
        if match is None:
            raise JsoncEditError(f"Unexpected character at offset {pos}")
        kind = match.lastgroup or ""
        if kind not in ("space", "comment"):
            yield _Token(kind, match.group(), match.start(), match.end())
        pos = match.end()


class _Parser:
    def __init__(self, text: str) -> None:
        self._tokens = list(_tokenize(text))
        self._pos = 0

    def document(self) -> _Node:
        node = self._value()
        if self._pos != len(self._tokens):
            raise JsoncEditError("Unexpected content after the top-level value")
        return node

    def _take(self) -> _Token:
        if self._pos >= len(self._tokens):
            raise JsoncEditError("Unexpected end of document")
        token = self._tokens[self._pos]
        self._pos += 1
        return token

    def _value(self) -> _Node:
        token = self._take()
        if token.text == "{":
            return self._container(token, "object", "}")
        if token.text == "[":
            return self._container(token, "array", "]")
        if token.kind in ("string", "scalar"):
            return _Node("scalar", token.start, token.end)
        raise JsoncEditError(f"Unexpected '{token.text}' at offset {token.start}")

    def _container(self, opening: _Token, kind: str, closing: str) -> _Node:
        node = _Node(kind, opening.start)
        token = self._take()
        while token.text != closing:
            if kind == "object":
                if token.kind not in ("string", "scalar"):
                    raise JsoncEditError(f"Expected a key at offset {token.start}")
                key = json5.loads(token.text) if token.kind == "string" else token.text
                if node.first_member is None:
                    node.first_member = token.start
                if self._take().text != ":":
                    raise JsoncEditError(f"Expected ':' after key '{key}'")
                # Duplicate keys resolve to the last one, as when parsing
                node.members[key] = self._value()
            else:
                self._pos -= 1
                node.items.append(self._value())

            token = self._take()
            node.trailing_comma = None
            if token.text == ",":
                node.trailing_comma = token.end
                token = self._take()
            elif token.text != closing:
                raise JsoncEditError(f"Expected ',' or '{closing}' at offset {token.start}")
        node.close = token.start
        node.end = token.end
        return node


def _indent_of(text: str, offset: int) -> str:
    line_start = text.rfind("\n", 0, offset) + 1
    match = _INDENT.match(text, line_start, offset)
    return match.group() if match else ""


def _line_end(text: str, offset: int, limit: int) -> int:
    """Offset of the line break after `offset`, or `limit` if none comes first."""
    eol = text.find("\n", offset, limit)
    if eol == -1:
        return limit
    if eol > offset and text[eol - 1] == "\r":
        eol -= 1
    return eol


def _insert_member(text: str, obj: _Node, member: str, newline: str) -> str:
    at = obj.start + 1
    if obj.first_member is None:
        return text[:at] + member + text[at:]
    if "\n" in text[at : obj.first_member]:
        indent = _indent_of(text, obj.first_member)
        return text[:at] + f"{newline}{indent}{member}," + text[at:]
    return text[:at] + f"{member}, " + text[at:]


def _append_items(text: str, array: _Node, values: list[str], newline: str) -> str:
    if not array.items:
        at = array.start + 1
        return text[:at] + ", ".join(values) + text[at:]

    last = array.items[-1]
    if "\n" not in text[array.start : array.close]:
        if array.trailing_comma is None:
            at, insert = last.end, "".join(f", {v}" for v in values)
        else:
            at, insert = array.trailing_comma, "".join(f" {v}," for v in values)
        return text[:at] + insert + text[at:]

    # One entry per line, indented like the current last entry
    indent = _indent_of(text, last.start)
    if array.trailing_comma is None:
        text = text[: last.end] + "," + text[last.end :]
        at = _line_end(text, last.end + 1, array.close + 1)
        insert = ",".join(f"{newline}{indent}{v}" for v in values)
    else:
        at = _line_end(text, array.trailing_comma, array.close)
        insert = "".join(f"{newline}{indent}{v}," for v in values)
    return text[:at] + insert + text[at:]


def _member(key_path: Sequence[str], values: list[str]) -> str:
    value = "[" + ", ".join(values) + "]"
    for key in reversed(key_path[1:]):
        value = "{" + f"{json.dumps(key)}: {value}" + "}"
    return f"{json.dumps(key_path[0])}: {value}"


def append_strings(text: str, key_path: Sequence[str], values: Sequence[str]) -> str:
    """Append string values to the array at `key_path` inside `text`.

    Objects and the array on the path are created when absent. Nothing
    outside the inserted values changes.

    Args:
        text: Source of a document whose top-level value is an object.
        key_path: Object keys leading to the array, outermost first.
        values: Strings to append, in order.

    Returns:
        The edited text.

    Raises:
        JsoncEditError: If the text cannot be scanned, or a value on the
            path has the wrong type.
    """
    if not values:
        return text
    newline = "\r\n" if "\r\n" in text else "\n"
    encoded = [json.dumps(value, ensure_ascii=False) for value in values]

    node = _Parser(text).document()
    for depth, key in enumerate(key_path):
        if node.kind != "object":
            where = ".".join(key_path[:depth]) or "top-level value"
            raise JsoncEditError(f"'{where}' must be an object")
        child = node.members.get(key)
        if child is None:
            return _insert_member(text, node, _member(key_path[depth:], encoded), newline)
        node = child

    if node.kind != "array":
        raise JsoncEditError(f"'{'.'.join(key_path)}' must be a list")
    return _append_items(text, node, encoded, newline)
