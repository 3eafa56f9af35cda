"""Identifier casing conventions shared by all targets.

The wire keys used inside serialized payloads are derived here and nowhere
else, so every target agrees on them for the same IR.
"""

import re
from enum import Enum

_WORD_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+[0-9]*|[A-Z]+[0-9]*|[0-9]+")


def _shape(chunk: str) -> str:
    # "A" upper, "a" lower or uncased letter, "0" digit; keeps _WORD_RE ASCII
    return "".join("0" if c.isdigit() else "A" if c.isupper() else "a" for c in chunk)


def split_words(identifier: str) -> list[str]:
    """Split an identifier into its words, dropping separators"""
    words = []
    for chunk in re.split(r"[\W_]+", identifier):
        words.extend(chunk[m.start():m.end()] for m in _WORD_RE.finditer(_shape(chunk)))
    return words



def _capitalize(word: str) -> str:
    return word[:1].upper() + word[1:].lower()


class Casing(Enum):
    ORIGINAL = "original"
    CAMEL_CASE = "camelCase"
    PASCAL_CASE = "PascalCase"
    SNAKE_CASE = "snake_case"
    SCREAMING_SNAKE_CASE = "SCREAMING_SNAKE_CASE"

    @classmethod
    def from_str(cls, value: str) -> "Casing":
        for casing in cls:
            if casing.value == value or casing.name.lower() == value.lower():
                return casing
        raise ValueError(f"Unknown casing: {value!r}")

    def format_string(self, identifier: str) -> str:
        if self is Casing.ORIGINAL:
            return identifier

        words = split_words(identifier)
        if not words:
            return identifier

        if self is Casing.CAMEL_CASE:
            return words[0].lower() + "".join(_capitalize(w) for w in words[1:])
        if self is Casing.PASCAL_CASE:
            return "".join(_capitalize(w) for w in words)
        if self is Casing.SNAKE_CASE:
            return "_".join(w.lower() for w in words)
        return "_".join(w.upper() for w in words)


def to_camel_case(identifier: str) -> str:
    return Casing.CAMEL_CASE.format_string(identifier)


def to_pascal_case(identifier: str) -> str:
    return Casing.PASCAL_CASE.format_string(identifier)


def to_snake_case(identifier: str) -> str:
    return Casing.SNAKE_CASE.format_string(identifier)


def field_wire_key(name: str) -> str:
    """Key of a struct field inside a serialized payload"""
    return to_camel_case(name)


def variant_wire_key(name: str, casing: Casing) -> str:
    """Key (or tag value) of an enum variant inside a serialized payload"""
    return casing.format_string(name)
