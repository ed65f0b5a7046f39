from __future__ import annotations

import re

CSHARP_KEYWORDS = frozenset(
    """
    abstract as base bool break byte case catch char checked class const continue decimal default
    delegate do double else enum event explicit extern false finally fixed float for foreach goto if
    implicit in int interface internal is lock long namespace new null object operator out override
    params private protected public readonly ref return sbyte sealed short sizeof stackalloc static
    string struct switch this throw true try typeof uint ulong unchecked unsafe ushort using virtual
    void volatile while
    """.split()
)

_WORD = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")


def split_words(value: str) -> list[str]:
    words: list[str] = []
    for part in re.split(r"[^A-Za-z0-9]+", value):
        words.extend(_WORD.findall(part))
    return words


def _leading_digit_guard(value: str) -> str:
    if not value:
        return "_"
    if value[0].isdigit():
        return f"_{value}"
    return value


def to_pascal_case(value: str) -> str:
    return _leading_digit_guard("".join(w[:1].upper() + w[1:].lower() for w in split_words(value)))


def to_camel_case(value: str) -> str:
    words = split_words(value)
    if not words:
        return "_"
    head = words[0].lower()
    return _leading_digit_guard(head + "".join(w[:1].upper() + w[1:].lower() for w in words[1:]))


def escape_keyword(value: str) -> str:
    if value in CSHARP_KEYWORDS:
        return f"@{value}"
    return value


def csharp_identifier(value: str) -> str:
    return _leading_digit_guard(re.sub(r"[^A-Za-z0-9_]", "_", value))


def csharp_string_literal(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
