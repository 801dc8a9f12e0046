from __future__ import annotations

from typing import NamedTuple


class TextDiff(NamedTuple):
    """
    The changed region between two strings.

    `a[:start] == b[:start]` and `a[end_a:] == b[end_b:]`, with
    `0 <= start <= end_a <= len(a)` and `0 <= start <= end_b <= len(b)`.
    """

    start: int
    end_a: int
    end_b: int

    @property
    def is_empty(self) -> bool:
        return self.start == self.end_a and self.start == self.end_b


def diff_text(a: str, b: str) -> TextDiff:
    """
    Computes the minimal changed span between two strings by trimming their common
    prefix, then their common suffix without crossing the prefix.

    Comparison is per code point, not per grapheme cluster: a boundary can fall inside
    a combining sequence. The result is a position hint for a structure-aware patcher,
    not a semantic unit.

    Args:
        a: The old string.
        b: The new string.

    Returns:
        The changed region.
    """
    start = 0
    min_len = min(len(a), len(b))
    while start < min_len and a[start] == b[start]:
        start += 1
    end_a = len(a)
    end_b = len(b)
    while end_a > start and end_b > start and a[end_a - 1] == b[end_b - 1]:
        end_a -= 1
        end_b -= 1
    return TextDiff(start, end_a, end_b)


def utf8_offset(text: str, index: int) -> int:
    """
    Converts a code point index of a string into the matching UTF-8 byte offset, the
    unit in which pycrdt indexes [Text][pycrdt.Text] and [XmlText][pycrdt.XmlText].
    """
    return len(text[:index].encode())


def code_point_offset(text: str, offset: int) -> int:
    """
    Converts a UTF-8 byte offset into a string back into a code point index. An
    offset inside a multi-byte character maps to the start of that character.
    """
    return len(text.encode()[:offset].decode(errors="ignore"))
