from __future__ import annotations

from itertools import count
from typing import Callable, Iterator

from ._diff import TextDiff


class TextBuffer:
    """
    A mutable plain text, the text-side counterpart of an [Editor][docbridge.Editor].
    """

    _value: str
    _observers: dict[int, Callable[[TextDiff, str], None]]
    _ids: count

    def __init__(self, init: str = "") -> None:
        """
        Creates a text buffer with an optional initial value:
        ```py
        buffer = TextBuffer("Hello, World!")
        ```

        Args:
            init: The initial text.
        """
        self._value = init
        self._observers = {}
        self._ids = count()

    def __str__(self) -> str:
        return self._value

    def __len__(self) -> int:
        return len(self._value)

    def __iter__(self) -> Iterator[str]:
        return iter(self._value)

    def __contains__(self, item: str) -> bool:
        return item in self._value

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TextBuffer):
            return self._value == other._value
        if isinstance(other, str):
            return self._value == other
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def replace_range(self, from_: int, to: int, text: str) -> None:
        """
        Replaces the characters between two offsets:
        ```py
        buffer = TextBuffer("Hello, World!")
        buffer.replace_range(7, 12, "Python")
        assert str(buffer) == "Hello, Python!"
        ```

        Args:
            from_: The start offset.
            to: The end offset.
            text: The replacement text.

        Raises:
            IndexError: Offsets out of range.
        """
        if from_ < 0 or to > len(self._value) or from_ > to:
            raise IndexError(f"Range {from_}-{to} outside of text of length {len(self._value)}")
        if from_ == to and not text:
            return
        self._value = self._value[:from_] + text + self._value[to:]
        diff = TextDiff(from_, to, from_ + len(text))
        for callback in list(self._observers.values()):
            callback(diff, self._value)

    def insert(self, index: int, text: str) -> None:
        self.replace_range(index, index, text)

    def __delitem__(self, key: int | slice) -> None:
        """
        Removes the characters at the given index or slice:
        ```py
        buffer = TextBuffer("Hello, World!")
        del buffer[5]
        del buffer[-7:]
        assert str(buffer) == "Hello"
        ```
        """
        length = len(self._value)
        if isinstance(key, int):
            if key < 0:
                key += length
            self.replace_range(key, key + 1, "")
        elif isinstance(key, slice):
            if key.step is not None:
                raise RuntimeError("Step not supported")
            start, stop, _ = key.indices(length)
            self.replace_range(start, max(start, stop), "")
        else:
            raise RuntimeError(f"Index not supported: {key}")

    def observe(self, callback: Callable[[TextDiff, str], None]) -> int:
        """
        Subscribes a callback to be called after each change.

        Args:
            callback: The callback, called with the changed region and the new text.

        Returns:
            The subscription ID that can be used to unobserve.
        """
        id = next(self._ids)
        self._observers[id] = callback
        return id

    def unobserve(self, id: int) -> None:
        self._observers.pop(id, None)
