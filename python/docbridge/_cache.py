from __future__ import annotations

from collections import OrderedDict
from typing import TYPE_CHECKING, Callable
from weakref import WeakKeyDictionary

if TYPE_CHECKING:
    from ._node import Node


class ParseCache:
    """
    A bounded text to tree map with least-recently-used eviction.

    Identical text yields the identical tree object for as long as the entry is cached,
    which keeps reference-identity shortcuts working downstream.
    """

    _entries: OrderedDict[str, Node]
    _capacity: int

    def __init__(self, capacity: int = 8) -> None:
        """
        Args:
            capacity: The maximum number of cached trees. `0` disables the cache.

        Raises:
            ValueError: Negative capacity.
        """
        if capacity < 0:
            raise ValueError("Cache capacity must be positive or zero")
        self._entries = OrderedDict()
        self._capacity = capacity

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, text: str) -> bool:
        return text in self._entries

    def get(self, text: str) -> Node | None:
        """
        Args:
            text: The normalized text.

        Returns:
            The cached tree, now most recently used, or `None`.
        """
        tree = self._entries.get(text)
        if tree is not None:
            self._entries.move_to_end(text)
        return tree

    def put(self, text: str, tree: Node) -> None:
        if self._capacity == 0:
            return
        self._entries[text] = tree
        self._entries.move_to_end(text)
        while len(self._entries) > self._capacity:
            self._entries.popitem(last=False)

    def get_or_parse(self, text: str, parse: Callable[[str], Node]) -> Node:
        tree = self.get(text)
        if tree is None:
            tree = parse(text)
            self.put(text, tree)
        return tree

    def clear(self) -> None:
        self._entries.clear()


class SerializeMemo:
    """
    Serialized (and normalized) text memoized per tree object.

    Entries are held through weak references to the trees, so a tree that is no
    longer referenced anywhere else drops out of the memo on its own.
    """

    def __init__(
        self,
        serialize: Callable[[Node], str],
        normalize: Callable[[str], str],
    ) -> None:
        self._serialize = serialize
        self._normalize = normalize
        self._texts: WeakKeyDictionary[Node, str] = WeakKeyDictionary()

    def __len__(self) -> int:
        return len(self._texts)

    def __contains__(self, tree: Node) -> bool:
        return tree in self._texts

    def __call__(self, tree: Node) -> str:
        """
        Args:
            tree: The tree to serialize.

        Returns:
            The normalized text of the tree, serializing it only on the first call.
        """
        text = self._texts.get(tree)
        if text is None:
            text = self._normalize(self._serialize(tree))
            self._texts[tree] = text
        return text

    def remember(self, tree: Node, text: str) -> None:
        self._texts[tree] = text

    def forget(self, tree: Node) -> None:
        self._texts.pop(tree, None)
