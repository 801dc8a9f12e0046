from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Iterator, Mapping, Sequence

if TYPE_CHECKING:
    from typing import Callable


class ReplaceError(ValueError):
    """A slice does not fit the range it is meant to replace."""


class Node:
    """
    A node of a structured document.

    A node is either a container, with a type, attributes and an ordered tuple of
    children, or a text leaf, with its text and marks. Nodes are never mutated:
    operations such as [replace()][docbridge.Node.replace] return new nodes that reuse
    every untouched subtree as-is, so reference identity can be used to detect
    unchanged content.

    Positions address the content of a node. A container child takes up
    `content_size + 2` positions (its opening and closing tokens around its content),
    a text leaf takes up `len(text)` positions.
    """

    __slots__ = ("type", "attrs", "children", "text", "marks", "_content_size", "__weakref__")

    type: str
    attrs: Mapping[str, str]
    children: tuple[Node, ...]
    text: str | None
    marks: tuple[str, ...]
    _content_size: int

    def __init__(
        self,
        type: str,
        children: Iterable[Node] = (),
        attrs: Mapping[str, str] | None = None,
    ) -> None:
        """
        Creates a container node:
        ```py
        doc = Node("doc", [Node("paragraph", [Node.text_node("Hello")])])
        ```

        Adjacent text children with the same marks are merged.

        Args:
            type: The node type.
            children: The child nodes.
            attrs: The optional node attributes.
        """
        self.type = type
        self.attrs = dict(attrs) if attrs else {}
        self.children = _normalize(children)
        self.text = None
        self.marks = ()
        self._content_size = sum(child.node_size for child in self.children)

    @classmethod
    def text_node(cls, text: str, marks: Iterable[str] = ()) -> Node:
        """
        Creates a text leaf.

        Args:
            text: The (non-empty) text.
            marks: The optional marks applied to the text.

        Raises:
            ValueError: Empty text.
        """
        if not text:
            raise ValueError("Empty text nodes are not allowed")
        node = cls.__new__(cls)
        node.type = "text"
        node.attrs = {}
        node.children = ()
        node.text = text
        node.marks = tuple(sorted(set(marks)))
        node._content_size = 0
        return node

    @property
    def is_text(self) -> bool:
        return self.text is not None

    @property
    def content_size(self) -> int:
        """The number of positions inside this node."""
        return self._content_size

    @property
    def node_size(self) -> int:
        """The number of positions this node takes up in its parent."""
        if self.text is not None:
            return len(self.text)
        return self._content_size + 2

    @property
    def child_count(self) -> int:
        return len(self.children)

    def child(self, index: int) -> Node:
        return self.children[index]

    @property
    def text_content(self) -> str:
        """The concatenated text of all text leaves in this node."""
        if self.text is not None:
            return self.text
        return "".join(child.text_content for child in self.children)

    def iter_children(self) -> Iterator[tuple[Node, int]]:
        """
        Returns:
            An iterator over `(child, offset)` pairs, where `offset` is the position of
                the child relative to the start of this node's content.
        """
        offset = 0
        for child in self.children:
            yield child, offset
            offset += child.node_size

    def same_markup(self, other: Node) -> bool:
        return self.type == other.type and self.attrs == other.attrs and self.marks == other.marks

    def eq(self, other: Node) -> bool:
        """
        Returns:
            `True` if both nodes have the same markup and the same content.
        """
        if self is other:
            return True
        if not self.same_markup(other) or self.text != other.text:
            return False
        if len(self.children) != len(other.children):
            return False
        return all(a.eq(b) for a, b in zip(self.children, other.children))

    def copy(self, children: Iterable[Node]) -> Node:
        """Creates a node with the same markup and the given children."""
        return Node(self.type, children, self.attrs)

    def cut(self, from_: int = 0, to: int | None = None) -> Node:
        """
        Returns:
            A node with the same markup containing only the content between `from_` and
                `to` (text leaves are cut by character). Returns this node if nothing is
                cut away.
        """
        if to is None:
            to = self._content_size
        if self.text is not None:
            if from_ == 0 and to == len(self.text):
                return self
            return Node.text_node(self.text[from_:to], self.marks)
        if from_ == 0 and to == self._content_size:
            return self
        return self.copy(_cut_children(self.children, from_, to))

    def slice(self, from_: int, to: int | None = None) -> Slice:
        """
        Cuts the content between two positions of this node.

        Args:
            from_: The start position.
            to: The end position (defaults to the end of the content).

        Raises:
            IndexError: Position out of range.

        Returns:
            The slice, open on each side to the depth of the corresponding position.
        """
        if to is None:
            to = self._content_size
        self._check_range(from_, to)
        content = _cut_children(self.children, from_, to)
        return Slice(content, self.depth_at(from_), self.depth_at(to))

    def replace(self, from_: int, to: int, slice: Slice) -> Node:
        """
        Replaces the content between two positions with a slice.

        The slice must be open on its start and end sides to the depth of `from_` and
        `to` respectively, as produced by [slice()][docbridge.Node.slice] at matching
        positions of another version of this document. Boundary nodes are joined, every
        other child keeps its identity.

        Raises:
            IndexError: Position out of range.
            ReplaceError: The slice depths do not match the positions.

        Returns:
            The new node.
        """
        self._check_range(from_, to)
        depth_from = self.depth_at(from_)
        depth_to = self.depth_at(to)
        if slice.open_start != depth_from or slice.open_end != depth_to:
            raise ReplaceError(
                f"Slice opened at depths {slice.open_start}/{slice.open_end} does not fit "
                f"range {from_}-{to} at depths {depth_from}/{depth_to}"
            )
        if not slice.content and depth_from != depth_to:
            raise ReplaceError("Deleting between different depths requires a non-empty slice")
        left = _cut_children(self.children, 0, from_)
        right = _cut_children(self.children, to, self._content_size)
        if slice.content:
            content = _join(_join(left, slice.content, depth_from), right, depth_to)
        else:
            content = _join(left, right, depth_from)
        return self.copy(content)

    def depth_at(self, pos: int) -> int:
        """
        Returns:
            The number of container nodes, below this one, that strictly enclose `pos`.
        """
        depth = 0
        node = self
        while True:
            for child, offset in node.iter_children():
                end = offset + child.node_size
                if offset < pos < end and child.text is None:
                    node = child
                    pos -= offset + 1
                    depth += 1
                    break
                if end >= pos:
                    return depth
            else:
                return depth

    def find_diff_start(self, other: Node, pos: int = 0) -> int | None:
        """
        Finds the first position at which the content of this node and `other` differ.

        Returns:
            The position, or `None` if the contents are the same.
        """
        return _find_diff_start(self.children, other.children, pos)

    def find_diff_end(
        self, other: Node, pos_a: int | None = None, pos_b: int | None = None
    ) -> tuple[int, int] | None:
        """
        Finds the last positions, scanning from the ends, at which the content of this
        node and `other` differ.

        Returns:
            The `(position in self, position in other)` pair, or `None` if the contents are
                the same.
        """
        if pos_a is None:
            pos_a = self._content_size
        if pos_b is None:
            pos_b = other._content_size
        return _find_diff_end(self.children, other.children, pos_a, pos_b)

    def text_leaves(self) -> Iterator[tuple[Node, int]]:
        """
        Returns:
            An iterator over `(text leaf, position)` pairs in document order.
        """
        yield from _text_leaves(self, 0)

    def descendants(self, callback: Callable[[Node, int, Node, int], bool | None]) -> None:
        """
        Calls `callback(node, pos, parent, index)` for every descendant in document
        order. Returning `False` skips the node's children.
        """
        _descendants(self, 0, callback)

    def _check_range(self, from_: int, to: int) -> None:
        if from_ < 0 or to > self._content_size or from_ > to:
            raise IndexError(f"Range {from_}-{to} outside of content of size {self._content_size}")

    def __repr__(self) -> str:
        if self.text is not None:
            if self.marks:
                return f"{','.join(self.marks)}({self.text!r})"
            return repr(self.text)
        attrs = f" {self.attrs}" if self.attrs else ""
        children = ", ".join(repr(child) for child in self.children)
        return f"{self.type}{attrs}({children})"


class Slice:
    """A piece of a document, open on each side down to a given depth."""

    __slots__ = ("content", "open_start", "open_end")

    content: tuple[Node, ...]
    open_start: int
    open_end: int

    def __init__(self, content: Sequence[Node], open_start: int = 0, open_end: int = 0) -> None:
        self.content = tuple(content)
        self.open_start = open_start
        self.open_end = open_end

    @property
    def size(self) -> int:
        return sum(node.node_size for node in self.content) - self.open_start - self.open_end

    def __repr__(self) -> str:
        return f"Slice({list(self.content)!r}, {self.open_start}, {self.open_end})"


def _normalize(children: Iterable[Node]) -> tuple[Node, ...]:
    result: list[Node] = []
    for child in children:
        if child.text is not None and result:
            last = result[-1]
            if last.text is not None and last.marks == child.marks:
                result[-1] = Node.text_node(last.text + child.text, child.marks)
                continue
        result.append(child)
    return tuple(result)


def _cut_children(children: Sequence[Node], from_: int, to: int) -> list[Node]:
    result: list[Node] = []
    pos = 0
    for child in children:
        if pos >= to:
            break
        end = pos + child.node_size
        if end > from_:
            if from_ > pos or to < end:
                if child.text is not None:
                    text = child.text[max(0, from_ - pos) : min(len(child.text), to - pos)]
                    if text:
                        result.append(Node.text_node(text, child.marks))
                else:
                    inner_from = max(0, from_ - pos - 1)
                    inner_to = min(child.content_size, to - pos - 1)
                    result.append(child.cut(inner_from, inner_to))
            else:
                result.append(child)
        pos = end
    return result


def _join(left: Sequence[Node], right: Sequence[Node], depth: int) -> tuple[Node, ...]:
    if depth == 0:
        return _normalize([*left, *right])
    if not left or not right:
        raise ReplaceError(f"Cannot join open nodes at depth {depth}")
    last = left[-1]
    first = right[0]
    if last.text is not None or first.text is not None:
        raise ReplaceError("Cannot join into a text node")
    joined = last.copy(_join(last.children, first.children, depth - 1))
    return (*left[:-1], joined, *right[1:])


def _find_diff_start(a: Sequence[Node], b: Sequence[Node], pos: int) -> int | None:
    index = 0
    while True:
        if index == len(a) or index == len(b):
            return None if len(a) == len(b) else pos
        child_a = a[index]
        child_b = b[index]
        index += 1
        if child_a is child_b:
            pos += child_a.node_size
            continue
        if not child_a.same_markup(child_b):
            return pos
        if child_a.text is not None and child_b.text is not None:
            if child_a.text != child_b.text:
                same = 0
                while (
                    same < len(child_a.text)
                    and same < len(child_b.text)
                    and child_a.text[same] == child_b.text[same]
                ):
                    same += 1
                return pos + same
        elif child_a.content_size or child_b.content_size:
            inner = _find_diff_start(child_a.children, child_b.children, pos + 1)
            if inner is not None:
                return inner
        pos += child_a.node_size


def _find_diff_end(
    a: Sequence[Node], b: Sequence[Node], pos_a: int, pos_b: int
) -> tuple[int, int] | None:
    index_a = len(a)
    index_b = len(b)
    while True:
        if index_a == 0 or index_b == 0:
            return None if index_a == index_b else (pos_a, pos_b)
        index_a -= 1
        index_b -= 1
        child_a = a[index_a]
        child_b = b[index_b]
        size = child_a.node_size
        if child_a is child_b:
            pos_a -= size
            pos_b -= size
            continue
        if not child_a.same_markup(child_b):
            return pos_a, pos_b
        if child_a.text is not None and child_b.text is not None:
            if child_a.text != child_b.text:
                same = 0
                min_size = min(len(child_a.text), len(child_b.text))
                while same < min_size and child_a.text[-same - 1] == child_b.text[-same - 1]:
                    same += 1
                    pos_a -= 1
                    pos_b -= 1
                return pos_a, pos_b
        elif child_a.content_size or child_b.content_size:
            inner = _find_diff_end(child_a.children, child_b.children, pos_a - 1, pos_b - 1)
            if inner is not None:
                return inner
        pos_a -= size
        pos_b -= size


def _text_leaves(node: Node, content_start: int) -> Iterator[tuple[Node, int]]:
    for child, offset in node.iter_children():
        pos = content_start + offset
        if child.text is not None:
            yield child, pos
        else:
            yield from _text_leaves(child, pos + 1)


def _descendants(
    node: Node, content_start: int, callback: Callable[[Node, int, Node, int], bool | None]
) -> None:
    for index, (child, offset) in enumerate(node.iter_children()):
        pos = content_start + offset
        if callback(child, pos, node, index) is not False and child.text is None:
            _descendants(child, pos + 1, callback)
