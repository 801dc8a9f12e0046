from __future__ import annotations

from typing import TYPE_CHECKING, Callable, NamedTuple, Sequence

from ._types import WarningEvent, count_parameters, default_on_warning

if TYPE_CHECKING:
    from ._node import Node
    from ._types import OnWarning


class TextSegment(NamedTuple):
    """
    A mapped correspondence between a structural position range and a text offset
    range. Starts are inclusive, ends are exclusive.
    """

    struct_start: int
    struct_end: int
    text_start: int
    text_end: int


class OffsetMap:
    """
    Segments sorted by structural position, aligning a structured document with its
    serialized text.
    """

    __slots__ = ("segments", "text_length", "skipped_nodes")

    segments: list[TextSegment]
    text_length: int
    skipped_nodes: int

    def __init__(
        self, segments: Sequence[TextSegment], text_length: int, skipped_nodes: int = 0
    ) -> None:
        """
        Args:
            segments: The segments, in increasing order in both coordinates.
            text_length: The length of the serialized text.
            skipped_nodes: The number of text leaves that could not be located in the
                serialized text.
        """
        self.segments = list(segments)
        self.text_length = text_length
        self.skipped_nodes = skipped_nodes

    def lookup(self, struct_pos: int) -> int | None:
        return lookup(self, struct_pos)

    def reverse_lookup(self, text_offset: int) -> int | None:
        return reverse_lookup(self, text_offset)

    def __repr__(self) -> str:
        return (
            f"OffsetMap(segments={self.segments!r}, text_length={self.text_length}, "
            f"skipped_nodes={self.skipped_nodes})"
        )


class LocateContext(NamedTuple):
    """Structural information passed to context-aware locate functions."""

    #: Child indices of the ancestor containers of the text leaf, below the root.
    path: tuple[int, ...]
    parent_type: str
    index_in_parent: int
    #: The index of the text leaf among all non-empty text leaves of the document.
    text_node_ordinal: int


class MatchRun(NamedTuple):
    """A run of a text leaf (leaf-relative offsets) found in the serialized text."""

    content_start: int
    content_end: int
    text_start: int
    text_end: int


class MatchResult(NamedTuple):
    runs: Sequence[MatchRun]
    next_search_from: int


Locate = Callable[..., int]
Matcher = Callable[[str, str, int], "MatchResult | None"]


class OffsetMapWriter:
    """
    Collects serialized output together with the spans that are verbatim text leaf
    content.

    A serializer taking a writer as its second argument builds its output through
    [write()][docbridge.OffsetMapWriter.write] (structural syntax) and
    [write_mapped()][docbridge.OffsetMapWriter.write_mapped] (leaf content):
    ```py
    def serialize(doc, writer):
        for paragraph, pos in doc.iter_children():
            if paragraph is not doc.child(0):
                writer.write("\\n")
            for leaf, offset in paragraph.iter_children():
                start = pos + 1 + offset
                writer.write_mapped(start, start + leaf.node_size, leaf.text)
    ```
    """

    _parts: list[str]
    _segments: list[TextSegment]
    _offset: int

    def __init__(self) -> None:
        self._parts = []
        self._segments = []
        self._offset = 0

    @property
    def mapped_count(self) -> int:
        return len(self._segments)

    @property
    def text(self) -> str:
        """The serialized text written so far."""
        return "".join(self._parts)

    def write(self, text: str) -> None:
        """Writes unmapped text."""
        self._parts.append(text)
        self._offset += len(text)

    def write_mapped(self, struct_start: int, struct_end: int, text: str) -> None:
        """
        Writes text that corresponds to a structural position range.

        Args:
            struct_start: The structural start position (inclusive).
            struct_end: The structural end position (exclusive).
            text: The serialized text of that range.
        """
        self._segments.append(
            TextSegment(struct_start, struct_end, self._offset, self._offset + len(text))
        )
        self.write(text)

    def finish(self, doc: Node) -> OffsetMap:
        """
        Returns:
            The offset map, where every text leaf with no overlapping mapped span counts
                as skipped.
        """
        segments = self._segments
        leaves = [(pos, pos + leaf.node_size) for leaf, pos in doc.text_leaves()]
        mapped = 0
        index = 0
        for start, end in leaves:
            while index < len(segments) and segments[index].struct_end <= start:
                index += 1
            k = index
            while k < len(segments) and segments[k].struct_start < end:
                if segments[k].struct_end > start:
                    mapped += 1
                    break
                k += 1
        return OffsetMap(list(segments), self._offset, max(0, len(leaves) - mapped))


def build_offset_map(
    doc: Node,
    serialize: Callable[..., str | None],
    locate: Locate | None = None,
    *,
    on_warning: OnWarning | None = None,
) -> OffsetMap:
    """
    Builds the offset map of a document.

    If `serialize` accepts a second argument, it is called with an
    [OffsetMapWriter][docbridge.OffsetMapWriter], and the spans it declares are used
    as-is unless it wrote no span and returned a string, which is then treated as the
    output of a plain serializer. For a plain serializer, every text leaf is searched
    in the serialized text, in document order, starting where the previous match
    ended. A `locate(text, leaf_text, search_from)` function replaces the default
    `str.find` search, and receives a [LocateContext][docbridge.LocateContext] as a
    fourth argument if it takes one.

    Args:
        doc: The document.
        serialize: A plain serializer, or a serializer writing to an offset map writer.
        locate: An optional function returning the offset of a leaf text, or `-1`.
        on_warning: The callback for non-monotonic writer spans.

    Returns:
        The offset map.
    """
    if count_parameters(serialize) >= 2:
        writer = OffsetMapWriter()
        text = serialize(doc, writer)
        if not isinstance(text, str) or writer.mapped_count:
            offset_map = writer.finish(doc)
            _check_monotonic(offset_map, on_warning or default_on_warning)
            return offset_map
    else:
        text = serialize(doc)
    assert isinstance(text, str)
    return _forward_scan(doc, text, locate)


def _check_monotonic(offset_map: OffsetMap, on_warning: OnWarning) -> None:
    segments = offset_map.segments
    for index in range(1, len(segments)):
        prev = segments[index - 1]
        curr = segments[index]
        if curr.struct_start < prev.struct_end or curr.text_start < prev.text_end:
            on_warning(
                WarningEvent(
                    "non-monotonic-segment",
                    f"Segment {index} starts at {curr.struct_start}/{curr.text_start}, "
                    f"before the end of the previous one at {prev.struct_end}/{prev.text_end}; "
                    "mapped spans must be written in increasing document order",
                )
            )


def _walk_leaves(
    node: Node, content_start: int, path: tuple[int, ...], visit: Callable[..., None]
) -> None:
    for index, (child, offset) in enumerate(node.iter_children()):
        pos = content_start + offset
        if child.text is not None:
            visit(child, pos, path, node.type, index)
        else:
            _walk_leaves(child, pos + 1, (*path, index), visit)


def _forward_scan(doc: Node, text: str, locate: Locate | None) -> OffsetMap:
    segments: list[TextSegment] = []
    search_from = 0
    ordinal = 0
    skipped = 0
    with_context = locate is not None and count_parameters(locate) >= 4

    def visit(leaf: Node, pos: int, path: tuple[int, ...], parent_type: str, index: int) -> None:
        nonlocal search_from, ordinal, skipped
        assert leaf.text is not None
        if locate is None:
            found = text.find(leaf.text, search_from)
        elif with_context:
            context = LocateContext(path, parent_type, index, ordinal)
            found = locate(text, leaf.text, search_from, context)
        else:
            found = locate(text, leaf.text, search_from)
        ordinal += 1
        if found >= 0:
            size = len(leaf.text)
            segments.append(TextSegment(pos, pos + size, found, found + size))
            search_from = found + size
        else:
            skipped += 1

    _walk_leaves(doc, 0, (), visit)
    return OffsetMap(segments, len(text), skipped)


def wrap_serialize(
    serialize: Callable[[Node], str], matcher: Matcher | None = None
) -> Callable[[Node, OffsetMapWriter], None]:
    """
    Turns a plain serializer into a serializer writing to an
    [OffsetMapWriter][docbridge.OffsetMapWriter].

    Each text leaf is first searched verbatim. If it is not found and a `matcher` is
    given, `matcher(text, leaf_text, search_from)` may return the runs of the leaf
    that appear in the text (for instance around escape characters), producing one
    segment per run.

    Args:
        serialize: The plain serializer.
        matcher: The optional format-specific matcher.

    Returns:
        The writer-based serializer.
    """

    def serialize_with_map(doc: Node, writer: OffsetMapWriter) -> None:
        text = serialize(doc)
        pos = 0
        for segment in _match_segments(doc, text, matcher):
            if segment.text_start > pos:
                writer.write(text[pos : segment.text_start])
            writer.write_mapped(
                segment.struct_start,
                segment.struct_end,
                text[segment.text_start : segment.text_end],
            )
            pos = segment.text_end
        if pos < len(text):
            writer.write(text[pos:])

    return serialize_with_map


def _match_segments(doc: Node, text: str, matcher: Matcher | None) -> list[TextSegment]:
    segments: list[TextSegment] = []
    search_from = 0
    for leaf, pos in doc.text_leaves():
        content = leaf.text
        assert content is not None
        found = text.find(content, search_from)
        if found >= 0:
            segments.append(TextSegment(pos, pos + len(content), found, found + len(content)))
            search_from = found + len(content)
            continue
        if matcher is not None:
            result = matcher(text, content, search_from)
            if result is not None:
                for run in result.runs:
                    segments.append(
                        TextSegment(
                            pos + run.content_start,
                            pos + run.content_end,
                            run.text_start,
                            run.text_end,
                        )
                    )
                search_from = result.next_search_from
    return segments


def lookup(offset_map: OffsetMap, struct_pos: int) -> int | None:
    """
    Translates a structural position into a text offset.

    Positions between segments snap to the closer of the neighbouring boundaries,
    the earlier one on ties.

    Returns:
        The text offset, or `None` if the map is empty.
    """
    segments = offset_map.segments
    if not segments:
        return None
    lo = 0
    hi = len(segments) - 1
    while lo <= hi:
        mid = (lo + hi) // 2
        segment = segments[mid]
        if struct_pos < segment.struct_start:
            hi = mid - 1
        elif struct_pos >= segment.struct_end:
            lo = mid + 1
        else:
            return segment.text_start + struct_pos - segment.struct_start
    if hi < 0:
        return segments[0].text_start
    before = segments[hi]
    if lo >= len(segments):
        return before.text_end
    after = segments[lo]
    if struct_pos - before.struct_end <= after.struct_start - struct_pos:
        return before.text_end
    return after.text_start


def reverse_lookup(offset_map: OffsetMap, text_offset: int) -> int | None:
    """
    Translates a text offset into a structural position.

    Offsets between segments snap to the closer of the neighbouring boundaries,
    the earlier one on ties.

    Returns:
        The structural position, or `None` if the map is empty.
    """
    segments = offset_map.segments
    if not segments:
        return None
    lo = 0
    hi = len(segments) - 1
    while lo <= hi:
        mid = (lo + hi) // 2
        segment = segments[mid]
        if text_offset < segment.text_start:
            hi = mid - 1
        elif text_offset >= segment.text_end:
            lo = mid + 1
        else:
            return segment.struct_start + text_offset - segment.text_start
    if hi < 0:
        return segments[0].struct_start
    before = segments[hi]
    if lo >= len(segments):
        return before.struct_end
    after = segments[lo]
    if text_offset - before.text_end <= after.text_start - text_offset:
        return before.struct_end
    return after.struct_start
