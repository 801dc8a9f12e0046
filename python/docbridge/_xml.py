from __future__ import annotations

from typing import TYPE_CHECKING, Any, Mapping, Sequence

from pycrdt import Text, XmlElement, XmlFragment, XmlText

from ._diff import diff_text, utf8_offset
from ._node import Node
from ._types import (
    ORIGIN_TEXT_TO_TREE,
    ErrorEvent,
    Reason,
    Result,
    default_normalize,
    default_on_error,
)

if TYPE_CHECKING:
    from ._types import Normalize, OnError, Parse


def node_to_element(
    node: Node, parent: XmlFragment | XmlElement, index: int | None = None
) -> XmlElement:
    """
    Inserts the XML counterpart of a container node:
    ```py
    element = node_to_element(Node("paragraph", [Node.text_node("Hi", ["bold"])]), fragment)
    assert element.children[0].diff() == [("Hi", {"bold": True})]
    ```

    The element tag is the node type and its attributes are the node attributes.
    Consecutive text leaves become one [XmlText][pycrdt.XmlText], where each mark is a
    `True` formatting attribute.

    Args:
        node: The container node.
        parent: The integrated fragment or element to insert into.
        index: The child index to insert at (default: append).

    Raises:
        ValueError: The node is a text leaf.

    Returns:
        The inserted element.
    """
    if node.is_text:
        raise ValueError("Text nodes have no element counterpart")
    formats: list[tuple[XmlText, int, int, dict[str, Any]]] = []
    element = _build_element(node, formats)
    with parent.doc.transaction():
        if index is None:
            index = len(parent.children)
        parent.children.insert(index, element)
        for xml_text, start, stop, attrs in formats:
            xml_text.format(start, stop, attrs)
    return element


def _build_element(
    node: Node, formats: list[tuple[XmlText, int, int, dict[str, Any]]]
) -> XmlElement:
    return XmlElement(node.type, dict(node.attrs), _build_contents(node.children, formats))


def _build_contents(
    nodes: Sequence[Node], formats: list[tuple[XmlText, int, int, dict[str, Any]]]
) -> list[XmlElement | XmlText]:
    contents: list[XmlElement | XmlText] = []
    run: list[Node] = []
    for child in (*nodes, None):
        if child is not None and child.is_text:
            run.append(child)
            continue
        if run:
            contents.append(_build_text(run, formats))
            run = []
        if child is not None:
            contents.append(_build_element(child, formats))
    return contents


def _build_text(
    leaves: Sequence[Node], formats: list[tuple[XmlText, int, int, dict[str, Any]]]
) -> XmlText:
    xml_text = XmlText("".join(leaf.text_content for leaf in leaves))
    # formatting ranges are in UTF-8 bytes
    offset = 0
    for leaf in leaves:
        size = len(leaf.text_content.encode())
        if leaf.marks:
            formats.append((xml_text, offset, offset + size, {mark: True for mark in leaf.marks}))
        offset += size
    return xml_text


def element_to_node(element: XmlElement) -> Node:
    """
    Converts an XML element back into a container node.

    Raises:
        ValueError: The element contains embedded objects.
    """
    tag = element.tag
    assert tag is not None
    return Node(tag, _children_to_nodes(element), dict(list(element.attributes)))


def fragment_to_node(fragment: XmlFragment, doc_type: str = "doc") -> Node:
    """
    Converts an XML fragment into a document.

    Args:
        fragment: The fragment.
        doc_type: The type of the root node.

    Raises:
        ValueError: The fragment contains embedded objects.

    Returns:
        The root node, with the converted fragment children.
    """
    return Node(doc_type, _children_to_nodes(fragment))


def _children_to_nodes(parent: XmlFragment | XmlElement) -> list[Node]:
    nodes: list[Node] = []
    for child in parent.children:
        if isinstance(child, XmlText):
            nodes.extend(_text_to_nodes(child))
        elif isinstance(child, XmlElement):
            nodes.append(element_to_node(child))
        else:
            raise ValueError(f"Unsupported XML child: {child!r}")
    return nodes


def _text_to_nodes(xml_text: XmlText) -> list[Node]:
    nodes: list[Node] = []
    for chunk, attrs in xml_text.diff():
        if not isinstance(chunk, str):
            raise ValueError("Embedded objects are not supported")
        if chunk:
            marks = [key for key, value in (attrs or {}).items() if value]
            nodes.append(Node.text_node(chunk, marks))
    return nodes


def _single_text(element: XmlElement) -> tuple[bool, XmlText | None]:
    xml_text = None
    for child in element.children:
        if isinstance(child, XmlText):
            if xml_text is not None:
                return False, None
            xml_text = child
    return True, xml_text


def _is_flat_plain(node: Node) -> bool:
    if node.child_count == 0:
        return True
    if node.child_count > 1:
        return False
    leaf = node.child(0)
    return leaf.is_text and not leaf.marks


def _patch(element: XmlElement, old: Node, new: Node) -> bool:
    if old.type != new.type or not _is_flat_plain(old) or not _is_flat_plain(new):
        return False
    if len(element.children) > 1:
        return False
    _, xml_text = _single_text(element)
    _patch_attributes(element, old.attrs, new.attrs)
    old_text = old.text_content
    new_text = new.text_content
    if xml_text is None:
        if new_text:
            element.children.append(XmlText(new_text))
        return True
    diff = diff_text(old_text, new_text)
    start = utf8_offset(old_text, diff.start)
    if diff.end_a > diff.start:
        del xml_text[start : utf8_offset(old_text, diff.end_a)]
    if diff.end_b > diff.start:
        xml_text.insert(start, new_text[diff.start : diff.end_b])
    return True


def _patch_attributes(
    element: XmlElement, old: Mapping[str, str], new: Mapping[str, str]
) -> None:
    for key in old:
        if key not in new:
            del element.attributes[key]
    for key, value in new.items():
        if old.get(key) != value:
            element.attributes[key] = value


def reconcile(
    fragment: XmlFragment, children: Sequence[Node], *, origin: Any = ORIGIN_TEXT_TO_TREE
) -> bool:
    """
    Updates the children of a fragment to match a list of container nodes, touching
    only the elements that differ.

    Elements in the common prefix and suffix are kept as-is. In the changed middle,
    elements are patched in place (attributes and text) when both the element and
    the node hold at most one unformatted text run, and replaced otherwise. All the
    changes happen in one transaction with the given origin.

    Args:
        fragment: The integrated fragment.
        children: The new children.
        origin: The origin of the transaction.

    Returns:
        `False` without changing anything if the fragment holds content other than
            elements wrapping at most one text, in which case the caller should replace
            the whole content.
    """
    current: list[XmlElement] = []
    for child in fragment.children:
        if not isinstance(child, XmlElement) or not _single_text(child)[0]:
            return False
        current.append(child)
    try:
        old_nodes = [element_to_node(element) for element in current]
    except ValueError:
        return False
    new_nodes = list(children)
    if any(node.is_text for node in new_nodes):
        return False
    old_count = len(old_nodes)
    new_count = len(new_nodes)

    prefix = 0
    while prefix < old_count and prefix < new_count and old_nodes[prefix].eq(new_nodes[prefix]):
        prefix += 1
    suffix = 0
    while (
        suffix < old_count - prefix
        and suffix < new_count - prefix
        and old_nodes[old_count - 1 - suffix].eq(new_nodes[new_count - 1 - suffix])
    ):
        suffix += 1

    old_end = old_count - suffix
    new_end = new_count - suffix
    overlap_end = min(old_end, new_end)
    with fragment.doc.transaction(origin=origin):
        for index in range(prefix, overlap_end):
            if not _patch(current[index], old_nodes[index], new_nodes[index]):
                del fragment.children[index]
                node_to_element(new_nodes[index], fragment, index)
        if old_end > overlap_end:
            del fragment.children[overlap_end:old_end]
        for index in range(overlap_end, new_end):
            node_to_element(new_nodes[index], fragment, index)
    return True


def replace_fragment(
    fragment: XmlFragment, children: Sequence[Node], *, origin: Any = ORIGIN_TEXT_TO_TREE
) -> None:
    """Replaces the whole content of a fragment."""
    with fragment.doc.transaction(origin=origin):
        length = len(fragment.children)
        if length:
            del fragment.children[0:length]
        formats: list[tuple[XmlText, int, int, dict[str, Any]]] = []
        for index, content in enumerate(_build_contents(children, formats)):
            fragment.children.insert(index, content)
        for xml_text, start, stop, attrs in formats:
            xml_text.format(start, stop, attrs)


def replace_shared_tree(
    fragment: XmlFragment,
    text: str,
    *,
    parse: Parse,
    normalize: Normalize | None = None,
    on_error: OnError | None = None,
    origin: Any = ORIGIN_TEXT_TO_TREE,
) -> Result:
    """
    Makes a fragment match the parsed form of a text, preserving the elements that
    did not change.

    Args:
        fragment: The fragment.
        text: The text.
        parse: The function turning text into a document.
        normalize: The text normalization (default: CRLF and CR to LF).
        on_error: The callback for parse failures (default: log them).
        origin: The origin of the transaction.

    Returns:
        `Result.OK`, `Result.DETACHED` if the fragment is not integrated in a document,
            or `Result.PARSE_ERROR`.
    """
    if not fragment.is_integrated:
        return Result.DETACHED
    normalize = normalize or default_normalize
    try:
        tree = parse(normalize(text))
    except Exception as exc:
        (on_error or default_on_error)(
            ErrorEvent(Reason.PARSE_ERROR, "Failed to parse text into a document", exc)
        )
        return Result.PARSE_ERROR
    with fragment.doc.transaction(origin=origin):
        if not reconcile(fragment, tree.children, origin=origin):
            replace_fragment(fragment, tree.children, origin=origin)
    return Result.OK


def replace_shared_text(
    shared_text: Text,
    text: str,
    origin: Any = None,
    normalize: Normalize | None = None,
) -> Result:
    """
    Makes a shared text match a text, deleting and inserting only the changed region.

    Args:
        shared_text: The shared text.
        text: The new text, normalized before use.
        origin: The origin of the transaction.
        normalize: The text normalization (default: CRLF and CR to LF).

    Returns:
        `Result.OK`, `Result.UNCHANGED`, or `Result.DETACHED` if the shared text is not
            integrated in a document.
    """
    if not shared_text.is_integrated:
        return Result.DETACHED
    text = (normalize or default_normalize)(text)
    current = str(shared_text)
    if current == text:
        return Result.UNCHANGED
    diff = diff_text(current, text)
    start = utf8_offset(current, diff.start)
    with shared_text.doc.transaction(origin=origin):
        if diff.end_a > diff.start:
            del shared_text[start : utf8_offset(current, diff.end_a)]
        if diff.end_b > diff.start:
            shared_text.insert(start, text[diff.start : diff.end_b])
    return Result.OK
